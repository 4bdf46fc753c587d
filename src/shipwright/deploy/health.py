"""
HTTP health-check collaborator.

A probe performs one GET and succeeds on any 2xx status. Polling is not
done here; the deployment driver runs the probe under a RetryPolicy.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from shipwright.errors import HealthCheckError

logger = logging.getLogger(__name__)


class HealthProbe(ABC):
    @abstractmethod
    def check(self, url: str, timeout: float) -> int:
        """
        GET ``url`` once.

        Returns:
            The 2xx status code

        Raises:
            HealthCheckError: Non-2xx status or no response
        """


class HttpHealthProbe(HealthProbe):
    """Health probe using urllib."""

    def __init__(self, user_agent: str = "shipwright-health/1.0") -> None:
        self._user_agent = user_agent

    def check(self, url: str, timeout: float) -> int:
        request = Request(url, method="GET", headers={"User-Agent": self._user_agent})
        try:
            with urlopen(request, timeout=timeout) as response:  # noqa: S310
                status = int(response.status)
        except HTTPError as e:
            status = e.code
        except (URLError, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise HealthCheckError(f"GET {url} failed: {reason}", url=url) from e

        if not 200 <= status < 300:
            raise HealthCheckError(f"GET {url} returned {status}", url=url, status_code=status)
        logger.debug("GET %s returned %d", url, status)
        return status


class SimulatedHealthProbe(HealthProbe):
    """
    Health probe answering from a script of status codes.

    Once the script runs out, the last status repeats. A status of 0
    simulates a connection failure.

    Example:
        probe = SimulatedHealthProbe([503, 503, 200])  # healthy on the third check
    """

    def __init__(self, statuses: Iterable[int] = (200,)) -> None:
        self._statuses = list(statuses) or [200]
        self._lock = threading.Lock()
        self.requests: list[str] = []

    def check(self, url: str, timeout: float) -> int:
        with self._lock:
            index = min(len(self.requests), len(self._statuses) - 1)
            self.requests.append(url)
            status = self._statuses[index]
        if status == 0:
            raise HealthCheckError(f"GET {url} failed: connection refused", url=url)
        if not 200 <= status < 300:
            raise HealthCheckError(f"GET {url} returned {status}", url=url, status_code=status)
        return status
