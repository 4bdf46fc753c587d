"""
Bulkhead isolation for stage actions.

Stage actions run on a bounded BulkheadThreading pool from bulkman, which
enforces the per-call timeout. The calling thread (the run's single thread
of control) blocks until the action finishes or the timeout fires.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from bulkman.config import BulkheadConfig as BulkmanConfig
from bulkman.exceptions import BulkheadFullError, BulkheadTimeoutError
from bulkman.threading import BulkheadThreading

from shipwright.errors import StageTimeoutError, TransientError
from shipwright.resilience.config import EngineConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageBulkhead:
    """
    Thread isolation with bounded concurrency for stage actions.

    Example:
        bulkhead = StageBulkhead(EngineConfig())
        value = bulkhead.run(action, ctx, timeout=60.0, stage_name="build")
    """

    def __init__(self, config: EngineConfig, name: str = "shipwright_stages") -> None:
        self._config = config
        self._bulkhead = BulkheadThreading(
            BulkmanConfig(
                name=name,
                max_concurrent_calls=config.max_concurrent_stages,
                max_queue_size=config.stage_queue_size,
                timeout_seconds=config.default_stage_timeout_seconds,
                # Retries are composed around actions, not done by the bulkhead
                circuit_breaker_enabled=False,
            )
        )
        logger.debug(
            "Created stage bulkhead '%s' with max_concurrent=%d",
            name,
            config.max_concurrent_stages,
        )

    def run(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float,
        stage_name: str | None = None,
        run_id: str | None = None,
    ) -> T:
        """
        Execute ``func`` on the bulkhead and wait at most ``timeout`` seconds.

        Raises:
            StageTimeoutError: The call exceeded ``timeout``
            TransientError: The bulkhead is at capacity
            Exception: Whatever ``func`` raised
        """
        try:
            result = self._bulkhead.execute_with_timeout(func, *args, timeout=timeout)
        except BulkheadTimeoutError as e:
            raise _timeout_error(timeout, stage_name, run_id) from e
        except BulkheadFullError as e:
            logger.warning("Stage bulkhead full, cannot start '%s': %s", stage_name, e)
            raise TransientError(f"Stage bulkhead full: {e}", retry_after=5, cause=e) from e

        if result.success:
            return result.result  # type: ignore[no-any-return]

        error = result.error
        if isinstance(error, BulkheadTimeoutError):
            raise _timeout_error(timeout, stage_name, run_id) from error
        if error is not None:
            raise error
        raise RuntimeError(f"Stage '{stage_name}' failed without error details")

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Shut down the worker pool."""
        self._bulkhead.shutdown(wait=wait, timeout=timeout)


def _timeout_error(timeout: float, stage_name: str | None, run_id: str | None) -> StageTimeoutError:
    return StageTimeoutError(
        f"Stage '{stage_name}' exceeded timeout of {timeout:g}s",
        timeout_seconds=timeout,
        stage_name=stage_name,
        run_id=run_id,
    )
