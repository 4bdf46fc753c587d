"""
Static-analysis collaborator (SonarQube).

Submits an analysis with the scanner CLI and queries the quality gate over
the web API. Verdicts are normalised to one vocabulary:

    PENDING  analysis still queued or running
    PASSED   server said OK (or PASSED on servers that use that word)
    FAILED   server said ERROR (or FAILED)
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from shipwright.errors import AnalysisError, PermanentError
from shipwright.process import ProcessResult, run_process
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)

REPORT_TASK_FILE = os.path.join(".scannerwork", "report-task.txt")


class QualityGateVerdict(Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"

    @classmethod
    def from_status(cls, status: str | None) -> QualityGateVerdict:
        """
        Map a server status string onto the canonical vocabulary.

        Servers report OK/ERROR, some report PASSED/FAILED, and WARN on old
        versions means the gate passed with warnings. NONE means no gate has
        been computed yet. Unknown strings are logged and treated as pending.
        """
        normalized = (status or "").strip().upper()
        if normalized in ("OK", "PASSED", "WARN"):
            return cls.PASSED
        if normalized in ("ERROR", "FAILED"):
            return cls.FAILED
        if normalized not in ("", "NONE", "PENDING", "IN_PROGRESS"):
            logger.warning("Unknown quality gate status %r, treating as pending", status)
        return cls.PENDING


@dataclass(frozen=True)
class AnalysisSettings:
    project_key: str
    sources: str = "."
    inclusions: Sequence[str] = ()
    exclusions: Sequence[str] = ()
    extra: Mapping[str, str] = field(default_factory=dict)

    def scanner_properties(self, server_url: str) -> dict[str, str]:
        properties = {
            "sonar.projectKey": self.project_key,
            "sonar.sources": self.sources,
            "sonar.host.url": server_url,
        }
        if self.inclusions:
            properties["sonar.inclusions"] = ",".join(self.inclusions)
        if self.exclusions:
            properties["sonar.exclusions"] = ",".join(self.exclusions)
        properties.update(self.extra)
        return properties


@dataclass(frozen=True)
class AnalysisSubmission:
    """Acknowledgment of a submitted analysis."""

    project_key: str
    task_id: str | None = None
    dashboard_url: str | None = None


class SonarClient:
    """
    SonarQube scanner and web API client.

    Args:
        server_url: Base URL of the server
        auth_token: Analysis token, passed through opaquely
        scanner: Scanner executable
        timeout: HTTP timeout in seconds
        runner: run_process replacement (for testing)
        opener: urlopen replacement (for testing)
    """

    def __init__(
        self,
        server_url: str,
        auth_token: str | None = None,
        scanner: str = "sonar-scanner",
        timeout: float = 10,
        runner: Callable[..., ProcessResult] = run_process,
        opener: Callable[..., Any] = urlopen,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._auth_token = auth_token
        self._scanner = scanner
        self._timeout = timeout
        self._runner = runner
        self._opener = opener

    # ========== Submission ==========

    def submit(
        self,
        settings: AnalysisSettings,
        workdir: str,
        token: CancellationToken | None = None,
    ) -> AnalysisSubmission:
        """
        Run the scanner in ``workdir``.

        Raises:
            AnalysisError: The scanner failed (retryable)
        """
        cmd = [self._scanner]
        for key, value in settings.scanner_properties(self.server_url).items():
            cmd.append(f"-D{key}={value}")
        env = dict(os.environ)
        if self._auth_token:
            # The scanner reads the token from the environment, keeping it out of argv
            env["SONAR_TOKEN"] = self._auth_token

        logger.info("Submitting analysis of %s to %s", settings.project_key, self.server_url)
        try:
            result = self._runner(cmd, cwd=workdir, env=env, timeout=3600, token=token)
        except FileNotFoundError as e:
            raise PermanentError(f"'{self._scanner}' not found", cause=e) from e
        except subprocess.TimeoutExpired as e:
            raise AnalysisError("Scanner timed out", cause=e) from e
        if not result.ok:
            tail = "\n".join(result.stdout.strip().splitlines()[-5:])
            raise AnalysisError(f"Scanner failed with exit code {result.returncode}: {tail}")

        report = read_report_task(os.path.join(workdir, REPORT_TASK_FILE))
        return AnalysisSubmission(
            project_key=settings.project_key,
            task_id=report.get("ceTaskId"),
            dashboard_url=report.get("dashboardUrl"),
        )

    # ========== Quality gate ==========

    def quality_gate(self, submission: AnalysisSubmission) -> QualityGateVerdict:
        """
        Current verdict for a submission.

        With a background task id the verdict is tied to that analysis;
        without one, the latest analysis of the project is used.

        Raises:
            AnalysisError: The server is unreachable or failed (retryable)
            PermanentError: The server rejected the request or the analysis
        """
        params: dict[str, str]
        if submission.task_id:
            task = self._get("/api/ce/task", {"id": submission.task_id}).get("task", {})
            status = task.get("status")
            if status in ("PENDING", "IN_PROGRESS"):
                return QualityGateVerdict.PENDING
            if status != "SUCCESS":
                raise PermanentError(f"Analysis task {submission.task_id} ended with status {status}")
            params = {"analysisId": task["analysisId"]}
        else:
            params = {"projectKey": submission.project_key}

        project_status = self._get("/api/qualitygates/project_status", params).get("projectStatus", {})
        verdict = QualityGateVerdict.from_status(project_status.get("status"))
        logger.debug("Quality gate of %s: %s", submission.project_key, verdict.value)
        return verdict

    def _get(self, path: str, params: Mapping[str, str]) -> dict[str, Any]:
        url = f"{self.server_url}{path}?{urlencode(params)}"
        headers = {"Accept": "application/json"}
        if self._auth_token:
            credentials = base64.b64encode(f"{self._auth_token}:".encode()).decode()
            headers["Authorization"] = f"Basic {credentials}"
        try:
            with self._opener(Request(url, headers=headers), timeout=self._timeout) as response:
                body = response.read().decode("utf-8")
        except HTTPError as e:
            if e.code >= 500 or e.code == 429:
                raise AnalysisError(f"GET {path} returned {e.code}", cause=e) from e
            raise PermanentError(f"GET {path} returned {e.code}", cause=e) from e
        except (URLError, TimeoutError, OSError) as e:
            raise AnalysisError(f"GET {path} failed: {e}", cause=e) from e
        try:
            return json.loads(body)  # type: ignore[no-any-return]
        except json.JSONDecodeError as e:
            raise AnalysisError(f"GET {path} returned invalid JSON", cause=e) from e


def read_report_task(path: str) -> dict[str, str]:
    """Parse the scanner's ``key=value`` report file; missing file gives {}."""
    try:
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        logger.warning("Scanner report %s not found", path)
        return {}
    report = {}
    for line in lines:
        key, sep, value = line.partition("=")
        if sep:
            report[key.strip()] = value.strip()
    return report
