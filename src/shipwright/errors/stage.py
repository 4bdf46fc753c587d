"""Stage and run level errors."""

from __future__ import annotations

from shipwright.errors.base import ShipwrightError
from shipwright.errors.permanent import PermanentError


class StageError(ShipwrightError):
    """Stage-level error.

    Carries the stage name and the run identifier for troubleshooting.
    """

    code: int = 200

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: BaseException | None = None,
        stage_name: str | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message, code=code, cause=cause)
        self.stage_name = stage_name
        self.run_id = run_id


class StageTimeoutError(StageError):
    """A stage action did not finish within its timeout."""

    code: int = 201

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float,
        stage_name: str | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message, stage_name=stage_name, run_id=run_id)
        self.timeout_seconds = timeout_seconds


class RetryExhaustedError(PermanentError):
    """Every attempt of a retry sequence failed.

    Treated as fatal by the owning stage.
    """

    code: int = 202

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.attempts = attempts


class RunAbortedError(ShipwrightError):
    """The owning run was aborted while a stage was suspended."""

    code: int = 300

    def __init__(self, message: str = "Run aborted", *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
