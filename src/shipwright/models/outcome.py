"""
Outcome - the result of running one stage.

An Outcome is a tagged variant: SUCCEEDED, FAILED (with a FailureKind and a
detail string), DEGRADED (with a warning) or SKIPPED. Actions return one,
the executor stamps timing and captured log lines onto it, and the run
keeps it as the stage's history entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from shipwright.models.status import RETRYABLE_KINDS, FailureKind, OutcomeStatus


@dataclass(frozen=True)
class Outcome:
    """
    Result of a stage execution.

    Attributes:
        status: SUCCEEDED, FAILED, DEGRADED or SKIPPED
        message: Human-readable summary recorded in run history
        kind: Failure classification (FAILED only)
        detail: Failure detail, e.g. the last error message (FAILED only)
        warnings: Degraded-mode annotations
        result: Structured result data made available to later stages
        logs: Textual log lines captured while the action ran
        attempts: Number of attempts made (retry sequences)
        duration_seconds: Wall-clock duration stamped by the executor
    """

    status: OutcomeStatus
    message: str = ""
    kind: FailureKind | None = None
    detail: str = ""
    warnings: tuple[str, ...] = ()
    result: dict[str, Any] = field(default_factory=dict)
    logs: tuple[str, ...] = ()
    attempts: int = 1
    duration_seconds: float = 0.0

    # ========== Factory Methods ==========

    @classmethod
    def succeeded(
        cls,
        message: str = "",
        result: dict[str, Any] | None = None,
    ) -> Outcome:
        """
        Create a successful outcome.

        Args:
            message: Summary for run history
            result: Values available to later stages
        """
        return cls(status=OutcomeStatus.SUCCEEDED, message=message, result=result or {})

    @classmethod
    def failed(
        cls,
        kind: FailureKind,
        detail: str,
        message: str = "",
        result: dict[str, Any] | None = None,
    ) -> Outcome:
        """
        Create a failed outcome.

        Args:
            kind: Failure classification
            detail: What went wrong
            message: Summary for run history (defaults to the detail)
            result: Partial result data, if any
        """
        return cls(
            status=OutcomeStatus.FAILED,
            message=message or detail,
            kind=kind,
            detail=detail,
            result=result or {},
        )

    @classmethod
    def transient(cls, detail: str, result: dict[str, Any] | None = None) -> Outcome:
        """Create a retryable failure, e.g. a verdict that is still pending."""
        return cls.failed(FailureKind.TRANSIENT, detail, result=result)

    @classmethod
    def degraded(
        cls,
        warning: str,
        message: str = "",
        result: dict[str, Any] | None = None,
    ) -> Outcome:
        """
        Create a degraded outcome.

        The run keeps going; the warning is surfaced in the run summary.
        """
        return cls(
            status=OutcomeStatus.DEGRADED,
            message=message or warning,
            warnings=(warning,),
            result=result or {},
        )

    @classmethod
    def skipped(cls, reason: str = "condition not met") -> Outcome:
        """Create a skipped outcome."""
        return cls(status=OutcomeStatus.SKIPPED, message=reason)

    @classmethod
    def coerce(cls, value: Any) -> Outcome:
        """
        Turn an action's return value into an Outcome.

        Outcomes pass through, None is a plain success, a dict becomes the
        success result and anything else is wrapped as ``{"value": ...}``.
        """
        if isinstance(value, Outcome):
            return value
        if value is None:
            return cls.succeeded()
        if isinstance(value, dict):
            return cls.succeeded(result=value)
        return cls.succeeded(result={"value": value})

    @classmethod
    def from_exception(cls, error: BaseException) -> Outcome:
        """
        Create a failed outcome classified from an exception.

        Args:
            error: The exception raised by an action

        Returns:
            A FAILED outcome whose kind reflects the error type
        """
        from shipwright import errors

        detail = errors.truncate_error(str(error) or type(error).__name__)
        kind = FailureKind.ERROR
        if isinstance(error, errors.RunAbortedError):
            kind = FailureKind.ABORTED
        elif isinstance(error, (errors.StageTimeoutError, TimeoutError)):
            kind = FailureKind.TIMEOUT
        elif isinstance(error, errors.UnauthorizedError):
            kind = FailureKind.UNAUTHORIZED
        elif isinstance(error, errors.FieldValidationError):
            kind = FailureKind.VALIDATION
        elif isinstance(error, errors.ApprovalTimeoutError):
            kind = FailureKind.APPROVAL_TIMEOUT
        elif isinstance(error, errors.RetryExhaustedError):
            kind = FailureKind.EXHAUSTED
        elif errors.is_transient(error):
            kind = FailureKind.TRANSIENT
        elif errors.is_permanent(error):
            kind = FailureKind.FATAL
        return cls.failed(kind, detail)

    # ========== Properties ==========

    @property
    def is_success(self) -> bool:
        return self.status.is_successful

    @property
    def is_failure(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def is_retryable(self) -> bool:
        """True for failures a retry sequence may attempt again."""
        return self.is_failure and self.kind in RETRYABLE_KINDS

    # ========== Utility Methods ==========

    def with_warnings(self, *warnings: str) -> Outcome:
        """Return a copy with extra warnings appended."""
        if not warnings:
            return self
        return replace(self, warnings=self.warnings + tuple(warnings))

    def stamped(
        self,
        *,
        duration_seconds: float,
        logs: list[str] | tuple[str, ...] = (),
    ) -> Outcome:
        """Return a copy carrying timing and captured log lines."""
        return replace(self, duration_seconds=duration_seconds, logs=self.logs + tuple(logs))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for archival."""
        return {
            "status": str(self.status),
            "message": self.message,
            "kind": str(self.kind) if self.kind else None,
            "detail": self.detail,
            "warnings": list(self.warnings),
            "result": dict(self.result),
            "logs": list(self.logs),
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
        }
