"""Tests for the error hierarchy, classification helpers and Outcome mapping."""

import socket
import subprocess
import urllib.error

from shipwright.errors import (
    AnalysisError,
    ApprovalRejectedError,
    ApprovalTimeoutError,
    ConfigurationError,
    ContainerEngineError,
    ContainerNotFoundError,
    FieldValidationError,
    HealthCheckError,
    PermanentError,
    QualityGateFailedError,
    RetryExhaustedError,
    RunAbortedError,
    ShipwrightError,
    StageTimeoutError,
    TransientError,
    UnauthorizedError,
    is_permanent,
    is_transient,
    truncate_error,
)
from shipwright.models.outcome import Outcome
from shipwright.models.status import FailureKind, OutcomeStatus


class TestErrorRendering:
    """Tests for message, code and cause rendering."""

    def test_str_includes_code(self) -> None:
        error = ConfigurationError("bad file")
        assert str(error) == "bad file (code=104)"

    def test_str_includes_cause(self) -> None:
        cause = ValueError("not a number")
        error = TransientError("parse failed", cause=cause)
        assert "caused by: not a number" in str(error)
        assert error.cause is cause

    def test_explicit_code_overrides_class_code(self) -> None:
        error = ShipwrightError("custom", code=999)
        assert error.code == 999

    def test_unauthorized_lists_allowed_identities(self) -> None:
        error = UnauthorizedError("guest", frozenset({"admin", "ops"}))
        assert error.identity == "guest"
        assert "admin, ops" in error.message

    def test_rejected_includes_reason(self) -> None:
        error = ApprovalRejectedError("admin", "not today")
        assert error.message == "Rejected by 'admin': not today"

    def test_container_engine_error_keeps_command(self) -> None:
        error = ContainerEngineError("push failed", command=["docker", "push", "app:1"], exit_code=1, stderr="denied")
        assert error.command == ["docker", "push", "app:1"]
        assert error.exit_code == 1
        assert error.stderr == "denied"


class TestIsTransient:
    """Tests for the is_transient error classification."""

    def test_transient_error_is_transient(self) -> None:
        assert is_transient(TransientError("Connection timeout"))

    def test_permanent_error_is_not_transient(self) -> None:
        assert not is_transient(PermanentError("Invalid input"))

    def test_collaborator_errors(self) -> None:
        """Engine, analysis and health failures retry; missing containers and failed gates do not."""
        assert is_transient(ContainerEngineError("push failed"))
        assert is_transient(AnalysisError("server unavailable"))
        assert is_transient(HealthCheckError("503", url="http://localhost/health"))
        assert not is_transient(ContainerNotFoundError("webapp"))
        assert not is_transient(QualityGateFailedError("gate failed"))

    def test_stdlib_network_errors_are_transient(self) -> None:
        assert is_transient(ConnectionRefusedError())
        assert is_transient(socket.timeout())
        assert is_transient(subprocess.TimeoutExpired(["git"], 5))
        assert is_transient(urllib.error.URLError("unreachable"))

    def test_http_errors_by_status(self) -> None:
        """5xx and 429 are transient, other HTTP errors are not."""

        def http_error(code: int) -> urllib.error.HTTPError:
            return urllib.error.HTTPError("http://sonar/api", code, "status", {}, None)  # type: ignore[arg-type]

        assert is_transient(http_error(503))
        assert is_transient(http_error(429))
        assert not is_transient(http_error(401))

    def test_name_heuristics(self) -> None:
        """Errors with 'timeout' in the name are transient unless they also look permanent."""

        class UpstreamTimeoutError(Exception):
            pass

        class ConnectionValidationError(Exception):
            pass

        assert is_transient(UpstreamTimeoutError())
        assert not is_transient(ConnectionValidationError())

    def test_cause_chain_is_followed(self) -> None:
        """A wrapper is classified by its cause."""
        try:
            try:
                raise TransientError("registry busy")
            except TransientError as inner:
                raise RuntimeError("push failed") from inner
        except RuntimeError as outer:
            assert is_transient(outer)

    def test_standard_exceptions_not_transient_by_default(self) -> None:
        assert not is_transient(ValueError("Bad value"))


class TestIsPermanent:
    """Tests for the is_permanent error classification."""

    def test_programming_errors_are_permanent(self) -> None:
        assert is_permanent(ValueError("bad"))
        assert is_permanent(KeyError("image"))

    def test_approval_errors_are_permanent(self) -> None:
        assert is_permanent(UnauthorizedError("guest", frozenset({"admin"})))
        assert is_permanent(ApprovalTimeoutError("too late"))

    def test_exhausted_is_permanent(self) -> None:
        assert is_permanent(RetryExhaustedError("gave up", attempts=3))

    def test_transient_is_not_permanent(self) -> None:
        assert not is_permanent(TransientError("busy"))


class TestTruncateError:
    def test_short_message_unchanged(self) -> None:
        assert truncate_error("short") == "short"

    def test_long_message_truncated_with_marker(self) -> None:
        result = truncate_error("x" * 100, max_chars=50)
        assert len(result) == 50
        assert result.endswith("[TRUNCATED]")


class TestOutcomeFromException:
    """Exceptions raised by actions map onto failure kinds."""

    def test_kinds(self) -> None:
        cases = [
            (RunAbortedError("stop"), FailureKind.ABORTED),
            (StageTimeoutError("slow", timeout_seconds=1), FailureKind.TIMEOUT),
            (UnauthorizedError("guest", frozenset({"admin"})), FailureKind.UNAUTHORIZED),
            (FieldValidationError([]), FailureKind.VALIDATION),
            (ApprovalTimeoutError("late"), FailureKind.APPROVAL_TIMEOUT),
            (RetryExhaustedError("gave up", attempts=3), FailureKind.EXHAUSTED),
            (ContainerEngineError("busy"), FailureKind.TRANSIENT),
            (ApprovalRejectedError("admin"), FailureKind.FATAL),
            (QualityGateFailedError("red"), FailureKind.FATAL),
            (RuntimeError("surprise"), FailureKind.ERROR),
        ]
        for error, kind in cases:
            outcome = Outcome.from_exception(error)
            assert outcome.status == OutcomeStatus.FAILED
            assert outcome.kind == kind, f"{type(error).__name__} should map to {kind}"

    def test_detail_is_the_error_text(self) -> None:
        outcome = Outcome.from_exception(RuntimeError("disk full"))
        assert outcome.detail == "disk full"
        assert outcome.message == "disk full"

    def test_empty_error_uses_type_name(self) -> None:
        outcome = Outcome.from_exception(RuntimeError())
        assert outcome.detail == "RuntimeError"

    def test_only_transient_and_timeout_are_retryable(self) -> None:
        assert Outcome.from_exception(ContainerEngineError("busy")).is_retryable
        assert Outcome.from_exception(StageTimeoutError("slow", timeout_seconds=1)).is_retryable
        assert not Outcome.from_exception(RetryExhaustedError("gave up", attempts=2)).is_retryable
        assert not Outcome.from_exception(RuntimeError("boom")).is_retryable
