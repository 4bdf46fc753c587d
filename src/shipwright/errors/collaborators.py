"""Errors raised by external collaborator adapters."""

from __future__ import annotations

from shipwright.errors.permanent import PermanentError
from shipwright.errors.transient import TransientError


class CheckoutFailedError(PermanentError):
    """Source control could not produce the requested working tree."""

    code: int = 700


class AnalysisError(TransientError):
    """The static-analysis submission or status query failed."""

    code: int = 710


class QualityGateFailedError(PermanentError):
    """The static-analysis server returned a failing quality gate verdict."""

    code: int = 711


class ContainerEngineError(TransientError):
    """A container engine command failed.

    Attributes:
        command: The engine command that was run
        exit_code: Process exit code, if the command ran
        stderr: Captured standard error
    """

    code: int = 720

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        exit_code: int | None = None,
        stderr: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.command = command or []
        self.exit_code = exit_code
        self.stderr = stderr


class ContainerNotFoundError(PermanentError):
    """The named container does not exist on the host."""

    code: int = 721

    def __init__(self, name: str) -> None:
        super().__init__(f"No such container: {name}")
        self.name = name


class HealthCheckError(TransientError):
    """The health endpoint did not answer with a 2xx status."""

    code: int = 730

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
