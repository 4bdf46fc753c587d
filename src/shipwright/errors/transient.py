"""Transient (retryable) errors."""

from __future__ import annotations

from shipwright.errors.base import ShipwrightError


class TransientError(ShipwrightError):
    """Retryable errors.

    Temporary conditions that may resolve on another attempt:
    - Network blips and connection refused
    - Container not yet ready
    - Registry push rejected
    - Server errors (5xx)

    The retry controller treats these as retryable under the default policy.
    ``retry_after`` is an optional hint, in seconds, from the collaborator.
    """

    code: int = 101

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: BaseException | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, code=code, cause=cause)
        self.retry_after = retry_after
