"""Base exception hierarchy for shipwright.

Two tiers:

1. ShipwrightBaseException - root of every engine error, never retried
2. ShipwrightError - ordinary errors raised by stages and collaborators
"""

from __future__ import annotations


class ShipwrightBaseException(Exception):  # noqa: N818 - intentional base exception name
    """Base exception for all shipwright errors.

    Attributes:
        code: Numeric error code for programmatic handling
        cause: Optional original exception that caused this error
    """

    code: int = 0

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"(code={self.code})")
        if self.cause:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)


class ShipwrightError(ShipwrightBaseException):
    """Standard shipwright error.

    Caught by the stage executor and turned into a failed Outcome.
    """

    code: int = 100
