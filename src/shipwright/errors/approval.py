"""Approval gate errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipwright.errors.permanent import PermanentError

if TYPE_CHECKING:
    from shipwright.config_validation import ValidationError


class ApprovalError(PermanentError):
    """Base class for approval gate errors."""

    code: int = 600


class UnauthorizedError(ApprovalError):
    """A submission came from an identity outside the allowed responders.

    The gate stays open.
    """

    code: int = 601

    def __init__(self, identity: str, allowed: frozenset[str]) -> None:
        super().__init__(f"'{identity}' is not allowed to respond (allowed: {', '.join(sorted(allowed))})")
        self.identity = identity
        self.allowed = allowed


class FieldValidationError(ApprovalError):
    """Submitted field values did not match the declared field specs.

    The gate stays open for resubmission.
    """

    code: int = 602

    def __init__(self, errors: list[ValidationError]) -> None:
        super().__init__("Invalid approval input: " + "; ".join(str(e) for e in errors))
        self.errors = errors


class ApprovalTimeoutError(ApprovalError):
    """The approval deadline passed without an accepted decision."""

    code: int = 603


class ApprovalRejectedError(ApprovalError):
    """An allowed responder declined the request."""

    code: int = 604

    def __init__(self, identity: str, reason: str = "") -> None:
        message = f"Rejected by '{identity}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.identity = identity
        self.reason = reason
