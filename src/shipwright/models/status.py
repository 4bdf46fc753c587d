"""
Status enums for runs and stage outcomes.

RunStatus tracks a whole run; OutcomeStatus tracks one stage. FailureKind
classifies a failed outcome so callers never have to match on log text.
"""

from enum import Enum


class RunStatus(Enum):
    """
    Overall status of a run.

    Each value is a tuple of (name, complete).
    """

    # Defined but not started
    PENDING = ("PENDING", False)

    # Executing its stage sequence or hooks
    RUNNING = ("RUNNING", False)

    # Every non-optional stage succeeded, degraded or was skipped
    SUCCEEDED = ("SUCCEEDED", True)

    # A non-optional stage failed and nothing compensated for it
    FAILED = ("FAILED", True)

    # Canceled by an operator while running
    ABORTED = ("ABORTED", True)

    def __init__(self, name: str, complete: bool) -> None:
        self._name = name
        self._complete = complete

    @property
    def is_complete(self) -> bool:
        """True once the run has reached a terminal status."""
        return self._complete

    def __str__(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"RunStatus.{self.name}"


class OutcomeStatus(Enum):
    """
    Status of one executed stage.

    Each value is a tuple of (name, successful).
    """

    SUCCEEDED = ("SUCCEEDED", True)

    FAILED = ("FAILED", False)

    # Completed through a fallback path; recorded with a warning
    DEGRADED = ("DEGRADED", True)

    # Not executed because its condition was false
    SKIPPED = ("SKIPPED", True)

    def __init__(self, name: str, successful: bool) -> None:
        self._name = name
        self._successful = successful

    @property
    def is_successful(self) -> bool:
        """True for outcomes that allow the run to move forward."""
        return self._successful

    def __str__(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"OutcomeStatus.{self.name}"


class FailureKind(Enum):
    """Why a stage failed."""

    # Unclassified exception raised by the action
    ERROR = "ERROR"

    # Non-retryable failure reported by the action
    FATAL = "FATAL"

    # Retryable failure; only seen inside a retry sequence
    TRANSIENT = "TRANSIENT"

    # The action exceeded its timeout
    TIMEOUT = "TIMEOUT"

    # Every retry attempt failed
    EXHAUSTED = "EXHAUSTED"

    # The owning run was aborted
    ABORTED = "ABORTED"

    UNAUTHORIZED = "UNAUTHORIZED"

    VALIDATION = "VALIDATION"

    APPROVAL_TIMEOUT = "APPROVAL_TIMEOUT"

    def __str__(self) -> str:
        return self.value


# Failure kinds a retry sequence may attempt again
RETRYABLE_KINDS: frozenset[FailureKind] = frozenset({FailureKind.TRANSIENT, FailureKind.TIMEOUT})
