"""shipwright error hierarchy.

All error classes are re-exported here; import from ``shipwright.errors``.
"""

from shipwright.errors.approval import (
    ApprovalError,
    ApprovalRejectedError,
    ApprovalTimeoutError,
    FieldValidationError,
    UnauthorizedError,
)
from shipwright.errors.base import ShipwrightBaseException, ShipwrightError
from shipwright.errors.collaborators import (
    AnalysisError,
    CheckoutFailedError,
    ContainerEngineError,
    ContainerNotFoundError,
    HealthCheckError,
    QualityGateFailedError,
)
from shipwright.errors.permanent import ConfigurationError, PermanentError
from shipwright.errors.stage import (
    RetryExhaustedError,
    RunAbortedError,
    StageError,
    StageTimeoutError,
)
from shipwright.errors.transient import TransientError
from shipwright.errors.utils import is_permanent, is_transient, truncate_error

__all__ = [
    "AnalysisError",
    "ApprovalError",
    "ApprovalRejectedError",
    "ApprovalTimeoutError",
    "CheckoutFailedError",
    "ConfigurationError",
    "ContainerEngineError",
    "ContainerNotFoundError",
    "FieldValidationError",
    "HealthCheckError",
    "PermanentError",
    "QualityGateFailedError",
    "RetryExhaustedError",
    "RunAbortedError",
    "ShipwrightBaseException",
    "ShipwrightError",
    "StageError",
    "StageTimeoutError",
    "TransientError",
    "UnauthorizedError",
    "is_permanent",
    "is_transient",
    "truncate_error",
]
