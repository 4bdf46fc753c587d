"""
Resilience primitives for shipwright.

Retry/backoff (built on resilient_circuit's ExponentialDelay), cooperative
cancellation, and bulkhead-isolated execution (bulkman).
"""

from shipwright.resilience.bulkheads import StageBulkhead
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import (
    BackoffConfig,
    EngineConfig,
    get_engine_config,
    reset_engine_config,
)
from shipwright.resilience.retry import (
    RetryController,
    RetryPolicy,
    RetrySequence,
    RetryState,
)

__all__ = [
    "BackoffConfig",
    "CancellationToken",
    "EngineConfig",
    "RetryController",
    "RetryPolicy",
    "RetrySequence",
    "RetryState",
    "StageBulkhead",
    "get_engine_config",
    "reset_engine_config",
]
