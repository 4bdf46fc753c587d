"""
Engine configuration for shipwright.

Provides timeout, cancellation, bulkhead and polling settings with support
for loading from environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from shipwright.errors import ConfigurationError

CONTAINER_ENGINES = frozenset({"docker", "simulated"})


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff.

    Attributes:
        min_delay_ms: Minimum delay between retries in milliseconds
        max_delay_ms: Maximum delay between retries in milliseconds
        factor: Multiplication factor for exponential backoff
        jitter: Random jitter factor (0.0 to 1.0) to prevent thundering herd
    """

    min_delay_ms: int = 1000
    max_delay_ms: int = 30000
    factor: float = 2.0
    jitter: float = 0.1


@dataclass
class EngineConfig:
    """Engine settings.

    Environment Variables:
        SHIPWRIGHT_DEFAULT_STAGE_TIMEOUT_S: Timeout for stages that set none (default: 3600)
        SHIPWRIGHT_CANCEL_GRACE_S: Grace period for a cancelled action to unwind (default: 10)
        SHIPWRIGHT_MAX_CONCURRENT_STAGES: Bulkhead size for stage actions (default: 4)
        SHIPWRIGHT_STAGE_QUEUE_SIZE: Bulkhead queue size (default: 16)
        SHIPWRIGHT_CONTAINER_ENGINE: "docker" or "simulated" (default: docker)
        SHIPWRIGHT_QUALITY_GATE_ATTEMPTS: Quality gate polls before giving up (default: 20)
        SHIPWRIGHT_QUALITY_GATE_DELAY_S: Delay between quality gate polls (default: 30)
        SHIPWRIGHT_HEALTH_ATTEMPTS: Health checks before a deploy is degraded (default: 10)
        SHIPWRIGHT_HEALTH_DELAY_S: Delay between health checks (default: 10)
        SHIPWRIGHT_HEALTH_TIMEOUT_S: Timeout of one health request (default: 5)
        SHIPWRIGHT_ENGINE_ATTEMPTS: Attempts for container engine calls (default: 3)
        SHIPWRIGHT_ENGINE_DELAY_S: Delay between container engine attempts (default: 5)

    Attributes:
        default_stage_timeout_seconds: Timeout applied to stages without one
        cancel_grace_seconds: How long a timed-out action may take to unwind
            before it is abandoned
        max_concurrent_stages: Bulkhead concurrency for stage actions
        stage_queue_size: Bulkhead queue size
        container_engine: Which container engine implementation to use
        quality_gate_attempts: Quality gate poll budget
        quality_gate_delay_seconds: Fixed delay between quality gate polls
        health_attempts: Health check budget
        health_delay_seconds: Fixed delay between health checks
        health_timeout_seconds: Per-request health check timeout
        engine_attempts: Attempt budget for container engine calls
        engine_delay_seconds: Fixed delay between container engine attempts
    """

    default_stage_timeout_seconds: float = 3600.0
    cancel_grace_seconds: float = 10.0
    max_concurrent_stages: int = 4
    stage_queue_size: int = 16
    container_engine: str = "docker"

    # Polling budgets of the web application pipeline
    quality_gate_attempts: int = 20
    quality_gate_delay_seconds: float = 30.0
    health_attempts: int = 10
    health_delay_seconds: float = 10.0
    health_timeout_seconds: float = 5.0

    engine_attempts: int = 3
    engine_delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.container_engine not in CONTAINER_ENGINES:
            raise ConfigurationError(
                f"Unknown container engine '{self.container_engine}'. Supported: {sorted(CONTAINER_ENGINES)}"
            )
        for name in ("quality_gate_attempts", "health_attempts", "engine_attempts", "max_concurrent_stages"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        if self.default_stage_timeout_seconds <= 0:
            raise ConfigurationError("default_stage_timeout_seconds must be > 0")
        if self.cancel_grace_seconds < 0:
            raise ConfigurationError("cancel_grace_seconds must be >= 0")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables with defaults.

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        try:
            return cls(
                default_stage_timeout_seconds=float(os.getenv("SHIPWRIGHT_DEFAULT_STAGE_TIMEOUT_S", "3600")),
                cancel_grace_seconds=float(os.getenv("SHIPWRIGHT_CANCEL_GRACE_S", "10")),
                max_concurrent_stages=int(os.getenv("SHIPWRIGHT_MAX_CONCURRENT_STAGES", "4")),
                stage_queue_size=int(os.getenv("SHIPWRIGHT_STAGE_QUEUE_SIZE", "16")),
                container_engine=os.getenv("SHIPWRIGHT_CONTAINER_ENGINE", "docker").lower(),
                quality_gate_attempts=int(os.getenv("SHIPWRIGHT_QUALITY_GATE_ATTEMPTS", "20")),
                quality_gate_delay_seconds=float(os.getenv("SHIPWRIGHT_QUALITY_GATE_DELAY_S", "30")),
                health_attempts=int(os.getenv("SHIPWRIGHT_HEALTH_ATTEMPTS", "10")),
                health_delay_seconds=float(os.getenv("SHIPWRIGHT_HEALTH_DELAY_S", "10")),
                health_timeout_seconds=float(os.getenv("SHIPWRIGHT_HEALTH_TIMEOUT_S", "5")),
                engine_attempts=int(os.getenv("SHIPWRIGHT_ENGINE_ATTEMPTS", "3")),
                engine_delay_seconds=float(os.getenv("SHIPWRIGHT_ENGINE_DELAY_S", "5")),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}", cause=e) from e


# Singleton for the default engine config (loaded lazily)
_default_engine_config: EngineConfig | None = None


def get_engine_config() -> EngineConfig:
    """Get the default EngineConfig, loading from environment on first call."""
    global _default_engine_config
    if _default_engine_config is None:
        _default_engine_config = EngineConfig.from_env()
    return _default_engine_config


def reset_engine_config() -> None:
    """Reset the engine config singleton. Useful for testing."""
    global _default_engine_config
    _default_engine_config = None
