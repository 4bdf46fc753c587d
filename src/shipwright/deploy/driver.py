"""
Deployment driver.

Applies "this image should be running under this container name" to a
host:

1. stop and remove the container holding the name, if any
2. pull the image; on failure warn and use the local copy
3. start the new container with the published port, env and restart policy
4. poll the health endpoint; exhaustion degrades the deploy, it never fails it

Every engine call runs under a RetryPolicy. Stop-then-start is not atomic:
two runs deploying the same container name concurrently can race, and the
engine does not prevent that.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeVar

from shipwright.deploy.engine import ContainerEngine, RunOptions
from shipwright.deploy.health import HealthProbe
from shipwright.errors import ContainerNotFoundError, RunAbortedError, ShipwrightError
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import EngineConfig, get_engine_config
from shipwright.resilience.retry import RetryController, RetryPolicy, RetryState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DeployStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"

    def __str__(self) -> str:
        return self.value


class HealthStatus(Enum):
    PASSING = "passing"
    FAILING = "failing"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DeploymentTarget:
    """
    Desired state of one environment.

    Attributes:
        environment: Environment name, e.g. "staging"
        container_name: Name the container runs under
        port: Published host port
        image: Image reference to run
        health_url: Endpoint polled after start
        container_port: Port the application listens on inside the container
        env: Environment variables for the container
    """

    environment: str
    container_name: str
    port: int
    image: str
    health_url: str
    container_port: int = 80
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def run_options(self) -> RunOptions:
        return RunOptions(
            name=self.container_name,
            ports=(f"{self.port}:{self.container_port}",),
            env=self.env,
        )


@dataclass(frozen=True)
class DeployResult:
    """Outcome of one deploy, kept in run history."""

    environment: str
    container_name: str
    image: str
    container_id: str
    status: DeployStatus
    health: HealthStatus
    health_attempts: int
    warnings: tuple[str, ...] = ()
    replaced: bool = False

    @property
    def degraded(self) -> bool:
        return self.status == DeployStatus.DEGRADED

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "container_name": self.container_name,
            "image": self.image,
            "container_id": self.container_id,
            "status": str(self.status),
            "health": str(self.health),
            "health_attempts": self.health_attempts,
            "replaced": self.replaced,
        }


class DeploymentDriver:
    """
    Idempotent container rollout.

    Example:
        driver = DeploymentDriver(DockerCliEngine(), HttpHealthProbe())
        result = driver.deploy(target, token)
        if result.degraded:
            ...
    """

    def __init__(
        self,
        engine: ContainerEngine,
        probe: HealthProbe,
        config: EngineConfig | None = None,
        controller: RetryController | None = None,
    ) -> None:
        self._engine = engine
        self._probe = probe
        self._config = config or get_engine_config()
        self._controller = controller or RetryController()

    @property
    def engine(self) -> ContainerEngine:
        return self._engine

    def deploy(self, target: DeploymentTarget, token: CancellationToken | None = None) -> DeployResult:
        """
        Roll ``target`` out.

        Raises:
            RetryExhaustedError: The container could not be replaced or started
            RunAbortedError: The token was cancelled
        """
        token = token or CancellationToken()
        warnings: list[str] = []
        name = target.container_name

        replaced = self._remove_existing(name, token)

        try:
            self._engine_call(f"pull {target.image}", lambda: self._engine.pull(target.image, token=token), token)
        except RunAbortedError:
            raise
        except ShipwrightError as e:
            warning = f"pull of {target.image} failed, using local image: {e.message}"
            logger.warning("[%s] %s", target.environment, warning)
            warnings.append(warning)

        container_id = self._engine_call(
            f"run {name}",
            lambda: self._engine.run(target.image, target.run_options(), token=token),
            token,
        )
        logger.info("[%s] started %s (%s) from %s", target.environment, name, container_id, target.image)

        health_policy = RetryPolicy.fixed(
            self._config.health_attempts,
            self._config.health_delay_seconds,
            name=f"health check {target.health_url}",
            is_retryable=lambda e: True,
        )
        sequence = self._controller.execute(
            lambda: self._check_health(target.health_url),
            health_policy,
            token,
        )
        if sequence.state == RetryState.ABORTED:
            raise RunAbortedError(f"Deploy of {name} aborted", reason=token.reason)

        if sequence.state == RetryState.SUCCEEDED:
            health = HealthStatus.PASSING
            status = DeployStatus.HEALTHY
        else:
            health = HealthStatus.FAILING
            status = DeployStatus.DEGRADED
            assert sequence.outcome is not None
            warning = f"{name} not healthy after {sequence.attempts} checks: {sequence.outcome.detail}"
            logger.warning("[%s] %s", target.environment, warning)
            warnings.append(warning)
            self._log_tail(name, token)

        return DeployResult(
            environment=target.environment,
            container_name=name,
            image=target.image,
            container_id=container_id,
            status=status,
            health=health,
            health_attempts=sequence.attempts,
            warnings=tuple(warnings),
            replaced=replaced,
        )

    def _remove_existing(self, name: str, token: CancellationToken) -> bool:
        """Stop and remove the container holding ``name``. Absence is fine."""
        if not self._engine_call(f"inspect {name}", lambda: self._engine.exists(name, token=token), token):
            return False
        try:
            if self._engine_call(f"inspect {name}", lambda: self._engine.is_running(name, token=token), token):
                self._engine_call(f"stop {name}", lambda: self._engine.stop(name, token=token), token)
            self._engine_call(f"remove {name}", lambda: self._engine.remove(name, token=token), token)
        except ContainerNotFoundError:
            # Someone else removed it between our calls
            logger.info("Container %s disappeared while being replaced", name)
        else:
            logger.info("Removed existing container %s", name)
        return True

    def _engine_call(self, label: str, func: Callable[[], T], token: CancellationToken) -> T:
        policy = RetryPolicy.fixed(
            self._config.engine_attempts,
            self._config.engine_delay_seconds,
            name=label,
        )
        return self._controller.call(func, policy, token)

    def _check_health(self, url: str) -> None:
        self._probe.check(url, self._config.health_timeout_seconds)

    def _log_tail(self, name: str, token: CancellationToken) -> None:
        try:
            output = self._engine.logs(name, tail=50, token=token)
        except ShipwrightError as e:
            logger.debug("Could not read logs of %s: %s", name, e)
            return
        logger.warning("Last output of %s:\n%s", name, output)
