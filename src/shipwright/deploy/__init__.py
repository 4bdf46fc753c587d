"""Container engine collaborators and the deployment driver."""

from __future__ import annotations

from shipwright.deploy.docker import DockerCliEngine
from shipwright.deploy.driver import (
    DeploymentDriver,
    DeploymentTarget,
    DeployResult,
    DeployStatus,
    HealthStatus,
)
from shipwright.deploy.engine import ContainerEngine, RunOptions, split_reference
from shipwright.deploy.health import HealthProbe, HttpHealthProbe, SimulatedHealthProbe
from shipwright.deploy.simulated import SimulatedContainerEngine
from shipwright.resilience.config import EngineConfig, get_engine_config


def create_engine(config: EngineConfig | None = None) -> ContainerEngine:
    """Container engine selected by ``config.container_engine``."""
    config = config or get_engine_config()
    if config.container_engine == "simulated":
        return SimulatedContainerEngine()
    return DockerCliEngine()


def create_probe(config: EngineConfig | None = None) -> HealthProbe:
    """Health probe matching the selected container engine."""
    config = config or get_engine_config()
    if config.container_engine == "simulated":
        return SimulatedHealthProbe()
    return HttpHealthProbe()


__all__ = [
    "ContainerEngine",
    "DeployResult",
    "DeployStatus",
    "DeploymentDriver",
    "DeploymentTarget",
    "DockerCliEngine",
    "HealthProbe",
    "HealthStatus",
    "HttpHealthProbe",
    "RunOptions",
    "SimulatedContainerEngine",
    "SimulatedHealthProbe",
    "create_engine",
    "create_probe",
    "split_reference",
]
