"""Container deployment as a stage."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from shipwright.deploy.driver import DeploymentDriver, DeploymentTarget
from shipwright.models.outcome import Outcome
from shipwright.tasks.interface import Task

if TYPE_CHECKING:
    from shipwright.models.context import StageContext


class DeployTask(Task):
    """
    Deploy the image published by an earlier stage to one environment.

    Context Parameters:
        image: Image reference to run (published by the push stage)

    A degraded deploy (failed pull, failed health checks) becomes a DEGRADED
    outcome: the run goes on and the warnings show in the summary.
    """

    def __init__(
        self,
        driver: DeploymentDriver,
        environment: str,
        *,
        container_name: str,
        port: int,
        health_url: str,
        container_port: int = 80,
        env: Mapping[str, str] | None = None,
        image_key: str = "image",
    ) -> None:
        self._driver = driver
        self._environment = environment
        self._container_name = container_name
        self._port = port
        self._health_url = health_url
        self._container_port = container_port
        self._env = dict(env or {})
        self._image_key = image_key

    @property
    def name(self) -> str:
        return f"DeployTask[{self._environment}]"

    def execute(self, ctx: StageContext) -> Outcome:
        target = DeploymentTarget(
            environment=self._environment,
            container_name=self._container_name,
            port=self._port,
            image=ctx[self._image_key],
            health_url=self._health_url,
            container_port=self._container_port,
            env=self._env,
        )
        ctx.log("Deploying %s to %s as %s", target.image, target.environment, target.container_name)
        result = self._driver.deploy(target, ctx.token)

        ctx.publish(**{f"{self._environment}_deploy": result.to_dict()})
        message = f"{target.image} running as {result.container_name} ({result.health})"
        if result.warnings:
            first, *rest = result.warnings
            return Outcome.degraded(first, message=message, result=result.to_dict()).with_warnings(*rest)
        return Outcome.succeeded(message, result=result.to_dict())
