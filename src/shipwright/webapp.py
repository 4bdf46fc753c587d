"""
Web application pipeline.

Assembles the standard delivery pipeline for one containerised web
application from a YAML file:

    checkout -> build -> analysis -> quality gate -> image build -> image push
      -> staging deploy -> production approval -> production deploy
    always: workspace report
    cleanup: remove the workspace

Example pipeline.yaml:

    name: webapp
    repository:
      url: https://git.example.com/team/webapp.git
      branch: main
    analysis:
      project_key: webapp
      server_url: https://sonar.example.com
      exclusions: ["**/vendor/**"]
    image:
      repository: webapp
      registry: registry.example.com
    staging:
      container_name: webapp-staging
      port: 8081
      health_url: http://localhost:8081/health
    production:
      container_name: webapp
      port: 8080
      health_url: http://localhost:8080/health
    approval:
      approvers: [admin]
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import yaml

from shipwright.approval import ApprovalGate, FieldSpec, FieldType
from shipwright.collaborators.git import GitClient
from shipwright.collaborators.sonar import AnalysisSettings, SonarClient
from shipwright.config_validation import PIPELINE_SCHEMA, SchemaValidator, apply_defaults
from shipwright.deploy import create_engine, create_probe
from shipwright.deploy.driver import DeploymentDriver
from shipwright.deploy.engine import ContainerEngine
from shipwright.deploy.health import HealthProbe
from shipwright.errors import ConfigurationError
from shipwright.models.context import StageContext
from shipwright.models.outcome import Outcome
from shipwright.models.stage import HookPhase, Stage
from shipwright.pipeline import Pipeline
from shipwright.resilience.config import BackoffConfig, EngineConfig, get_engine_config
from shipwright.resilience.retry import RetryPolicy
from shipwright.tasks import (
    AnalysisTask,
    ApprovalTask,
    CallableTask,
    CheckoutTask,
    DeployTask,
    ImageBuildTask,
    ImagePushTask,
    NoOpTask,
    QualityGateTask,
    ShellTask,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetConfig:
    container_name: str
    port: int
    health_url: str
    container_port: int = 80
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AnalysisConfig:
    project_key: str
    server_url: str
    sources: str = "."
    inclusions: tuple[str, ...] = ()
    exclusions: tuple[str, ...] = ()


@dataclass(frozen=True)
class WebAppPipelineConfig:
    """Validated content of a pipeline file."""

    name: str
    repository_url: str
    image_repository: str
    staging: TargetConfig
    production: TargetConfig
    branch: str = "main"
    workspace: str = "./workspace"
    build_command: str | None = None
    analysis: AnalysisConfig | None = None
    registry: str | None = None
    dockerfile: str = "Dockerfile"
    approvers: tuple[str, ...] = ("admin",)
    approval_prompt: str = "Deploy to production?"
    approval_timeout: timedelta = timedelta(hours=24)
    clean_workspace: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebAppPipelineConfig:
        """
        Build from a parsed pipeline file.

        Raises:
            ConfigurationError: The data does not match the pipeline schema
        """
        errors = SchemaValidator(PIPELINE_SCHEMA).validate(data)
        if errors:
            raise ConfigurationError("Invalid pipeline file: " + "; ".join(str(e) for e in errors))
        data = apply_defaults(data, PIPELINE_SCHEMA)

        analysis = None
        if "analysis" in data:
            raw = data["analysis"]
            analysis = AnalysisConfig(
                project_key=raw["project_key"],
                server_url=raw["server_url"],
                sources=raw["sources"],
                inclusions=tuple(raw["inclusions"]),
                exclusions=tuple(raw["exclusions"]),
            )
        approval = data.get("approval", {})
        image = data["image"]
        return cls(
            name=data["name"],
            repository_url=data["repository"]["url"],
            branch=data["repository"]["branch"],
            workspace=data["workspace"],
            build_command=data["build_command"],
            analysis=analysis,
            image_repository=image["repository"],
            registry=image["registry"],
            dockerfile=image["dockerfile"],
            staging=_target(data["staging"]),
            production=_target(data["production"]),
            approvers=tuple(approval.get("approvers", ("admin",))),
            approval_prompt=approval.get("prompt", "Deploy to production?"),
            approval_timeout=timedelta(minutes=approval.get("timeout_minutes", 1440)),
            clean_workspace=data["clean_workspace"],
        )


def _target(raw: dict[str, Any]) -> TargetConfig:
    return TargetConfig(
        container_name=raw["container_name"],
        port=raw["port"],
        health_url=raw["health_url"],
        container_port=raw.get("container_port", 80),
        env={key: str(value) for key, value in raw.get("env", {}).items()},
    )


def load_pipeline_config(path: str) -> WebAppPipelineConfig:
    """
    Read and validate a YAML pipeline file.

    Raises:
        ConfigurationError: Unreadable, unparsable or invalid file
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read pipeline file {path}: {e}", cause=e) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse pipeline file {path}: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Pipeline file {path} must contain a mapping")
    return WebAppPipelineConfig.from_dict(data)


@dataclass
class WebAppCollaborators:
    """External systems the web application pipeline talks to."""

    engine: ContainerEngine
    probe: HealthProbe
    git: GitClient = field(default_factory=GitClient)
    sonar: SonarClient | None = None
    gate: ApprovalGate = field(default_factory=ApprovalGate)

    @classmethod
    def create(
        cls,
        pipeline: WebAppPipelineConfig,
        engine_config: EngineConfig | None = None,
        analysis_token: str | None = None,
    ) -> WebAppCollaborators:
        """Real or simulated collaborators, as ``engine_config.container_engine`` selects."""
        engine_config = engine_config or get_engine_config()
        sonar = None
        if pipeline.analysis is not None:
            sonar = SonarClient(pipeline.analysis.server_url, auth_token=analysis_token)
        return cls(engine=create_engine(engine_config), probe=create_probe(engine_config), sonar=sonar)


def build_webapp_pipeline(
    config: WebAppPipelineConfig,
    collaborators: WebAppCollaborators,
    engine_config: EngineConfig | None = None,
) -> Pipeline:
    """Assemble the delivery pipeline for ``config``."""
    engine_config = engine_config or get_engine_config()
    engine = collaborators.engine
    driver = DeploymentDriver(engine, collaborators.probe, engine_config)
    engine_retry = RetryPolicy.exponential(
        engine_config.engine_attempts,
        BackoffConfig(min_delay_ms=int(engine_config.engine_delay_seconds * 1000)),
        name="image push",
    )

    build_task = ShellTask(config.build_command, name="build") if config.build_command else NoOpTask("no build step")
    stages = [
        Stage.create(
            "checkout",
            CheckoutTask(collaborators.git, config.repository_url, config.branch, config.workspace),
            timeout=timedelta(minutes=10),
        ),
        Stage.create("build", build_task),
    ]

    if config.analysis is not None:
        if collaborators.sonar is None:
            raise ConfigurationError("Pipeline declares analysis but no analysis client was given")
        settings = AnalysisSettings(
            project_key=config.analysis.project_key,
            sources=config.analysis.sources,
            inclusions=config.analysis.inclusions,
            exclusions=config.analysis.exclusions,
        )
        gate_policy = RetryPolicy.fixed(
            engine_config.quality_gate_attempts,
            engine_config.quality_gate_delay_seconds,
            name="quality gate",
        )
        poll_budget = timedelta(seconds=engine_config.quality_gate_attempts * engine_config.quality_gate_delay_seconds)
        stages += [
            Stage.create(
                "analysis",
                AnalysisTask(collaborators.sonar, settings),
                retry=RetryPolicy.fixed(2, 10, name="analysis"),
            ),
            Stage.create(
                "quality-gate",
                QualityGateTask(collaborators.sonar, config.analysis.project_key),
                retry=gate_policy,
                timeout=poll_budget + timedelta(minutes=10),
            ),
        ]

    stages += [
        Stage.create(
            "image-build",
            ImageBuildTask(
                engine,
                config.image_repository,
                dockerfile=config.dockerfile,
                build_args={"BUILD_NUMBER": "{build_number}", "COMMIT": "{commit}"},
            ),
            retry=RetryPolicy.fixed(engine_config.engine_attempts, engine_config.engine_delay_seconds, name="image build"),
        ),
        Stage.create("image-push", ImagePushTask(engine, registry=config.registry), retry=engine_retry),
        Stage.create("deploy-staging", _deploy_task(driver, "staging", config.staging)),
        Stage.create(
            "approve-production",
            ApprovalTask(
                collaborators.gate,
                f"{config.approval_prompt} ({config.name} #{{build_number}})",
                config.approvers,
                fields=[
                    FieldSpec("reason", FieldType.STRING, default="routine release"),
                    FieldSpec("notify", FieldType.BOOLEAN, default=True),
                ],
                timeout=config.approval_timeout,
            ),
            timeout=config.approval_timeout + timedelta(minutes=1),
        ),
        Stage.create("deploy-production", _deploy_task(driver, "production", config.production)),
        Stage.create("report", CallableTask(_report, name="report"), hook=HookPhase.ALWAYS, optional=True),
    ]
    if config.clean_workspace:
        stages.append(
            Stage.create("clean-workspace", CallableTask(_clean_workspace, name="clean-workspace"), hook=HookPhase.CLEANUP)
        )
    return Pipeline.define(config.name, stages, config=engine_config)


def _deploy_task(driver: DeploymentDriver, environment: str, target: TargetConfig) -> DeployTask:
    return DeployTask(
        driver,
        environment,
        container_name=target.container_name,
        port=target.port,
        health_url=target.health_url,
        container_port=target.container_port,
        env=target.env,
    )


def _report(ctx: StageContext) -> Outcome:
    """Summarise what the run produced so far."""
    run = ctx.run_context.run
    for entry in run.history:
        ctx.log("%s: %s %s", entry.name, entry.status, entry.message)
    produced = {key: ctx.get(key) for key in ("commit", "image", "approver") if key in ctx}
    return Outcome.succeeded(f"{len(run.history)} stages reported", result=produced)


def _clean_workspace(ctx: StageContext) -> Outcome:
    workspace = ctx.get("workspace")
    if not workspace or not os.path.isdir(workspace):
        return Outcome.skipped("no workspace")
    shutil.rmtree(workspace)
    ctx.log("Removed %s", workspace)
    return Outcome.succeeded(f"removed {workspace}")


__all__ = [
    "AnalysisConfig",
    "TargetConfig",
    "WebAppCollaborators",
    "WebAppPipelineConfig",
    "build_webapp_pipeline",
    "load_pipeline_config",
]
