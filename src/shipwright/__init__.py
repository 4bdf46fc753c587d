"""
shipwright - delivery pipeline engine.

This package runs CI/CD-style pipelines as ordered stages with:
- Uniform stage outcomes (succeeded, failed, degraded, skipped)
- One retry/backoff primitive for every unreliable external call
- Stage timeouts with cooperative cancellation
- Post-run hooks (always, success, failure, cleanup)
- A manual approval gate with typed form fields
- Idempotent, health-checked container rollout
"""

__version__ = "0.1.0"

from shipwright.approval import ApprovalGate, ApprovalRequest, Decision, FieldSpec, FieldType
from shipwright.deploy import (
    ContainerEngine,
    DeploymentDriver,
    DeploymentTarget,
    DeployResult,
    DeployStatus,
    DockerCliEngine,
    HttpHealthProbe,
    SimulatedContainerEngine,
    SimulatedHealthProbe,
)
from shipwright.executor import StageExecutor
from shipwright.logging import configure_logging, get_logger
from shipwright.models import (
    FailureKind,
    HookPhase,
    Outcome,
    OutcomeStatus,
    Run,
    RunContext,
    RunStatus,
    Stage,
    StageContext,
    StageRecord,
)
from shipwright.pipeline import Pipeline, define
from shipwright.resilience import (
    BackoffConfig,
    CancellationToken,
    EngineConfig,
    RetryController,
    RetryPolicy,
    RetryState,
    get_engine_config,
    reset_engine_config,
)
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
    RetryingTask,
    ShellTask,
    Task,
)
from shipwright.webapp import WebAppCollaborators, WebAppPipelineConfig, build_webapp_pipeline, load_pipeline_config

__all__ = [
    "__version__",
    # Engine
    "Pipeline",
    "define",
    "StageExecutor",
    # Models
    "FailureKind",
    "HookPhase",
    "Outcome",
    "OutcomeStatus",
    "Run",
    "RunContext",
    "RunStatus",
    "Stage",
    "StageContext",
    "StageRecord",
    # Resilience
    "BackoffConfig",
    "CancellationToken",
    "EngineConfig",
    "RetryController",
    "RetryPolicy",
    "RetryState",
    "get_engine_config",
    "reset_engine_config",
    # Approval
    "ApprovalGate",
    "ApprovalRequest",
    "Decision",
    "FieldSpec",
    "FieldType",
    # Deployment
    "ContainerEngine",
    "DeployResult",
    "DeployStatus",
    "DeploymentDriver",
    "DeploymentTarget",
    "DockerCliEngine",
    "HttpHealthProbe",
    "SimulatedContainerEngine",
    "SimulatedHealthProbe",
    # Tasks
    "AnalysisTask",
    "ApprovalTask",
    "CallableTask",
    "CheckoutTask",
    "DeployTask",
    "ImageBuildTask",
    "ImagePushTask",
    "NoOpTask",
    "QualityGateTask",
    "RetryingTask",
    "ShellTask",
    "Task",
    # Web application pipeline
    "WebAppCollaborators",
    "WebAppPipelineConfig",
    "build_webapp_pipeline",
    "load_pipeline_config",
    # Logging
    "configure_logging",
    "get_logger",
]
