"""Tests for the web application pipeline: file loading and an end-to-end run."""

import threading
from datetime import timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import yaml

from shipwright.approval import ApprovalGate
from shipwright.collaborators import AnalysisSubmission, Checkout, GitClient, QualityGateVerdict, SonarClient
from shipwright.deploy import SimulatedContainerEngine, SimulatedHealthProbe
from shipwright.errors import ConfigurationError
from shipwright.models.status import FailureKind, OutcomeStatus, RunStatus
from shipwright.resilience.config import EngineConfig
from shipwright.webapp import (
    WebAppCollaborators,
    WebAppPipelineConfig,
    build_webapp_pipeline,
    load_pipeline_config,
)

MAIN_STAGES = [
    "checkout",
    "build",
    "analysis",
    "quality-gate",
    "image-build",
    "image-push",
    "deploy-staging",
    "approve-production",
    "deploy-production",
]


def pipeline_data(workspace: str = "./workspace", **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": "webapp",
        "repository": {"url": "https://git.local/team/webapp.git"},
        "workspace": workspace,
        "analysis": {"project_key": "webapp", "server_url": "http://sonar.local"},
        "image": {"repository": "webapp", "registry": "registry.local"},
        "staging": {"container_name": "webapp-staging", "port": 8081, "health_url": "http://localhost:8081/health"},
        "production": {"container_name": "webapp", "port": 8080, "health_url": "http://localhost:8080/health"},
        "approval": {"approvers": ["admin"]},
    }
    data.update(overrides)
    return data


def write_pipeline(tmp_path: Path, data: Any) -> str:
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestLoadPipelineConfig:
    """Tests for reading pipeline files."""

    def test_defaults(self, tmp_path: Path) -> None:
        data = pipeline_data()
        del data["approval"]
        config = load_pipeline_config(write_pipeline(tmp_path, data))

        assert config.name == "webapp"
        assert config.branch == "main"
        assert config.workspace == "./workspace"
        assert config.build_command is None
        assert config.clean_workspace is True
        assert config.dockerfile == "Dockerfile"
        assert config.approvers == ("admin",)
        assert config.approval_timeout == timedelta(hours=24)
        assert config.analysis is not None
        assert config.analysis.sources == "."
        assert config.staging.container_port == 80

    def test_explicit_values(self, tmp_path: Path) -> None:
        data = pipeline_data(
            build_command="make test",
            approval={"approvers": ["alice", "bob"], "timeout_minutes": 30},
        )
        data["staging"]["env"] = {"APP_ENV": "staging", "WORKERS": 4}
        config = load_pipeline_config(write_pipeline(tmp_path, data))

        assert config.build_command == "make test"
        assert config.approvers == ("alice", "bob")
        assert config.approval_timeout == timedelta(minutes=30)
        assert config.staging.env == {"APP_ENV": "staging", "WORKERS": "4"}

    def test_analysis_is_optional(self, tmp_path: Path) -> None:
        data = pipeline_data()
        del data["analysis"]
        assert load_pipeline_config(write_pipeline(tmp_path, data)).analysis is None

    def test_invalid_port(self, tmp_path: Path) -> None:
        data = pipeline_data()
        data["staging"]["port"] = 70000
        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline_config(write_pipeline(tmp_path, data))
        assert "staging.port" in str(exc_info.value)

    def test_unknown_key(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_pipeline_config(write_pipeline(tmp_path, pipeline_data(stages=[])))

    def test_missing_section(self, tmp_path: Path) -> None:
        data = pipeline_data()
        del data["production"]
        with pytest.raises(ConfigurationError):
            load_pipeline_config(write_pipeline(tmp_path, data))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_pipeline_config(str(tmp_path / "nope.yaml"))

    def test_unparsable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pipeline.yaml"
        path.write_text("name: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_pipeline_config(str(path))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_pipeline_config(write_pipeline(tmp_path, ["name", "webapp"]))


def fake_git() -> MagicMock:
    """GitClient stand-in that creates the workspace directory."""

    def checkout(url: str, branch: str, path: str, token: Any = None) -> Checkout:
        Path(path).mkdir(parents=True, exist_ok=True)
        return Checkout(path=path, branch=branch, commit="c0ffee1234567890")

    git = MagicMock(spec=GitClient)
    git.checkout.side_effect = checkout
    return git


def fake_sonar(verdict: QualityGateVerdict = QualityGateVerdict.PASSED) -> MagicMock:
    sonar = MagicMock(spec=SonarClient)
    sonar.submit.return_value = AnalysisSubmission(project_key="webapp", task_id="AX1")
    sonar.quality_gate.return_value = verdict
    return sonar


class WebAppHarness:
    """A web application pipeline wired to in-memory collaborators."""

    def __init__(
        self,
        workspace: Path,
        engine_config: EngineConfig,
        health: tuple[int, ...] = (200,),
        **overrides: Any,
    ) -> None:
        self.workspace = workspace
        self.config = WebAppPipelineConfig.from_dict(pipeline_data(str(workspace), **overrides))
        self.engine = SimulatedContainerEngine()
        self.probe = SimulatedHealthProbe(health)
        self.sonar = fake_sonar()
        self.gate = ApprovalGate()
        self.collaborators = WebAppCollaborators(
            engine=self.engine,
            probe=self.probe,
            git=fake_git(),
            sonar=self.sonar,
            gate=self.gate,
        )
        self.pipeline = build_webapp_pipeline(self.config, self.collaborators, engine_config)

    def approve_in_background(self, identity: str = "admin", **values: Any) -> threading.Thread:
        def approve() -> None:
            if self.gate.wait_for_pending(10) is not None:
                self.gate.submit(identity, values)

        thread = threading.Thread(target=approve)
        thread.start()
        return thread

    def close(self) -> None:
        self.pipeline.close()


@pytest.fixture
def harness(tmp_path: Path, engine_config: EngineConfig) -> Any:
    created: list[WebAppHarness] = []

    def factory(health: tuple[int, ...] = (200,), **overrides: Any) -> WebAppHarness:
        h = WebAppHarness(tmp_path / "workspace", engine_config, health, **overrides)
        created.append(h)
        return h

    yield factory
    for h in created:
        h.close()


class TestBuildPipeline:
    """Tests for pipeline assembly."""

    def test_stage_order(self, harness: Any) -> None:
        h = harness()
        assert [s.name for s in h.pipeline.main_stages] == MAIN_STAGES
        assert [s.name for s in h.pipeline.stages][-2:] == ["report", "clean-workspace"]

    def test_without_analysis_or_cleanup(self, tmp_path: Path, engine_config: EngineConfig) -> None:
        data = pipeline_data(str(tmp_path), clean_workspace=False)
        del data["analysis"]
        config = WebAppPipelineConfig.from_dict(data)
        collaborators = WebAppCollaborators(engine=SimulatedContainerEngine(), probe=SimulatedHealthProbe())
        pipeline = build_webapp_pipeline(config, collaborators, engine_config)
        try:
            names = [s.name for s in pipeline.stages]
            assert "analysis" not in names
            assert "quality-gate" not in names
            assert "clean-workspace" not in names
        finally:
            pipeline.close()

    def test_analysis_needs_a_client(self, tmp_path: Path, engine_config: EngineConfig) -> None:
        config = WebAppPipelineConfig.from_dict(pipeline_data(str(tmp_path)))
        collaborators = WebAppCollaborators(engine=SimulatedContainerEngine(), probe=SimulatedHealthProbe())
        with pytest.raises(ConfigurationError):
            build_webapp_pipeline(config, collaborators, engine_config)

    def test_collaborators_follow_engine_setting(self, tmp_path: Path, engine_config: EngineConfig) -> None:
        config = WebAppPipelineConfig.from_dict(pipeline_data(str(tmp_path)))
        collaborators = WebAppCollaborators.create(config, engine_config, analysis_token="squ_abc")
        assert isinstance(collaborators.engine, SimulatedContainerEngine)
        assert isinstance(collaborators.probe, SimulatedHealthProbe)
        assert collaborators.sonar is not None


class TestWebAppRun:
    """End-to-end runs against in-memory collaborators."""

    def test_successful_delivery(self, harness: Any) -> None:
        h = harness()
        approver = h.approve_in_background(reason="release 1.4")
        run = h.pipeline.run({"branch": "main"}, env={"BUILD_ID": "99"})
        approver.join(10)

        assert run.status == RunStatus.SUCCEEDED, run.summary()
        assert [entry.name for entry in run.history] == [*MAIN_STAGES, "report", "clean-workspace"]

        assert h.engine.pushed == ["registry.local/webapp:1", "registry.local/webapp:latest"]
        assert h.engine.containers["webapp-staging"].image == "registry.local/webapp:1"
        assert h.engine.containers["webapp"].image == "registry.local/webapp:1"
        assert h.engine.containers["webapp"].options.ports == ("8080:80",)

        approval = run.outcome("approve-production").result  # type: ignore[union-attr]
        assert approval["approver"] == "admin"
        assert approval["field_values"] == {"reason": "release 1.4", "notify": True}

        assert run.outcome("report").result["image"] == "registry.local/webapp:1"  # type: ignore[union-attr,index]
        assert not h.workspace.exists()

    def test_build_number_in_approval_prompt(self, harness: Any) -> None:
        h = harness()
        prompts: list[str] = []

        def approve() -> None:
            pending = h.gate.wait_for_pending(10)
            assert pending is not None
            prompts.append(pending.prompt)
            h.gate.submit("admin")

        thread = threading.Thread(target=approve)
        thread.start()
        h.pipeline.run()
        thread.join(10)

        assert prompts == ["Deploy to production? (webapp #1)"]

    def test_failed_quality_gate_stops_before_images(self, harness: Any) -> None:
        h = harness()
        h.sonar.quality_gate.return_value = QualityGateVerdict.FAILED
        run = h.pipeline.run()

        assert run.status == RunStatus.FAILED
        assert run.outcome("quality-gate").kind == FailureKind.FATAL  # type: ignore[union-attr]
        assert run.outcome("image-build") is None
        assert h.engine.calls == []
        assert run.outcome("clean-workspace").is_success  # type: ignore[union-attr]
        assert not h.workspace.exists()

    def test_unhealthy_staging_is_degraded(self, harness: Any) -> None:
        h = harness(health=(503,))
        approver = h.approve_in_background()
        run = h.pipeline.run()
        approver.join(10)

        assert run.status == RunStatus.SUCCEEDED
        assert run.outcome("deploy-staging").status == OutcomeStatus.DEGRADED  # type: ignore[union-attr]
        assert any("not healthy" in warning for _, warning in run.warnings)
        assert "warning:" in run.summary()

    def test_abort_while_waiting_for_approval(self, harness: Any) -> None:
        """An abort at the approval gate skips production and still cleans up."""
        h = harness()
        result: dict[str, Any] = {}
        thread = threading.Thread(target=lambda: result.update(run=h.pipeline.run()))
        thread.start()

        assert h.gate.wait_for_pending(10) is not None
        [active] = h.pipeline.active_runs
        h.pipeline.abort(active.id, "release cancelled")
        thread.join(10)

        run = result["run"]
        assert run.status == RunStatus.ABORTED
        assert run.abort_reason == "release cancelled"
        assert run.outcome("deploy-production") is None
        assert "webapp" not in h.engine.containers
        assert run.outcome("report") is not None
        assert not h.workspace.exists()

    def test_approval_timeout_fails_run(self, harness: Any) -> None:
        h = harness(approval={"approvers": ["admin"], "timeout_minutes": 0.002})
        run = h.pipeline.run()

        assert run.status == RunStatus.FAILED
        assert run.outcome("approve-production").kind == FailureKind.APPROVAL_TIMEOUT  # type: ignore[union-attr]
        assert "webapp" not in h.engine.containers
