"""Tests for the deployment driver and container engines."""

import subprocess
import sys
import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from shipwright.deploy import (
    DeploymentDriver,
    DeploymentTarget,
    DeployStatus,
    DockerCliEngine,
    HealthStatus,
    HttpHealthProbe,
    RunOptions,
    SimulatedContainerEngine,
    SimulatedHealthProbe,
    create_engine,
    create_probe,
    split_reference,
)
from shipwright.errors import (
    ConfigurationError,
    ContainerEngineError,
    ContainerNotFoundError,
    HealthCheckError,
    RetryExhaustedError,
    RunAbortedError,
)
from shipwright.models.context import StageContext
from shipwright.models.stage import Stage
from shipwright.models.status import FailureKind, OutcomeStatus, RunStatus
from shipwright.pipeline import Pipeline
from shipwright.process import ProcessResult, run_process
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import EngineConfig
from shipwright.tasks.deploy import DeployTask


def target(**kwargs: Any) -> DeploymentTarget:
    kwargs.setdefault("environment", "staging")
    kwargs.setdefault("container_name", "webapp-staging")
    kwargs.setdefault("port", 8081)
    kwargs.setdefault("image", "registry.local/webapp:7")
    kwargs.setdefault("health_url", "http://localhost:8081/health")
    return DeploymentTarget(**kwargs)


class TestSplitReference:
    def test_with_tag(self) -> None:
        assert split_reference("webapp:7") == ("webapp", "7")

    def test_without_tag(self) -> None:
        assert split_reference("webapp") == ("webapp", "latest")

    def test_registry_port_is_not_a_tag(self) -> None:
        assert split_reference("registry.local:5000/webapp") == ("registry.local:5000/webapp", "latest")
        assert split_reference("registry.local:5000/webapp:7") == ("registry.local:5000/webapp", "7")


class TestSimulatedEngine:
    """Tests for the in-memory engine."""

    def test_push_tag(self) -> None:
        engine = SimulatedContainerEngine(images=["webapp:7"])
        assert engine.push_tag("webapp:7", "latest") == "webapp:latest"
        assert engine.push_tag("webapp:7", "7") == "webapp:7"
        assert engine.pushed == ["webapp:latest", "webapp:7"]
        assert engine.operations() == ["tag", "push", "push"]

    def test_push_unknown_image_fails(self) -> None:
        with pytest.raises(ContainerEngineError):
            SimulatedContainerEngine().push("webapp:1")

    def test_injected_failures_run_out(self) -> None:
        engine = SimulatedContainerEngine(images=["webapp:1"], failures={"push": 1})
        with pytest.raises(ContainerEngineError):
            engine.push("webapp:1")
        engine.push("webapp:1")
        assert engine.pushed == ["webapp:1"]

    def test_name_conflict(self) -> None:
        engine = SimulatedContainerEngine(images=["webapp:1"])
        engine.run("webapp:1", RunOptions(name="web"))
        with pytest.raises(ContainerEngineError):
            engine.run("webapp:1", RunOptions(name="web"))

    def test_missing_container(self) -> None:
        with pytest.raises(ContainerNotFoundError):
            SimulatedContainerEngine().stop("web")


class TestSimulatedHealthProbe:
    def test_script_then_repeat_last(self) -> None:
        probe = SimulatedHealthProbe([503, 200])
        with pytest.raises(HealthCheckError) as exc_info:
            probe.check("http://x/health", 1)
        assert exc_info.value.status_code == 503
        assert probe.check("http://x/health", 1) == 200
        assert probe.check("http://x/health", 1) == 200
        assert len(probe.requests) == 3

    def test_connection_failure(self) -> None:
        with pytest.raises(HealthCheckError):
            SimulatedHealthProbe([0]).check("http://x/health", 1)


class TestDeploymentDriver:
    """Tests for the stop, pull, run and health-check sequence."""

    def test_fresh_deploy(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine()
        result = DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())

        assert result.status == DeployStatus.HEALTHY
        assert result.health == HealthStatus.PASSING
        assert not result.replaced
        assert result.warnings == ()
        assert engine.operations() == ["exists", "pull", "run"]
        container = engine.containers["webapp-staging"]
        assert container.options.ports == ("8081:80",)
        assert container.options.restart == "unless-stopped"

    def test_existing_container_is_stopped_and_removed_first(self, engine_config: EngineConfig) -> None:
        """The old container is stopped, then removed, before the new one starts."""
        engine = SimulatedContainerEngine(images=["registry.local/webapp:6"])
        engine.run("registry.local/webapp:6", RunOptions(name="webapp-staging"))
        engine.calls.clear()

        result = DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())

        ops = engine.operations()
        assert ops.index("stop") < ops.index("remove") < ops.index("run")
        assert result.replaced
        assert engine.containers["webapp-staging"].image == "registry.local/webapp:7"

    def test_stopped_container_is_only_removed(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine(images=["webapp:6"])
        engine.run("webapp:6", RunOptions(name="webapp-staging"))
        engine.stop("webapp-staging")
        engine.calls.clear()

        DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())
        assert "stop" not in engine.operations()
        assert "remove" in engine.operations()

    def test_failed_pull_warns_and_uses_local_image(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine(images=["registry.local/webapp:7"], remote=set())
        result = DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())

        assert result.status == DeployStatus.HEALTHY
        assert len(result.warnings) == 1
        assert "pull of registry.local/webapp:7 failed" in result.warnings[0]
        assert engine.operations().count("pull") == engine_config.engine_attempts

    def test_unhealthy_deploy_is_degraded_not_failed(self, engine_config: EngineConfig) -> None:
        probe = SimulatedHealthProbe([503])
        engine = SimulatedContainerEngine()
        result = DeploymentDriver(engine, probe, engine_config).deploy(target())

        assert result.status == DeployStatus.DEGRADED
        assert result.health == HealthStatus.FAILING
        assert result.health_attempts == engine_config.health_attempts
        assert len(probe.requests) == engine_config.health_attempts
        assert "not healthy after 3 checks" in result.warnings[0]
        assert "webapp-staging" in engine.containers
        assert engine.operations()[-1] == "logs"

    def test_health_recovers(self, engine_config: EngineConfig) -> None:
        result = DeploymentDriver(
            SimulatedContainerEngine(), SimulatedHealthProbe([0, 503, 200]), engine_config
        ).deploy(target())
        assert result.status == DeployStatus.HEALTHY
        assert result.health_attempts == 3

    def test_engine_failures_are_retried(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine(failures={"run": 1})
        result = DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())

        assert result.status == DeployStatus.HEALTHY
        assert engine.operations().count("run") == 2

    def test_persistent_run_failure_raises(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine(failures={"run": 10})
        with pytest.raises(RetryExhaustedError):
            DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(target())

    def test_abort(self, engine_config: EngineConfig) -> None:
        token = CancellationToken()
        token.cancel("operator")
        with pytest.raises(RunAbortedError):
            DeploymentDriver(SimulatedContainerEngine(), SimulatedHealthProbe(), engine_config).deploy(target(), token)

    def test_env_reaches_container(self, engine_config: EngineConfig) -> None:
        engine = SimulatedContainerEngine()
        DeploymentDriver(engine, SimulatedHealthProbe(), engine_config).deploy(
            target(env={"APP_ENV": "staging"}, container_port=8080)
        )
        options = engine.containers["webapp-staging"].options
        assert dict(options.env) == {"APP_ENV": "staging"}
        assert options.ports == ("8081:8080",)


class TestDeployTask:
    """Tests for deploy as a stage."""

    def task(self, engine_config: EngineConfig, probe: SimulatedHealthProbe) -> DeployTask:
        driver = DeploymentDriver(SimulatedContainerEngine(), probe, engine_config)
        return DeployTask(
            driver,
            "staging",
            container_name="webapp-staging",
            port=8081,
            health_url="http://localhost:8081/health",
        )

    def test_healthy_deploy_succeeds(
        self, engine_config: EngineConfig, make_ctx: Callable[..., StageContext]
    ) -> None:
        ctx = make_ctx(image="webapp:7")
        outcome = self.task(engine_config, SimulatedHealthProbe()).execute(ctx)

        assert outcome.status == OutcomeStatus.SUCCEEDED
        assert outcome.result["health"] == "passing"
        assert ctx.run_context.values["staging_deploy"]["container_name"] == "webapp-staging"

    def test_unhealthy_deploy_is_degraded(
        self, engine_config: EngineConfig, make_ctx: Callable[..., StageContext]
    ) -> None:
        outcome = self.task(engine_config, SimulatedHealthProbe([503])).execute(make_ctx(image="webapp:7"))

        assert outcome.status == OutcomeStatus.DEGRADED
        assert outcome.is_success
        assert outcome.result["status"] == "degraded"

    def test_missing_image_raises(
        self, engine_config: EngineConfig, make_ctx: Callable[..., StageContext]
    ) -> None:
        with pytest.raises(KeyError):
            self.task(engine_config, SimulatedHealthProbe()).execute(make_ctx())


class FakeRunner:
    """run_process replacement returning scripted results."""

    def __init__(self, *results: ProcessResult) -> None:
        self.results = list(results)
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> ProcessResult:
        self.calls.append((cmd, kwargs))
        if self.results:
            return self.results.pop(0)
        return completed(cmd)


def completed(cmd: Any = (), returncode: int = 0, stdout: str = "", stderr: str = "") -> ProcessResult:
    return ProcessResult(args=list(cmd), returncode=returncode, stdout=stdout, stderr=stderr)


class TestDockerCliEngine:
    """Tests for docker command construction and error mapping."""

    def test_run_args(self) -> None:
        args = DockerCliEngine.build_run_args(
            "webapp:7",
            RunOptions(name="web", ports=["8081:80"], env={"APP_ENV": "staging", "WORKERS": 4}),
        )
        assert args == [
            "run",
            "--name",
            "web",
            "-d",
            "--restart",
            "unless-stopped",
            "-p",
            "8081:80",
            "-e",
            "APP_ENV=staging",
            "-e",
            "WORKERS=4",
            "webapp:7",
        ]

    def test_run_returns_short_id(self) -> None:
        runner = FakeRunner(completed(stdout="0123456789abcdef0123\n"))
        assert DockerCliEngine(runner=runner).run("webapp:7", RunOptions(name="web")) == "0123456789ab"
        assert runner.calls[0][0][:2] == ["docker", "run"]

    def test_build_args(self) -> None:
        runner = FakeRunner()
        DockerCliEngine(runner=runner).build("/src", "webapp:7", build_args={"VERSION": "1.0"})
        assert runner.calls[0][0] == [
            "docker",
            "build",
            "-t",
            "webapp:7",
            "-f",
            "Dockerfile",
            "--build-arg",
            "VERSION=1.0",
            "/src",
        ]

    def test_login_sends_password_on_stdin(self) -> None:
        runner = FakeRunner()
        DockerCliEngine(runner=runner).login("registry.local", "ci", "s3cret")
        cmd, kwargs = runner.calls[0]
        assert "s3cret" not in cmd
        assert kwargs["stdin"] == "s3cret"
        assert "--password-stdin" in cmd

    def test_exists_and_running(self) -> None:
        runner = FakeRunner(
            completed(stdout="true\n"),
            completed(stdout="false\n"),
            completed(returncode=1, stderr="Error: No such object: web"),
        )
        engine = DockerCliEngine(runner=runner)
        assert engine.is_running("web")
        assert engine.exists("web")
        assert not engine.exists("web")

    def test_missing_container_maps_to_not_found(self) -> None:
        runner = FakeRunner(completed(returncode=1, stderr="Error response from daemon: No such container: web"))
        with pytest.raises(ContainerNotFoundError):
            DockerCliEngine(runner=runner).stop("web")

    def test_failed_command_is_engine_error(self) -> None:
        runner = FakeRunner(completed(returncode=1, stderr="denied: requested access to the resource is denied"))
        with pytest.raises(ContainerEngineError) as exc_info:
            DockerCliEngine(runner=runner).push("webapp:7")
        assert exc_info.value.exit_code == 1
        assert "denied" in exc_info.value.stderr

    def test_missing_binary_is_configuration_error(self) -> None:
        def runner(cmd: list[str], **kwargs: Any) -> ProcessResult:
            raise FileNotFoundError(cmd[0])

        with pytest.raises(ConfigurationError):
            DockerCliEngine(binary="no-docker", runner=runner).pull("webapp:7")

    def test_timeout_is_engine_error(self) -> None:
        def runner(cmd: list[str], **kwargs: Any) -> ProcessResult:
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        with pytest.raises(ContainerEngineError):
            DockerCliEngine(timeout=1, runner=runner).pull("webapp:7")


def sleeping_runner(started: threading.Event) -> Callable[..., ProcessResult]:
    """Runner standing in for a docker command that takes a long time."""

    def runner(cmd: list[str], **kwargs: Any) -> ProcessResult:
        started.set()
        return run_process(["sleep", "30"], **kwargs)

    return runner


@pytest.mark.skipif(sys.platform == "win32", reason="uses sleep")
class TestDockerCancellation:
    """Cancelling the stage token stops a running docker command."""

    def test_token_is_passed_to_runner(self) -> None:
        runner = FakeRunner()
        token = CancellationToken()
        DockerCliEngine(runner=runner).push("webapp:7", token=token)
        assert runner.calls[0][1]["token"] is token

    def test_cancel_terminates_command(self) -> None:
        started = threading.Event()
        token = CancellationToken()
        engine = DockerCliEngine(runner=sleeping_runner(started))
        threading.Timer(0.2, token.cancel, args=("operator",)).start()

        start = time.monotonic()
        with pytest.raises(RunAbortedError):
            engine.pull("webapp:7", token=token)
        assert started.is_set()
        assert time.monotonic() - start < 10

    def test_abort_during_deploy_ends_run_promptly(
        self, engine_config: EngineConfig, make_pipeline: Callable[..., Pipeline]
    ) -> None:
        started = threading.Event()
        engine = DockerCliEngine(runner=sleeping_runner(started))
        driver = DeploymentDriver(engine, SimulatedHealthProbe(), engine_config)
        deploy = DeployTask(driver, "staging", container_name="webapp-staging", port=8081, health_url="http://x/")
        pipeline = make_pipeline([Stage.create("deploy-staging", deploy)])

        result: dict[str, Any] = {}
        thread = threading.Thread(target=lambda: result.update(run=pipeline.run({"image": "webapp:7"})))
        thread.start()
        assert started.wait(5)
        [active] = pipeline.active_runs
        start = time.monotonic()
        assert pipeline.abort(active.id, "operator abort")
        thread.join(10)

        assert time.monotonic() - start < 10
        run = result["run"]
        assert run.status == RunStatus.ABORTED
        assert run.outcome("deploy-staging").kind == FailureKind.ABORTED


class TestFactories:
    def test_simulated(self, engine_config: EngineConfig) -> None:
        assert isinstance(create_engine(engine_config), SimulatedContainerEngine)
        assert isinstance(create_probe(engine_config), SimulatedHealthProbe)

    def test_docker(self, engine_config: EngineConfig) -> None:
        engine_config.container_engine = "docker"
        assert isinstance(create_engine(engine_config), DockerCliEngine)
        assert isinstance(create_probe(engine_config), HttpHealthProbe)
