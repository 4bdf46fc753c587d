"""Shared pytest fixtures: fast engine settings, run contexts and test tasks."""

from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest

from shipwright.executor import StageExecutor
from shipwright.logging import reset_logging
from shipwright.models.context import StageContext
from shipwright.models.outcome import Outcome
from shipwright.models.run import Run, RunContext
from shipwright.models.stage import Stage
from shipwright.models.status import FailureKind
from shipwright.pipeline import Pipeline
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import EngineConfig, reset_engine_config
from shipwright.tasks.interface import CallableTask, Task


@pytest.fixture(autouse=True)
def reset_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Reset the engine config and logging singletons between tests for isolation."""
    for name in ("SHIPWRIGHT_CONTAINER_ENGINE", "SHIPWRIGHT_LOG_JSON"):
        monkeypatch.delenv(name, raising=False)
    reset_engine_config()
    reset_logging()
    yield
    reset_engine_config()
    reset_logging()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine settings with zero delays so retries and polls finish at once."""
    return EngineConfig(
        default_stage_timeout_seconds=30,
        cancel_grace_seconds=2,
        container_engine="simulated",
        quality_gate_attempts=3,
        quality_gate_delay_seconds=0,
        health_attempts=3,
        health_delay_seconds=0,
        health_timeout_seconds=1,
        engine_attempts=2,
        engine_delay_seconds=0,
    )


@pytest.fixture
def executor(engine_config: EngineConfig) -> Iterator[StageExecutor]:
    executor = StageExecutor(engine_config)
    yield executor
    executor.close()


@pytest.fixture
def make_pipeline(engine_config: EngineConfig) -> Iterator[Callable[..., Pipeline]]:
    """Factory for pipelines that are closed when the test ends."""
    created: list[Pipeline] = []

    def factory(stages: list[Stage], name: str = "test", **kwargs: Any) -> Pipeline:
        kwargs.setdefault("config", engine_config)
        pipeline = Pipeline.define(name, stages, **kwargs)
        created.append(pipeline)
        return pipeline

    yield factory
    for pipeline in created:
        pipeline.close()


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(run=Run(pipeline="test", build_number=7), token=CancellationToken())


@pytest.fixture
def make_ctx(run_context: RunContext) -> Callable[..., StageContext]:
    """Factory for a StageContext of a throwaway stage."""

    def factory(config: dict[str, Any] | None = None, **values: Any) -> StageContext:
        run_context.values.update(values)
        stage = Stage.create("under-test", NoteTask(), config=config)
        return StageContext(stage, run_context, run_context.token.child())

    return factory


# =============================================================================
# Shared Test Task Implementations
# =============================================================================


class NoteTask(Task):
    """A task that records that it ran."""

    def __init__(self, calls: list[str] | None = None, label: str = "ran") -> None:
        self.calls = calls if calls is not None else []
        self.label = label

    def execute(self, ctx: StageContext) -> Outcome:
        self.calls.append(ctx.stage.name)
        return Outcome.succeeded(self.label)


class FlakyTask(Task):
    """A task that fails transiently a given number of times, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0

    def execute(self, ctx: StageContext) -> Outcome:
        self.attempts += 1
        if self.attempts <= self.failures:
            return Outcome.transient(f"attempt {self.attempts} failed")
        return Outcome.succeeded(f"succeeded on attempt {self.attempts}")


def succeed(calls: list[str], name: str, **kwargs: Any) -> Stage:
    """A stage that succeeds and appends its name to ``calls``."""
    return Stage.create(name, NoteTask(calls), **kwargs)


def fail(calls: list[str], name: str, detail: str = "boom", **kwargs: Any) -> Stage:
    """A stage that fails fatally and appends its name to ``calls``."""

    def action(ctx: StageContext) -> Outcome:
        calls.append(name)
        return Outcome.failed(FailureKind.FATAL, detail)

    return Stage.create(name, CallableTask(action, name=name), **kwargs)
