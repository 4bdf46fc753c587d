"""
Pipeline graph.

A Pipeline is defined once from an ordered list of stages and run any
number of times. Each run executes the main stages strictly in order on the
calling thread, stops at the first non-optional failure, then runs the
post-run hooks:

    always   after the main sequence, whatever happened (including abort)
    success  only if the run succeeded
    failure  only if the run failed
    cleanup  last of all; failures are logged and never change the status

A failing non-optional ``always`` or ``success`` hook fails a run that had
succeeded. A ``failure`` hook created with ``compensates=True`` that
succeeds turns a failed run back into a succeeded one.

Example:
    pipeline = Pipeline.define("webapp", [
        Stage.create("checkout", CheckoutTask(git, url)),
        Stage.create("test", ShellTask("make test")),
        Stage.create("report", CallableTask(report), hook=HookPhase.ALWAYS),
    ])
    run = pipeline.run({"branch": "main"})
    print(run.summary())
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from shipwright.errors import ConfigurationError
from shipwright.executor import StageExecutor
from shipwright.logging import bind_context, clear_context, run_logger, unbind_context
from shipwright.models.outcome import Outcome
from shipwright.models.run import Run, RunContext, now_ms
from shipwright.models.stage import HookPhase, Stage
from shipwright.models.status import FailureKind, RunStatus
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import EngineConfig, get_engine_config


@dataclass
class _ActiveRun:
    run: Run
    token: CancellationToken


class Pipeline:
    """
    A defined pipeline: the graph handle runs are started from.

    Build numbers are monotonic per Pipeline object, starting at
    ``first_build_number``.
    """

    def __init__(
        self,
        name: str,
        stages: Iterable[Stage],
        *,
        config: EngineConfig | None = None,
        executor: StageExecutor | None = None,
        first_build_number: int = 1,
    ) -> None:
        stages = list(stages)
        if not name:
            raise ConfigurationError("Pipeline name must not be empty")
        if not any(not s.is_hook for s in stages):
            raise ConfigurationError(f"Pipeline '{name}' has no main stages")
        seen: set[str] = set()
        for stage in stages:
            if stage.name in seen:
                raise ConfigurationError(f"Duplicate stage name '{stage.name}' in pipeline '{name}'")
            seen.add(stage.name)

        self.name = name
        self._stages = tuple(replace(stage, position=i) for i, stage in enumerate(stages))
        self._config = config or get_engine_config()
        self._executor = executor or StageExecutor(self._config)
        self._build_numbers = itertools.count(first_build_number)
        self._lock = threading.Lock()
        self._active: dict[str, _ActiveRun] = {}

    @classmethod
    def define(cls, name: str, stages: Iterable[Stage], **kwargs: Any) -> Pipeline:
        """Define a pipeline from stages in declared order."""
        return cls(name, stages, **kwargs)

    # ========== Definition ==========

    @property
    def stages(self) -> tuple[Stage, ...]:
        """Every stage, hooks included, in declared order."""
        return self._stages

    @property
    def main_stages(self) -> list[Stage]:
        return [s for s in self._stages if not s.is_hook]

    def hooks(self, phase: HookPhase) -> list[Stage]:
        return [s for s in self._stages if s.hook == phase]

    def stage(self, name: str) -> Stage:
        for stage in self._stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    # ========== Runs ==========

    @property
    def active_runs(self) -> list[Run]:
        with self._lock:
            return [active.run for active in self._active.values()]

    def run(
        self,
        run_input: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Run:
        """
        Execute the pipeline once and return the finished Run.

        Args:
            run_input: Run parameters (branch, version, ...), readable by
                every stage through its context
            env: Opaque environment pass-through (BUILD_ID, BUILD_URL,
                registry credentials, analysis token)
        """
        with self._lock:
            build_number = next(self._build_numbers)
        run = Run(pipeline=self.name, build_number=build_number)
        token = CancellationToken()
        context = RunContext(run=run, token=token, parameters=dict(run_input or {}), env=dict(env or {}))
        self._register(run, token)

        log = run_logger(run.id, build_number)
        bind_context(run_id=run.id, pipeline=self.name, build_number=build_number)
        run.start()
        log.info("run_started", pipeline=self.name, stages=len(self.main_stages))
        status = RunStatus.FAILED
        try:
            status = self._run_main(context)
            status = self._run_hooks(context, status)
        finally:
            if token.is_cancelled and run.abort_reason is None:
                run.abort_reason = token.reason
            run.finish(status)
            self._unregister(run)
            log.info(
                "run_finished",
                status=str(status),
                duration_s=round(run.duration_seconds, 3),
                warnings=len(run.warnings),
            )
            clear_context()
        return run

    def abort(self, run_id: str, reason: str = "aborted by operator") -> bool:
        """
        Cancel a run in progress.

        The current stage sees its token cancelled; suspended retry and
        approval waits wake immediately. ``always`` and ``cleanup`` hooks
        still run.

        Returns:
            False if no such run is in progress
        """
        with self._lock:
            active = self._active.get(run_id)
            if active is None:
                return False
            if active.run.abort_reason is None:
                active.run.abort_reason = reason
            # Cancelled under the lock so a hook token swap cannot slip in between
            active.token.cancel(reason)
        run_logger(run_id, active.run.build_number).warning("run_abort_requested", reason=reason)
        return True

    def close(self) -> None:
        """Release the executor's worker threads."""
        self._executor.close()

    # ========== Internals ==========

    def _run_main(self, context: RunContext) -> RunStatus:
        run = context.run
        for stage in self.main_stages:
            if context.token.is_cancelled:
                return RunStatus.ABORTED
            run.current_stage_index = stage.position
            outcome = self._run_stage(stage, context)
            if not outcome.is_failure:
                continue
            if outcome.kind == FailureKind.ABORTED or context.token.is_cancelled:
                return RunStatus.ABORTED
            if stage.optional:
                continue
            return RunStatus.FAILED
        return RunStatus.ABORTED if context.token.is_cancelled else RunStatus.SUCCEEDED

    def _run_hooks(self, context: RunContext, status: RunStatus) -> RunStatus:
        hook_context = self._hook_context(context)
        if context.token.is_cancelled and status == RunStatus.SUCCEEDED:
            status = RunStatus.ABORTED

        phases = [HookPhase.ALWAYS]
        if status == RunStatus.SUCCEEDED:
            phases.append(HookPhase.SUCCESS)
        elif status == RunStatus.FAILED:
            phases.append(HookPhase.FAILURE)

        for phase in phases:
            bind_context(hook_phase=phase.value)
            for hook in self.hooks(phase):
                if hook_context.token.is_cancelled:
                    break
                outcome = self._run_stage(hook, hook_context)
                status = self._apply_hook(hook, outcome, status)
            if hook_context.token.is_cancelled and status != RunStatus.FAILED:
                status = RunStatus.ABORTED

        cleanup_context = self._hook_context(context)
        bind_context(hook_phase=HookPhase.CLEANUP.value)
        for hook in self.hooks(HookPhase.CLEANUP):
            outcome = self._run_stage(hook, cleanup_context)
            if outcome.is_failure:
                run_logger(context.run.id, context.run.build_number).warning(
                    "cleanup_failed",
                    stage=hook.name,
                    detail=outcome.detail,
                )
        unbind_context("hook_phase")
        return status

    def _apply_hook(self, hook: Stage, outcome: Outcome, status: RunStatus) -> RunStatus:
        if hook.hook == HookPhase.FAILURE:
            if hook.compensates and outcome.is_success:
                return RunStatus.SUCCEEDED
            return status
        if outcome.is_failure and not hook.optional and status == RunStatus.SUCCEEDED:
            return RunStatus.FAILED
        return status

    def _hook_context(self, context: RunContext) -> RunContext:
        """
        Context for a hook phase.

        Hooks get a fresh token so they still run after an abort; a further
        abort cancels them through this token.
        """
        token = CancellationToken()
        with self._lock:
            active = self._active.get(context.run.id)
            if active is not None:
                active.token = token
        return replace(context, token=token)

    def _run_stage(self, stage: Stage, context: RunContext) -> Outcome:
        run = context.run
        history = run.history
        started_at = max(now_ms(), history[-1].started_at if history else 0)
        phase = stage.hook.value if stage.hook else "main"

        outcome = self._evaluate_condition(stage, context)
        if outcome is None:
            outcome = self._executor.execute(stage, context)
        run.record(stage.name, outcome, started_at=started_at, phase=phase, optional=stage.optional)
        return outcome

    def _evaluate_condition(self, stage: Stage, context: RunContext) -> Outcome | None:
        """SKIPPED or FAILED outcome if the stage must not execute, else None."""
        if stage.when is None:
            return None
        try:
            if stage.when(context):
                return None
        except Exception as e:
            return Outcome.failed(FailureKind.ERROR, f"condition raised {type(e).__name__}: {e}")
        return Outcome.skipped()

    def _register(self, run: Run, token: CancellationToken) -> None:
        with self._lock:
            self._active[run.id] = _ActiveRun(run=run, token=token)

    def _unregister(self, run: Run) -> None:
        with self._lock:
            self._active.pop(run.id, None)


def define(name: str, stages: Iterable[Stage], **kwargs: Any) -> Pipeline:
    """Define a pipeline; shorthand for ``Pipeline.define``."""
    return Pipeline.define(name, stages, **kwargs)
