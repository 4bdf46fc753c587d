"""
Stage executor.

Runs one stage action with timeout enforcement and turns whatever happens
into an Outcome: returned outcomes are kept, exceptions are classified, and
timeouts become FAILED/TIMEOUT. The executor never retries; retries are
composed around the task before it becomes a stage.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from shipwright.errors import StageTimeoutError
from shipwright.logging import stage_logger
from shipwright.models.context import StageContext
from shipwright.models.outcome import Outcome
from shipwright.models.status import FailureKind
from shipwright.resilience.bulkheads import StageBulkhead
from shipwright.resilience.config import EngineConfig, get_engine_config

if TYPE_CHECKING:
    from shipwright.models.run import RunContext
    from shipwright.models.stage import Stage


class StageExecutor:
    """
    Executes one stage at a time on behalf of a pipeline run.

    Timeout handling is cooperative: when a stage exceeds its timeout the
    executor cancels the stage's token and gives the action
    ``cancel_grace_seconds`` to unwind. An action still running after that
    is abandoned; its thread and any resources it holds are left for
    external cleanup and the outcome carries a warning saying so.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        bulkhead: StageBulkhead | None = None,
    ) -> None:
        self._config = config or get_engine_config()
        self._bulkhead = bulkhead
        self._lock = threading.Lock()

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _get_bulkhead(self) -> StageBulkhead:
        with self._lock:
            if self._bulkhead is None:
                self._bulkhead = StageBulkhead(self._config)
            return self._bulkhead

    def timeout_for(self, stage: Stage) -> timedelta:
        """Stage timeout, falling back to the engine default."""
        if stage.timeout is not None:
            return stage.timeout
        return timedelta(seconds=self._config.default_stage_timeout_seconds)

    def execute(self, stage: Stage, run_context: RunContext) -> Outcome:
        """
        Run ``stage`` and return its stamped outcome.

        Args:
            stage: The stage to run
            run_context: The owning run's context

        Returns:
            The outcome, carrying duration and captured log lines
        """
        run = run_context.run
        log = stage_logger(run.id, stage.name)
        token = run_context.token.child()
        ctx = StageContext(stage, run_context, token)
        timeout = self.timeout_for(stage).total_seconds()
        finished = threading.Event()

        def invoke(c: StageContext) -> Any:
            # Classified on the worker so the bulkhead never wraps action errors
            try:
                return stage.task.execute(c)
            except Exception as e:
                log.debug("stage_raised", error_type=type(e).__name__, error=str(e))
                return Outcome.from_exception(e)
            finally:
                finished.set()

        log.info("stage_started", task=stage.task.name, timeout_s=timeout)
        started = time.monotonic()
        try:
            result = self._get_bulkhead().run(
                invoke,
                ctx,
                timeout=timeout,
                stage_name=stage.name,
                run_id=run.id,
            )
            outcome = Outcome.coerce(result)
        except StageTimeoutError as e:
            token.cancel("timeout")
            outcome = Outcome.failed(FailureKind.TIMEOUT, str(e), message=f"timed out after {timeout:g}s")
            if not finished.wait(self._config.cancel_grace_seconds):
                log.warning("stage_abandoned", grace_s=self._config.cancel_grace_seconds)
                outcome = outcome.with_warnings(
                    f"action did not stop within {self._config.cancel_grace_seconds:g}s of cancellation; "
                    "abandoned, resources may need external cleanup"
                )
        except Exception as e:
            outcome = Outcome.from_exception(e)
        finally:
            token.release()

        outcome = outcome.stamped(duration_seconds=time.monotonic() - started, logs=ctx.logs)
        if outcome.is_failure:
            log.warning(
                "stage_failed",
                kind=str(outcome.kind),
                detail=outcome.detail,
                duration_s=round(outcome.duration_seconds, 3),
            )
        else:
            log.info(
                "stage_finished",
                status=str(outcome.status),
                warnings=list(outcome.warnings),
                duration_s=round(outcome.duration_seconds, 3),
            )
        return outcome

    def close(self) -> None:
        """Shut down the worker pool without waiting for abandoned actions."""
        with self._lock:
            bulkhead, self._bulkhead = self._bulkhead, None
        if bulkhead is not None:
            bulkhead.shutdown(wait=False)
