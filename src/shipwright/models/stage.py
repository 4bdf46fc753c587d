"""
Stage model.

A Stage is one named unit of work in a pipeline definition. Stages are
immutable once the pipeline is defined; every run executes the same Stage
objects with a fresh StageContext.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shipwright.models.run import RunContext
    from shipwright.resilience.retry import RetryPolicy
    from shipwright.tasks.interface import Task


class HookPhase(Enum):
    """
    When a post-run hook executes.

    ALWAYS: after the main sequence, whatever its result (including abort)
    SUCCESS: only if the run succeeded
    FAILURE: only if the run failed
    CLEANUP: last of all; its failures never change the run status
    """

    ALWAYS = "always"
    SUCCESS = "success"
    FAILURE = "failure"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class Stage:
    """
    One step of a pipeline.

    Attributes:
        name: Unique name within the pipeline
        task: The action to run
        timeout: Maximum run time; None uses the engine default
        retry_policy: Policy the task was composed with, if any
        config: Static stage parameters, read through StageContext
        hook: Post-run hook phase, or None for a main-sequence stage
        optional: A failed optional stage does not fail the run
        when: Predicate evaluated before execution; False skips the stage
        compensates: For FAILURE hooks, success overrides the failed status
        position: Ordinal position, assigned when the pipeline is defined
    """

    name: str
    task: Task
    timeout: timedelta | None = None
    retry_policy: RetryPolicy | None = None
    config: Mapping[str, Any] = field(default_factory=dict)
    hook: HookPhase | None = None
    optional: bool = False
    when: Callable[[RunContext], bool] | None = None
    compensates: bool = False
    position: int = -1

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Stage name must not be empty")
        if self.compensates and self.hook != HookPhase.FAILURE:
            raise ValueError(f"Stage '{self.name}': only failure hooks can compensate")
        # Freeze the config so a running stage cannot mutate the definition
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @classmethod
    def create(
        cls,
        name: str,
        task: Task,
        *,
        timeout: timedelta | float | None = None,
        retry: RetryPolicy | None = None,
        config: Mapping[str, Any] | None = None,
        hook: HookPhase | None = None,
        optional: bool = False,
        when: Callable[[RunContext], bool] | None = None,
        compensates: bool = False,
    ) -> Stage:
        """
        Create a stage, composing the task with a retry policy if given.

        Retries wrap the action before it becomes a stage, so the executor
        only ever sees a single call.

        Args:
            name: Unique stage name
            task: The action to run
            timeout: timedelta or seconds
            retry: Optional RetryPolicy wrapped around the task
            config: Static stage parameters
            hook: Post-run hook phase
            optional: Allow failure without failing the run
            when: Skip predicate
            compensates: Failure hook that recovers the run on success
        """
        from shipwright.tasks.interface import RetryingTask

        if isinstance(timeout, (int, float)):
            timeout = timedelta(seconds=timeout)
        if retry is not None:
            task = RetryingTask(task, retry)
        return cls(
            name=name,
            task=task,
            timeout=timeout,
            retry_policy=retry,
            config=config or {},
            hook=hook,
            optional=optional,
            when=when,
            compensates=compensates,
        )

    @property
    def is_hook(self) -> bool:
        return self.hook is not None

    def __repr__(self) -> str:
        phase = self.hook.value if self.hook else "main"
        return f"Stage(name={self.name!r}, position={self.position}, phase={phase})"
