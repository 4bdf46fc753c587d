"""
Task interface definitions.

This module defines the Task interface and its variants (CallableTask,
RetryingTask, NoOpTask) that every stage action follows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from shipwright.models.outcome import Outcome

if TYPE_CHECKING:
    from shipwright.models.context import StageContext
    from shipwright.resilience.retry import RetryController, RetryPolicy


class Task(ABC):
    """
    Base interface for all stage actions.

    Each task:
    - Receives a StageContext (stage parameters, earlier stage values,
      run input, cancellation token, log capture)
    - Performs some work
    - Returns an Outcome (None counts as success) or raises

    Long-running tasks must check ``ctx.token`` and unwind when it is
    cancelled; the executor abandons them after a grace period otherwise.

    Example:
        class NotifyTask(Task):
            def execute(self, ctx: StageContext) -> Outcome:
                channel = ctx["channel"]
                send(channel, f"build {ctx.run_context.run.build_number} done")
                ctx.log("notified %s", channel)
                return Outcome.succeeded(f"notified {channel}")
    """

    @abstractmethod
    def execute(self, ctx: StageContext) -> Outcome | None:
        """
        Execute the task.

        Args:
            ctx: The stage context

        Returns:
            Outcome indicating status and result data
        """

    @property
    def name(self) -> str:
        """Task name used in logs; defaults to the class name."""
        return type(self).__name__


class CallableTask(Task):
    """
    A task that wraps a callable function.

    Example:
        def report(ctx: StageContext) -> Outcome:
            return Outcome.succeeded("reported")

        task = CallableTask(report)
    """

    def __init__(
        self,
        func: Callable[[StageContext], Outcome | None],
        name: str | None = None,
    ) -> None:
        self._func = func
        self._name = name or getattr(func, "__name__", type(func).__name__)

    def execute(self, ctx: StageContext) -> Outcome | None:
        return self._func(ctx)

    @property
    def name(self) -> str:
        return self._name


class RetryingTask(Task):
    """
    A task composed with a RetryPolicy.

    Each attempt calls the inner task with the same context; waits between
    attempts observe the stage's cancellation token.
    """

    def __init__(
        self,
        task: Task,
        policy: RetryPolicy,
        controller: RetryController | None = None,
    ) -> None:
        from shipwright.resilience.retry import RetryController

        self._task = task
        self._policy = policy
        self._controller = controller or RetryController()

    @property
    def inner(self) -> Task:
        return self._task

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(self, ctx: StageContext) -> Outcome:
        return self._controller.with_retry(lambda: self._task.execute(ctx), self._policy, ctx.token)

    @property
    def name(self) -> str:
        return self._task.name


class NoOpTask(Task):
    """
    A task that does nothing.

    Used for placeholder stages such as a build step with nothing to build.
    """

    def __init__(self, message: str = "nothing to do") -> None:
        self._message = message

    def execute(self, ctx: StageContext) -> Outcome:
        ctx.log(self._message)
        return Outcome.succeeded(self._message)
