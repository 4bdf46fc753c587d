"""
Stage context with run-level fallback lookup.

A StageContext is what a task receives. Keys resolve first against the
stage's own parameters (plus anything the task set during this execution),
then against values published by earlier stages of the same run, then
against the run input parameters. This is how data flows from one stage to
the next without global pipeline variables.
"""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shipwright.models.run import RunContext
    from shipwright.models.stage import Stage
    from shipwright.resilience.cancellation import CancellationToken


class StageContext(MutableMapping[str, Any]):
    """
    Per-execution view of a stage.

    Example:
        # "build-image" published {"image": "registry/app:42"}
        # A later deploy stage reads it without declaring it:
        image = ctx["image"]
    """

    def __init__(
        self,
        stage: Stage,
        run_context: RunContext,
        token: CancellationToken,
    ) -> None:
        self._stage = stage
        self._run_context = run_context
        self._token = token
        self._delegate: dict[str, Any] = dict(stage.config)
        self._logs: list[str] = []

    @property
    def stage(self) -> Stage:
        """The stage being executed."""
        return self._stage

    @property
    def run_context(self) -> RunContext:
        return self._run_context

    @property
    def token(self) -> CancellationToken:
        """Cancellation signal; long-running actions must observe it."""
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.is_cancelled

    @property
    def logs(self) -> list[str]:
        """Log lines captured so far."""
        return list(self._logs)

    def log(self, message: str, *args: Any) -> None:
        """Capture a log line for the run history.

        Args:
            message: %-style format string
            *args: Format arguments
        """
        self._logs.append(message % args if args else message)

    def publish(self, **values: Any) -> None:
        """Make values visible to later stages of the run."""
        self._run_context.values.update(values)

    def __getitem__(self, key: str) -> Any:
        if key in self._delegate:
            return self._delegate[key]
        if key in self._run_context.values:
            return self._run_context.values[key]
        if key in self._run_context.parameters:
            return self._run_context.parameters[key]
        raise KeyError(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._delegate[key] = value

    def __delitem__(self, key: str) -> None:
        del self._delegate[key]

    def __iter__(self) -> Iterator[str]:
        seen: set[str] = set()
        for source in (self._delegate, self._run_context.values, self._run_context.parameters):
            for key in source:
                if key not in seen:
                    seen.add(key)
                    yield key

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, key: object) -> bool:
        return (
            key in self._delegate
            or key in self._run_context.values
            or key in self._run_context.parameters
        )

    def __repr__(self) -> str:
        return f"StageContext(stage={self._stage.name!r}, keys={list(self)})"
