"""
Run model.

A Run is one execution of a pipeline definition. It tracks:
- Overall status
- The current stage index
- Append-only stage history, ordered by start time
- Timing data and abort details
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shipwright.errors import StageError
from shipwright.models.status import OutcomeStatus, RunStatus

if TYPE_CHECKING:
    from shipwright.models.outcome import Outcome
    from shipwright.resilience.cancellation import CancellationToken


def _generate_run_id() -> str:
    """Generate a unique run ID using ULID."""
    from ulid import ULID

    return str(ULID())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class StageRecord:
    """
    History entry for one executed (or skipped) stage.

    Attributes:
        name: Stage name
        phase: "main" or the hook phase value
        optional: Whether the stage was optional
        started_at: Epoch milliseconds when execution started
        outcome: The stage outcome
    """

    name: str
    phase: str
    optional: bool
    started_at: int
    outcome: Outcome

    @property
    def status(self) -> OutcomeStatus:
        return self.outcome.status

    @property
    def message(self) -> str:
        return self.outcome.message

    @property
    def duration_seconds(self) -> float:
        return self.outcome.duration_seconds


@dataclass
class Run:
    """
    One execution of a pipeline.

    Attributes:
        pipeline: Name of the pipeline definition
        build_number: Monotonic build number within the pipeline
        id: Unique identifier (ULID)
        status: Current run status
        current_stage_index: Position of the stage being executed, -1 before start
        start_time: Epoch milliseconds when the run started
        end_time: Epoch milliseconds when the run finished
        abort_reason: Why the run was aborted, if it was
    """

    pipeline: str
    build_number: int
    id: str = field(default_factory=_generate_run_id)
    status: RunStatus = RunStatus.PENDING
    current_stage_index: int = -1
    start_time: int | None = None
    end_time: int | None = None
    abort_reason: str | None = None
    _history: dict[str, StageRecord] = field(default_factory=dict, repr=False)

    # ========== History ==========

    def record(
        self,
        name: str,
        outcome: Outcome,
        *,
        started_at: int,
        phase: str = "main",
        optional: bool = False,
    ) -> StageRecord:
        """
        Append a stage outcome to the history.

        Raises:
            StageError: If the stage already has an outcome in this run, or
                the entry would break start-time ordering
        """
        if name in self._history:
            raise StageError(
                f"Stage '{name}' already has an outcome in this run",
                stage_name=name,
                run_id=self.id,
            )
        if self._history:
            last = next(reversed(self._history.values()))
            if started_at < last.started_at:
                raise StageError(
                    f"Stage '{name}' started before '{last.name}'",
                    stage_name=name,
                    run_id=self.id,
                )
        entry = StageRecord(
            name=name,
            phase=phase,
            optional=optional,
            started_at=started_at,
            outcome=outcome,
        )
        self._history[name] = entry
        return entry

    @property
    def history(self) -> list[StageRecord]:
        """Stage records in execution order."""
        return list(self._history.values())

    @property
    def outcomes(self) -> dict[str, Outcome]:
        """Ordered mapping of stage name to outcome."""
        return {name: entry.outcome for name, entry in self._history.items()}

    def outcome(self, name: str) -> Outcome | None:
        entry = self._history.get(name)
        return entry.outcome if entry else None

    @property
    def warnings(self) -> list[tuple[str, str]]:
        """(stage name, warning) pairs across the run."""
        return [(entry.name, warning) for entry in self._history.values() for warning in entry.outcome.warnings]

    # ========== Status ==========

    def start(self) -> None:
        self.status = RunStatus.RUNNING
        self.start_time = now_ms()

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.end_time = now_ms()

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else now_ms()
        return (end - self.start_time) / 1000

    @property
    def is_complete(self) -> bool:
        return self.status.is_complete

    # ========== Reporting ==========

    def summary(self) -> str:
        """
        Render a terminal summary: status, duration, message and warnings
        per stage.
        """
        lines = [f"{self.pipeline} #{self.build_number} {self.status} in {self.duration_seconds:.1f}s"]
        if self.abort_reason:
            lines.append(f"  aborted: {self.abort_reason}")
        for entry in self._history.values():
            label = entry.name if entry.phase == "main" else f"{entry.name} [{entry.phase}]"
            line = f"  {label:<32} {str(entry.status):<10} {entry.duration_seconds:7.1f}s"
            if entry.message:
                line += f"  {entry.message}"
            lines.append(line)
            for warning in entry.outcome.warnings:
                lines.append(f"    warning: {warning}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for an external artifact store."""
        return {
            "id": self.id,
            "pipeline": self.pipeline,
            "build_number": self.build_number,
            "status": str(self.status),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "abort_reason": self.abort_reason,
            "stages": [
                {
                    "name": entry.name,
                    "phase": entry.phase,
                    "optional": entry.optional,
                    "started_at": entry.started_at,
                    **entry.outcome.to_dict(),
                }
                for entry in self._history.values()
            ],
        }


@dataclass
class RunContext:
    """
    Explicit state passed to every stage of a run.

    Attributes:
        run: The run being executed
        parameters: Run input (branch, version, ...)
        env: Opaque environment pass-through (BUILD_ID, BUILD_URL,
            registry credentials, analysis token); never parsed by the engine
        values: Data published by earlier stages
        token: Run-level cancellation signal
    """

    run: Run
    token: CancellationToken
    parameters: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
