"""Data model: stages, runs, outcomes and statuses."""

from shipwright.models.context import StageContext
from shipwright.models.outcome import Outcome
from shipwright.models.run import Run, RunContext, StageRecord
from shipwright.models.stage import HookPhase, Stage
from shipwright.models.status import FailureKind, OutcomeStatus, RunStatus

__all__ = [
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
]
