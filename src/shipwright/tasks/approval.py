"""Manual approval as a stage."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from shipwright.approval import ApprovalGate, ApprovalRequest, FieldSpec
from shipwright.models.outcome import Outcome
from shipwright.tasks.interface import Task
from shipwright.tasks.shell import substitute

if TYPE_CHECKING:
    from shipwright.models.context import StageContext


class ApprovalTask(Task):
    """
    Park the run on an ApprovalGate until an allowed responder decides.

    The decision is published as ``approver`` and ``approval`` for later
    stages. Timeouts, rejections and aborts propagate as exceptions and are
    classified by the executor.

    The prompt may use ``{key}`` placeholders, plus ``{build_number}``.
    Give the stage a timeout longer than ``timeout`` here, or the stage
    timeout fires before the approval deadline does.
    """

    def __init__(
        self,
        gate: ApprovalGate,
        prompt: str,
        allowed_responders: Iterable[str],
        fields: Iterable[FieldSpec] = (),
        timeout: timedelta | None = None,
    ) -> None:
        self._gate = gate
        self._prompt = prompt
        self._allowed = frozenset(allowed_responders)
        self._fields = tuple(fields)
        self._timeout = timeout

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    def execute(self, ctx: StageContext) -> Outcome:
        values = dict(ctx)
        values.setdefault("build_number", ctx.run_context.run.build_number)
        deadline = None
        if self._timeout is not None:
            deadline = datetime.now(timezone.utc) + self._timeout

        request = ApprovalRequest(
            prompt=substitute(self._prompt, values),
            allowed_responders=self._allowed,
            fields=self._fields,
            deadline=deadline,
        )
        ctx.log("Waiting for approval from %s", ", ".join(sorted(self._allowed)))
        decision = self._gate.request_approval(request, ctx.token)

        ctx.log("Approved by %s", decision.approver)
        ctx.publish(approver=decision.approver, approval=decision.to_dict())
        return Outcome.succeeded(f"approved by {decision.approver}", result=decision.to_dict())
