"""
Approval gate.

A suspension point that parks a run until an allowed responder submits a
decision, the deadline passes, or the run is aborted. The waiting thread
blocks on a condition variable; nothing polls.

Example:
    gate = ApprovalGate()
    request = ApprovalRequest(
        prompt="Deploy build 42 to production?",
        allowed_responders={"admin"},
        fields=[FieldSpec("reason", default="routine release")],
        deadline=datetime.now(timezone.utc) + timedelta(hours=24),
    )

    # Run thread
    decision = gate.request_approval(request, token)

    # Operator thread
    gate.submit("admin", {"reason": "hotfix"})
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

from shipwright.config_validation import SchemaValidator, ValidationError, apply_defaults
from shipwright.errors import (
    ApprovalError,
    ApprovalRejectedError,
    ApprovalTimeoutError,
    FieldValidationError,
    RunAbortedError,
    UnauthorizedError,
)
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldType(Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    NUMBER = "number"
    CHOICE = "choice"


@dataclass(frozen=True)
class FieldSpec:
    """
    One typed parameter of an approval form.

    ``required`` defaults to "no default given". An optional field without a
    default resolves to None when it is not submitted. CHOICE fields must
    list their choices.
    """

    name: str
    type: FieldType = FieldType.STRING
    default: Any = None
    choices: tuple[Any, ...] = ()
    description: str = ""
    required: bool | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "choices", tuple(self.choices))
        if self.required is None:
            object.__setattr__(self, "required", self.default is None)
        elif self.required and self.default is not None:
            raise ValueError(f"Required field '{self.name}' cannot have a default")
        if self.type == FieldType.CHOICE and not self.choices:
            raise ValueError(f"Choice field '{self.name}' needs at least one choice")
        if self.default is not None:
            errors = SchemaValidator(self.to_schema()).validate(self.default, self.name)
            if errors:
                raise ValueError(f"Default for field '{self.name}' is invalid: {errors[0]}")

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {}
        if self.type != FieldType.CHOICE:
            schema["type"] = self.type.value
        if self.choices:
            schema["enum"] = list(self.choices)
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ApprovalRequest:
    """
    What an approver is asked.

    Attributes:
        prompt: Text shown to the approver
        allowed_responders: Identities allowed to resolve the request
        fields: Ordered form fields
        deadline: Absolute UTC deadline, or None to wait until aborted
    """

    prompt: str
    allowed_responders: frozenset[str]
    fields: tuple[FieldSpec, ...] = ()
    deadline: datetime | None = None

    def __init__(
        self,
        prompt: str,
        allowed_responders: Iterable[str],
        fields: Iterable[FieldSpec] = (),
        deadline: datetime | None = None,
    ) -> None:
        object.__setattr__(self, "prompt", prompt)
        object.__setattr__(self, "allowed_responders", frozenset(allowed_responders))
        object.__setattr__(self, "fields", tuple(fields))
        object.__setattr__(self, "deadline", deadline)
        if not self.allowed_responders:
            raise ValueError("An approval request needs at least one allowed responder")
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate approval field names: {names}")
        if deadline is not None and deadline.tzinfo is None:
            raise ValueError("Approval deadline must be timezone-aware")

    def schema(self) -> dict[str, Any]:
        """The form as an object schema; unknown fields are rejected."""
        return {
            "type": "object",
            "required": [f.name for f in self.fields if f.required],
            "properties": {f.name: f.to_schema() for f in self.fields},
            "additionalProperties": False,
        }

    def validate(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """
        Apply defaults and validate submitted values.

        Raises:
            FieldValidationError: If any value violates its field spec
        """
        schema = self.schema()
        errors: list[ValidationError] = SchemaValidator(schema).validate(dict(values))
        if errors:
            raise FieldValidationError(errors)
        completed = apply_defaults(dict(values), schema)
        # Keep the declared field order
        return {f.name: completed.get(f.name) for f in self.fields}

    def remaining_seconds(self, now: datetime | None = None) -> float | None:
        if self.deadline is None:
            return None
        return (self.deadline - (now or _utcnow())).total_seconds()


@dataclass(frozen=True)
class Decision:
    """An accepted approval decision."""

    approver: str
    field_values: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    approved: bool = True
    reason: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_values", MappingProxyType(dict(self.field_values)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver": self.approver,
            "approved": self.approved,
            "field_values": dict(self.field_values),
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


class ApprovalGate:
    """
    Single-slot approval gate.

    At most one request is open at a time. Unauthorized and invalid
    submissions are rejected and leave the request open.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._request: ApprovalRequest | None = None
        self._decision: Decision | None = None

    @property
    def pending(self) -> ApprovalRequest | None:
        """The open request, if any."""
        with self._cond:
            return self._request

    def wait_for_pending(self, timeout: float | None = None) -> ApprovalRequest | None:
        """Block until a request is open, or ``timeout`` seconds pass."""
        with self._cond:
            self._cond.wait_for(lambda: self._request is not None, timeout)
            return self._request

    def wait_closed(self, request: ApprovalRequest, timeout: float | None = None) -> bool:
        """Block until ``request`` is no longer open. False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._request is not request, timeout)

    def request_approval(
        self,
        request: ApprovalRequest,
        token: CancellationToken | None = None,
    ) -> Decision:
        """
        Open ``request`` and park until it is resolved.

        Raises:
            ApprovalTimeoutError: The deadline passed first
            ApprovalRejectedError: An allowed responder declined
            RunAbortedError: The token was cancelled
            ApprovalError: Another request is already open
        """
        token = token or CancellationToken()
        with self._cond:
            if self._request is not None:
                raise ApprovalError("Another approval request is already pending")
            self._request = request
            self._decision = None
            self._cond.notify_all()

        unregister = token.add_callback(self._wake)
        logger.info(
            "Waiting for approval from %s: %s",
            ", ".join(sorted(request.allowed_responders)),
            request.prompt,
        )
        try:
            with self._cond:
                while True:
                    decision = self._decision
                    if decision is not None:
                        break
                    if token.is_cancelled:
                        raise RunAbortedError("Approval aborted", reason=token.reason)
                    remaining = request.remaining_seconds()
                    if remaining is not None and remaining <= 0:
                        raise ApprovalTimeoutError(f"No approval before {request.deadline.isoformat()}")
                    self._cond.wait(remaining)
        finally:
            unregister()
            with self._cond:
                self._request = None
                self._decision = None
                self._cond.notify_all()

        if not decision.approved:
            raise ApprovalRejectedError(decision.approver, decision.reason)
        logger.info("Approved by %s", decision.approver)
        return decision

    def submit(self, identity: str, values: Mapping[str, Any] | None = None) -> Decision:
        """
        Resolve the open request as approved.

        Raises:
            ApprovalError: Nothing is pending
            UnauthorizedError: ``identity`` is not an allowed responder
            FieldValidationError: ``values`` do not match the form
        """
        with self._cond:
            request = self._authorize(identity)
            try:
                field_values = request.validate(values or {})
            except FieldValidationError as e:
                logger.warning("Invalid approval input from %s: %s", identity, e.message)
                raise
            return self._resolve(Decision(approver=identity, field_values=field_values))

    def reject(self, identity: str, reason: str = "") -> Decision:
        """Resolve the open request as declined; the stage fails."""
        with self._cond:
            self._authorize(identity)
            return self._resolve(Decision(approver=identity, approved=False, reason=reason))

    def _authorize(self, identity: str) -> ApprovalRequest:
        request = self._request
        if request is None or self._decision is not None:
            raise ApprovalError("No approval is pending")
        if identity not in request.allowed_responders:
            logger.warning("Rejected approval attempt by unauthorized identity %s", identity)
            raise UnauthorizedError(identity, request.allowed_responders)
        return request

    def _resolve(self, decision: Decision) -> Decision:
        self._decision = decision
        self._cond.notify_all()
        return decision

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
