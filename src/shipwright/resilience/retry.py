"""
Retry/backoff controller.

One primitive replaces every ad hoc try/catch/sleep loop in a pipeline:
quality gate polling, registry pushes, container engine calls and health
checks all run through RetryController with a RetryPolicy.

State machine of one retry sequence:

    IDLE -> ATTEMPTING -> SUCCEEDED
                       -> RETRY_WAIT -> ATTEMPTING
                       -> EXHAUSTED_FAILED
                       -> FATAL_FAILED
                       -> ABORTED            (run cancelled)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Any, TypeVar

from resilient_circuit import ExponentialDelay

from shipwright.errors import RetryExhaustedError, RunAbortedError, is_transient, truncate_error
from shipwright.models.outcome import Outcome
from shipwright.models.status import FailureKind
from shipwright.resilience.cancellation import CancellationToken
from shipwright.resilience.config import BackoffConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryState(Enum):
    IDLE = "IDLE"
    ATTEMPTING = "ATTEMPTING"
    RETRY_WAIT = "RETRY_WAIT"
    SUCCEEDED = "SUCCEEDED"
    EXHAUSTED_FAILED = "EXHAUSTED_FAILED"
    FATAL_FAILED = "FATAL_FAILED"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        RetryState.SUCCEEDED,
        RetryState.EXHAUSTED_FAILED,
        RetryState.FATAL_FAILED,
        RetryState.ABORTED,
    }
)

_ALLOWED_TRANSITIONS: dict[RetryState, frozenset[RetryState]] = {
    RetryState.IDLE: frozenset({RetryState.ATTEMPTING, RetryState.ABORTED}),
    RetryState.ATTEMPTING: frozenset(
        {
            RetryState.SUCCEEDED,
            RetryState.RETRY_WAIT,
            RetryState.EXHAUSTED_FAILED,
            RetryState.FATAL_FAILED,
            RetryState.ABORTED,
        }
    ),
    RetryState.RETRY_WAIT: frozenset({RetryState.ATTEMPTING, RetryState.ABORTED}),
}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy.

    Shared and read-only; any number of stages may reference one policy.

    Attributes:
        max_attempts: Total attempts, including the first
        delay: Fixed delay between attempts
        backoff: If set, exponential backoff replaces the fixed delay
        is_retryable: Classifies a raised exception; False short-circuits
        name: Label used in logs and failure messages
    """

    max_attempts: int
    delay: timedelta = timedelta(0)
    backoff: BackoffConfig | None = None
    is_retryable: Callable[[BaseException], bool] = is_transient
    name: str = "operation"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < timedelta(0):
            raise ValueError("delay must not be negative")

    @classmethod
    def fixed(
        cls,
        max_attempts: int,
        delay_seconds: float,
        *,
        name: str = "operation",
        is_retryable: Callable[[BaseException], bool] = is_transient,
    ) -> RetryPolicy:
        """Policy with a fixed inter-attempt delay, like a polling loop."""
        return cls(
            max_attempts=max_attempts,
            delay=timedelta(seconds=delay_seconds),
            name=name,
            is_retryable=is_retryable,
        )

    @classmethod
    def exponential(
        cls,
        max_attempts: int,
        backoff: BackoffConfig | None = None,
        *,
        name: str = "operation",
        is_retryable: Callable[[BaseException], bool] = is_transient,
    ) -> RetryPolicy:
        """Policy with exponential backoff and jitter."""
        return cls(
            max_attempts=max_attempts,
            backoff=backoff or BackoffConfig(),
            name=name,
            is_retryable=is_retryable,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if self.backoff is None:
            return self.delay.total_seconds()
        exponential = ExponentialDelay(
            min_delay=timedelta(milliseconds=self.backoff.min_delay_ms),
            max_delay=timedelta(milliseconds=self.backoff.max_delay_ms),
            factor=int(self.backoff.factor),
            jitter=self.backoff.jitter,
        )
        return float(exponential.for_attempt(attempt))


@dataclass
class RetrySequence:
    """
    Record of one retry sequence.

    Attributes:
        policy: The policy in force
        state: Current state
        attempts: Attempts made so far
        delays: Every inter-attempt delay that was scheduled, in seconds
        transitions: Every state entered, in order
        last_error: The last exception raised by the action, if any
        outcome: Final outcome once the sequence is terminal
    """

    policy: RetryPolicy
    state: RetryState = RetryState.IDLE
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    transitions: list[RetryState] = field(default_factory=lambda: [RetryState.IDLE])
    last_error: BaseException | None = None
    outcome: Outcome | None = None

    def transition(self, state: RetryState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if state not in allowed:
            raise RuntimeError(f"Illegal retry transition {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def finish(self, state: RetryState, outcome: Outcome) -> RetrySequence:
        self.transition(state)
        self.outcome = replace(outcome, attempts=self.attempts)
        return self


class RetryController:
    """
    Runs an action under a RetryPolicy.

    Waits between attempts block on the run's cancellation token, so an
    aborted run wakes immediately instead of sleeping out the delay.

    Example:
        controller = RetryController()
        policy = RetryPolicy.fixed(max_attempts=20, delay_seconds=30, name="quality gate")
        outcome = controller.with_retry(poll_quality_gate, policy, token)
    """

    def __init__(self, sleep: Callable[[float], None] | None = None) -> None:
        """
        Args:
            sleep: Replaces the token wait between attempts (for testing).
                The token is still checked after each wait.
        """
        self._sleep = sleep

    def with_retry(
        self,
        action: Callable[[], Any],
        policy: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> Outcome:
        """
        Attempt ``action`` up to ``policy.max_attempts`` times.

        The action either returns a value, normalised by Outcome.coerce, or
        raises. A returned failure is retried only if its kind is retryable
        (TRANSIENT or TIMEOUT); a raised exception is retried only if
        ``policy.is_retryable`` accepts it.

        Returns:
            The successful outcome, the fatal failure, an EXHAUSTED failure
            annotated with the attempt count and last detail, or an ABORTED
            failure.
        """
        outcome = self.execute(action, policy, token).outcome
        assert outcome is not None
        return outcome

    def execute(
        self,
        action: Callable[[], Any],
        policy: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> RetrySequence:
        """Run a full retry sequence and return its record."""
        token = token or CancellationToken()
        sequence = RetrySequence(policy=policy)

        while True:
            if token.is_cancelled:
                return sequence.finish(RetryState.ABORTED, _aborted(policy, token))

            sequence.transition(RetryState.ATTEMPTING)
            sequence.attempts += 1

            try:
                result = action()
            except RunAbortedError as e:
                sequence.last_error = e
                return sequence.finish(RetryState.ABORTED, _aborted(policy, token))
            except Exception as e:
                sequence.last_error = e
                failure = Outcome.from_exception(e)
                retryable = policy.is_retryable(e)
            else:
                result = Outcome.coerce(result)
                if not result.is_failure:
                    if sequence.attempts > 1:
                        logger.info("%s succeeded on attempt %d", policy.name, sequence.attempts)
                    return sequence.finish(RetryState.SUCCEEDED, result)
                failure = result
                retryable = result.is_retryable

            if not retryable:
                logger.warning(
                    "%s failed fatally on attempt %d: %s",
                    policy.name,
                    sequence.attempts,
                    failure.detail,
                )
                return sequence.finish(RetryState.FATAL_FAILED, failure)

            if sequence.attempts >= policy.max_attempts:
                logger.warning(
                    "%s exhausted %d attempts: %s",
                    policy.name,
                    sequence.attempts,
                    failure.detail,
                )
                detail = truncate_error(failure.detail)
                exhausted = Outcome.failed(
                    FailureKind.EXHAUSTED,
                    detail,
                    message=f"{policy.name} failed after {sequence.attempts} attempts: {detail}",
                    result=failure.result,
                )
                return sequence.finish(RetryState.EXHAUSTED_FAILED, exhausted)

            delay = policy.delay_for(sequence.attempts)
            sequence.transition(RetryState.RETRY_WAIT)
            sequence.delays.append(delay)
            logger.info(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                policy.name,
                sequence.attempts,
                policy.max_attempts,
                failure.detail,
                delay,
            )
            if self._wait(delay, token):
                return sequence.finish(RetryState.ABORTED, _aborted(policy, token))

    def call(
        self,
        func: Callable[[], T],
        policy: RetryPolicy,
        token: CancellationToken | None = None,
    ) -> T:
        """
        Retry a plain function and return its value.

        Raises:
            RetryExhaustedError: Every attempt failed with a retryable error
            RunAbortedError: The token was cancelled
            Exception: The first non-retryable error, re-raised as is
        """
        box: list[T] = []

        def action() -> None:
            box.append(func())

        sequence = self.execute(action, policy, token)
        if sequence.state == RetryState.SUCCEEDED:
            return box[-1]
        if sequence.state == RetryState.ABORTED:
            reason = token.reason if token else None
            raise RunAbortedError(f"{policy.name} aborted", reason=reason)
        error = sequence.last_error
        if sequence.state == RetryState.FATAL_FAILED and error is not None:
            raise error
        assert sequence.outcome is not None
        raise RetryExhaustedError(
            sequence.outcome.message,
            attempts=sequence.attempts,
            cause=error,
        ) from error

    def _wait(self, delay: float, token: CancellationToken) -> bool:
        """Wait between attempts. Returns True if the token was cancelled."""
        if self._sleep is not None:
            self._sleep(delay)
            return token.is_cancelled
        if delay <= 0:
            return token.is_cancelled
        return token.wait(delay)


def _aborted(policy: RetryPolicy, token: CancellationToken) -> Outcome:
    reason = token.reason or "run aborted"
    return Outcome.failed(FailureKind.ABORTED, f"{policy.name} aborted: {reason}")
