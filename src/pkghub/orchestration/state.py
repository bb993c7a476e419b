"""Orchestration state machine with valid transition enforcement and retry logic."""

from __future__ import annotations

from enum import Enum

from pkghub.errors import RejectionReason


class OrchestrationState(Enum):
    """Possible states of one orchestration execution."""

    RECEIVED = "received"
    VALIDATING = "validating"
    DENY_CHECK = "deny_check"
    EXTRACTING = "extracting"
    PERSISTED = "persisted"
    REJECTED = "rejected"
    RETRYABLE = "retryable"
    FAILED = "failed"


TERMINAL_STATES = {
    OrchestrationState.PERSISTED,
    OrchestrationState.REJECTED,
    OrchestrationState.FAILED,
}

_ABORT = {OrchestrationState.REJECTED, OrchestrationState.RETRYABLE}

VALID_TRANSITIONS: dict[OrchestrationState, set[OrchestrationState]] = {
    OrchestrationState.RECEIVED: {OrchestrationState.VALIDATING} | _ABORT,
    OrchestrationState.VALIDATING: {OrchestrationState.DENY_CHECK} | _ABORT,
    OrchestrationState.DENY_CHECK: {OrchestrationState.EXTRACTING} | _ABORT,
    OrchestrationState.EXTRACTING: {OrchestrationState.PERSISTED} | _ABORT,
    OrchestrationState.RETRYABLE: {OrchestrationState.RECEIVED, OrchestrationState.FAILED},
    OrchestrationState.PERSISTED: set(),
    OrchestrationState.REJECTED: set(),
    OrchestrationState.FAILED: set(),
}


class OrchestrationStateMachine:
    """Enforces valid state transitions and tracks attempts.

    ``attempt`` is 1-based and travels with the queued message, so a machine
    rebuilt for a redelivered message continues counting where the previous
    execution stopped.
    """

    def __init__(self, max_retries: int = 5, attempt: int = 1) -> None:
        self.state = OrchestrationState.RECEIVED
        self.max_retries = max_retries
        self.attempt = attempt
        self.reason: RejectionReason | None = None
        self.history: list[OrchestrationState] = [self.state]

    @property
    def retries_remaining(self) -> int:
        return max(0, self.max_retries - (self.attempt - 1))

    def transition(self, new_state: OrchestrationState) -> None:
        """Transition to *new_state*, raising ValueError on illegal moves."""
        if self.state in TERMINAL_STATES:
            raise ValueError(
                f"Cannot transition from terminal state {self.state.value}"
            )

        allowed = VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid transition: {self.state.value} -> {new_state.value}"
            )

        # Auto-escalate RETRYABLE when retries are exhausted
        if new_state == OrchestrationState.RETRYABLE and self.retries_remaining == 0:
            self._enter(OrchestrationState.RETRYABLE)
            self._enter(OrchestrationState.FAILED)
            return

        self._enter(new_state)

    def reject(self, reason: RejectionReason) -> None:
        self.transition(OrchestrationState.REJECTED)
        self.reason = reason

    def _enter(self, state: OrchestrationState) -> None:
        self.state = state
        self.history.append(state)
