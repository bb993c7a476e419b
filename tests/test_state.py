"""Tests for the orchestration state machine."""

import pytest

from pkghub.errors import RejectionReason
from pkghub.orchestration.state import OrchestrationState, OrchestrationStateMachine

S = OrchestrationState


class TestOrchestrationStateMachine:
    def test_happy_path(self):
        machine = OrchestrationStateMachine()
        for state in (S.VALIDATING, S.DENY_CHECK, S.EXTRACTING, S.PERSISTED):
            machine.transition(state)
        assert machine.history == [S.RECEIVED, S.VALIDATING, S.DENY_CHECK, S.EXTRACTING, S.PERSISTED]

    def test_cannot_skip_steps(self):
        machine = OrchestrationStateMachine()
        with pytest.raises(ValueError):
            machine.transition(S.EXTRACTING)

    def test_terminal_states_are_final(self):
        machine = OrchestrationStateMachine()
        machine.reject(RejectionReason.MALFORMED_INPUT)
        with pytest.raises(ValueError):
            machine.transition(S.VALIDATING)

    def test_reject_records_reason(self):
        machine = OrchestrationStateMachine()
        machine.transition(S.VALIDATING)
        machine.transition(S.DENY_CHECK)
        machine.reject(RejectionReason.DENY_LISTED)
        assert machine.state == S.REJECTED
        assert machine.reason == RejectionReason.DENY_LISTED

    def test_retryable_with_retries_left(self):
        machine = OrchestrationStateMachine(max_retries=3, attempt=1)
        machine.transition(S.VALIDATING)
        machine.transition(S.RETRYABLE)
        assert machine.state == S.RETRYABLE
        machine.transition(S.RECEIVED)
        assert machine.state == S.RECEIVED

    def test_retry_exhaustion_escalates_to_failed(self):
        machine = OrchestrationStateMachine(max_retries=3, attempt=4)
        assert machine.retries_remaining == 0
        machine.transition(S.RETRYABLE)
        assert machine.state == S.FAILED
        assert machine.history[-2:] == [S.RETRYABLE, S.FAILED]

    def test_retries_remaining_counts_attempts(self):
        assert OrchestrationStateMachine(max_retries=5, attempt=1).retries_remaining == 5
        assert OrchestrationStateMachine(max_retries=5, attempt=3).retries_remaining == 3
