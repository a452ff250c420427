"""Tests for state module - session state machine."""

import pytest

from taskdeck.exceptions import StateTransitionError
from taskdeck.state import VALID_TRANSITIONS, SessionContext, SessionState


class TestSessionState:
    """Tests for SessionState enum and transitions."""

    def test_all_states_have_transitions(self):
        for state in SessionState:
            assert state in VALID_TRANSITIONS

    def test_closed_is_terminal(self):
        assert VALID_TRANSITIONS[SessionState.CLOSED] == set()

    def test_all_states_can_close(self):
        for state in SessionState:
            if state != SessionState.CLOSED:
                assert SessionState.CLOSED in VALID_TRANSITIONS[state]

    def test_idle_cannot_cancel(self):
        """Cancelling needs a live executor."""
        assert SessionState.CANCELLING not in VALID_TRANSITIONS[SessionState.IDLE]


class TestSessionContext:
    """Tests for SessionContext."""

    def test_defaults(self):
        context = SessionContext()
        assert context.state == SessionState.IDLE
        assert context.active_task_id is None
        assert context.error_count == 0
        assert not context.is_active

    def test_activate_sets_task_id(self):
        context = SessionContext()
        assert context.transition_to(SessionState.ACTIVE, "100")
        assert context.active_task_id == "100"
        assert context.is_active

    def test_cancelling_keeps_task_id(self):
        context = SessionContext()
        context.transition_to(SessionState.ACTIVE, "100")
        context.transition_to(SessionState.CANCELLING)
        assert context.active_task_id == "100"
        assert context.is_active

    def test_idle_clears_task_id(self):
        context = SessionContext()
        context.transition_to(SessionState.ACTIVE, "100")
        context.transition_to(SessionState.IDLE)
        assert context.active_task_id is None

    def test_invalid_transition_returns_false(self):
        context = SessionContext()
        assert not context.transition_to(SessionState.CANCELLING)
        assert context.state == SessionState.IDLE

    def test_require_transition_raises(self):
        context = SessionContext()
        context.transition_to(SessionState.CLOSED)
        with pytest.raises(StateTransitionError) as exc_info:
            context.require_transition(SessionState.ACTIVE, "100")
        assert exc_info.value.from_state == "CLOSED"
        assert exc_info.value.to_state == "ACTIVE"
        assert "none" in str(exc_info.value)

    def test_require_transition_lists_valid_targets(self):
        context = SessionContext()
        with pytest.raises(StateTransitionError) as exc_info:
            context.require_transition(SessionState.CANCELLING)
        assert "ACTIVE, CLOSED, IDLE" in exc_info.value.message

    def test_can_transition_to(self):
        context = SessionContext()
        assert context.can_transition_to(SessionState.ACTIVE)
        assert not context.can_transition_to(SessionState.CANCELLING)

    def test_add_error(self):
        context = SessionContext()
        context.add_error("OpenRouter API key is not set")
        assert context.error_count == 1
        assert context.last_error == "OpenRouter API key is not set"
        assert context.state == SessionState.IDLE

    def test_get_stats(self):
        context = SessionContext()
        context.transition_to(SessionState.ACTIVE, "100")
        stats = context.get_stats()
        assert stats["state"] == "ACTIVE"
        assert stats["active_task_id"] == "100"
        assert stats["duration_seconds"] >= 0
