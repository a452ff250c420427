"""
TaskDeck - Session State Machine

Tracks whether a session surface has a live task executor, so that the
orchestrator cannot start, cancel or close out of order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any


class SessionState(Enum):
    """
    Possible states for one orchestrator.

    State transitions:
    IDLE -> ACTIVE (task started or resumed)
    ACTIVE -> ACTIVE (another task replaces the current one)
    ACTIVE -> CANCELLING (abort requested, waiting for acknowledgment)
    CANCELLING -> ACTIVE (same task resumed) or IDLE (resume failed)
    ACTIVE -> IDLE (task cleared, deleted or state reset)
    Any -> CLOSED (surface disposed)
    """

    IDLE = auto()  # No executor
    ACTIVE = auto()  # Exactly one executor is live
    CANCELLING = auto()  # Executor aborted, waiting up to the cancel timeout
    CLOSED = auto()  # Terminal


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.ACTIVE, SessionState.IDLE, SessionState.CLOSED},
    SessionState.ACTIVE: {
        SessionState.ACTIVE,
        SessionState.CANCELLING,
        SessionState.IDLE,
        SessionState.CLOSED,
    },
    SessionState.CANCELLING: {SessionState.ACTIVE, SessionState.IDLE, SessionState.CLOSED},
    SessionState.CLOSED: set(),  # Terminal state
}


@dataclass
class SessionContext:
    """State of one orchestrator: current state plus the id of the live task."""

    state: SessionState = SessionState.IDLE
    session_id: str = ""
    active_task_id: str | None = None

    started_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)

    # Error tracking
    last_error: str | None = None
    error_count: int = 0

    def transition_to(self, new_state: SessionState, task_id: str | None = None) -> bool:
        """
        Attempt to transition to a new state.

        Args:
            new_state: The target state
            task_id: Task bound to the new state (ACTIVE/CANCELLING only)

        Returns:
            True if transition was valid and performed, False otherwise
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            return False

        self.state = new_state
        if new_state in (SessionState.ACTIVE, SessionState.CANCELLING):
            self.active_task_id = task_id if task_id is not None else self.active_task_id
        else:
            self.active_task_id = None
        self.last_activity = datetime.now()
        return True

    def require_transition(self, new_state: SessionState, task_id: str | None = None) -> None:
        """
        Transition to a new state, raising an exception if invalid.

        Use this instead of transition_to() when the transition MUST succeed
        and failure indicates a bug in the orchestrator.

        Raises:
            StateTransitionError: If the transition is not valid
        """
        from taskdeck.exceptions import StateTransitionError

        if not self.transition_to(new_state, task_id):
            valid_targets = VALID_TRANSITIONS.get(self.state, set())
            valid_names = ", ".join(sorted(s.name for s in valid_targets)) or "none"
            raise StateTransitionError(
                f"Invalid state transition: {self.state.name} -> {new_state.name}. "
                f"Valid transitions from {self.state.name}: {valid_names}",
                from_state=self.state.name,
                to_state=new_state.name,
            )

    def can_transition_to(self, new_state: SessionState) -> bool:
        """Check if transition to new_state is valid from current state."""
        return new_state in VALID_TRANSITIONS.get(self.state, set())

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.ACTIVE, SessionState.CANCELLING)

    def add_error(self, error: str) -> None:
        """Record an error without changing state."""
        self.error_count += 1
        self.last_error = error
        self.last_activity = datetime.now()

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics."""
        return {
            "state": self.state.name,
            "active_task_id": self.active_task_id,
            "error_count": self.error_count,
            "duration_seconds": (datetime.now() - self.started_at).total_seconds(),
        }
