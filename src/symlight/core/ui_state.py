"""Display state machine for one explain session."""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class UIState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    READY = "ready"
    ERROR = "error"


# Allowed transitions; cancelling a request returns the display to idle.
# Missing settings fail a request before it starts loading.
TRANSITIONS: dict[UIState, frozenset[UIState]] = {
    UIState.IDLE: frozenset({UIState.LOADING, UIState.ERROR}),
    UIState.LOADING: frozenset({UIState.STREAMING, UIState.READY, UIState.ERROR, UIState.IDLE}),
    UIState.STREAMING: frozenset({UIState.READY, UIState.ERROR, UIState.IDLE}),
    UIState.READY: frozenset({UIState.LOADING, UIState.ERROR, UIState.IDLE}),
    UIState.ERROR: frozenset({UIState.LOADING, UIState.IDLE}),
}


def can_transition(current: UIState, target: UIState) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class UIStateMachine:
    """Tracks the display state, rejecting transitions outside the table."""

    def __init__(self, initial: UIState = UIState.IDLE):
        self.state = initial

    def transition_to(self, target: UIState) -> bool:
        """Move to ``target``; illegal transitions are logged and ignored."""
        if not can_transition(self.state, target):
            logger.warning(
                f"Invalid UI state transition: {self.state.value} -> {target.value}"
            )
            return False
        self.state = target
        return True
