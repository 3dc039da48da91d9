"""Tests for the display state machine."""

import pytest

from symlight.core.ui_state import UIState, UIStateMachine, can_transition


class TestCanTransition:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (UIState.IDLE, UIState.LOADING),
            (UIState.IDLE, UIState.ERROR),
            (UIState.LOADING, UIState.STREAMING),
            (UIState.LOADING, UIState.ERROR),
            (UIState.STREAMING, UIState.READY),
            (UIState.STREAMING, UIState.IDLE),
            (UIState.READY, UIState.LOADING),
            (UIState.ERROR, UIState.LOADING),
        ],
    )
    def test_allowed(self, current, target):
        """Test allowed transitions."""
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (UIState.IDLE, UIState.READY),
            (UIState.IDLE, UIState.STREAMING),
            (UIState.READY, UIState.STREAMING),
            (UIState.ERROR, UIState.READY),
        ],
    )
    def test_rejected(self, current, target):
        """Test rejected transitions."""
        assert not can_transition(current, target)


class TestUIStateMachine:
    """Tests for UIStateMachine."""

    def test_starts_idle(self):
        """Test the machine starts idle."""
        assert UIStateMachine().state == UIState.IDLE

    def test_full_cycle(self):
        """Test a full loading, streaming, ready cycle."""
        machine = UIStateMachine()
        for target in (UIState.LOADING, UIState.STREAMING, UIState.READY, UIState.LOADING):
            assert machine.transition_to(target)
        assert machine.state == UIState.LOADING

    def test_illegal_transition_is_ignored(self, caplog):
        """Test an illegal transition leaves the state unchanged."""
        machine = UIStateMachine()
        assert machine.transition_to(UIState.READY) is False
        assert machine.state == UIState.IDLE
        assert "Invalid UI state transition: idle -> ready" in caplog.text
