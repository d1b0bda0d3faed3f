"""Tests for the arc status state machine."""

import pytest

from config.exceptions import InvalidTransitionError, ValidationError
from engine.arc_status import allowed_transitions, can_transition, check_transition
from models.enums import ArcStatus


class TestTransitions:
    def test_forward_steps(self):
        assert can_transition(ArcStatus.SETUP, ArcStatus.RISING)
        assert can_transition(ArcStatus.RISING, ArcStatus.CLIMAX)
        assert can_transition(ArcStatus.CLIMAX, ArcStatus.FALLING)
        assert can_transition(ArcStatus.FALLING, ArcStatus.RESOLVED)

    def test_forward_skip_allowed(self):
        assert can_transition(ArcStatus.SETUP, ArcStatus.CLIMAX)

    def test_backward_rejected(self):
        assert not can_transition(ArcStatus.CLIMAX, ArcStatus.RISING)

    def test_never_back_to_setup(self):
        for status in ArcStatus:
            if status is not ArcStatus.SETUP:
                assert ArcStatus.SETUP not in allowed_transitions(status)

    def test_abandon_from_any_open_status(self):
        for status in (ArcStatus.SETUP, ArcStatus.RISING, ArcStatus.CLIMAX, ArcStatus.FALLING):
            assert can_transition(status, ArcStatus.ABANDONED)

    def test_terminal_statuses(self):
        assert allowed_transitions(ArcStatus.RESOLVED) == frozenset()
        assert allowed_transitions(ArcStatus.ABANDONED) == frozenset()

    def test_accepts_string_values(self):
        assert can_transition("setup", "rising")


class TestCheckTransition:
    def test_same_status_is_noop(self):
        assert check_transition(ArcStatus.RESOLVED, ArcStatus.RESOLVED) == ArcStatus.RESOLVED

    def test_invalid_raises(self):
        with pytest.raises(InvalidTransitionError) as exc:
            check_transition(ArcStatus.RESOLVED, ArcStatus.RISING)
        assert exc.value.current == "resolved"
        assert exc.value.requested == "rising"
        assert exc.value.field == "arc_status"

    def test_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            check_transition(ArcStatus.ABANDONED, ArcStatus.CLIMAX)
