"""Transition table coverage for the lesson lifecycle."""

import pytest

from app.core.enums import LessonStatus as S
from app.core.exceptions import InvalidTransitionException
from app.services.lesson_state_machine import (
    TRANSITIONS,
    LessonEvent as E,
    LessonStateMachine,
)

TERMINAL = [S.COMPLETED, S.CANCELLED, S.REJECTED, S.NO_SHOW]


class TestLegalTransitions:
    @pytest.mark.parametrize(
        "status, event, expected",
        [
            (S.PENDING, E.DECIDE, S.SCHEDULED),
            (S.PENDING, E.REJECT, S.REJECTED),
            (S.PENDING, E.WITHDRAW, S.CANCELLED),
            (S.SCHEDULED, E.REQUEST_RESCHEDULE, S.RESCHEDULE_REQUESTED),
            (S.RESCHEDULED, E.REQUEST_RESCHEDULE, S.RESCHEDULE_REQUESTED),
            (S.RESCHEDULE_REQUESTED, E.APPROVE_RESCHEDULE, S.RESCHEDULED),
            (S.SCHEDULED, E.REQUEST_CANCELLATION, S.CANCELLATION_REQUESTED),
            (S.CANCELLATION_REQUESTED, E.CANCEL, S.CANCELLED),
            (S.SCHEDULED, E.COMPLETE, S.COMPLETED),
            (S.RESCHEDULED, E.COMPLETE, S.COMPLETED),
            (S.RESCHEDULE_REQUESTED, E.MARK_NO_SHOW, S.NO_SHOW),
        ],
    )
    def test_fire(self, status, event, expected):
        assert LessonStateMachine.fire(status, event) == expected

    def test_accepts_raw_status_strings(self):
        assert LessonStateMachine.fire("PENDING", E.DECIDE) == S.SCHEDULED

    @pytest.mark.parametrize("event", [E.REJECT_RESCHEDULE, E.REJECT_CANCELLATION])
    def test_rejecting_a_request_restores_committed_status(self, event):
        pending = (
            S.RESCHEDULE_REQUESTED if event is E.REJECT_RESCHEDULE else S.CANCELLATION_REQUESTED
        )

        assert LessonStateMachine.fire(pending, event) == S.SCHEDULED
        assert LessonStateMachine.fire(pending, event, restore_to=S.RESCHEDULED) == S.RESCHEDULED

    def test_restore_target_must_be_committed(self):
        with pytest.raises(InvalidTransitionException):
            LessonStateMachine.fire(
                S.RESCHEDULE_REQUESTED, E.REJECT_RESCHEDULE, restore_to=S.CANCELLED
            )


class TestIllegalTransitions:
    @pytest.mark.parametrize("status", TERMINAL)
    def test_terminal_states_accept_nothing(self, status):
        assert LessonStateMachine.allowed_events(status) == ()
        for event in E:
            assert not LessonStateMachine.can_fire(status, event)

    def test_error_carries_status_and_event(self):
        with pytest.raises(InvalidTransitionException) as exc_info:
            LessonStateMachine.fire(S.COMPLETED, E.CANCEL)

        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.details == {"status": "COMPLETED", "event": "cancel"}

    @pytest.mark.parametrize(
        "status, event",
        [
            (S.PENDING, E.COMPLETE),
            (S.PENDING, E.REQUEST_RESCHEDULE),
            (S.SCHEDULED, E.DECIDE),
            (S.RESCHEDULE_REQUESTED, E.REQUEST_RESCHEDULE),
            (S.RESCHEDULE_REQUESTED, E.COMPLETE),
            (S.CANCELLATION_REQUESTED, E.REQUEST_RESCHEDULE),
            (S.PENDING, E.MARK_NO_SHOW),
        ],
    )
    def test_pairs_outside_the_table_raise(self, status, event):
        with pytest.raises(InvalidTransitionException):
            LessonStateMachine.fire(status, event)


def test_every_target_is_a_known_status():
    for (status, event), target in TRANSITIONS.items():
        assert isinstance(status, S)
        assert isinstance(event, E)
        assert isinstance(target, S)


def test_allowed_events_from_scheduled():
    assert set(LessonStateMachine.allowed_events(S.SCHEDULED)) == {
        E.REQUEST_RESCHEDULE,
        E.REQUEST_CANCELLATION,
        E.CANCEL,
        E.COMPLETE,
        E.MARK_NO_SHOW,
    }
