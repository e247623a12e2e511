# backend/app/services/lesson_state_machine.py
"""
Lesson lifecycle transition table.

Every legal ``(status, event)`` pair maps to exactly one target status.
``LessonStateMachine.fire`` is the single place an illegal pair is rejected;
callers never compare statuses themselves before changing one.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from ..core.enums import LessonStatus
from ..core.exceptions import InvalidTransitionException


class LessonEvent(str, Enum):
    DECIDE = "decide"
    REJECT = "reject"
    WITHDRAW = "withdraw"
    REQUEST_RESCHEDULE = "request_reschedule"
    APPROVE_RESCHEDULE = "approve_reschedule"
    REJECT_RESCHEDULE = "reject_reschedule"
    REQUEST_CANCELLATION = "request_cancellation"
    REJECT_CANCELLATION = "reject_cancellation"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


S = LessonStatus
E = LessonEvent

# Rejecting a pending request returns to whichever committed status the
# lesson had; the caller picks it via ``restore_to``.
_RESTORABLE: FrozenSet[LessonStatus] = frozenset({S.SCHEDULED, S.RESCHEDULED})

TRANSITIONS: Dict[Tuple[LessonStatus, LessonEvent], LessonStatus] = {
    (S.PENDING, E.DECIDE): S.SCHEDULED,
    (S.PENDING, E.REJECT): S.REJECTED,
    (S.PENDING, E.WITHDRAW): S.CANCELLED,
    (S.SCHEDULED, E.REQUEST_RESCHEDULE): S.RESCHEDULE_REQUESTED,
    (S.RESCHEDULED, E.REQUEST_RESCHEDULE): S.RESCHEDULE_REQUESTED,
    (S.RESCHEDULE_REQUESTED, E.APPROVE_RESCHEDULE): S.RESCHEDULED,
    (S.RESCHEDULE_REQUESTED, E.REJECT_RESCHEDULE): S.SCHEDULED,
    (S.SCHEDULED, E.REQUEST_CANCELLATION): S.CANCELLATION_REQUESTED,
    (S.RESCHEDULED, E.REQUEST_CANCELLATION): S.CANCELLATION_REQUESTED,
    (S.CANCELLATION_REQUESTED, E.REJECT_CANCELLATION): S.SCHEDULED,
    (S.SCHEDULED, E.CANCEL): S.CANCELLED,
    (S.RESCHEDULED, E.CANCEL): S.CANCELLED,
    (S.CANCELLATION_REQUESTED, E.CANCEL): S.CANCELLED,
    (S.SCHEDULED, E.COMPLETE): S.COMPLETED,
    (S.RESCHEDULED, E.COMPLETE): S.COMPLETED,
    (S.SCHEDULED, E.MARK_NO_SHOW): S.NO_SHOW,
    (S.RESCHEDULED, E.MARK_NO_SHOW): S.NO_SHOW,
    (S.RESCHEDULE_REQUESTED, E.MARK_NO_SHOW): S.NO_SHOW,
    (S.CANCELLATION_REQUESTED, E.MARK_NO_SHOW): S.NO_SHOW,
}

_RESTORING_EVENTS = frozenset({E.REJECT_RESCHEDULE, E.REJECT_CANCELLATION})


class LessonStateMachine:
    """Resolves lifecycle events against the transition table."""

    @staticmethod
    def can_fire(status: LessonStatus, event: LessonEvent) -> bool:
        return (LessonStatus(status), event) in TRANSITIONS

    @staticmethod
    def fire(
        status: LessonStatus,
        event: LessonEvent,
        *,
        restore_to: Optional[LessonStatus] = None,
    ) -> LessonStatus:
        """
        Return the status ``event`` leads to from ``status``.

        Raises:
            InvalidTransitionException: If the pair is not in the table
        """
        current = LessonStatus(status)
        target = TRANSITIONS.get((current, event))
        if target is None:
            raise InvalidTransitionException(current.value, event.value)
        if event in _RESTORING_EVENTS and restore_to is not None:
            if restore_to not in _RESTORABLE:
                raise InvalidTransitionException(current.value, event.value)
            return restore_to
        return target

    @staticmethod
    def allowed_events(status: LessonStatus) -> Tuple[LessonEvent, ...]:
        current = LessonStatus(status)
        return tuple(event for (state, event) in TRANSITIONS if state == current)
