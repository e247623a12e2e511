# backend/app/services/lesson_policy_service.py
"""
Lesson Policy Service for the TutorDesk scheduling engine.

The only component that changes a lesson's lifecycle state and the credit
ledgers for the same event. Each operation:

1. takes the scheduling lock for the lesson's tutor and student,
2. opens one transaction and re-reads the lesson with a row lock,
3. resolves the event through ``LessonStateMachine``,
4. re-checks conflicts, applies ledger effects and writes the change log,
5. commits, then publishes buffered events and invalidates availability.

Any failure before commit rolls back the whole event, including ledger
writes, so a lesson is never left half-transitioned.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.config import Settings, settings
from ..core.constants import (
    ACTION_CANCELLATION_REJECTED,
    ACTION_CANCELLATION_REQUESTED,
    ACTION_CANCELLED_BY_STAFF,
    ACTION_CANCELLED_BY_STUDENT,
    ACTION_COMPLETED,
    ACTION_NO_SHOW,
    ACTION_REJECTED,
    ACTION_REQUESTED,
    ACTION_RESCHEDULE_APPROVED,
    ACTION_RESCHEDULE_REJECTED,
    ACTION_RESCHEDULE_REQUESTED,
    ACTION_RESCHEDULE_REQUESTED_LATE,
    ACTION_RESCHEDULED_AUTO,
    ACTION_SCHEDULED,
    ACTION_WITHDRAWN,
    ALLOWED_LESSON_DURATIONS,
    MAX_REASON_LENGTH,
    PROPOSED_OPTION_COUNT,
)
from ..core.enums import COMMITTED_STATUSES, LessonStatus
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InvalidRequestException,
    InvalidTransitionException,
    NotFoundException,
    RescheduleLimitExceededException,
    ServiceException,
    SlotConflictException,
)
from ..core.scheduling_lock import (
    SchedulingBusyException,
    course_ledger_key,
    scheduling_lock,
    student_key,
    tutor_key,
    wallet_key,
)
from ..events import LessonStatusChanged, PendingEvents
from ..integrations.meeting_client import MeetingProvider, MeetingProviderError
from ..models.credits import CourseCreditLedger, CreditsBalance
from ..models.lesson import LessonBooking, LessonChangeLog
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService
from .base import BaseService
from .cache_service import CachePort
from .credit_service import CreditService
from .lesson_state_machine import LessonEvent, LessonStateMachine
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

Window = Tuple[datetime, datetime]


@dataclass(frozen=True)
class LessonPolicy:
    """Policy parameters applied to lifecycle events."""

    max_reschedules_per_lesson: int = 2
    admin_approval_window_hours: int = 24
    late_reschedule_penalty_credits: int = 0
    late_cancellation_penalty_credits: int = 0
    late_cancellation_refund_percent: int = 50
    credits_per_lesson: int = 1
    tutor_earning_per_lesson_credits: int = 1
    low_credit_threshold: int = 5
    no_show_refund_percent: int = 0
    auto_approve_early_reschedules: bool = False

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "LessonPolicy":
        s = source or settings
        return cls(
            max_reschedules_per_lesson=s.max_reschedules_per_lesson,
            admin_approval_window_hours=s.admin_approval_window_hours,
            late_reschedule_penalty_credits=s.late_reschedule_penalty_credits,
            late_cancellation_penalty_credits=s.late_cancellation_penalty_credits,
            late_cancellation_refund_percent=s.late_cancellation_refund_percent,
            credits_per_lesson=s.credits_per_lesson,
            tutor_earning_per_lesson_credits=s.tutor_earning_per_lesson_credits,
            low_credit_threshold=s.low_credit_threshold,
            no_show_refund_percent=s.no_show_refund_percent,
            auto_approve_early_reschedules=s.auto_approve_early_reschedules,
        )

    def with_overrides(self, **changes) -> "LessonPolicy":
        return replace(self, **changes)

    def is_late(self, scheduled_start: datetime, now: Optional[datetime] = None) -> bool:
        """A change is late when the lesson starts in less than the approval window."""
        return TimezoneService.hours_until(scheduled_start, now) < self.admin_approval_window_hours


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LessonPolicyService(BaseService):
    """
    Orchestrates lesson lifecycle events with their ledger effects.

    Permission rules are coarse role checks on the trusted actor; identity
    itself is external.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[CachePort] = None,
        *,
        policy: Optional[LessonPolicy] = None,
        meeting_provider: Optional[MeetingProvider] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db, cache)  # type: ignore[arg-type]
        self.policy = policy or LessonPolicy.from_settings()
        self.meeting_provider = meeting_provider
        self._clock = clock or _utc_now
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.credit_service = CreditService(db)
        self.availability_service = AvailabilityService(db, cache)

    def now(self) -> datetime:
        return TimezoneService.ensure_utc(self._clock())

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _load(self, lesson_id: str) -> LessonBooking:
        lesson = self.lesson_repository.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundException(
                "Lesson not found", code="LESSON_NOT_FOUND", details={"lesson_id": lesson_id}
            )
        return lesson

    @staticmethod
    def _lock_keys(lesson: LessonBooking) -> List[str]:
        """Schedule keys of both parties plus every balance row an event may touch."""
        keys = [
            student_key(lesson.student_id),
            wallet_key(lesson.student_id),
            course_ledger_key(lesson.student_id, lesson.course_id),
        ]
        if lesson.tutor_id:
            keys.append(tutor_key(lesson.tutor_id))
        if lesson.reschedule_requested_by_id:
            keys.append(wallet_key(lesson.reschedule_requested_by_id))
        return keys

    def _run_event(
        self,
        lesson_id: str,
        work: Callable[[LessonBooking, PendingEvents], LessonBooking],
        *,
        extra_lock_keys: Sequence[str] = (),
    ) -> LessonBooking:
        peek = self._load(lesson_id)
        keys = self._lock_keys(peek) + list(extra_lock_keys)

        events = PendingEvents()
        with scheduling_lock(*keys) as held:
            try:
                with self.transaction():
                    lesson = self.lesson_repository.get_lesson_for_update(lesson_id)
                    if lesson is None:
                        raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
                    # A reschedule request may have landed since the peek
                    missing = sorted(set(self._lock_keys(lesson)) - set(held))
                    if missing:
                        raise SchedulingBusyException(missing[0])
                    result = work(lesson, events)
            except Exception:
                events.discard()
                raise

        events.publish()
        self.availability_service.invalidate_tutor(result.tutor_id)
        self.availability_service.invalidate_student(result.student_id)
        return result

    def _transition(
        self,
        lesson: LessonBooking,
        event: LessonEvent,
        actor: Optional[Actor],
        action: str,
        events: PendingEvents,
        *,
        scheduled: Optional[Window] = None,
        held: Optional[Window] = None,
        restore_to: Optional[LessonStatus] = None,
        note: Optional[str] = None,
    ) -> LessonChangeLog:
        """Move the lesson to its next status and set both windows together."""
        from_status = lesson.lesson_status
        target = LessonStateMachine.fire(from_status, event, restore_to=restore_to)
        old = lesson.committed_window()

        lesson.scheduled_start, lesson.scheduled_end = scheduled if scheduled else (None, None)
        lesson.held_start, lesson.held_end = held if held else (None, None)
        lesson.status = target.value
        lesson.updated_at = self.now()

        new = scheduled or held
        entry = self.lesson_repository.add_change_log(
            lesson_id=lesson.id,
            actor_id=actor.user_id if actor else None,
            action=action,
            from_status=from_status.value,
            to_status=target.value,
            old_start=old[0] if old else None,
            old_end=old[1] if old else None,
            new_start=new[0] if new else None,
            new_end=new[1] if new else None,
            note=note,
        )
        prometheus_metrics.record_lesson_transition(event.value, target.value)
        events.add(
            LessonStatusChanged(
                lesson_id=lesson.id,
                action=action,
                from_status=from_status.value,
                to_status=target.value,
                actor_id=actor.user_id if actor else None,
                student_id=lesson.student_id,
                tutor_id=lesson.tutor_id,
                scheduled_start=lesson.scheduled_start,
            )
        )
        self.logger.info(
            "Lesson transition",
            extra={
                "lesson_id": lesson.id,
                "lesson_action": action,
                "from_status": from_status.value,
                "to_status": target.value,
            },
        )
        return entry

    def _window(self, lesson: LessonBooking, start: datetime) -> Window:
        start = TimezoneService.ensure_utc(start)
        return start, start + timedelta(minutes=lesson.duration_minutes)

    def _clean_note(self, note: Optional[str]) -> Optional[str]:
        if note is None:
            return None
        note = note.strip()
        if len(note) > MAX_REASON_LENGTH:
            raise InvalidRequestException(
                f"Note cannot exceed {MAX_REASON_LENGTH} characters",
                details={"max_length": MAX_REASON_LENGTH},
            )
        return note or None

    def _validate_options(
        self,
        options: Sequence[datetime],
        *,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[datetime]:
        if len(options) != PROPOSED_OPTION_COUNT:
            raise InvalidRequestException(
                f"Exactly {PROPOSED_OPTION_COUNT} proposed times are required",
                details={"received": len(options)},
            )
        normalized = [TimezoneService.ensure_utc(o) for o in options]
        if len(set(normalized)) != len(normalized):
            raise InvalidRequestException("Proposed times must be distinct")
        now = self.now()
        for option in normalized:
            if option <= now:
                raise InvalidRequestException(
                    "Proposed times must be in the future", details={"option": option.isoformat()}
                )
            if date_from and date_to and not date_from <= option.date() <= date_to:
                raise InvalidRequestException(
                    "Proposed times must fall inside the requested date range",
                    details={"option": option.isoformat()},
                )
        return normalized

    def _check_commit_window(
        self,
        lesson: LessonBooking,
        window: Window,
        *,
        proposed: Sequence[datetime],
        tutor_id: str,
    ) -> None:
        """
        Authoritative re-check run inside the deciding transaction.

        Every window must be clear of the tutor's blocks and of other
        lessons; a negotiated instant must also sit inside the tutor's rules.
        """
        start, end = window
        if start <= self.now():
            raise InvalidRequestException("Chosen time is in the past")
        self.availability_service.ensure_not_blocked(tutor_id, start, end)
        if start not in proposed and not self.availability_service.is_slot_bookable(
            tutor_id, start, lesson.duration_minutes
        ):
            raise SlotConflictException(
                "Chosen time is outside the tutor's availability",
                details={"start": start.isoformat()},
            )
        self.availability_service.ensure_no_conflicts(
            start,
            end,
            tutor_id=tutor_id,
            student_id=lesson.student_id,
            exclude_lesson_id=lesson.id,
        )

    # Permission helpers

    @staticmethod
    def _require_party(lesson: LessonBooking, actor: Actor) -> None:
        if actor.is_admin or actor.user_id in (lesson.student_id, lesson.tutor_id):
            return
        raise ForbiddenException("Not a participant of this lesson")

    @staticmethod
    def _require_decider(lesson: LessonBooking, actor: Actor) -> None:
        if actor.is_admin:
            return
        if actor.is_tutor and lesson.tutor_id in (None, actor.user_id):
            return
        raise ForbiddenException("Only an admin or the lesson's tutor can decide")

    @staticmethod
    def _require_admin(actor: Actor, message: str) -> None:
        if not actor.is_admin:
            raise ForbiddenException(message, code="ADMIN_APPROVAL_REQUIRED")

    # ------------------------------------------------------------------
    # Request and decision
    # ------------------------------------------------------------------

    @BaseService.measure_operation("request_lesson")
    def request_lesson(
        self,
        actor: Actor,
        *,
        enrollment_id: str,
        date_from: date,
        date_to: date,
        options: Sequence[datetime],
        duration_minutes: int,
        note: Optional[str] = None,
    ) -> LessonBooking:
        """Create a Pending lesson with three proposed instants."""
        if duration_minutes not in ALLOWED_LESSON_DURATIONS:
            raise InvalidRequestException(
                "Duration must be 30, 45 or 60 minutes", details={"duration_minutes": duration_minutes}
            )
        if date_to < date_from:
            raise InvalidRequestException("date_to must not be before date_from")
        note = self._clean_note(note)
        proposed = self._validate_options(options, date_from=date_from, date_to=date_to)

        enrollment = self.course_repository.get_enrollment(enrollment_id)
        if enrollment is None:
            raise NotFoundException("Enrollment not found", code="ENROLLMENT_NOT_FOUND")
        if not actor.is_admin and enrollment.student_id != actor.user_id:
            raise ForbiddenException("Enrollment belongs to another student")
        if not enrollment.is_approved:
            raise BusinessRuleException(
                "Lessons can only be requested for an approved enrollment",
                code="ENROLLMENT_NOT_APPROVED",
            )

        tutor_id = enrollment.effective_tutor_id
        keys = [student_key(enrollment.student_id)]
        if tutor_id:
            keys.append(tutor_key(tutor_id))

        events = PendingEvents()
        with scheduling_lock(*keys):
            try:
                with self.transaction():
                    for option in proposed:
                        start, end = option, option + timedelta(minutes=duration_minutes)
                        self.availability_service.ensure_no_conflicts(
                            start, end, tutor_id=tutor_id, student_id=enrollment.student_id
                        )
                    lesson = LessonBooking(
                        course_id=enrollment.course_id,
                        enrollment_id=enrollment.id,
                        student_id=enrollment.student_id,
                        tutor_id=tutor_id,
                        date_from=date_from,
                        date_to=date_to,
                        option1=proposed[0],
                        option2=proposed[1],
                        option3=proposed[2],
                        duration_minutes=duration_minutes,
                        request_note=note,
                        status=LessonStatus.PENDING.value,
                    )
                    self.db.add(lesson)
                    self.db.flush()
                    self.lesson_repository.add_change_log(
                        lesson_id=lesson.id,
                        actor_id=actor.user_id,
                        action=ACTION_REQUESTED,
                        to_status=LessonStatus.PENDING.value,
                        note=note,
                    )
                    events.add(
                        LessonStatusChanged(
                            lesson_id=lesson.id,
                            action=ACTION_REQUESTED,
                            to_status=LessonStatus.PENDING.value,
                            actor_id=actor.user_id,
                            student_id=lesson.student_id,
                            tutor_id=tutor_id,
                        )
                    )
            except Exception:
                events.discard()
                raise
        events.publish()
        self.log_operation("request_lesson", lesson_id=lesson.id, student_id=lesson.student_id)
        return lesson

    @BaseService.measure_operation("decide")
    def decide(
        self,
        lesson_id: str,
        chosen_start: datetime,
        actor: Actor,
        *,
        note: Optional[str] = None,
        tutor_id: Optional[str] = None,
    ) -> LessonBooking:
        """
        Schedule a Pending lesson at one of its proposed instants or a
        negotiated one, reserving the lesson's course credits.

        Raises:
            SlotConflictException: If the window overlaps a commitment
            InsufficientCreditsException: If the course ledger cannot cover it
        """
        note = self._clean_note(note)
        extra_keys: List[str] = []
        if tutor_id:
            extra_keys.append(tutor_key(tutor_id))
        elif actor.is_tutor:
            extra_keys.append(tutor_key(actor.user_id))

        def _decide(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_decider(lesson, actor)
            LessonStateMachine.fire(lesson.lesson_status, LessonEvent.DECIDE)

            assigned = lesson.tutor_id or tutor_id or (actor.user_id if actor.is_tutor else None)
            if not assigned:
                raise InvalidRequestException("A tutor must be assigned before scheduling")
            if lesson.tutor_id and tutor_id and tutor_id != lesson.tutor_id:
                raise InvalidRequestException("Lesson already has a different tutor")

            window = self._window(lesson, chosen_start)
            self._check_commit_window(lesson, window, proposed=lesson.options, tutor_id=assigned)

            reserved = self.credit_service.reserve_for_lesson(
                lesson.student_id,
                lesson.course_id,
                lesson.id,
                self.policy.credits_per_lesson,
                use_transaction=False,
                events=events,
            )

            lesson.tutor_id = assigned
            lesson.credits_reserved = reserved
            lesson.decision_by_id = actor.user_id
            lesson.decision_at = self.now()
            lesson.decision_note = note
            self._transition(
                lesson, LessonEvent.DECIDE, actor, ACTION_SCHEDULED, events, scheduled=window, note=note
            )
            return lesson

        lesson = self._run_event(lesson_id, _decide, extra_lock_keys=extra_keys)
        self._provision_meeting(lesson)
        return lesson

    @BaseService.measure_operation("reject")
    def reject(self, lesson_id: str, actor: Actor, *, note: Optional[str] = None) -> LessonBooking:
        note = self._clean_note(note)

        def _reject(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_decider(lesson, actor)
            lesson.decision_by_id = actor.user_id
            lesson.decision_at = self.now()
            lesson.decision_note = note
            self._transition(lesson, LessonEvent.REJECT, actor, ACTION_REJECTED, events, note=note)
            return lesson

        return self._run_event(lesson_id, _reject)

    @BaseService.measure_operation("withdraw")
    def withdraw(self, lesson_id: str, actor: Actor, *, reason: Optional[str] = None) -> LessonBooking:
        """Student withdraws an undecided request; nothing was reserved yet."""
        reason = self._clean_note(reason)

        def _withdraw(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            if not (actor.is_admin or actor.user_id == lesson.student_id):
                raise ForbiddenException("Only the requesting student can withdraw")
            lesson.cancelled_by_id = actor.user_id
            lesson.cancel_reason = reason
            lesson.cancelled_at = self.now()
            self._transition(lesson, LessonEvent.WITHDRAW, actor, ACTION_WITHDRAWN, events, note=reason)
            return lesson

        return self._run_event(lesson_id, _withdraw)

    # ------------------------------------------------------------------
    # Reschedule
    # ------------------------------------------------------------------

    def _restore_status(self, lesson: LessonBooking) -> LessonStatus:
        return LessonStatus.RESCHEDULED if lesson.reschedule_count > 0 else LessonStatus.SCHEDULED

    def _clear_reschedule_request(self, lesson: LessonBooking) -> None:
        lesson.reschedule_requested = False
        lesson.reschedule_option1 = None
        lesson.reschedule_option2 = None
        lesson.reschedule_option3 = None

    @BaseService.measure_operation("request_reschedule")
    def request_reschedule(
        self,
        lesson_id: str,
        actor: Actor,
        new_options: Sequence[datetime],
        *,
        reason: Optional[str] = None,
    ) -> LessonBooking:
        """
        Propose three new instants for a committed lesson.

        The current window stays reserved until the request is resolved. A
        request inside the approval window is flagged late: only an admin
        may approve it and approval charges the late penalty.
        """
        reason = self._clean_note(reason)
        proposed = self._validate_options(new_options)

        def _request(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_party(lesson, actor)
            LessonStateMachine.fire(lesson.lesson_status, LessonEvent.REQUEST_RESCHEDULE)
            if lesson.reschedule_count >= self.policy.max_reschedules_per_lesson:
                raise RescheduleLimitExceededException(
                    lesson.reschedule_count, self.policy.max_reschedules_per_lesson
                )

            window = lesson.committed_window()
            late = self.policy.is_late(window[0], self.now()) if window else False

            lesson.reschedule_requested = True
            lesson.reschedule_requested_at = self.now()
            lesson.reschedule_requested_by_id = actor.user_id
            lesson.reschedule_is_late = late
            lesson.reschedule_note = reason
            lesson.reschedule_option1, lesson.reschedule_option2, lesson.reschedule_option3 = proposed

            action = ACTION_RESCHEDULE_REQUESTED_LATE if late else ACTION_RESCHEDULE_REQUESTED
            self._transition(
                lesson, LessonEvent.REQUEST_RESCHEDULE, actor, action, events, held=window, note=reason
            )
            if late:
                self.logger.info(
                    "Late reschedule request needs admin approval",
                    extra={"lesson_id": lesson.id, "requested_by": actor.user_id},
                )
            elif self.policy.auto_approve_early_reschedules:
                self._auto_approve(lesson, actor, proposed, events)
            return lesson

        lesson = self._run_event(lesson_id, _request)
        if lesson.lesson_status == LessonStatus.RESCHEDULED:
            self._provision_meeting(lesson)
        return lesson

    def _auto_approve(
        self, lesson: LessonBooking, actor: Actor, proposed: Sequence[datetime], events: PendingEvents
    ) -> None:
        for option in proposed:
            window = self._window(lesson, option)
            if not self.availability_service.is_slot_bookable(
                lesson.tutor_id, window[0], lesson.duration_minutes
            ):
                continue
            conflicts = self.lesson_repository.find_conflicts(
                window[0],
                window[1],
                tutor_id=lesson.tutor_id,
                student_id=lesson.student_id,
                exclude_lesson_id=lesson.id,
            )
            if conflicts:
                continue
            self._apply_reschedule(lesson, window, actor, events, action=ACTION_RESCHEDULED_AUTO)
            return
        self.logger.info("No proposed time was bookable; reschedule left for review", extra={"lesson_id": lesson.id})

    def _apply_reschedule(
        self,
        lesson: LessonBooking,
        window: Window,
        actor: Actor,
        events: PendingEvents,
        *,
        action: str,
        note: Optional[str] = None,
    ) -> None:
        if lesson.reschedule_count >= self.policy.max_reschedules_per_lesson:
            raise RescheduleLimitExceededException(
                lesson.reschedule_count, self.policy.max_reschedules_per_lesson
            )

        if lesson.reschedule_is_late and lesson.reschedule_requested_by_id:
            self.credit_service.apply_penalty(
                lesson.reschedule_requested_by_id,
                self.policy.late_reschedule_penalty_credits,
                reason="Late reschedule penalty",
                lesson_id=lesson.id,
                created_by_id=actor.user_id,
                use_transaction=False,
                events=events,
            )

        lesson.reschedule_count += 1
        self._clear_reschedule_request(lesson)
        self._transition(
            lesson, LessonEvent.APPROVE_RESCHEDULE, actor, action, events, scheduled=window, note=note
        )

    @BaseService.measure_operation("approve_reschedule")
    def approve_reschedule(
        self,
        lesson_id: str,
        chosen_start: datetime,
        actor: Actor,
        *,
        note: Optional[str] = None,
    ) -> LessonBooking:
        """
        Raises:
            RescheduleLimitExceededException: If the lesson used all reschedules
            SlotConflictException: If the new window overlaps a commitment
        """
        note = self._clean_note(note)

        def _approve(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_decider(lesson, actor)
            LessonStateMachine.fire(lesson.lesson_status, LessonEvent.APPROVE_RESCHEDULE)
            if lesson.reschedule_is_late:
                self._require_admin(actor, "Late reschedules require admin approval")
            if lesson.reschedule_count >= self.policy.max_reschedules_per_lesson:
                raise RescheduleLimitExceededException(
                    lesson.reschedule_count, self.policy.max_reschedules_per_lesson
                )

            window = self._window(lesson, chosen_start)
            self._check_commit_window(
                lesson, window, proposed=lesson.reschedule_options, tutor_id=lesson.tutor_id
            )
            self._apply_reschedule(
                lesson, window, actor, events, action=ACTION_RESCHEDULE_APPROVED, note=note
            )
            return lesson

        lesson = self._run_event(lesson_id, _approve)
        self._provision_meeting(lesson)
        return lesson

    @BaseService.measure_operation("reject_reschedule")
    def reject_reschedule(
        self, lesson_id: str, actor: Actor, *, note: Optional[str] = None
    ) -> LessonBooking:
        """Decline a reschedule request; the lesson keeps its original window."""
        note = self._clean_note(note)

        def _reject(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_decider(lesson, actor)
            held = (lesson.held_start, lesson.held_end)
            self._clear_reschedule_request(lesson)
            self._transition(
                lesson,
                LessonEvent.REJECT_RESCHEDULE,
                actor,
                ACTION_RESCHEDULE_REJECTED,
                events,
                scheduled=held,
                restore_to=self._restore_status(lesson),
                note=note,
            )
            return lesson

        return self._run_event(lesson_id, _reject)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("request_cancellation")
    def request_cancellation(
        self, lesson_id: str, actor: Actor, *, reason: Optional[str] = None
    ) -> LessonBooking:
        """Tutor asks to cancel; an admin signs off through ``cancel``."""
        reason = self._clean_note(reason)

        def _request(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            if not (actor.is_tutor and actor.user_id == lesson.tutor_id):
                raise ForbiddenException("Only the lesson's tutor can request a cancellation")
            window = lesson.committed_window()
            lesson.cancellation_requested = True
            lesson.cancellation_requested_at = self.now()
            lesson.cancellation_requested_by_id = actor.user_id
            lesson.cancellation_note = reason
            self._transition(
                lesson,
                LessonEvent.REQUEST_CANCELLATION,
                actor,
                ACTION_CANCELLATION_REQUESTED,
                events,
                held=window,
                note=reason,
            )
            return lesson

        return self._run_event(lesson_id, _request)

    @BaseService.measure_operation("reject_cancellation")
    def reject_cancellation(
        self, lesson_id: str, actor: Actor, *, note: Optional[str] = None
    ) -> LessonBooking:
        note = self._clean_note(note)

        def _reject(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_admin(actor, "Only an admin can resolve a cancellation request")
            held = (lesson.held_start, lesson.held_end)
            lesson.cancellation_requested = False
            self._transition(
                lesson,
                LessonEvent.REJECT_CANCELLATION,
                actor,
                ACTION_CANCELLATION_REJECTED,
                events,
                scheduled=held,
                restore_to=self._restore_status(lesson),
                note=note,
            )
            return lesson

        return self._run_event(lesson_id, _reject)

    @BaseService.measure_operation("cancel")
    def cancel(self, lesson_id: str, actor: Actor, *, reason: Optional[str] = None) -> LessonBooking:
        """
        Cancel a committed lesson and settle its reserved credits.

        Student cancellations are refunded in full when made at least the
        approval window before the start, otherwise by the late refund
        percentage plus the late wallet penalty. Admin cancellations, and
        admin approval of a tutor's cancellation request, refund in full.
        Tutors cancel through ``request_cancellation``.
        """
        reason = self._clean_note(reason)
        released_meeting: List[str] = []

        def _cancel(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            status = lesson.lesson_status
            if status == LessonStatus.CANCELLATION_REQUESTED or actor.is_tutor:
                self._require_admin(actor, "Tutor cancellations require admin approval")
            elif not (actor.is_admin or actor.user_id == lesson.student_id):
                raise ForbiddenException("Not allowed to cancel this lesson")
            LessonStateMachine.fire(status, LessonEvent.CANCEL)

            window = lesson.committed_window()
            by_student = actor.user_id == lesson.student_id and not actor.is_admin
            late = bool(window) and self.policy.is_late(window[0], self.now())

            if by_student and late:
                refund_percent = self.policy.late_cancellation_refund_percent
            else:
                refund_percent = 100

            self.credit_service.refund_for_lesson(
                lesson.student_id,
                lesson.course_id,
                lesson.id,
                lesson.credits_reserved,
                refund_percent,
                note=f"Lesson cancelled ({refund_percent}% refund)",
                use_transaction=False,
                events=events,
            )
            if by_student and late:
                self.credit_service.apply_penalty(
                    lesson.student_id,
                    self.policy.late_cancellation_penalty_credits,
                    reason="Late cancellation penalty",
                    lesson_id=lesson.id,
                    created_by_id=actor.user_id,
                    use_transaction=False,
                    events=events,
                )

            if lesson.meeting_id:
                released_meeting.append(lesson.meeting_id)
                lesson.meeting_id = None
                lesson.meeting_join_url = None
                lesson.meeting_password = None
            lesson.cancellation_requested = False
            lesson.cancelled_by_id = actor.user_id
            lesson.cancel_reason = reason
            lesson.cancelled_at = self.now()
            action = ACTION_CANCELLED_BY_STUDENT if by_student else ACTION_CANCELLED_BY_STAFF
            self._transition(lesson, LessonEvent.CANCEL, actor, action, events, note=reason)
            return lesson

        lesson = self._run_event(lesson_id, _cancel)
        for meeting_id in released_meeting:
            self._release_meeting(meeting_id)
        return lesson

    # ------------------------------------------------------------------
    # Session tracking and completion
    # ------------------------------------------------------------------

    def _complete_locked(
        self, lesson: LessonBooking, actor: Optional[Actor], events: PendingEvents
    ) -> LessonBooking:
        if lesson.lesson_status == LessonStatus.COMPLETED:
            return lesson
        window = (lesson.scheduled_start, lesson.scheduled_end)
        now = self.now()
        lesson.completed_at = now
        if lesson.session_ended_at is None:
            lesson.session_ended_at = now
        self._transition(lesson, LessonEvent.COMPLETE, actor, ACTION_COMPLETED, events, scheduled=window)
        if lesson.tutor_id and not self.credit_service.has_earning_for_lesson(lesson.id):
            self.credit_service.accrue_earning(
                lesson.tutor_id,
                lesson.id,
                self.policy.tutor_earning_per_lesson_credits,
                note="Lesson completed",
                use_transaction=False,
                events=events,
            )
        return lesson

    @BaseService.measure_operation("complete")
    def complete(self, lesson_id: str, actor: Optional[Actor] = None) -> LessonBooking:
        """Complete a committed lesson; completing a completed lesson is a no-op."""

        def _complete(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            if actor is not None and not actor.is_admin and actor.user_id != lesson.tutor_id:
                raise ForbiddenException("Only the tutor or an admin can complete a lesson")
            return self._complete_locked(lesson, actor, events)

        return self._run_event(lesson_id, _complete)

    def _require_session_status(self, lesson: LessonBooking, operation: str) -> None:
        if lesson.lesson_status not in COMMITTED_STATUSES:
            raise InvalidTransitionException(lesson.status, operation)

    @BaseService.measure_operation("start_session")
    def start_session(self, lesson_id: str, actor: Actor) -> LessonBooking:
        def _start(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_party(lesson, actor)
            self._require_session_status(lesson, "start_session")
            if lesson.session_started_at is None:
                lesson.session_started_at = self.now()
            return lesson

        return self._run_event(lesson_id, _start)

    @BaseService.measure_operation("record_join")
    def record_join(self, lesson_id: str, actor: Actor) -> LessonBooking:
        """Mark the acting student or tutor as having attended."""

        def _join(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            self._require_session_status(lesson, "join")
            now = self.now()
            if actor.user_id == lesson.student_id:
                lesson.student_attended = True
                lesson.student_joined_at = lesson.student_joined_at or now
            elif actor.user_id == lesson.tutor_id:
                lesson.tutor_attended = True
                lesson.tutor_joined_at = lesson.tutor_joined_at or now
            else:
                raise ForbiddenException("Only the lesson's student or tutor can join")
            if lesson.session_started_at is None:
                lesson.session_started_at = now
            return lesson

        return self._run_event(lesson_id, _join)

    @BaseService.measure_operation("end_session")
    def end_session(self, lesson_id: str, actor: Optional[Actor] = None) -> LessonBooking:
        """Record the session end and complete a still-committed lesson."""

        def _end(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            if actor is not None:
                self._require_party(lesson, actor)
            if lesson.lesson_status == LessonStatus.COMPLETED:
                return lesson
            self._require_session_status(lesson, "end_session")
            lesson.session_ended_at = self.now()
            return self._complete_locked(lesson, actor, events)

        return self._run_event(lesson_id, _end)

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(
        self, lesson_id: str, actor: Optional[Actor] = None, *, note: Optional[str] = None
    ) -> LessonBooking:
        """
        Close a lesson neither party attended.

        Credits stay consumed unless ``no_show_refund_percent`` is set.
        """
        note = self._clean_note(note)

        def _no_show(lesson: LessonBooking, events: PendingEvents) -> LessonBooking:
            if actor is not None and not (actor.is_admin or actor.user_id == lesson.tutor_id):
                raise ForbiddenException("Only the tutor or an admin can mark a no-show")
            LessonStateMachine.fire(lesson.lesson_status, LessonEvent.MARK_NO_SHOW)
            if lesson.student_attended or lesson.tutor_attended:
                raise BusinessRuleException(
                    "Attendance was recorded for this lesson",
                    code="ATTENDANCE_RECORDED",
                    details={
                        "student_attended": lesson.student_attended,
                        "tutor_attended": lesson.tutor_attended,
                    },
                )
            window = lesson.committed_window()
            if window and window[0] > self.now():
                raise BusinessRuleException("Lesson has not started yet", code="LESSON_NOT_STARTED")

            self.credit_service.refund_for_lesson(
                lesson.student_id,
                lesson.course_id,
                lesson.id,
                lesson.credits_reserved,
                self.policy.no_show_refund_percent,
                note="No-show refund",
                use_transaction=False,
                events=events,
            )
            self._clear_reschedule_request(lesson)
            lesson.cancellation_requested = False
            self._transition(lesson, LessonEvent.MARK_NO_SHOW, actor, ACTION_NO_SHOW, events, note=note)
            return lesson

        return self._run_event(lesson_id, _no_show)

    # ------------------------------------------------------------------
    # Meetings (best effort)
    # ------------------------------------------------------------------

    def _provision_meeting(self, lesson: LessonBooking) -> None:
        if self.meeting_provider is None or lesson.scheduled_start is None:
            return
        previous = lesson.meeting_id
        try:
            details = self.meeting_provider.create_meeting(
                lesson_id=lesson.id,
                topic=f"Lesson {lesson.id}",
                start_utc=lesson.scheduled_start,
                duration_minutes=lesson.duration_minutes,
            )
        except MeetingProviderError as exc:
            self.logger.warning(
                "Meeting provisioning failed", extra={"lesson_id": lesson.id, "error": exc.message}
            )
            return
        try:
            with self.transaction():
                lesson.meeting_id = details.meeting_id
                lesson.meeting_join_url = details.join_url
                lesson.meeting_password = details.password
        except ServiceException as exc:
            self.logger.warning(
                "Could not store meeting details", extra={"lesson_id": lesson.id, "error": exc.message}
            )
            return
        if previous:
            self._release_meeting(previous)

    def _release_meeting(self, meeting_id: str) -> None:
        if self.meeting_provider is None:
            return
        try:
            self.meeting_provider.delete_meeting(meeting_id)
        except MeetingProviderError as exc:
            self.logger.warning(
                "Meeting deletion failed", extra={"meeting_id": meeting_id, "error": exc.message}
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_lesson(self, lesson_id: str, actor: Actor) -> LessonBooking:
        lesson = self._load(lesson_id)
        self._require_party(lesson, actor)
        return lesson

    def list_lessons(
        self,
        actor: Actor,
        *,
        user_id: Optional[str] = None,
        status: Optional[LessonStatus] = None,
        limit: int = 100,
    ) -> List[LessonBooking]:
        target = user_id or actor.user_id
        if target != actor.user_id and not actor.is_admin:
            raise ForbiddenException("Cannot list another user's lessons")
        return self.lesson_repository.list_for_user(target, status=status, limit=limit)

    def get_change_log(self, lesson_id: str, actor: Actor) -> List[LessonChangeLog]:
        self.get_lesson(lesson_id, actor)
        return self.lesson_repository.get_change_logs(lesson_id)

    def get_wallet_balance(self, user_id: str) -> CreditsBalance:
        return self.credit_service.get_or_create_balance(user_id)

    def get_course_ledger(self, student_id: str, course_id: str) -> CourseCreditLedger:
        return self.credit_service.get_course_ledger(student_id, course_id)
