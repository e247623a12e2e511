"""
LessonPolicyService lifecycle tests.

The service runs on a fixed clock (Monday 2030-01-07 09:00 UTC). "Early"
lessons start a week later; "late" ones start the same evening, inside the
24 hour approval window.
"""

from datetime import date

import pytest

from app.core.actor import Actor
from app.core.enums import EnrollmentStatus, LessonStatus, RoleName
from app.core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InsufficientCreditsException,
    InvalidRequestException,
    InvalidTransitionException,
    NotFoundException,
    RescheduleLimitExceededException,
    SlotConflictException,
)
from app.events import CreditsChanged, LessonStatusChanged
from app.services.lesson_policy_service import LessonPolicy, LessonPolicyService

from ...factories import (
    NOW,
    make_enrollment,
    make_lesson,
    make_rule,
    make_user,
    three_options,
    utc,
)

EARLY = utc(2030, 1, 14, 10)  # a week out
LATE = utc(2030, 1, 7, 20)  # eleven hours out
WEDNESDAY = 3


def _service(db, cache, meeting_provider, *, clock=NOW, **overrides):
    return LessonPolicyService(
        db,
        cache,
        policy=LessonPolicy().with_overrides(**overrides),
        meeting_provider=meeting_provider,
        clock=lambda: clock,
    )


def _request(service, actor, enrollment, first, *, step_hours=24, duration=60):
    options = three_options(first, step_hours=step_hours)
    return service.request_lesson(
        actor,
        enrollment_id=enrollment.id,
        date_from=first.date(),
        date_to=options[-1].date(),
        options=options,
        duration_minutes=duration,
    )


def _schedule(service, student_actor, tutor_actor, enrollment, first, **kwargs):
    lesson = _request(service, student_actor, enrollment, first, **kwargs)
    return service.decide(lesson.id, first, tutor_actor)


def _actions(service, lesson, actor):
    return [entry.action for entry in service.get_change_log(lesson.id, actor)]


def _course_remaining(credit_service, student, course):
    return credit_service.get_course_ledger(student.id, course.id).credits_remaining


def _wallet_remaining(credit_service, student):
    return credit_service.get_or_create_balance(student.id).remaining_credits


class TestLessonPolicy:
    def test_defaults(self):
        policy = LessonPolicy()

        assert policy.max_reschedules_per_lesson == 2
        assert policy.admin_approval_window_hours == 24
        assert policy.late_cancellation_refund_percent == 50
        assert policy.no_show_refund_percent == 0
        assert policy.auto_approve_early_reschedules is False

    def test_overrides_return_a_copy(self):
        policy = LessonPolicy()
        strict = policy.with_overrides(max_reschedules_per_lesson=0)

        assert strict.max_reschedules_per_lesson == 0
        assert policy.max_reschedules_per_lesson == 2

    def test_is_late_uses_approval_window(self):
        policy = LessonPolicy()

        assert policy.is_late(LATE, NOW)
        assert not policy.is_late(utc(2030, 1, 8, 9), NOW)
        assert not policy.is_late(EARLY, NOW)


class TestRequestLesson:
    def test_creates_pending_lesson(
        self, lesson_service, student_actor, enrollment, tutor, captured_events
    ):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)

        assert lesson.lesson_status == LessonStatus.PENDING
        assert lesson.options == three_options(EARLY)
        assert lesson.tutor_id == tutor.id
        assert lesson.scheduled_start is None
        assert _actions(lesson_service, lesson, student_actor) == ["Requested"]
        assert captured_events[-1] == LessonStatusChanged(
            lesson_id=lesson.id,
            action="Requested",
            to_status="PENDING",
            actor_id=student_actor.user_id,
            student_id=lesson.student_id,
            tutor_id=tutor.id,
        )

    @pytest.mark.parametrize(
        "options",
        [
            [EARLY, utc(2030, 1, 15, 10)],
            [EARLY, EARLY, utc(2030, 1, 15, 10)],
            [utc(2030, 1, 6, 10), EARLY, utc(2030, 1, 15, 10)],
            [EARLY, utc(2030, 1, 15, 10), utc(2030, 2, 1, 10)],
        ],
        ids=["two-options", "duplicates", "in-the-past", "outside-range"],
    )
    def test_invalid_options_rejected(self, lesson_service, student_actor, enrollment, options):
        with pytest.raises(InvalidRequestException):
            lesson_service.request_lesson(
                student_actor,
                enrollment_id=enrollment.id,
                date_from=date(2030, 1, 1),
                date_to=date(2030, 1, 20),
                options=options,
                duration_minutes=60,
            )

    def test_unsupported_duration_rejected(self, lesson_service, student_actor, enrollment):
        with pytest.raises(InvalidRequestException):
            _request(lesson_service, student_actor, enrollment, EARLY, duration=50)

    def test_note_length_is_limited(self, lesson_service, student_actor, enrollment):
        with pytest.raises(InvalidRequestException):
            lesson_service.request_lesson(
                student_actor,
                enrollment_id=enrollment.id,
                date_from=EARLY.date(),
                date_to=date(2030, 1, 20),
                options=three_options(EARLY),
                duration_minutes=60,
                note="x" * 501,
            )

    def test_enrollment_must_be_approved(self, db, lesson_service, student, student_actor, course):
        pending = make_enrollment(db, student, course, status=EnrollmentStatus.PENDING)

        with pytest.raises(BusinessRuleException) as exc_info:
            _request(lesson_service, student_actor, pending, EARLY)
        assert exc_info.value.code == "ENROLLMENT_NOT_APPROVED"

    def test_only_the_enrolled_student_may_request(self, db, lesson_service, enrollment):
        other = make_user(db)

        with pytest.raises(ForbiddenException):
            _request(lesson_service, Actor(other.id, RoleName.STUDENT), enrollment, EARLY)

    def test_unknown_enrollment(self, lesson_service, student_actor):
        with pytest.raises(NotFoundException):
            lesson_service.request_lesson(
                student_actor,
                enrollment_id="01HZZZZZZZZZZZZZZZZZZZZZZZ",
                date_from=EARLY.date(),
                date_to=date(2030, 1, 20),
                options=three_options(EARLY),
                duration_minutes=60,
            )

    def test_option_overlapping_a_commitment_rejected(
        self, db, lesson_service, student_actor, enrollment
    ):
        make_lesson(db, enrollment, start=EARLY)

        with pytest.raises(SlotConflictException):
            _request(lesson_service, student_actor, enrollment, EARLY)


class TestDecide:
    def test_schedules_reserves_credits_and_provisions_meeting(
        self,
        lesson_service,
        credit_service,
        meeting_provider,
        student,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
        captured_events,
    ):
        lesson = _request(lesson_service, student_actor, funded_enrollment, EARLY)
        captured_events.clear()

        decided = lesson_service.decide(lesson.id, EARLY, tutor_actor, note="See you then")

        assert decided.lesson_status == LessonStatus.SCHEDULED
        assert (decided.scheduled_start, decided.scheduled_end) == (EARLY, utc(2030, 1, 14, 11))
        assert decided.credits_reserved == 1
        assert decided.decision_by_id == tutor_actor.user_id
        assert decided.meeting_id in meeting_provider.meetings
        assert _course_remaining(credit_service, student, course) == 4
        assert _actions(lesson_service, lesson, student_actor) == ["Requested", "Scheduled"]

        kinds = [type(event) for event in captured_events]
        assert kinds == [CreditsChanged, LessonStatusChanged]
        assert captured_events[1].to_status == "SCHEDULED"

    def test_insufficient_credits_leaves_lesson_pending(
        self, lesson_service, student_actor, tutor_actor, enrollment, captured_events
    ):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)
        captured_events.clear()

        with pytest.raises(InsufficientCreditsException) as exc_info:
            lesson_service.decide(lesson.id, EARLY, tutor_actor)

        assert exc_info.value.details["scope"] == "course"
        reloaded = lesson_service.get_lesson(lesson.id, student_actor)
        assert reloaded.lesson_status == LessonStatus.PENDING
        assert reloaded.scheduled_start is None
        assert _actions(lesson_service, lesson, student_actor) == ["Requested"]
        assert captured_events == []

    def test_double_booking_the_tutor_is_refused(
        self,
        db,
        lesson_service,
        credit_service,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        rival = make_user(db)
        rival_enrollment = make_enrollment(db, rival, course)
        credit_service.purchase_credits(rival.id, 2)
        credit_service.allocate_on_enrollment(rival.id, course.id, 2)

        first = _request(lesson_service, student_actor, funded_enrollment, EARLY)
        rival_actor = Actor(rival.id, RoleName.STUDENT)
        second = _request(lesson_service, rival_actor, rival_enrollment, EARLY)
        lesson_service.decide(first.id, EARLY, tutor_actor)

        with pytest.raises(SlotConflictException) as exc_info:
            lesson_service.decide(second.id, EARLY, tutor_actor)

        assert exc_info.value.details["conflicting_lesson_ids"] == [first.id]
        assert _course_remaining(credit_service, rival, course) == 2

    def test_negotiated_time_must_be_available(
        self, db, lesson_service, tutor, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _request(lesson_service, student_actor, funded_enrollment, EARLY)
        negotiated = utc(2030, 1, 16, 9)

        with pytest.raises(SlotConflictException):
            lesson_service.decide(lesson.id, negotiated, tutor_actor)

        make_rule(db, tutor, day_of_week=WEDNESDAY, start="09:00", end="12:00")
        decided = lesson_service.decide(lesson.id, negotiated, tutor_actor)
        assert decided.scheduled_start == negotiated

    def test_block_added_after_the_request_refuses_a_proposed_option(
        self,
        lesson_service,
        availability_service,
        credit_service,
        student,
        tutor,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _request(lesson_service, student_actor, funded_enrollment, EARLY)
        block = availability_service.add_block(
            tutor.id, start_utc=EARLY, end_utc=utc(2030, 1, 14, 11), reason="Vacation"
        )

        with pytest.raises(SlotConflictException) as exc_info:
            lesson_service.decide(lesson.id, EARLY, tutor_actor)

        assert exc_info.value.details["block_ids"] == [block.id]
        reloaded = lesson_service.get_lesson(lesson.id, student_actor)
        assert reloaded.lesson_status == LessonStatus.PENDING
        assert _course_remaining(credit_service, student, course) == 5

    def test_student_cannot_decide(self, lesson_service, student_actor, funded_enrollment):
        lesson = _request(lesson_service, student_actor, funded_enrollment, EARLY)

        with pytest.raises(ForbiddenException):
            lesson_service.decide(lesson.id, EARLY, student_actor)

    def test_other_tutor_cannot_decide(self, db, lesson_service, student_actor, funded_enrollment):
        lesson = _request(lesson_service, student_actor, funded_enrollment, EARLY)
        stranger = make_user(db, RoleName.TUTOR)

        with pytest.raises(ForbiddenException):
            lesson_service.decide(lesson.id, EARLY, Actor(stranger.id, RoleName.TUTOR))

    def test_deciding_twice_is_an_invalid_transition(
        self, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        with pytest.raises(InvalidTransitionException):
            lesson_service.decide(lesson.id, utc(2030, 1, 15, 10), tutor_actor)


class TestRejectAndWithdraw:
    def test_tutor_rejects(self, lesson_service, student_actor, tutor_actor, enrollment):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)

        rejected = lesson_service.reject(lesson.id, tutor_actor, note="Fully booked")

        assert rejected.lesson_status == LessonStatus.REJECTED
        assert rejected.decision_note == "Fully booked"
        with pytest.raises(InvalidTransitionException):
            lesson_service.decide(lesson.id, EARLY, tutor_actor)

    def test_student_withdraws(self, lesson_service, student_actor, tutor_actor, enrollment):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)

        with pytest.raises(ForbiddenException):
            lesson_service.withdraw(lesson.id, tutor_actor)
        withdrawn = lesson_service.withdraw(lesson.id, student_actor, reason="Changed plans")

        assert withdrawn.lesson_status == LessonStatus.CANCELLED
        assert withdrawn.cancel_reason == "Changed plans"
        assert _actions(lesson_service, lesson, student_actor) == ["Requested", "Withdrawn"]


class TestReschedule:
    NEW_FIRST = utc(2030, 1, 21, 10)

    def test_early_request_holds_window_until_approved(
        self,
        lesson_service,
        availability_service,
        credit_service,
        student,
        tutor,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        requested = lesson_service.request_reschedule(
            lesson.id, student_actor, three_options(self.NEW_FIRST), reason="Exam week"
        )

        assert requested.lesson_status == LessonStatus.RESCHEDULE_REQUESTED
        assert requested.reschedule_is_late is False
        assert requested.scheduled_start is None
        assert (requested.held_start, requested.held_end) == (EARLY, utc(2030, 1, 14, 11))
        with pytest.raises(SlotConflictException):
            availability_service.ensure_no_conflicts(
                EARLY, utc(2030, 1, 14, 11), tutor_id=tutor.id, student_id=None
            )

        approved = lesson_service.approve_reschedule(lesson.id, self.NEW_FIRST, tutor_actor)

        assert approved.lesson_status == LessonStatus.RESCHEDULED
        assert approved.reschedule_count == 1
        assert approved.scheduled_start == self.NEW_FIRST
        assert approved.held_start is None
        assert approved.reschedule_options == []
        assert _wallet_remaining(credit_service, student) == 5
        assert _actions(lesson_service, lesson, student_actor)[-2:] == [
            "RescheduleRequested",
            "RescheduleApproved",
        ]

    def test_late_request_needs_admin_and_charges_penalty(
        self,
        db,
        cache,
        meeting_provider,
        credit_service,
        student,
        student_actor,
        tutor_actor,
        admin_actor,
        funded_enrollment,
    ):
        service = _service(db, cache, meeting_provider, late_reschedule_penalty_credits=1)
        lesson = _schedule(
            service, student_actor, tutor_actor, funded_enrollment, LATE, step_hours=1
        )

        requested = service.request_reschedule(
            lesson.id, student_actor, three_options(utc(2030, 1, 9, 10))
        )
        assert requested.reschedule_is_late is True

        with pytest.raises(ForbiddenException) as exc_info:
            service.approve_reschedule(lesson.id, utc(2030, 1, 9, 10), tutor_actor)
        assert exc_info.value.code == "ADMIN_APPROVAL_REQUIRED"

        approved = service.approve_reschedule(lesson.id, utc(2030, 1, 9, 10), admin_actor)

        assert approved.lesson_status == LessonStatus.RESCHEDULED
        assert approved.reschedule_count == 1
        assert _wallet_remaining(credit_service, student) == 4
        assert "RescheduleRequestedLate" in _actions(service, lesson, admin_actor)

    def test_request_at_the_limit_is_refused(self, db, lesson_service, student_actor, enrollment):
        lesson = make_lesson(
            db, enrollment, start=EARLY, status=LessonStatus.RESCHEDULED, reschedule_count=2
        )

        with pytest.raises(RescheduleLimitExceededException) as exc_info:
            lesson_service.request_reschedule(
                lesson.id, student_actor, three_options(self.NEW_FIRST)
            )
        assert exc_info.value.details == {"reschedule_count": 2, "max_reschedules": 2}

    def test_approving_beyond_the_limit_is_refused(
        self, db, lesson_service, tutor_actor, enrollment
    ):
        lesson = make_lesson(
            db,
            enrollment,
            start=EARLY,
            status=LessonStatus.RESCHEDULE_REQUESTED,
            reschedule_count=2,
        )
        lesson.held_start, lesson.held_end = EARLY, utc(2030, 1, 14, 11)
        options = three_options(self.NEW_FIRST)
        lesson.reschedule_option1, lesson.reschedule_option2, lesson.reschedule_option3 = options
        lesson.reschedule_requested = True
        db.commit()

        with pytest.raises(RescheduleLimitExceededException):
            lesson_service.approve_reschedule(lesson.id, self.NEW_FIRST, tutor_actor)

        assert lesson_service.get_lesson(lesson.id, tutor_actor).reschedule_count == 2

    def test_reject_restores_previous_status_and_window(
        self, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        lesson_service.request_reschedule(lesson.id, student_actor, three_options(self.NEW_FIRST))
        restored = lesson_service.reject_reschedule(lesson.id, tutor_actor)
        assert restored.lesson_status == LessonStatus.SCHEDULED
        assert restored.scheduled_start == EARLY

        lesson_service.request_reschedule(lesson.id, student_actor, three_options(self.NEW_FIRST))
        lesson_service.approve_reschedule(lesson.id, self.NEW_FIRST, tutor_actor)
        later = utc(2030, 1, 28, 10)
        lesson_service.request_reschedule(lesson.id, student_actor, three_options(later))
        restored = lesson_service.reject_reschedule(lesson.id, tutor_actor, note="Keep it")

        assert restored.lesson_status == LessonStatus.RESCHEDULED
        assert restored.scheduled_start == self.NEW_FIRST
        assert restored.reschedule_count == 1

    def test_approval_into_a_blocked_option_is_refused(
        self,
        lesson_service,
        availability_service,
        tutor,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)
        lesson_service.request_reschedule(lesson.id, student_actor, three_options(self.NEW_FIRST))
        availability_service.add_block(
            tutor.id, start_utc=self.NEW_FIRST, end_utc=utc(2030, 1, 21, 11), reason="Conference"
        )

        with pytest.raises(SlotConflictException):
            lesson_service.approve_reschedule(lesson.id, self.NEW_FIRST, tutor_actor)

        reloaded = lesson_service.get_lesson(lesson.id, student_actor)
        assert reloaded.lesson_status == LessonStatus.RESCHEDULE_REQUESTED
        assert reloaded.reschedule_count == 0

    def test_auto_approval_picks_first_bookable_option(
        self,
        db,
        cache,
        meeting_provider,
        tutor,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        service = _service(db, cache, meeting_provider, auto_approve_early_reschedules=True)
        lesson = _schedule(service, student_actor, tutor_actor, funded_enrollment, EARLY)
        make_rule(db, tutor, day_of_week=WEDNESDAY, start="09:00", end="12:00")
        options = [utc(2030, 1, 15, 9), utc(2030, 1, 16, 9), utc(2030, 1, 16, 10)]

        result = service.request_reschedule(lesson.id, student_actor, options)

        assert result.lesson_status == LessonStatus.RESCHEDULED
        assert result.scheduled_start == utc(2030, 1, 16, 9)
        assert result.reschedule_count == 1
        assert _actions(service, lesson, student_actor)[-1] == "RescheduledAuto"

    def test_auto_approval_without_bookable_option_waits_for_review(
        self, db, cache, meeting_provider, student_actor, tutor_actor, funded_enrollment
    ):
        service = _service(db, cache, meeting_provider, auto_approve_early_reschedules=True)
        lesson = _schedule(service, student_actor, tutor_actor, funded_enrollment, EARLY)

        result = service.request_reschedule(lesson.id, student_actor, three_options(self.NEW_FIRST))

        assert result.lesson_status == LessonStatus.RESCHEDULE_REQUESTED
        assert result.reschedule_count == 0

    def test_outsider_cannot_request(
        self, db, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)
        outsider = make_user(db)

        with pytest.raises(ForbiddenException):
            lesson_service.request_reschedule(
                lesson.id, Actor(outsider.id, RoleName.STUDENT), three_options(self.NEW_FIRST)
            )


class TestCancellation:
    def test_early_student_cancellation_refunds_in_full(
        self,
        lesson_service,
        credit_service,
        meeting_provider,
        student,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)
        meeting_id = lesson.meeting_id

        cancelled = lesson_service.cancel(lesson.id, student_actor, reason="Sick")

        assert cancelled.lesson_status == LessonStatus.CANCELLED
        assert cancelled.scheduled_start is None
        assert cancelled.meeting_id is None
        assert meeting_id not in meeting_provider.meetings
        assert _course_remaining(credit_service, student, course) == 5
        assert _wallet_remaining(credit_service, student) == 5
        assert _actions(lesson_service, lesson, student_actor)[-1] == "CancelledByStudent"

    def test_late_student_cancellation_is_partial_with_penalty(
        self,
        db,
        cache,
        meeting_provider,
        credit_service,
        student,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        service = _service(
            db,
            cache,
            meeting_provider,
            credits_per_lesson=2,
            late_cancellation_penalty_credits=1,
        )
        lesson = _schedule(
            service, student_actor, tutor_actor, funded_enrollment, LATE, step_hours=1
        )
        assert _course_remaining(credit_service, student, course) == 3

        service.cancel(lesson.id, student_actor)

        assert _course_remaining(credit_service, student, course) == 4
        assert _wallet_remaining(credit_service, student) == 4
        assert credit_service.verify_course_ledger_consistency(student.id, course.id).consistent

    def test_tutor_must_go_through_a_request(
        self, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        with pytest.raises(ForbiddenException) as exc_info:
            lesson_service.cancel(lesson.id, tutor_actor)
        assert exc_info.value.code == "ADMIN_APPROVAL_REQUIRED"

    def test_tutor_request_then_admin_cancels_with_full_refund(
        self,
        lesson_service,
        credit_service,
        student,
        course,
        student_actor,
        tutor_actor,
        admin_actor,
        funded_enrollment,
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        with pytest.raises(ForbiddenException):
            lesson_service.request_cancellation(lesson.id, student_actor)
        requested = lesson_service.request_cancellation(lesson.id, tutor_actor, reason="Conference")
        assert requested.lesson_status == LessonStatus.CANCELLATION_REQUESTED
        assert requested.held_start == EARLY

        with pytest.raises(ForbiddenException):
            lesson_service.cancel(lesson.id, student_actor)
        cancelled = lesson_service.cancel(lesson.id, admin_actor)

        assert cancelled.lesson_status == LessonStatus.CANCELLED
        assert cancelled.cancellation_requested is False
        assert _course_remaining(credit_service, student, course) == 5
        assert _actions(lesson_service, lesson, admin_actor)[-1] == "CancelledByStaff"

    def test_admin_rejects_cancellation_request(
        self, lesson_service, student_actor, tutor_actor, admin_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)
        lesson_service.request_cancellation(lesson.id, tutor_actor)

        with pytest.raises(ForbiddenException):
            lesson_service.reject_cancellation(lesson.id, tutor_actor)
        restored = lesson_service.reject_cancellation(lesson.id, admin_actor, note="Please attend")

        assert restored.lesson_status == LessonStatus.SCHEDULED
        assert (restored.scheduled_start, restored.held_start) == (EARLY, None)

    def test_pending_lessons_are_withdrawn_not_cancelled(
        self, lesson_service, student_actor, enrollment
    ):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)

        with pytest.raises(InvalidTransitionException):
            lesson_service.cancel(lesson.id, student_actor)


class TestCompletionAndSessions:
    def test_complete_is_idempotent_and_accrues_once(
        self, lesson_service, credit_service, tutor, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        lesson_service.complete(lesson.id, tutor_actor)
        again = lesson_service.complete(lesson.id, tutor_actor)

        assert again.lesson_status == LessonStatus.COMPLETED
        assert again.completed_at == NOW
        assert credit_service.get_tutor_earnings_total(tutor.id) == 1
        assert _actions(lesson_service, lesson, tutor_actor).count("Completed") == 1

    def test_student_cannot_complete(
        self, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        with pytest.raises(ForbiddenException):
            lesson_service.complete(lesson.id, student_actor)

    def test_join_and_end_session(
        self, lesson_service, credit_service, tutor, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)

        joined = lesson_service.record_join(lesson.id, student_actor)
        assert joined.student_attended is True
        assert joined.session_started_at == NOW
        lesson_service.record_join(lesson.id, tutor_actor)

        ended = lesson_service.end_session(lesson.id, tutor_actor)

        assert ended.lesson_status == LessonStatus.COMPLETED
        assert ended.tutor_attended is True
        assert ended.session_ended_at == NOW
        assert credit_service.get_tutor_earnings_total(tutor.id) == 1

    def test_only_participants_join(
        self, db, lesson_service, student_actor, tutor_actor, funded_enrollment
    ):
        lesson = _schedule(lesson_service, student_actor, tutor_actor, funded_enrollment, EARLY)
        outsider = make_user(db)

        with pytest.raises(ForbiddenException):
            lesson_service.record_join(lesson.id, Actor(outsider.id, RoleName.STUDENT))

    def test_sessions_need_a_committed_lesson(self, lesson_service, student_actor, enrollment):
        lesson = _request(lesson_service, student_actor, enrollment, EARLY)

        with pytest.raises(InvalidTransitionException):
            lesson_service.start_session(lesson.id, student_actor)


class TestNoShow:
    def test_past_lesson_without_attendance(self, db, lesson_service, admin_actor, enrollment):
        lesson = make_lesson(db, enrollment, start=utc(2030, 1, 7, 7))

        result = lesson_service.mark_no_show(lesson.id, admin_actor, note="Nobody came")

        assert result.lesson_status == LessonStatus.NO_SHOW
        assert _actions(lesson_service, lesson, admin_actor) == ["NoShow"]

    def test_refund_percent_is_configurable(
        self,
        db,
        cache,
        meeting_provider,
        lesson_service,
        credit_service,
        student,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _schedule(
            lesson_service, student_actor, tutor_actor, funded_enrollment, LATE, step_hours=1
        )
        assert _course_remaining(credit_service, student, course) == 4
        after_start = _service(
            db, cache, meeting_provider, clock=utc(2030, 1, 7, 21, 30), no_show_refund_percent=100
        )

        after_start.mark_no_show(lesson.id, tutor_actor)

        assert _course_remaining(credit_service, student, course) == 5

    def test_default_policy_keeps_credits_consumed(
        self,
        db,
        cache,
        meeting_provider,
        lesson_service,
        credit_service,
        student,
        course,
        student_actor,
        tutor_actor,
        funded_enrollment,
    ):
        lesson = _schedule(
            lesson_service, student_actor, tutor_actor, funded_enrollment, LATE, step_hours=1
        )
        after_start = _service(db, cache, meeting_provider, clock=utc(2030, 1, 7, 21, 30))

        after_start.mark_no_show(lesson.id)

        assert _course_remaining(credit_service, student, course) == 4

    def test_recorded_attendance_blocks_no_show(
        self, db, lesson_service, student_actor, admin_actor, enrollment
    ):
        lesson = make_lesson(db, enrollment, start=utc(2030, 1, 7, 7))
        lesson_service.record_join(lesson.id, student_actor)

        with pytest.raises(BusinessRuleException) as exc_info:
            lesson_service.mark_no_show(lesson.id, admin_actor)
        assert exc_info.value.code == "ATTENDANCE_RECORDED"

    def test_future_lesson_cannot_be_a_no_show(self, db, lesson_service, admin_actor, enrollment):
        lesson = make_lesson(db, enrollment, start=EARLY)

        with pytest.raises(BusinessRuleException) as exc_info:
            lesson_service.mark_no_show(lesson.id, admin_actor)
        assert exc_info.value.code == "LESSON_NOT_STARTED"

    def test_student_cannot_mark_no_show(self, db, lesson_service, student_actor, enrollment):
        lesson = make_lesson(db, enrollment, start=utc(2030, 1, 7, 7))

        with pytest.raises(ForbiddenException):
            lesson_service.mark_no_show(lesson.id, student_actor)


class TestReads:
    def test_outsiders_cannot_read_a_lesson(self, db, lesson_service, enrollment):
        lesson = make_lesson(db, enrollment, start=EARLY)
        outsider = Actor(make_user(db).id, RoleName.STUDENT)

        with pytest.raises(ForbiddenException):
            lesson_service.get_lesson(lesson.id, outsider)
        with pytest.raises(ForbiddenException):
            lesson_service.get_change_log(lesson.id, outsider)

    def test_unknown_lesson(self, lesson_service, admin_actor):
        with pytest.raises(NotFoundException):
            lesson_service.get_lesson("01HZZZZZZZZZZZZZZZZZZZZZZZ", admin_actor)

    def test_list_lessons_by_party(
        self,
        db,
        lesson_service,
        student,
        tutor,
        student_actor,
        tutor_actor,
        admin_actor,
        enrollment,
    ):
        scheduled = make_lesson(db, enrollment, start=EARLY)
        cancelled = make_lesson(
            db, enrollment, start=utc(2030, 1, 15, 10), status=LessonStatus.CANCELLED
        )

        assert {lesson.id for lesson in lesson_service.list_lessons(student_actor)} == {
            scheduled.id,
            cancelled.id,
        }
        only_cancelled = lesson_service.list_lessons(tutor_actor, status=LessonStatus.CANCELLED)
        assert [lesson.id for lesson in only_cancelled] == [cancelled.id]
        assert len(lesson_service.list_lessons(admin_actor, user_id=student.id)) == 2
        with pytest.raises(ForbiddenException):
            lesson_service.list_lessons(student_actor, user_id=tutor.id)
