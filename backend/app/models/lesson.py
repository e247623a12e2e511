# backend/app/models/lesson.py
"""
Lesson booking models for the TutorDesk platform.

A LessonBooking is one scheduling attempt: the student proposes three
instants, a decision-maker picks one, and the lifecycle state machine
moves it through reschedule, cancellation and completion. Bookings are
never hard-deleted.

The committed window lives in ``scheduled_start``/``scheduled_end`` only
while the lesson is Scheduled, Rescheduled or Completed. While a reschedule
or cancellation request is pending, the window moves to
``held_start``/``held_end`` so the tutor's calendar stays reserved and a
rejection can restore it.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import COMMITTED_STATUSES, LessonStatus
from ..database import Base
from .types import UTCDateTime, utc_now

logger = logging.getLogger(__name__)

_WINDOWED_SQL = "'SCHEDULED', 'RESCHEDULED', 'COMPLETED'"


class LessonBooking(Base):
    """
    One lesson request and its current lifecycle state.

    History is kept in LessonChangeLog; this row only holds current state.
    """

    __tablename__ = "lesson_bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Parties
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    enrollment_id = Column(String(26), ForeignKey("course_enrollments.id"), nullable=True)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    tutor_id = Column(String(26), ForeignKey("users.id"), nullable=True, index=True)

    # Request
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    option1 = Column(UTCDateTime, nullable=False)
    option2 = Column(UTCDateTime, nullable=False)
    option3 = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    request_note = Column(Text, nullable=True)

    # State
    status = Column(String(30), nullable=False, default=LessonStatus.PENDING.value, index=True)
    scheduled_start = Column(UTCDateTime, nullable=True, index=True)
    scheduled_end = Column(UTCDateTime, nullable=True)
    held_start = Column(UTCDateTime, nullable=True)
    held_end = Column(UTCDateTime, nullable=True)
    reschedule_count = Column(Integer, nullable=False, default=0)
    credits_reserved = Column(Integer, nullable=False, default=0)

    # Decision
    decision_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    decision_at = Column(UTCDateTime, nullable=True)
    decision_note = Column(Text, nullable=True)

    # Reschedule request
    reschedule_requested = Column(Boolean, nullable=False, default=False)
    reschedule_requested_at = Column(UTCDateTime, nullable=True)
    reschedule_requested_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    reschedule_is_late = Column(Boolean, nullable=False, default=False)
    reschedule_note = Column(Text, nullable=True)
    reschedule_option1 = Column(UTCDateTime, nullable=True)
    reschedule_option2 = Column(UTCDateTime, nullable=True)
    reschedule_option3 = Column(UTCDateTime, nullable=True)

    # Cancellation
    cancellation_requested = Column(Boolean, nullable=False, default=False)
    cancellation_requested_at = Column(UTCDateTime, nullable=True)
    cancellation_requested_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_note = Column(Text, nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Meeting metadata (opaque, provisioned best-effort)
    meeting_id = Column(String(100), nullable=True)
    meeting_join_url = Column(String(500), nullable=True)
    meeting_password = Column(String(100), nullable=True)

    # Session tracking
    student_attended = Column(Boolean, nullable=False, default=False)
    tutor_attended = Column(Boolean, nullable=False, default=False)
    student_joined_at = Column(UTCDateTime, nullable=True)
    tutor_joined_at = Column(UTCDateTime, nullable=True)
    session_started_at = Column(UTCDateTime, nullable=True)
    session_ended_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    # Soft delete and timestamps
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=True)

    # Relationships
    course = relationship("Course")
    enrollment = relationship("CourseEnrollment")
    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("User", foreign_keys=[tutor_id])
    change_logs = relationship(
        "LessonChangeLog",
        back_populates="lesson",
        order_by="LessonChangeLog.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SCHEDULED', 'COMPLETED', 'CANCELLED', "
            "'RESCHEDULE_REQUESTED', 'RESCHEDULED', 'REJECTED', "
            "'CANCELLATION_REQUESTED', 'NO_SHOW')",
            name="ck_lessons_status",
        ),
        CheckConstraint(
            f"(status IN ({_WINDOWED_SQL}) AND scheduled_start IS NOT NULL "
            "AND scheduled_end IS NOT NULL) OR "
            f"(status NOT IN ({_WINDOWED_SQL}) AND scheduled_start IS NULL "
            "AND scheduled_end IS NULL)",
            name="ck_lessons_window_matches_status",
        ),
        CheckConstraint("duration_minutes IN (30, 45, 60)", name="ck_lessons_duration"),
        CheckConstraint("reschedule_count >= 0", name="ck_lessons_reschedule_count"),
        CheckConstraint("credits_reserved >= 0", name="ck_lessons_credits_reserved"),
        Index("idx_lessons_tutor_status_start", "tutor_id", "status", "scheduled_start"),
        Index("idx_lessons_student_status_start", "student_id", "status", "scheduled_start"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = LessonStatus.PENDING.value
        if self.reschedule_count is None:
            self.reschedule_count = 0
        if self.credits_reserved is None:
            self.credits_reserved = 0

    def __repr__(self) -> str:
        return (
            f"<LessonBooking {self.id}: student={self.student_id}, tutor={self.tutor_id}, "
            f"status={self.status}, start={self.scheduled_start}>"
        )

    @property
    def lesson_status(self) -> LessonStatus:
        return LessonStatus(self.status)

    @property
    def options(self) -> List[datetime]:
        return [o for o in (self.option1, self.option2, self.option3) if o is not None]

    @property
    def reschedule_options(self) -> List[datetime]:
        return [
            o
            for o in (self.reschedule_option1, self.reschedule_option2, self.reschedule_option3)
            if o is not None
        ]

    @property
    def is_committed(self) -> bool:
        return self.lesson_status in COMMITTED_STATUSES

    def committed_window(self) -> Optional[Tuple[datetime, datetime]]:
        """The window this lesson currently occupies, pending requests included."""
        if self.scheduled_start is not None and self.scheduled_end is not None:
            return self.scheduled_start, self.scheduled_end
        if self.held_start is not None and self.held_end is not None:
            return self.held_start, self.held_end
        return None


class LessonChangeLog(Base):
    """Append-only audit row written for every lifecycle transition."""

    __tablename__ = "lesson_change_logs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    lesson_id = Column(String(26), ForeignKey("lesson_bookings.id"), nullable=False, index=True)
    actor_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    action = Column(String(50), nullable=False)
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=True)
    old_start = Column(UTCDateTime, nullable=True)
    old_end = Column(UTCDateTime, nullable=True)
    new_start = Column(UTCDateTime, nullable=True)
    new_end = Column(UTCDateTime, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    lesson = relationship("LessonBooking", back_populates="change_logs")

    def __repr__(self) -> str:
        return f"<LessonChangeLog {self.lesson_id} {self.action}>"
