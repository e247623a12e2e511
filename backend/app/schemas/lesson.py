# backend/app/schemas/lesson.py
"""
Lesson booking schemas for TutorDesk.

All instants are UTC. Request bodies are strict; range and lifecycle
checks happen in LessonPolicyService so they surface as domain errors.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import ConfigDict, Field

from ..core.constants import MAX_REASON_LENGTH
from ._strict_base import StrictModel, StrictRequestModel


class LessonRequestCreate(StrictRequestModel):
    """A student's lesson request with three proposed start times."""

    enrollment_id: str
    date_from: date
    date_to: date
    options: List[datetime] = Field(..., description="Exactly three proposed UTC start times")
    duration_minutes: int = Field(60, description="30, 45 or 60")
    note: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class LessonDecisionRequest(StrictRequestModel):
    chosen_start: datetime
    note: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)
    tutor_id: Optional[str] = Field(None, description="Assign a tutor when the lesson has none")


class LessonNoteRequest(StrictRequestModel):
    note: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class RescheduleRequestCreate(StrictRequestModel):
    options: List[datetime] = Field(..., description="Exactly three new UTC start times")
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class RescheduleApprovalRequest(StrictRequestModel):
    chosen_start: datetime
    note: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class LessonReasonRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class LessonResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    course_id: str
    enrollment_id: Optional[str] = None
    student_id: str
    tutor_id: Optional[str] = None
    status: str
    date_from: date
    date_to: date
    options: List[datetime]
    duration_minutes: int
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    held_start: Optional[datetime] = None
    held_end: Optional[datetime] = None
    reschedule_count: int
    credits_reserved: int
    reschedule_requested: bool
    reschedule_is_late: bool
    reschedule_options: List[datetime] = Field(default_factory=list)
    cancellation_requested: bool
    cancel_reason: Optional[str] = None
    meeting_join_url: Optional[str] = None
    student_attended: bool
    tutor_attended: bool
    session_started_at: Optional[datetime] = None
    session_ended_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class LessonChangeLogResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    lesson_id: str
    actor_id: Optional[str] = None
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    old_start: Optional[datetime] = None
    old_end: Optional[datetime] = None
    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None
    note: Optional[str] = None
    created_at: datetime
