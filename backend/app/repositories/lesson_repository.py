# backend/app/repositories/lesson_repository.py
"""
Lesson Repository for the TutorDesk scheduling engine.

Encapsulates lesson lookups, the commitment queries behind conflict
detection, and the append-only change log.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import COMMITTED_STATUSES, LessonStatus
from ..core.exceptions import RepositoryException
from ..models.lesson import LessonBooking, LessonChangeLog
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Pending requests keep their window reserved in held_start/held_end
_HELD_STATUSES = (LessonStatus.RESCHEDULE_REQUESTED, LessonStatus.CANCELLATION_REQUESTED)


def _values(statuses) -> List[str]:
    return [s.value for s in statuses]


class LessonRepository(BaseRepository[LessonBooking]):
    """Repository for lesson bookings and change logs."""

    def __init__(self, db: Session):
        super().__init__(db, LessonBooking)

    def get_lesson(self, lesson_id: str) -> Optional[LessonBooking]:
        """Lesson by id, ignoring soft-deleted rows."""
        try:
            return (
                self.db.query(LessonBooking)
                .filter(LessonBooking.id == lesson_id, LessonBooking.is_deleted.is_(False))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting lesson {lesson_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve lesson: {str(e)}")

    def get_lesson_for_update(self, lesson_id: str) -> Optional[LessonBooking]:
        try:
            query = self.db.query(LessonBooking).filter(
                LessonBooking.id == lesson_id, LessonBooking.is_deleted.is_(False)
            )
            return self._lock(query).populate_existing().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking lesson {lesson_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock lesson: {str(e)}")

    def _commitment_filter(self, start: datetime, end: datetime):
        committed = and_(
            LessonBooking.status.in_(_values(COMMITTED_STATUSES)),
            LessonBooking.scheduled_start.is_not(None),
            LessonBooking.scheduled_end.is_not(None),
            LessonBooking.scheduled_start < end,
            LessonBooking.scheduled_end > start,
        )
        held = and_(
            LessonBooking.status.in_(_values(_HELD_STATUSES)),
            LessonBooking.held_start.is_not(None),
            LessonBooking.held_end.is_not(None),
            LessonBooking.held_start < end,
            LessonBooking.held_end > start,
        )
        return and_(LessonBooking.is_deleted.is_(False), or_(committed, held))

    def find_conflicts(
        self,
        start: datetime,
        end: datetime,
        *,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        exclude_lesson_id: Optional[str] = None,
    ) -> List[LessonBooking]:
        """
        Committed lessons of the tutor or the student overlapping [start, end).

        A lesson with a pending reschedule or cancellation request still
        occupies its held window.
        """
        parties = []
        if tutor_id:
            parties.append(LessonBooking.tutor_id == tutor_id)
        if student_id:
            parties.append(LessonBooking.student_id == student_id)
        if not parties:
            return []
        try:
            query = self.db.query(LessonBooking).filter(
                self._commitment_filter(start, end), or_(*parties)
            )
            if exclude_lesson_id:
                query = query.filter(LessonBooking.id != exclude_lesson_id)
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking lesson conflicts: {str(e)}")
            raise RepositoryException(f"Failed to check conflicts: {str(e)}")

    def get_starting_between(self, start: datetime, end: datetime) -> List[LessonBooking]:
        """Scheduled or rescheduled lessons whose start falls in [start, end)."""
        query = (
            self.db.query(LessonBooking)
            .filter(
                LessonBooking.is_deleted.is_(False),
                LessonBooking.status.in_(_values(COMMITTED_STATUSES)),
                LessonBooking.scheduled_start >= start,
                LessonBooking.scheduled_start < end,
            )
            .order_by(LessonBooking.scheduled_start)
        )
        return self._execute_query(query)

    def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[LessonStatus] = None,
        limit: int = 100,
    ) -> List[LessonBooking]:
        """Lessons where the user is the student or the tutor, newest first."""
        query = self.db.query(LessonBooking).filter(
            LessonBooking.is_deleted.is_(False),
            or_(LessonBooking.student_id == user_id, LessonBooking.tutor_id == user_id),
        )
        if status is not None:
            query = query.filter(LessonBooking.status == status.value)
        query = query.order_by(LessonBooking.created_at.desc()).limit(limit)
        return self._execute_query(query)

    # Change log

    def add_change_log(self, **kwargs) -> LessonChangeLog:
        try:
            entry = LessonChangeLog(**kwargs)
            self.db.add(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Error writing change log: {str(e)}")
            raise RepositoryException(f"Failed to write change log: {str(e)}")

    def get_change_logs(self, lesson_id: str) -> List[LessonChangeLog]:
        query = (
            self.db.query(LessonChangeLog)
            .filter(LessonChangeLog.lesson_id == lesson_id)
            .order_by(LessonChangeLog.created_at, LessonChangeLog.id)
        )
        return self._execute_query(query)
