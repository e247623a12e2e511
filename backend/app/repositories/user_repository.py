# backend/app/repositories/user_repository.py
"""
User Repository for the TutorDesk scheduling engine.

Read-mostly access to users, courses and enrollments; identity itself is
managed by an external service.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.course import Course, CourseEnrollment
from ..models.user import User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for users."""

    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_timezone(self, user_id: str) -> Optional[str]:
        """Return the stored IANA zone name for a user, if any."""
        try:
            row = self.db.query(User.timezone).filter(User.id == user_id).first()
            return row[0] if row else None
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading timezone for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to load timezone: {str(e)}")


class CourseRepository(BaseRepository[Course]):
    """Repository for courses and their enrollments."""

    def __init__(self, db: Session):
        super().__init__(db, Course)

    def get_enrollment(self, enrollment_id: str) -> Optional[CourseEnrollment]:
        try:
            return (
                self.db.query(CourseEnrollment)
                .options(joinedload(CourseEnrollment.course))
                .filter(CourseEnrollment.id == enrollment_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting enrollment {enrollment_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve enrollment: {str(e)}")

    def get_enrollment_for_student(
        self, student_id: str, course_id: str
    ) -> Optional[CourseEnrollment]:
        try:
            return (
                self.db.query(CourseEnrollment)
                .options(joinedload(CourseEnrollment.course))
                .filter(
                    CourseEnrollment.student_id == student_id,
                    CourseEnrollment.course_id == course_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error getting enrollment for student {student_id}, course {course_id}: {str(e)}"
            )
            raise RepositoryException(f"Failed to retrieve enrollment: {str(e)}")

    def list_enrollments_for_student(self, student_id: str) -> List[CourseEnrollment]:
        query = self.db.query(CourseEnrollment).filter(CourseEnrollment.student_id == student_id)
        return self._execute_query(query)
