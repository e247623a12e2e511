# backend/app/models/course.py
"""
Course and enrollment models.

A student may only request lessons against an approved enrollment. The
enrollment's tutor overrides the course's default tutor when set.
"""

from typing import Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import EnrollmentStatus
from ..database import Base
from .types import UTCDateTime, utc_now


class Course(Base):
    """A course a student enrolls in and books lessons for."""

    __tablename__ = "courses"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(200), nullable=False)
    tutor_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    tutor = relationship("User", foreign_keys=[tutor_id])

    def __repr__(self) -> str:
        return f"<Course {self.name}>"


class CourseEnrollment(Base):
    """Student enrollment in a course, approved by staff before lessons can be requested."""

    __tablename__ = "course_enrollments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    tutor_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.PENDING.value)
    credits_allocated = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    course = relationship("Course")
    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("User", foreign_keys=[tutor_id])

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_enrollment_student_course"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_enrollments_status"
        ),
        CheckConstraint("credits_allocated >= 0", name="ck_enrollments_credits_non_negative"),
    )

    @property
    def is_approved(self) -> bool:
        return self.status == EnrollmentStatus.APPROVED.value

    @property
    def effective_tutor_id(self) -> Optional[str]:
        """Enrollment tutor, falling back to the course tutor."""
        if self.tutor_id:
            return self.tutor_id
        return self.course.tutor_id if self.course is not None else None

    def __repr__(self) -> str:
        return (
            f"<CourseEnrollment {self.id}: student={self.student_id}, "
            f"course={self.course_id}, status={self.status}>"
        )
