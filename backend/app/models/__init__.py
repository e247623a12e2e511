"""
Database models for the TutorDesk scheduling engine.

The models are organized by functionality:
- Users (students, tutors, admins)
- Courses and enrollments
- Tutor availability rules and blocks
- Lesson bookings and their change log
- Wallet, course and tutor-earning ledgers
"""

from .availability import TutorAvailabilityBlock, TutorAvailabilityRule
from .course import Course, CourseEnrollment
from .credits import (
    CourseCreditLedger,
    CourseLedgerTransaction,
    CreditLedgerEntry,
    CreditsBalance,
    CreditTransaction,
    TutorEarningTransaction,
)
from .lesson import LessonBooking, LessonChangeLog
from .user import User

__all__ = [
    "User",
    "Course",
    "CourseEnrollment",
    "TutorAvailabilityRule",
    "TutorAvailabilityBlock",
    "LessonBooking",
    "LessonChangeLog",
    "CreditsBalance",
    "CreditTransaction",
    "CreditLedgerEntry",
    "CourseCreditLedger",
    "CourseLedgerTransaction",
    "TutorEarningTransaction",
]
