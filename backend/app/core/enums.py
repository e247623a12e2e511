# backend/app/core/enums.py
"""
Core enums for the TutorDesk scheduling engine.

These enums are stored as their string values so rows stay readable in
the database and in audit exports.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles supplied by the identity context."""

    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"


class LessonStatus(str, Enum):
    """Lesson booking lifecycle statuses."""

    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RESCHEDULE_REQUESTED = "RESCHEDULE_REQUESTED"
    RESCHEDULED = "RESCHEDULED"
    REJECTED = "REJECTED"
    CANCELLATION_REQUESTED = "CANCELLATION_REQUESTED"
    NO_SHOW = "NO_SHOW"


# Statuses that occupy the tutor's and student's calendars
COMMITTED_STATUSES = (LessonStatus.SCHEDULED, LessonStatus.RESCHEDULED)

# Statuses for which scheduled_start/scheduled_end are populated
WINDOWED_STATUSES = (
    LessonStatus.SCHEDULED,
    LessonStatus.RESCHEDULED,
    LessonStatus.COMPLETED,
)

TERMINAL_STATUSES = (
    LessonStatus.COMPLETED,
    LessonStatus.CANCELLED,
    LessonStatus.REJECTED,
    LessonStatus.NO_SHOW,
)


class CreditTransactionType(str, Enum):
    """Wallet ledger entry types."""

    PURCHASE = "purchase"
    BONUS = "bonus"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    ENROLLMENT = "enrollment"
    LESSON_RESERVATION = "lesson_reservation"
    LESSON_REFUND = "lesson_refund"
    PENALTY = "penalty"
    TUTOR_EARNING = "tutor_earning"


class CourseLedgerEntryType(str, Enum):
    """Per-course ledger entry types."""

    ALLOCATED = "Allocated"
    LESSON_RESERVED = "LessonReserved"
    REFUND = "Refund"


class EnrollmentStatus(str, Enum):
    """Course enrollment approval states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
