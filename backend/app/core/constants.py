"""Application-wide constants for the TutorDesk scheduling engine."""

from __future__ import annotations

BRAND_NAME = "TutorDesk"

API_TITLE = f"{BRAND_NAME} Scheduling API"
API_VERSION = "1.0.0"
API_DESCRIPTION = "Lesson scheduling, tutor availability and credit ledger engine"

# CORS origins for the staff and student front ends
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# Lesson lengths a tutor rule or lesson request may use
ALLOWED_LESSON_DURATIONS = (30, 45, 60)  # minutes

# Lesson requests always carry exactly this many proposed instants
PROPOSED_OPTION_COUNT = 3

MINUTES_PER_DAY = 24 * 60

# Text constraints
MAX_REASON_LENGTH = 500

# Query limits
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000

# Reference types stored on wallet transactions
REFERENCE_LESSON = "LessonBooking"
REFERENCE_ENROLLMENT = "CourseEnrollment"

# Change-log action labels
ACTION_REQUESTED = "Requested"
ACTION_SCHEDULED = "Scheduled"
ACTION_REJECTED = "Rejected"
ACTION_WITHDRAWN = "Withdrawn"
ACTION_RESCHEDULE_REQUESTED = "RescheduleRequested"
ACTION_RESCHEDULE_REQUESTED_LATE = "RescheduleRequestedLate"
ACTION_RESCHEDULE_APPROVED = "RescheduleApproved"
ACTION_RESCHEDULED_AUTO = "RescheduledAuto"
ACTION_RESCHEDULE_REJECTED = "RescheduleRejected"
ACTION_CANCELLATION_REQUESTED = "CancellationRequested"
ACTION_CANCELLATION_REJECTED = "CancellationRejected"
ACTION_CANCELLED_BY_STUDENT = "CancelledByStudent"
ACTION_CANCELLED_BY_STAFF = "CancelledByStaff"
ACTION_COMPLETED = "Completed"
ACTION_NO_SHOW = "NoShow"
