# backend/app/schemas/__init__.py
"""Pydantic schemas for the TutorDesk scheduling and credit API."""

from .availability import (
    AvailabilityBlockCreate,
    AvailabilityBlockResponse,
    AvailabilityResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    SlotResponse,
)
from .credits import (
    CourseAllocationRequest,
    CourseLedgerResponse,
    CourseLedgerTransactionResponse,
    CreditAdjustmentRequest,
    CreditPurchaseRequest,
    CreditTransactionResponse,
    LedgerCheckResponse,
    TutorEarningResponse,
    TutorEarningsSummary,
    WalletBalanceResponse,
)
from .lesson import (
    LessonChangeLogResponse,
    LessonDecisionRequest,
    LessonNoteRequest,
    LessonReasonRequest,
    LessonRequestCreate,
    LessonResponse,
    RescheduleApprovalRequest,
    RescheduleRequestCreate,
)

__all__ = [
    "AvailabilityBlockCreate",
    "AvailabilityBlockResponse",
    "AvailabilityResponse",
    "AvailabilityRuleCreate",
    "AvailabilityRuleResponse",
    "SlotResponse",
    "CourseAllocationRequest",
    "CourseLedgerResponse",
    "CourseLedgerTransactionResponse",
    "CreditAdjustmentRequest",
    "CreditPurchaseRequest",
    "CreditTransactionResponse",
    "LedgerCheckResponse",
    "TutorEarningResponse",
    "TutorEarningsSummary",
    "WalletBalanceResponse",
    "LessonChangeLogResponse",
    "LessonDecisionRequest",
    "LessonNoteRequest",
    "LessonReasonRequest",
    "LessonRequestCreate",
    "LessonResponse",
    "RescheduleApprovalRequest",
    "RescheduleRequestCreate",
]
