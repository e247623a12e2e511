"""Credit ledger schemas (wallet, course ledger, tutor earnings)."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel


class WalletBalanceResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    user_id: str
    total_credits: int
    used_credits: int
    remaining_credits: int


class CreditTransactionResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    amount: int
    type: str
    reason: str
    notes: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    balance_after: int
    created_at: datetime


class CourseLedgerResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    student_id: str
    course_id: str
    credits_allocated: int
    credits_used: int
    credits_remaining: int


class CourseLedgerTransactionResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    amount: int
    type: str
    note: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: datetime


class CreditPurchaseRequest(StrictRequestModel):
    credits: int = Field(..., gt=0)
    reference_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class CreditAdjustmentRequest(StrictRequestModel):
    amount: int
    reason: str = Field(..., min_length=1, max_length=200)

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v


class CourseAllocationRequest(StrictRequestModel):
    course_id: str
    credits: int = Field(..., gt=0)
    enrollment_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=500)


class TutorEarningResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    lesson_id: Optional[str] = None
    credits: int
    note: Optional[str] = None
    created_at: datetime


class TutorEarningsSummary(StrictModel):
    tutor_id: str
    total_credits: int
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    entries: List[TutorEarningResponse] = Field(default_factory=list)


class LedgerCheckResponse(StrictModel):
    scope: str
    owner: Dict[str, str]
    stored: Dict[str, int]
    derived: Dict[str, int]
    consistent: bool
    mismatches: List[str] = Field(default_factory=list)
