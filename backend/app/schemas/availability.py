# backend/app/schemas/availability.py
"""
Availability schemas for TutorDesk.

Rules are tutor-local weekly templates (minutes since local midnight,
0=Sunday); blocks and slots are UTC instants.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from ._strict_base import StrictModel, StrictRequestModel


class SlotResponse(StrictModel):
    start: datetime
    end: datetime


class AvailabilityResponse(StrictModel):
    """Bookable slots for a tutor; ``tutor_assigned`` is False when no tutor could be resolved."""

    tutor_assigned: bool
    tutor_id: Optional[str] = None
    timezone: Optional[str] = None
    duration_minutes: Optional[int] = None
    slots: List[SlotResponse] = Field(default_factory=list)


class AvailabilityRuleCreate(StrictRequestModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday .. 6=Saturday")
    start_minutes: int = Field(..., ge=0, le=1440, description="Minutes since local midnight")
    end_minutes: int = Field(..., ge=0, le=1440)
    slot_minutes: int = Field(..., description="Slot length: 30, 45 or 60")

    @field_validator("end_minutes")
    @classmethod
    def validate_order(cls, v, info):
        """Ensure the rule ends after it starts."""
        start = info.data.get("start_minutes")
        if start is not None and v <= start:
            raise ValueError("end_minutes must be after start_minutes")
        return v


class AvailabilityRuleResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    tutor_id: str
    day_of_week: int
    start_minutes: int
    end_minutes: int
    slot_minutes: int
    is_active: bool


class AvailabilityBlockCreate(StrictRequestModel):
    start_utc: datetime
    end_utc: datetime
    reason: Optional[str] = Field(None, max_length=500)


class AvailabilityBlockResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    tutor_id: str
    start_utc: datetime
    end_utc: datetime
    reason: Optional[str] = None
