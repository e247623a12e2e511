# backend/app/models/availability.py
"""
Tutor availability models.

Classes:
    TutorAvailabilityRule: Recurring weekly window in the tutor's local time
    TutorAvailabilityBlock: One-off UTC interval during which the tutor is away
"""

import logging

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, utc_now

logger = logging.getLogger(__name__)


class TutorAvailabilityRule(Base):
    """
    Weekly recurring availability template.

    ``day_of_week`` uses 0=Sunday .. 6=Saturday. ``start_minutes`` and
    ``end_minutes`` are minutes since local midnight in the tutor's zone.
    """

    __tablename__ = "tutor_availability_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_minutes = Column(Integer, nullable=False)
    end_minutes = Column(Integer, nullable=False)
    slot_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    tutor = relationship("User", back_populates="availability_rules")

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_rule_day_of_week"),
        CheckConstraint(
            "start_minutes >= 0 AND start_minutes < end_minutes AND end_minutes <= 1440",
            name="ck_rule_minutes_order",
        ),
        CheckConstraint("slot_minutes IN (30, 45, 60)", name="ck_rule_slot_minutes"),
        Index("idx_rules_tutor_day", "tutor_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<TutorAvailabilityRule tutor={self.tutor_id} day={self.day_of_week} "
            f"{self.start_minutes}-{self.end_minutes} slot={self.slot_minutes}>"
        )


class TutorAvailabilityBlock(Base):
    """Tutor vacation or other unavailable period."""

    __tablename__ = "tutor_availability_blocks"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    start_utc = Column(UTCDateTime, nullable=False)
    end_utc = Column(UTCDateTime, nullable=False)
    reason = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    tutor = relationship("User", back_populates="availability_blocks")

    __table_args__ = (
        CheckConstraint("start_utc < end_utc", name="ck_block_interval_order"),
        Index("idx_blocks_tutor_start", "tutor_id", "start_utc"),
    )

    def __repr__(self) -> str:
        return f"<TutorAvailabilityBlock {self.start_utc} - {self.end_utc}>"
