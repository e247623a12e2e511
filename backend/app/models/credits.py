# backend/app/models/credits.py
"""
Credit ledger models.

Two tiers of balances, each with an append-only transaction log:

- CreditsBalance / CreditTransaction: the per-user wallet.
- CourseCreditLedger / CourseLedgerTransaction: credits allocated from the
  wallet into one (student, course) pair and consumed per lesson.

TutorEarningTransaction is a pure accrual log with no balance row.
CreditLedgerEntry is the legacy wallet log, read only by the backfill routine.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
import ulid

from ..database import Base
from .types import UTCDateTime, utc_now


class CreditsBalance(Base):
    """Wallet balance, one row per user. Derived from CreditTransaction."""

    __tablename__ = "credits_balances"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    total_credits = Column(Integer, nullable=False, default=0)
    used_credits = Column(Integer, nullable=False, default=0)
    remaining_credits = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_credits_balance_user"),
        CheckConstraint("remaining_credits >= 0", name="ck_balance_remaining_non_negative"),
        CheckConstraint(
            "remaining_credits = total_credits - used_credits", name="ck_balance_consistent"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditsBalance user={self.user_id} total={self.total_credits} "
            f"used={self.used_credits} remaining={self.remaining_credits}>"
        )


class CreditTransaction(Base):
    """Append-only wallet ledger entry. ``balance_after`` is a write-time snapshot."""

    __tablename__ = "credit_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)
    reason = Column(String(200), nullable=False)
    notes = Column(Text, nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(26), nullable=True)
    balance_after = Column(Integer, nullable=False)
    created_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_tx_amount_non_zero"),
        Index("idx_credit_tx_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction user={self.user_id} {self.type} {self.amount:+d}>"


class CreditLedgerEntry(Base):
    """Legacy wallet log kept for backfilling balances created before CreditsBalance existed."""

    __tablename__ = "credit_ledger_entries"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    delta_credits = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(26), nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)


class CourseCreditLedger(Base):
    """Per (student, course) allocation balance."""

    __tablename__ = "course_credit_ledgers"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    credits_allocated = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_course_ledger_student_course"),
        CheckConstraint("credits_remaining >= 0", name="ck_course_ledger_remaining_non_negative"),
        CheckConstraint(
            "credits_remaining = credits_allocated - credits_used",
            name="ck_course_ledger_consistent",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CourseCreditLedger student={self.student_id} course={self.course_id} "
            f"allocated={self.credits_allocated} used={self.credits_used} "
            f"remaining={self.credits_remaining}>"
        )


class CourseLedgerTransaction(Base):
    """Append-only course ledger entry (Allocated / LessonReserved / Refund)."""

    __tablename__ = "course_ledger_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    ledger_id = Column(String(26), ForeignKey("course_credit_ledgers.id"), nullable=False)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)
    note = Column(Text, nullable=True)
    reference_id = Column(String(26), nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (Index("idx_course_ledger_tx_ledger", "ledger_id", "created_at"),)


class TutorEarningTransaction(Base):
    """Append-only tutor earning accrual."""

    __tablename__ = "tutor_earning_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    lesson_id = Column(String(26), ForeignKey("lesson_bookings.id"), nullable=True)
    credits = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    __table_args__ = (CheckConstraint("credits > 0", name="ck_tutor_earning_positive"),)
