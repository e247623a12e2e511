"""Wallet, course ledger and tutor earning service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from app.core.constants import REFERENCE_ENROLLMENT, REFERENCE_LESSON
from app.core.enums import CourseLedgerEntryType, CreditTransactionType
from app.core.exceptions import (
    InsufficientCreditsException,
    InvalidRequestException,
    NotFoundException,
)
from app.core.scheduling_lock import course_ledger_key, scheduling_lock, wallet_key
from app.events import CreditsChanged, EarningAccrued, PendingEvents
from app.models.credits import (
    CourseCreditLedger,
    CourseLedgerTransaction,
    CreditsBalance,
    CreditTransaction,
    TutorEarningTransaction,
)
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory

from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_refund(credits: int, refund_percent: int) -> int:
    """
    Credits to refund for a lesson, rounded half away from zero and clamped
    to [0, credits]. ``compute_refund(1, 50) == 1``.
    """
    if credits <= 0:
        return 0
    raw = Decimal(credits) * Decimal(refund_percent) / Decimal(100)
    refund = int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return min(credits, max(0, refund))


@dataclass
class LedgerCheck:
    """Result of re-deriving a balance row from its transaction log."""

    scope: str
    owner: Dict[str, str]
    stored: Dict[str, int]
    derived: Dict[str, int]
    mismatches: List[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.mismatches


class CreditService(BaseService):
    """
    Sole writer of the wallet, course ledger and tutor earning tables.

    Every mutation locks the balance row it changes, updates it and appends
    the matching log entry inside one transaction. The row is also held on
    its ``wallet_key`` or ``course_ledger_key`` until commit. Callers that
    already own a transaction pass ``use_transaction=False`` plus their own
    ``events`` buffer, and must already hold those keys; otherwise events
    are published after this service commits.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)

    def _run(
        self,
        work: Callable[[PendingEvents], T],
        *,
        use_transaction: bool,
        events: Optional[PendingEvents],
        lock_keys: Sequence[str] = (),
    ) -> T:
        buffer = events if events is not None else PendingEvents()
        if not use_transaction:
            return work(buffer)
        try:
            with scheduling_lock(*lock_keys):
                with self.transaction():
                    result = work(buffer)
        except Exception:
            if events is None:
                buffer.discard()
            raise
        if events is None:
            buffer.publish()
        return result

    # Wallet

    def _create_wallet(self, user_id: str) -> CreditsBalance:
        """Create an empty or backfilled wallet row. Caller owns the transaction."""
        entries = self.credit_repository.get_legacy_entries(user_id)
        total = sum(e.delta_credits for e in entries if e.delta_credits > 0)
        used = -sum(e.delta_credits for e in entries if e.delta_credits < 0)
        if used > total:
            logger.warning(
                "Legacy ledger for user %s is overdrawn; opening balance clamped to zero",
                user_id,
                extra={"total": total, "used": used},
            )
            used = total

        balance = self.credit_repository.create(
            user_id=user_id,
            total_credits=total,
            used_credits=used,
            remaining_credits=total - used,
        )
        if total:
            self.credit_repository.add_wallet_transaction(
                user_id=user_id,
                amount=total,
                type=CreditTransactionType.ADJUSTMENT.value,
                reason="Opening balance from legacy ledger (credits)",
                balance_after=total,
            )
        if used:
            self.credit_repository.add_wallet_transaction(
                user_id=user_id,
                amount=-used,
                type=CreditTransactionType.ADJUSTMENT.value,
                reason="Opening balance from legacy ledger (debits)",
                balance_after=total - used,
            )
        if entries:
            logger.info(
                "Backfilled wallet from legacy ledger",
                extra={"user_id": user_id, "entries": len(entries), "remaining": total - used},
            )
        return balance

    @BaseService.measure_operation("backfill_wallet")
    def backfill_wallet_from_legacy(
        self, user_id: str, *, use_transaction: bool = True
    ) -> CreditsBalance:
        """
        Create the wallet row for a user from legacy ledger rows.

        Idempotent: an existing wallet is returned untouched. The opening
        balance is written as adjustment transactions so the wallet stays
        re-derivable from CreditTransaction alone.
        """

        def _backfill(_: PendingEvents) -> CreditsBalance:
            existing = self.credit_repository.get_balance(user_id, for_update=True)
            if existing is not None:
                return existing
            return self._create_wallet(user_id)

        return self._run(
            _backfill, use_transaction=use_transaction, events=None, lock_keys=[wallet_key(user_id)]
        )

    def backfill_all_wallets(self) -> int:
        """Backfill every user with legacy rows and no wallet; returns how many were created."""
        created = 0
        for user_id in self.credit_repository.get_users_pending_backfill():
            self.backfill_wallet_from_legacy(user_id)
            created += 1
        if created:
            self.logger.info("Backfilled %d wallets from legacy ledger", created)
        return created

    def _locked_wallet(self, user_id: str) -> CreditsBalance:
        balance = self.credit_repository.get_balance(user_id, for_update=True)
        if balance is None:
            balance = self._create_wallet(user_id)
        return balance

    def get_or_create_balance(self, user_id: str) -> CreditsBalance:
        """Wallet snapshot; the first access creates (and backfills) it."""
        balance = self.credit_repository.get_balance(user_id)
        if balance is not None:
            return balance
        return self.backfill_wallet_from_legacy(user_id)

    @BaseService.measure_operation("apply_wallet_delta")
    def apply_wallet_delta(
        self,
        user_id: str,
        amount: int,
        tx_type: CreditTransactionType,
        reason: str,
        *,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
        created_by_id: Optional[str] = None,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> CreditTransaction:
        """
        Apply a signed delta to a wallet and append its transaction.

        Raises:
            InvalidRequestException: If amount is zero
            InsufficientCreditsException: If a debit exceeds the remaining balance
        """
        if amount == 0:
            raise InvalidRequestException("Credit amount must be non-zero")

        def _apply(buffer: PendingEvents) -> CreditTransaction:
            balance = self._locked_wallet(user_id)
            if amount > 0:
                balance.total_credits += amount
                balance.remaining_credits += amount
            else:
                debit = -amount
                if balance.remaining_credits < debit:
                    raise InsufficientCreditsException(
                        required=debit, available=balance.remaining_credits, scope="wallet"
                    )
                balance.used_credits += debit
                balance.remaining_credits -= debit

            tx = self.credit_repository.add_wallet_transaction(
                user_id=user_id,
                amount=amount,
                type=tx_type.value,
                reason=reason,
                notes=notes,
                reference_type=reference_type,
                reference_id=reference_id,
                balance_after=balance.remaining_credits,
                created_by_id=created_by_id,
            )
            prometheus_metrics.record_ledger_mutation("wallet", tx_type.value)
            logger.info(
                "Wallet updated",
                extra={
                    "user_id": user_id,
                    "amount": amount,
                    "type": tx_type.value,
                    "balance_after": balance.remaining_credits,
                },
            )
            buffer.add(
                CreditsChanged(
                    user_id=user_id,
                    scope="wallet",
                    amount=amount,
                    entry_type=tx_type.value,
                    remaining=balance.remaining_credits,
                    reference_id=reference_id,
                )
            )
            return tx

        return self._run(
            _apply, use_transaction=use_transaction, events=events, lock_keys=[wallet_key(user_id)]
        )

    def purchase_credits(
        self, user_id: str, credits: int, *, reference_id: Optional[str] = None, notes: Optional[str] = None
    ) -> CreditTransaction:
        if credits <= 0:
            raise InvalidRequestException("Purchased credits must be positive")
        return self.apply_wallet_delta(
            user_id,
            credits,
            CreditTransactionType.PURCHASE,
            "Credit purchase",
            reference_type="Purchase" if reference_id else None,
            reference_id=reference_id,
            notes=notes,
        )

    def grant_bonus(
        self, user_id: str, credits: int, *, reason: str = "Bonus credits", created_by_id: Optional[str] = None
    ) -> CreditTransaction:
        if credits <= 0:
            raise InvalidRequestException("Bonus credits must be positive")
        return self.apply_wallet_delta(
            user_id, credits, CreditTransactionType.BONUS, reason, created_by_id=created_by_id
        )

    def adjust_credits(
        self, user_id: str, amount: int, *, reason: str, created_by_id: Optional[str] = None
    ) -> CreditTransaction:
        """Manual staff correction in either direction."""
        return self.apply_wallet_delta(
            user_id, amount, CreditTransactionType.ADJUSTMENT, reason, created_by_id=created_by_id
        )

    def apply_penalty(
        self,
        user_id: str,
        credits: int,
        *,
        reason: str,
        lesson_id: Optional[str] = None,
        created_by_id: Optional[str] = None,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> int:
        """
        Debit a policy penalty, capped at the remaining wallet balance.

        Returns the credits actually charged (0 when nothing was charged).
        """
        if credits <= 0:
            return 0

        def _penalize(buffer: PendingEvents) -> int:
            balance = self._locked_wallet(user_id)
            charged = min(credits, balance.remaining_credits)
            if charged < credits:
                logger.info(
                    "Penalty capped at wallet balance",
                    extra={"user_id": user_id, "penalty": credits, "charged": charged},
                )
            if charged <= 0:
                return 0
            self.apply_wallet_delta(
                user_id,
                -charged,
                CreditTransactionType.PENALTY,
                reason,
                reference_type=REFERENCE_LESSON if lesson_id else None,
                reference_id=lesson_id,
                created_by_id=created_by_id,
                use_transaction=False,
                events=buffer,
            )
            return charged

        return self._run(
            _penalize, use_transaction=use_transaction, events=events, lock_keys=[wallet_key(user_id)]
        )

    def list_wallet_transactions(self, user_id: str, limit: int = 100) -> List[CreditTransaction]:
        return self.credit_repository.list_wallet_transactions(user_id, limit=limit)

    def find_low_balances(self, threshold: int) -> List[CreditsBalance]:
        return self.credit_repository.find_low_balances(threshold)

    # Course ledger

    def get_course_ledger(self, student_id: str, course_id: str) -> CourseCreditLedger:
        ledger = self.credit_repository.get_course_ledger(student_id, course_id)
        if ledger is None:
            raise NotFoundException(
                "Course ledger not found",
                code="COURSE_LEDGER_NOT_FOUND",
                details={"student_id": student_id, "course_id": course_id},
            )
        return ledger

    def list_course_transactions(self, student_id: str, course_id: str) -> List[CourseLedgerTransaction]:
        ledger = self.get_course_ledger(student_id, course_id)
        return self.credit_repository.list_course_transactions(ledger.id)

    def _course_event(
        self,
        buffer: PendingEvents,
        ledger: CourseCreditLedger,
        amount: int,
        entry_type: CourseLedgerEntryType,
        reference_id: Optional[str],
    ) -> None:
        prometheus_metrics.record_ledger_mutation("course", entry_type.value)
        logger.info(
            "Course ledger updated",
            extra={
                "student_id": ledger.student_id,
                "course_id": ledger.course_id,
                "amount": amount,
                "type": entry_type.value,
                "remaining": ledger.credits_remaining,
            },
        )
        buffer.add(
            CreditsChanged(
                user_id=ledger.student_id,
                scope="course",
                amount=amount,
                entry_type=entry_type.value,
                remaining=ledger.credits_remaining,
                course_id=ledger.course_id,
                reference_id=reference_id,
            )
        )

    @BaseService.measure_operation("allocate_on_enrollment")
    def allocate_on_enrollment(
        self,
        student_id: str,
        course_id: str,
        credits: int,
        *,
        enrollment_id: Optional[str] = None,
        note: Optional[str] = None,
        created_by_id: Optional[str] = None,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> CourseCreditLedger:
        """Move credits from the student's wallet into their course ledger."""
        if credits <= 0:
            raise InvalidRequestException("Allocated credits must be positive")

        def _allocate(buffer: PendingEvents) -> CourseCreditLedger:
            self.apply_wallet_delta(
                student_id,
                -credits,
                CreditTransactionType.ENROLLMENT,
                "Credits allocated to course",
                reference_type=REFERENCE_ENROLLMENT if enrollment_id else None,
                reference_id=enrollment_id,
                notes=note,
                created_by_id=created_by_id,
                use_transaction=False,
                events=buffer,
            )

            ledger = self.credit_repository.get_course_ledger(student_id, course_id, for_update=True)
            if ledger is None:
                ledger = CourseCreditLedger(
                    student_id=student_id,
                    course_id=course_id,
                    credits_allocated=0,
                    credits_used=0,
                    credits_remaining=0,
                )
                self.db.add(ledger)
            ledger.credits_allocated += credits
            ledger.credits_remaining += credits
            self.db.flush()

            self.credit_repository.add_course_transaction(
                ledger_id=ledger.id,
                student_id=student_id,
                course_id=course_id,
                amount=credits,
                type=CourseLedgerEntryType.ALLOCATED.value,
                note=note,
                reference_id=enrollment_id,
            )

            if enrollment_id:
                enrollment = self.course_repository.get_enrollment(enrollment_id)
                if enrollment is not None:
                    enrollment.credits_allocated = (enrollment.credits_allocated or 0) + credits

            self._course_event(buffer, ledger, credits, CourseLedgerEntryType.ALLOCATED, enrollment_id)
            return ledger

        return self._run(
            _allocate,
            use_transaction=use_transaction,
            events=events,
            lock_keys=[wallet_key(student_id), course_ledger_key(student_id, course_id)],
        )

    @BaseService.measure_operation("reserve_for_lesson")
    def reserve_for_lesson(
        self,
        student_id: str,
        course_id: str,
        lesson_id: str,
        credits: int,
        *,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> int:
        """
        Move credits from the course ledger's remaining balance to used.

        Returns the credits reserved (0 when the policy charges nothing).

        Raises:
            InsufficientCreditsException: If the course ledger is missing or short
        """
        if credits <= 0:
            return 0

        def _reserve(buffer: PendingEvents) -> int:
            ledger = self.credit_repository.get_course_ledger(student_id, course_id, for_update=True)
            available = ledger.credits_remaining if ledger is not None else 0
            if ledger is None or available < credits:
                raise InsufficientCreditsException(
                    required=credits, available=available, scope="course"
                )
            ledger.credits_used += credits
            ledger.credits_remaining -= credits
            self.credit_repository.add_course_transaction(
                ledger_id=ledger.id,
                student_id=student_id,
                course_id=course_id,
                amount=-credits,
                type=CourseLedgerEntryType.LESSON_RESERVED.value,
                note="Lesson scheduled",
                reference_id=lesson_id,
            )
            self._course_event(buffer, ledger, -credits, CourseLedgerEntryType.LESSON_RESERVED, lesson_id)
            return credits

        return self._run(
            _reserve,
            use_transaction=use_transaction,
            events=events,
            lock_keys=[course_ledger_key(student_id, course_id)],
        )

    @BaseService.measure_operation("refund_for_lesson")
    def refund_for_lesson(
        self,
        student_id: str,
        course_id: str,
        lesson_id: str,
        credits: int,
        refund_percent: int,
        *,
        note: Optional[str] = None,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> int:
        """
        Return part of a lesson reservation to the course ledger.

        The refund is ``compute_refund(credits, refund_percent)`` and never
        more than the ledger's used credits. Returns the credits refunded.
        """
        refund = compute_refund(credits, refund_percent)
        if refund == 0:
            logger.info(
                "Lesson refund skipped",
                extra={"lesson_id": lesson_id, "credits": credits, "refund_percent": refund_percent},
            )
            return 0

        def _refund(buffer: PendingEvents) -> int:
            ledger = self.credit_repository.get_course_ledger(student_id, course_id, for_update=True)
            if ledger is None:
                raise NotFoundException(
                    "Course ledger not found",
                    code="COURSE_LEDGER_NOT_FOUND",
                    details={"student_id": student_id, "course_id": course_id},
                )
            applied = min(ledger.credits_used, refund)
            if applied <= 0:
                return 0
            ledger.credits_used -= applied
            ledger.credits_remaining += applied
            self.credit_repository.add_course_transaction(
                ledger_id=ledger.id,
                student_id=student_id,
                course_id=course_id,
                amount=applied,
                type=CourseLedgerEntryType.REFUND.value,
                note=note,
                reference_id=lesson_id,
            )
            self._course_event(buffer, ledger, applied, CourseLedgerEntryType.REFUND, lesson_id)
            return applied

        return self._run(
            _refund,
            use_transaction=use_transaction,
            events=events,
            lock_keys=[course_ledger_key(student_id, course_id)],
        )

    # Tutor earnings

    @BaseService.measure_operation("accrue_earning")
    def accrue_earning(
        self,
        tutor_id: str,
        lesson_id: Optional[str],
        credits: int,
        *,
        note: Optional[str] = None,
        use_transaction: bool = True,
        events: Optional[PendingEvents] = None,
    ) -> Optional[TutorEarningTransaction]:
        if credits <= 0:
            return None

        def _accrue(buffer: PendingEvents) -> TutorEarningTransaction:
            tx = self.credit_repository.add_tutor_earning(
                tutor_id=tutor_id, lesson_id=lesson_id, credits=credits, note=note
            )
            prometheus_metrics.record_ledger_mutation("earning", CreditTransactionType.TUTOR_EARNING.value)
            logger.info(
                "Tutor earning accrued",
                extra={"tutor_id": tutor_id, "lesson_id": lesson_id, "credits": credits},
            )
            buffer.add(EarningAccrued(tutor_id=tutor_id, credits=credits, lesson_id=lesson_id))
            return tx

        return self._run(_accrue, use_transaction=use_transaction, events=events)

    def has_earning_for_lesson(self, lesson_id: str) -> bool:
        return self.credit_repository.has_earning_for_lesson(lesson_id)

    def get_tutor_earnings_total(
        self, tutor_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> int:
        return self.credit_repository.sum_tutor_earnings(tutor_id, since, until)

    def list_tutor_earnings(
        self, tutor_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> List[TutorEarningTransaction]:
        return self.credit_repository.list_tutor_earnings(tutor_id, since, until)

    # Consistency checks

    def verify_wallet_consistency(self, user_id: str) -> LedgerCheck:
        balance = self.credit_repository.get_balance(user_id)
        if balance is None:
            raise NotFoundException("Wallet not found", code="WALLET_NOT_FOUND")
        credits, debits = self.credit_repository.sum_wallet_transactions(user_id)
        check = LedgerCheck(
            scope="wallet",
            owner={"user_id": user_id},
            stored={
                "total": balance.total_credits,
                "used": balance.used_credits,
                "remaining": balance.remaining_credits,
            },
            derived={"total": credits, "used": debits, "remaining": credits - debits},
        )
        self._compare(check)
        return check

    def verify_course_ledger_consistency(self, student_id: str, course_id: str) -> LedgerCheck:
        ledger = self.get_course_ledger(student_id, course_id)
        allocated, net = self.credit_repository.sum_course_transactions(ledger.id)
        check = LedgerCheck(
            scope="course",
            owner={"student_id": student_id, "course_id": course_id},
            stored={
                "allocated": ledger.credits_allocated,
                "used": ledger.credits_used,
                "remaining": ledger.credits_remaining,
            },
            derived={"allocated": allocated, "used": allocated - net, "remaining": net},
        )
        self._compare(check)
        return check

    def _compare(self, check: LedgerCheck) -> None:
        for key, derived in check.derived.items():
            if check.stored.get(key) != derived:
                check.mismatches.append(f"{key}: stored={check.stored.get(key)} derived={derived}")
        if check.mismatches:
            logger.warning(
                "Ledger drift detected",
                extra={"scope": check.scope, **check.owner, "mismatches": check.mismatches},
            )
