# backend/app/repositories/credit_repository.py
"""
Credit Repository for the TutorDesk scheduling engine.

Data access for the wallet, course and tutor-earning ledgers. Balance rows
are loaded with a row lock so every read-modify-write in CreditService is
serialized per wallet (user) or per course ledger (student, course).
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, List, Optional, Tuple, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.enums import CourseLedgerEntryType
from app.core.exceptions import RepositoryException
from app.models.credits import (
    CourseCreditLedger,
    CourseLedgerTransaction,
    CreditLedgerEntry,
    CreditsBalance,
    CreditTransaction,
    TutorEarningTransaction,
)

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[CreditsBalance]):
    """Repository for wallet, course ledger and tutor earning rows."""

    def __init__(self, db: Session):
        super().__init__(db, CreditsBalance)
        self.logger = logging.getLogger(__name__)

    # Wallet

    def get_balance(self, user_id: str, *, for_update: bool = False) -> Optional[CreditsBalance]:
        try:
            query = self.db.query(CreditsBalance).filter(CreditsBalance.user_id == user_id)
            if for_update:
                query = self._lock(query)
            return cast(Optional[CreditsBalance], query.first())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load wallet for %s: %s", user_id, str(exc))
            raise RepositoryException("Failed to load wallet balance") from exc

    def add_wallet_transaction(self, **kwargs: Any) -> CreditTransaction:
        try:
            tx = CreditTransaction(**kwargs)
            self.db.add(tx)
            self.db.flush()
            return tx
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write wallet transaction: %s", str(exc))
            raise RepositoryException("Failed to write wallet transaction") from exc

    def sum_wallet_transactions(self, user_id: str) -> Tuple[int, int]:
        """Return (sum of credits, sum of debits as a positive number) for a wallet."""
        try:
            credits = (
                self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
                .filter(CreditTransaction.user_id == user_id, CreditTransaction.amount > 0)
                .scalar()
            )
            debits = (
                self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0))
                .filter(CreditTransaction.user_id == user_id, CreditTransaction.amount < 0)
                .scalar()
            )
            return int(credits or 0), -int(debits or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to total wallet transactions: %s", str(exc))
            raise RepositoryException("Failed to total wallet transactions") from exc

    def list_wallet_transactions(self, user_id: str, limit: int = 100) -> List[CreditTransaction]:
        query = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
        )
        return cast(List[CreditTransaction], self._execute_query(query))

    def find_low_balances(self, threshold: int) -> List[CreditsBalance]:
        query = (
            self.db.query(CreditsBalance)
            .filter(CreditsBalance.remaining_credits <= threshold)
            .order_by(CreditsBalance.remaining_credits, CreditsBalance.user_id)
        )
        return cast(List[CreditsBalance], self._execute_query(query))

    # Legacy ledger

    def get_legacy_entries(self, user_id: str) -> List[CreditLedgerEntry]:
        query = (
            self.db.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.user_id == user_id)
            .order_by(CreditLedgerEntry.created_at, CreditLedgerEntry.id)
        )
        return cast(List[CreditLedgerEntry], self._execute_query(query))

    def get_users_pending_backfill(self) -> List[str]:
        """Users with legacy ledger rows but no wallet yet."""
        try:
            rows = (
                self.db.query(CreditLedgerEntry.user_id)
                .outerjoin(CreditsBalance, CreditsBalance.user_id == CreditLedgerEntry.user_id)
                .filter(CreditsBalance.id.is_(None))
                .distinct()
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list users pending backfill: %s", str(exc))
            raise RepositoryException("Failed to list users pending backfill") from exc

    # Course ledger

    def get_course_ledger(
        self, student_id: str, course_id: str, *, for_update: bool = False
    ) -> Optional[CourseCreditLedger]:
        try:
            query = self.db.query(CourseCreditLedger).filter(
                CourseCreditLedger.student_id == student_id,
                CourseCreditLedger.course_id == course_id,
            )
            if for_update:
                query = self._lock(query)
            return cast(Optional[CourseCreditLedger], query.first())
        except SQLAlchemyError as exc:
            self.logger.error(
                "Failed to load course ledger %s/%s: %s", student_id, course_id, str(exc)
            )
            raise RepositoryException("Failed to load course ledger") from exc

    def add_course_transaction(self, **kwargs: Any) -> CourseLedgerTransaction:
        try:
            tx = CourseLedgerTransaction(**kwargs)
            self.db.add(tx)
            self.db.flush()
            return tx
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write course ledger transaction: %s", str(exc))
            raise RepositoryException("Failed to write course ledger transaction") from exc

    def sum_course_transactions(self, ledger_id: str) -> Tuple[int, int]:
        """Return (allocated total, net sum of all entries) for a course ledger."""
        try:
            allocated = (
                self.db.query(func.coalesce(func.sum(CourseLedgerTransaction.amount), 0))
                .filter(
                    CourseLedgerTransaction.ledger_id == ledger_id,
                    CourseLedgerTransaction.type == CourseLedgerEntryType.ALLOCATED.value,
                )
                .scalar()
            )
            net = (
                self.db.query(func.coalesce(func.sum(CourseLedgerTransaction.amount), 0))
                .filter(CourseLedgerTransaction.ledger_id == ledger_id)
                .scalar()
            )
            return int(allocated or 0), int(net or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to total course ledger: %s", str(exc))
            raise RepositoryException("Failed to total course ledger") from exc

    def list_course_transactions(self, ledger_id: str) -> List[CourseLedgerTransaction]:
        query = (
            self.db.query(CourseLedgerTransaction)
            .filter(CourseLedgerTransaction.ledger_id == ledger_id)
            .order_by(CourseLedgerTransaction.created_at, CourseLedgerTransaction.id)
        )
        return cast(List[CourseLedgerTransaction], self._execute_query(query))

    # Tutor earnings

    def add_tutor_earning(self, **kwargs: Any) -> TutorEarningTransaction:
        try:
            tx = TutorEarningTransaction(**kwargs)
            self.db.add(tx)
            self.db.flush()
            return tx
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write tutor earning: %s", str(exc))
            raise RepositoryException("Failed to write tutor earning") from exc

    def _earnings_query(
        self, tutor_id: str, since: Optional[datetime], until: Optional[datetime]
    ):
        query = self.db.query(TutorEarningTransaction).filter(
            TutorEarningTransaction.tutor_id == tutor_id
        )
        if since is not None:
            query = query.filter(TutorEarningTransaction.created_at >= since)
        if until is not None:
            query = query.filter(TutorEarningTransaction.created_at < until)
        return query

    def sum_tutor_earnings(
        self, tutor_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> int:
        query = self._earnings_query(tutor_id, since, until).with_entities(
            func.coalesce(func.sum(TutorEarningTransaction.credits), 0)
        )
        return int(self._execute_scalar(query) or 0)

    def list_tutor_earnings(
        self, tutor_id: str, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> List[TutorEarningTransaction]:
        query = self._earnings_query(tutor_id, since, until).order_by(
            TutorEarningTransaction.created_at, TutorEarningTransaction.id
        )
        return cast(List[TutorEarningTransaction], self._execute_query(query))

    def has_earning_for_lesson(self, lesson_id: str) -> bool:
        try:
            return (
                self.db.query(TutorEarningTransaction.id)
                .filter(TutorEarningTransaction.lesson_id == lesson_id)
                .first()
                is not None
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to check earning for lesson %s: %s", lesson_id, str(exc))
            raise RepositoryException("Failed to check tutor earning") from exc


__all__ = ["CreditRepository"]
