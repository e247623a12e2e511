# backend/app/repositories/availability_repository.py
"""
Availability Repository for the TutorDesk scheduling engine.

Loads a tutor's weekly rules and one-off blocks for the slot generator and
the commit-time bookability check.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import TutorAvailabilityBlock, TutorAvailabilityRule
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[TutorAvailabilityRule]):
    """Repository for tutor availability rules and blocks."""

    def __init__(self, db: Session):
        super().__init__(db, TutorAvailabilityRule)

    def get_active_rules(
        self, tutor_id: str, slot_minutes: Optional[int] = None
    ) -> List[TutorAvailabilityRule]:
        """Active rules for a tutor, optionally only those of one slot length."""
        try:
            query = self.db.query(TutorAvailabilityRule).filter(
                TutorAvailabilityRule.tutor_id == tutor_id,
                TutorAvailabilityRule.is_active.is_(True),
            )
            if slot_minutes is not None:
                query = query.filter(TutorAvailabilityRule.slot_minutes == slot_minutes)
            return query.order_by(
                TutorAvailabilityRule.day_of_week,
                TutorAvailabilityRule.start_minutes,
                TutorAvailabilityRule.id,
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading rules for tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load availability rules: {str(e)}")

    def get_blocks_overlapping(
        self, tutor_id: str, start_utc: datetime, end_utc: datetime
    ) -> List[TutorAvailabilityBlock]:
        """Non-deleted blocks intersecting [start_utc, end_utc)."""
        try:
            return (
                self.db.query(TutorAvailabilityBlock)
                .filter(
                    TutorAvailabilityBlock.tutor_id == tutor_id,
                    TutorAvailabilityBlock.is_deleted.is_(False),
                    TutorAvailabilityBlock.end_utc > start_utc,
                    TutorAvailabilityBlock.start_utc < end_utc,
                )
                .order_by(TutorAvailabilityBlock.start_utc)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading blocks for tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load availability blocks: {str(e)}")

    def get_block(self, block_id: str) -> Optional[TutorAvailabilityBlock]:
        try:
            return (
                self.db.query(TutorAvailabilityBlock)
                .filter(TutorAvailabilityBlock.id == block_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting block {block_id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve block: {str(e)}")

    def create_block(self, **kwargs) -> TutorAvailabilityBlock:
        try:
            block = TutorAvailabilityBlock(**kwargs)
            self.db.add(block)
            self.db.flush()
            return block
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating block: {str(e)}")
            raise RepositoryException(f"Failed to create block: {str(e)}")
