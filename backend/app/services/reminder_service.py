"""
Reminder jobs: lessons starting soon and low wallet balances.

Both jobs are safe to run repeatedly; a set-if-absent key in the cache
port suppresses duplicates for the configured dedupe window.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..events import LessonStartingSoon, LowCreditsWarning, PendingEvents
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .cache_service import CachePort, get_cache_service
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)


class ReminderService(BaseService):
    def __init__(self, db: Session, cache: Optional[CachePort] = None):
        super().__init__(db, cache or get_cache_service())  # type: ignore[arg-type]
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    def _first_time(self, key: str, ttl_seconds: int) -> bool:
        return bool(self.cache.add(key, 1, ttl=ttl_seconds))

    @BaseService.measure_operation("notify_lessons_starting_soon")
    def notify_lessons_starting_soon(self, now: Optional[datetime] = None) -> int:
        """Emit LessonStartingSoon once per committed lesson entering the lead window."""
        now = TimezoneService.ensure_utc(now) if now else datetime.now(timezone.utc)
        horizon = now + timedelta(minutes=settings.lesson_starting_soon_minutes)
        dedupe_ttl = settings.lesson_starting_soon_dedupe_minutes * 60

        events = PendingEvents()
        for lesson in self.lesson_repository.get_starting_between(now, horizon):
            if not self._first_time(f"reminder:lesson_starting:{lesson.id}", dedupe_ttl):
                continue
            events.add(
                LessonStartingSoon(
                    lesson_id=lesson.id,
                    student_id=lesson.student_id,
                    tutor_id=lesson.tutor_id,
                    starts_at=lesson.scheduled_start,
                    join_url=lesson.meeting_join_url,
                )
            )
        sent = events.publish()
        if sent:
            self.logger.info("Sent %d lesson starting reminders", sent)
        return sent

    @BaseService.measure_operation("send_low_credit_reminders")
    def send_low_credit_reminders(self) -> int:
        """Warn wallets at or below the low-credit threshold, once per cooldown."""
        threshold = max(1, settings.low_credit_threshold)
        cooldown = settings.credit_reminder_cooldown_hours * 3600

        events = PendingEvents()
        for balance in self.credit_repository.find_low_balances(threshold):
            level = "zero" if balance.remaining_credits <= 0 else "low"
            if not self._first_time(f"reminder:low_credits:{balance.user_id}:{level}", cooldown):
                continue
            events.add(
                LowCreditsWarning(
                    user_id=balance.user_id, remaining=balance.remaining_credits, level=level
                )
            )
        sent = events.publish()
        if sent:
            self.logger.info("Sent %d low credit reminders", sent)
        return sent
