"""
Centralized timezone handling for TutorDesk.

Rules:
- Tutor availability rules: tutor's local wall clock
- All storage: UTC
- All comparisons: UTC
- Unknown or blank tutor zones degrade to UTC (logged, never fatal)

Day-of-week numbering follows the availability rules: 0=Sunday .. 6=Saturday.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Optional

import pytz

from ..core.exceptions import TimeZoneResolutionFailed

logger = logging.getLogger(__name__)


class TimezoneService:
    """Handles all timezone conversions consistently."""

    DEFAULT_TIMEZONE = "UTC"

    @staticmethod
    def resolve(tz_str: Optional[str]) -> pytz.BaseTzInfo:
        """
        Get timezone object.

        Raises:
            TimeZoneResolutionFailed: If the name is blank or unknown
        """
        if not tz_str or not tz_str.strip():
            raise TimeZoneResolutionFailed(tz_str)
        try:
            return pytz.timezone(tz_str.strip())
        except pytz.UnknownTimeZoneError:
            raise TimeZoneResolutionFailed(tz_str)

    @staticmethod
    def get_timezone_or_utc(tz_str: Optional[str]) -> pytz.BaseTzInfo:
        """Resolve a zone name, substituting UTC when it cannot be resolved."""
        try:
            return TimezoneService.resolve(tz_str)
        except TimeZoneResolutionFailed as exc:
            logger.warning(
                "Time zone resolution failed, using UTC",
                extra={"timezone": tz_str, "code": exc.code},
            )
            return pytz.utc

    @staticmethod
    def local_to_utc(local_naive: datetime, tz: pytz.BaseTzInfo) -> Optional[datetime]:
        """
        Convert a naive local wall-clock time to an aware UTC datetime.

        Uses the timezone rules valid on that date (not today).

        Returns:
            None when the local time does not exist (DST spring-forward gap).
            For a repeated local time (fall-back fold) the first occurrence,
            i.e. the earlier instant, is used.
        """
        try:
            # is_dst=None raises exception for ambiguous/nonexistent times
            local_dt = tz.localize(local_naive, is_dst=None)
        except pytz.exceptions.AmbiguousTimeError:
            # Fall back (time exists twice) - use first occurrence
            local_dt = tz.localize(local_naive, is_dst=True)
        except pytz.exceptions.NonExistentTimeError:
            return None

        return local_dt.astimezone(timezone.utc)

    @staticmethod
    def combine_local(day: date, minutes_since_midnight: int) -> datetime:
        """Naive local datetime for a day plus an offset in minutes (may roll into the next day)."""
        return datetime.combine(day, time.min) + timedelta(minutes=minutes_since_midnight)

    @staticmethod
    def utc_to_local(utc_dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
        """Convert UTC datetime to local timezone."""
        return TimezoneService.ensure_utc(utc_dt).astimezone(tz)

    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """Tag naive values as UTC and normalize aware ones."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def local_weekday(dt: datetime) -> int:
        """Day of week with 0=Sunday .. 6=Saturday."""
        return (dt.weekday() + 1) % 7

    @staticmethod
    def weekday_of(day: date) -> int:
        return (day.weekday() + 1) % 7

    @staticmethod
    def hours_until(start_utc: datetime, now: Optional[datetime] = None) -> float:
        """Hours from now (UTC) until a start time (UTC); negative when past."""
        now_utc = TimezoneService.ensure_utc(now) if now else datetime.now(timezone.utc)
        delta = TimezoneService.ensure_utc(start_utc) - now_utc
        return delta.total_seconds() / 3600

    @staticmethod
    def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
        """Half-open interval overlap: [a_start, a_end) intersects [b_start, b_end)."""
        return a_start < b_end and b_start < a_end
