# backend/app/services/availability_service.py
"""
Availability Service for the TutorDesk scheduling engine.

Turns a tutor's recurring weekly rules, one-off blocks and existing
commitments into bookable UTC slots.

``generate_slots`` is a pure function over already-fetched data so it can be
tested and cached in isolation. It is advisory only: the commit-time checks
``is_slot_bookable`` and ``ensure_no_conflicts`` are what guard a decision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import ALLOWED_LESSON_DURATIONS, MINUTES_PER_DAY
from ..core.exceptions import (
    ForbiddenException,
    InvalidRequestException,
    NotFoundException,
    SlotConflictException,
)
from ..models.availability import TutorAvailabilityBlock, TutorAvailabilityRule
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .cache_service import CachePort
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


@dataclass(frozen=True)
class Slot:
    """A bookable [start, end) UTC interval."""

    start: datetime
    end: datetime


@dataclass
class AvailabilityResult:
    tutor_assigned: bool
    tutor_id: Optional[str] = None
    timezone: Optional[str] = None
    duration_minutes: Optional[int] = None
    slots: List[Slot] = field(default_factory=list)


def validate_availability_request(
    from_utc: datetime,
    to_utc: datetime,
    duration_minutes: int,
    max_range_days: Optional[int] = None,
) -> None:
    """
    Raises:
        InvalidRequestException: For an unsupported duration, an empty or
            reversed range, or a range longer than the guardrail.
    """
    max_days = max_range_days if max_range_days is not None else settings.availability_max_range_days
    if duration_minutes not in ALLOWED_LESSON_DURATIONS:
        raise InvalidRequestException(
            f"Duration must be one of {', '.join(str(d) for d in ALLOWED_LESSON_DURATIONS)} minutes",
            details={"duration_minutes": duration_minutes},
        )
    if to_utc <= from_utc:
        raise InvalidRequestException("'to' must be after 'from'")
    if to_utc - from_utc > timedelta(days=max_days):
        raise InvalidRequestException(
            f"Range cannot exceed {max_days} days",
            details={"max_range_days": max_days},
        )


def _overlaps_any(start: datetime, end: datetime, intervals: Iterable[Interval]) -> bool:
    return any(TimezoneService.overlaps(start, end, b_start, b_end) for b_start, b_end in intervals)


def generate_slots(
    *,
    rules: Sequence[TutorAvailabilityRule],
    blocks: Sequence[Interval],
    commitments: Sequence[Interval],
    from_utc: datetime,
    to_utc: datetime,
    duration_minutes: int,
    tz,
    now: datetime,
    max_slots: Optional[int] = None,
) -> List[Slot]:
    """
    Expand weekly rules into free UTC slots inside [from_utc, to_utc).

    Iterates the tutor-local calendar days covering the range; for each day
    takes the active rules of that weekday whose slot length equals the
    requested duration and walks them in fixed steps. Local times that do
    not exist (DST gap) are skipped; repeated local times use the earlier
    instant. Candidates leaving the range, in the past, or overlapping a
    block or commitment are dropped. Output is in generation order and
    stops at ``max_slots``.
    """
    cap = max_slots if max_slots is not None else settings.availability_max_slots
    step = timedelta(minutes=duration_minutes)
    from_utc = TimezoneService.ensure_utc(from_utc)
    to_utc = TimezoneService.ensure_utc(to_utc)
    now = TimezoneService.ensure_utc(now)

    by_weekday: dict[int, List[TutorAvailabilityRule]] = {}
    for rule in sorted(rules, key=lambda r: (r.start_minutes, r.end_minutes)):
        if rule.is_active and rule.slot_minutes == duration_minutes:
            by_weekday.setdefault(rule.day_of_week, []).append(rule)

    slots: List[Slot] = []
    seen: Set[datetime] = set()
    day = TimezoneService.utc_to_local(from_utc, tz).date()
    last_day = TimezoneService.utc_to_local(to_utc, tz).date()

    while day <= last_day:
        for rule in by_weekday.get(TimezoneService.weekday_of(day), []):
            offset = rule.start_minutes
            while offset + duration_minutes <= min(rule.end_minutes, MINUTES_PER_DAY):
                local_start = TimezoneService.combine_local(day, offset)
                offset += duration_minutes

                start = TimezoneService.local_to_utc(local_start, tz)
                if start is None:
                    continue
                end = start + step
                if start < from_utc or end > to_utc or start < now:
                    continue
                if start in seen:
                    continue
                if _overlaps_any(start, end, blocks) or _overlaps_any(start, end, commitments):
                    continue

                seen.add(start)
                slots.append(Slot(start=start, end=end))
                if len(slots) >= cap:
                    return slots
        day += timedelta(days=1)

    return slots


class AvailabilityService(BaseService):
    """
    Availability queries, commit-time bookability checks and tutor
    rule/block management.
    """

    CACHE_PREFIX = "avail:tutor"

    def __init__(self, db: Session, cache: Optional[CachePort] = None):
        super().__init__(db, cache)  # type: ignore[arg-type]
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)

    # Time zone

    def get_tutor_timezone(self, tutor_id: str) -> Tuple[str, object]:
        """Return (zone name actually used, tzinfo); unknown zones degrade to UTC."""
        tz_name = self.user_repository.get_timezone(tutor_id) or settings.default_tutor_timezone
        tz = TimezoneService.get_timezone_or_utc(tz_name)
        return str(tz.zone), tz

    # Queries

    def _resolve_parties(
        self,
        tutor_id: Optional[str],
        enrollment_id: Optional[str],
        lesson_id: Optional[str],
        student_id: Optional[str],
    ) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Return (tutor_id, student_id, lesson id to exclude)."""
        if lesson_id:
            lesson = self.lesson_repository.get_lesson(lesson_id)
            if lesson is None:
                raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
            return lesson.tutor_id, lesson.student_id, lesson.id
        if enrollment_id:
            enrollment = self.course_repository.get_enrollment(enrollment_id)
            if enrollment is None:
                raise NotFoundException("Enrollment not found", code="ENROLLMENT_NOT_FOUND")
            return enrollment.effective_tutor_id, enrollment.student_id, None
        if tutor_id:
            return tutor_id, student_id, None
        raise InvalidRequestException("A tutor, enrollment or lesson reference is required")

    def _cache_key(
        self,
        tutor_id: str,
        student_id: Optional[str],
        exclude_lesson_id: Optional[str],
        from_utc: datetime,
        to_utc: datetime,
        duration_minutes: int,
    ) -> str:
        return ":".join(
            [
                self.CACHE_PREFIX,
                tutor_id,
                student_id or "-",
                exclude_lesson_id or "-",
                from_utc.isoformat(),
                to_utc.isoformat(),
                str(duration_minutes),
            ]
        )

    @BaseService.measure_operation("get_availability")
    def get_availability(
        self,
        *,
        from_utc: datetime,
        to_utc: datetime,
        duration_minutes: int,
        tutor_id: Optional[str] = None,
        enrollment_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
        student_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AvailabilityResult:
        """
        Bookable slots for a tutor, an enrollment's tutor, or a lesson's tutor.

        When a student is known (directly, via the enrollment or the lesson)
        the student's own commitments are excluded as well. An enrollment or
        lesson without a tutor yields ``tutor_assigned=False`` and no slots.
        """
        from_utc = TimezoneService.ensure_utc(from_utc)
        to_utc = TimezoneService.ensure_utc(to_utc)
        now = TimezoneService.ensure_utc(now) if now else datetime.now(timezone.utc)
        validate_availability_request(from_utc, to_utc, duration_minutes)

        tutor, student, exclude_id = self._resolve_parties(
            tutor_id, enrollment_id, lesson_id, student_id
        )
        if not tutor:
            return AvailabilityResult(tutor_assigned=False, duration_minutes=duration_minutes)

        tz_name, tz = self.get_tutor_timezone(tutor)
        key = self._cache_key(tutor, student, exclude_id, from_utc, to_utc, duration_minutes)

        cached = self.cache.get(key) if self.cache else None
        if cached is not None:
            slots = [
                Slot(start=datetime.fromisoformat(s), end=datetime.fromisoformat(e))
                for s, e in cached
            ]
            slots = [slot for slot in slots if slot.start >= now]
        else:
            slots = self._compute_slots(
                tutor, student, exclude_id, from_utc, to_utc, duration_minutes, tz, now
            )
            if self.cache:
                self.cache.set(
                    key,
                    [[s.start.isoformat(), s.end.isoformat()] for s in slots],
                    ttl=settings.availability_cache_ttl_seconds,
                )

        prometheus_metrics.observe_slots_generated(len(slots))
        return AvailabilityResult(
            tutor_assigned=True,
            tutor_id=tutor,
            timezone=tz_name,
            duration_minutes=duration_minutes,
            slots=slots,
        )

    def _compute_slots(
        self,
        tutor_id: str,
        student_id: Optional[str],
        exclude_lesson_id: Optional[str],
        from_utc: datetime,
        to_utc: datetime,
        duration_minutes: int,
        tz,
        now: datetime,
    ) -> List[Slot]:
        rules = self.availability_repository.get_active_rules(tutor_id, duration_minutes)
        blocks = [
            (b.start_utc, b.end_utc)
            for b in self.availability_repository.get_blocks_overlapping(tutor_id, from_utc, to_utc)
        ]
        lessons = self.lesson_repository.find_conflicts(
            from_utc,
            to_utc,
            tutor_id=tutor_id,
            student_id=student_id,
            exclude_lesson_id=exclude_lesson_id,
        )
        commitments = [w for w in (lesson.committed_window() for lesson in lessons) if w]
        return generate_slots(
            rules=rules,
            blocks=blocks,
            commitments=commitments,
            from_utc=from_utc,
            to_utc=to_utc,
            duration_minutes=duration_minutes,
            tz=tz,
            now=now,
        )

    # Commit-time checks

    def is_slot_bookable(
        self, tutor_id: str, start_utc: datetime, duration_minutes: int
    ) -> bool:
        """
        Whether [start, start + duration) lies inside one active rule of the
        tutor's local weekday with a matching slot length and touches no block.
        """
        start_utc = TimezoneService.ensure_utc(start_utc)
        end_utc = start_utc + timedelta(minutes=duration_minutes)
        _, tz = self.get_tutor_timezone(tutor_id)

        local_start = TimezoneService.utc_to_local(start_utc, tz)
        local_naive = local_start.replace(tzinfo=None)
        # A repeated local time must resolve back to this exact instant
        if TimezoneService.local_to_utc(local_naive, tz) != start_utc:
            return False

        minutes = local_start.hour * 60 + local_start.minute
        if local_start.second or local_start.microsecond:
            return False
        weekday = TimezoneService.local_weekday(local_start)

        rules = self.availability_repository.get_active_rules(tutor_id, duration_minutes)
        fits_rule = any(
            rule.day_of_week == weekday
            and minutes >= rule.start_minutes
            and minutes + duration_minutes <= rule.end_minutes
            for rule in rules
        )
        if not fits_rule:
            return False

        return not self.availability_repository.get_blocks_overlapping(tutor_id, start_utc, end_utc)

    def ensure_not_blocked(self, tutor_id: str, start_utc: datetime, end_utc: datetime) -> None:
        """
        Raises:
            SlotConflictException: If the window overlaps one of the tutor's blocks.
        """
        blocks = self.availability_repository.get_blocks_overlapping(tutor_id, start_utc, end_utc)
        if blocks:
            raise SlotConflictException(
                "The chosen time overlaps a period the tutor has blocked",
                details={
                    "start": start_utc.isoformat(),
                    "end": end_utc.isoformat(),
                    "block_ids": [b.id for b in blocks],
                },
            )

    def ensure_no_conflicts(
        self,
        start_utc: datetime,
        end_utc: datetime,
        *,
        tutor_id: Optional[str],
        student_id: Optional[str],
        exclude_lesson_id: Optional[str] = None,
    ) -> None:
        """
        Raises:
            SlotConflictException: If the tutor or the student already has a
                lesson overlapping the window.
        """
        conflicts = self.lesson_repository.find_conflicts(
            start_utc,
            end_utc,
            tutor_id=tutor_id,
            student_id=student_id,
            exclude_lesson_id=exclude_lesson_id,
        )
        if conflicts:
            party = "tutor" if tutor_id and any(c.tutor_id == tutor_id for c in conflicts) else "student"
            raise SlotConflictException(
                f"The chosen time overlaps an existing lesson of the {party}",
                details={
                    "start": start_utc.isoformat(),
                    "end": end_utc.isoformat(),
                    "conflicting_lesson_ids": [c.id for c in conflicts],
                },
            )

    def invalidate_tutor(self, tutor_id: Optional[str]) -> None:
        if tutor_id:
            self.invalidate_pattern(f"{self.CACHE_PREFIX}:{tutor_id}:*")

    def invalidate_student(self, student_id: Optional[str]) -> None:
        """Drop the student's cached slot lists for every tutor."""
        if student_id:
            self.invalidate_pattern(f"{self.CACHE_PREFIX}:*:{student_id}:*")

    # Rule and block management

    def list_rules(self, tutor_id: str) -> List[TutorAvailabilityRule]:
        return self.availability_repository.get_active_rules(tutor_id)

    @BaseService.measure_operation("add_rule")
    def add_rule(
        self,
        tutor_id: str,
        *,
        day_of_week: int,
        start_minutes: int,
        end_minutes: int,
        slot_minutes: int,
    ) -> TutorAvailabilityRule:
        if not 0 <= day_of_week <= 6:
            raise InvalidRequestException("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if slot_minutes not in ALLOWED_LESSON_DURATIONS:
            raise InvalidRequestException("slot_minutes must be 30, 45 or 60")
        if not 0 <= start_minutes < end_minutes <= MINUTES_PER_DAY:
            raise InvalidRequestException("Rule must satisfy 0 <= start < end <= 1440 minutes")
        if end_minutes - start_minutes < slot_minutes:
            raise InvalidRequestException("Rule window is shorter than one slot")

        with self.transaction():
            rule = self.availability_repository.create(
                tutor_id=tutor_id,
                day_of_week=day_of_week,
                start_minutes=start_minutes,
                end_minutes=end_minutes,
                slot_minutes=slot_minutes,
                is_active=True,
            )
        self.invalidate_tutor(tutor_id)
        self.log_operation("add_rule", tutor_id=tutor_id, rule_id=rule.id)
        return rule

    def deactivate_rule(self, tutor_id: str, rule_id: str) -> TutorAvailabilityRule:
        rule = self.availability_repository.get_by_id(rule_id)
        if rule is None:
            raise NotFoundException("Availability rule not found")
        if rule.tutor_id != tutor_id:
            raise ForbiddenException("Rule belongs to another tutor")
        with self.transaction():
            rule.is_active = False
        self.invalidate_tutor(tutor_id)
        return rule

    def list_blocks(
        self, tutor_id: str, from_utc: datetime, to_utc: datetime
    ) -> List[TutorAvailabilityBlock]:
        return self.availability_repository.get_blocks_overlapping(
            tutor_id, TimezoneService.ensure_utc(from_utc), TimezoneService.ensure_utc(to_utc)
        )

    @BaseService.measure_operation("add_block")
    def add_block(
        self,
        tutor_id: str,
        *,
        start_utc: datetime,
        end_utc: datetime,
        reason: Optional[str] = None,
    ) -> TutorAvailabilityBlock:
        start_utc = TimezoneService.ensure_utc(start_utc)
        end_utc = TimezoneService.ensure_utc(end_utc)
        if end_utc <= start_utc:
            raise InvalidRequestException("Block end must be after its start")
        with self.transaction():
            block = self.availability_repository.create_block(
                tutor_id=tutor_id, start_utc=start_utc, end_utc=end_utc, reason=reason
            )
        self.invalidate_tutor(tutor_id)
        return block

    def remove_block(self, tutor_id: str, block_id: str) -> TutorAvailabilityBlock:
        block = self.availability_repository.get_block(block_id)
        if block is None or block.is_deleted:
            raise NotFoundException("Availability block not found")
        if block.tutor_id != tutor_id:
            raise ForbiddenException("Block belongs to another tutor")
        with self.transaction():
            block.is_deleted = True
        self.invalidate_tutor(tutor_id)
        return block
