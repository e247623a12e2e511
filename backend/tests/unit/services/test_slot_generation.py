"""
Unit tests for the pure slot generator.

Rules are plain namespaces here; generate_slots only reads their attributes.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytz

from app.core.exceptions import InvalidRequestException
from app.services.availability_service import generate_slots, validate_availability_request

UTC = pytz.utc
NEW_YORK = pytz.timezone("America/New_York")

LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _rule(day_of_week=1, start=540, end=720, slot=60, active=True):
    return SimpleNamespace(
        day_of_week=day_of_week,
        start_minutes=start,
        end_minutes=end,
        slot_minutes=slot,
        is_active=active,
    )


def _generate(
    rules, *, from_utc, to_utc, duration=60, tz=UTC, now=LONG_AGO, blocks=(), commitments=(), **kw
):
    return generate_slots(
        rules=rules,
        blocks=list(blocks),
        commitments=list(commitments),
        from_utc=from_utc,
        to_utc=to_utc,
        duration_minutes=duration,
        tz=tz,
        now=now,
        **kw,
    )


def _starts(slots):
    return [s.start for s in slots]


MONDAY_START = _utc(2030, 1, 7)
MONDAY_END = _utc(2030, 1, 8)


class TestScenarios:
    def test_monday_morning_rule_yields_three_hourly_slots(self):
        slots = _generate([_rule()], from_utc=MONDAY_START, to_utc=MONDAY_END)

        assert [(s.start, s.end) for s in slots] == [
            (_utc(2030, 1, 7, 9), _utc(2030, 1, 7, 10)),
            (_utc(2030, 1, 7, 10), _utc(2030, 1, 7, 11)),
            (_utc(2030, 1, 7, 11), _utc(2030, 1, 7, 12)),
        ]

    def test_block_removes_overlapping_slot_only(self):
        block = (_utc(2030, 1, 7, 10), _utc(2030, 1, 7, 10, 30))

        slots = _generate([_rule()], from_utc=MONDAY_START, to_utc=MONDAY_END, blocks=[block])

        assert _starts(slots) == [_utc(2030, 1, 7, 9), _utc(2030, 1, 7, 11)]


class TestFiltering:
    def test_only_rules_with_matching_slot_length_and_active(self):
        rules = [
            _rule(slot=30),
            _rule(start=780, end=840, active=False),
            _rule(start=900, end=960),
        ]

        slots = _generate(rules, from_utc=MONDAY_START, to_utc=MONDAY_END)

        assert _starts(slots) == [_utc(2030, 1, 7, 15)]

    def test_other_weekdays_ignored(self):
        slots = _generate([_rule(day_of_week=2)], from_utc=MONDAY_START, to_utc=MONDAY_END)
        assert slots == []

    def test_slots_must_end_inside_range(self):
        slots = _generate([_rule()], from_utc=MONDAY_START, to_utc=_utc(2030, 1, 7, 11, 30))
        assert _starts(slots) == [_utc(2030, 1, 7, 9), _utc(2030, 1, 7, 10)]

    def test_slots_before_range_start_dropped(self):
        slots = _generate([_rule()], from_utc=_utc(2030, 1, 7, 9, 30), to_utc=MONDAY_END)
        assert _starts(slots) == [_utc(2030, 1, 7, 10), _utc(2030, 1, 7, 11)]

    def test_past_slots_dropped(self):
        slots = _generate(
            [_rule()], from_utc=MONDAY_START, to_utc=MONDAY_END, now=_utc(2030, 1, 7, 10, 30)
        )
        assert _starts(slots) == [_utc(2030, 1, 7, 11)]

    def test_commitments_of_either_party_dropped(self):
        commitments = [
            (_utc(2030, 1, 7, 9, 30), _utc(2030, 1, 7, 10, 30)),
        ]

        slots = _generate(
            [_rule()], from_utc=MONDAY_START, to_utc=MONDAY_END, commitments=commitments
        )

        assert _starts(slots) == [_utc(2030, 1, 7, 11)]

    def test_adjacent_commitment_does_not_conflict(self):
        commitments = [(_utc(2030, 1, 7, 8), _utc(2030, 1, 7, 9))]

        slots = _generate(
            [_rule()], from_utc=MONDAY_START, to_utc=MONDAY_END, commitments=commitments
        )

        assert len(slots) == 3

    def test_overlapping_rules_are_deduplicated(self):
        rules = [_rule(start=600, end=720), _rule(start=540, end=660)]

        slots = _generate(rules, from_utc=MONDAY_START, to_utc=MONDAY_END)

        assert _starts(slots) == [
            _utc(2030, 1, 7, 9),
            _utc(2030, 1, 7, 10),
            _utc(2030, 1, 7, 11),
        ]

    def test_partial_trailing_window_not_emitted(self):
        slots = _generate(
            [_rule(start=540, end=630, slot=45)],
            from_utc=MONDAY_START,
            to_utc=MONDAY_END,
            duration=45,
        )
        assert [(s.start, s.end) for s in slots] == [
            (_utc(2030, 1, 7, 9), _utc(2030, 1, 7, 9, 45)),
            (_utc(2030, 1, 7, 9, 45), _utc(2030, 1, 7, 10, 30)),
        ]


class TestGuardrails:
    def test_stops_at_max_slots(self):
        slots = _generate(
            [_rule(start=0, end=1440, slot=30)],
            from_utc=MONDAY_START,
            to_utc=MONDAY_END,
            duration=30,
            max_slots=5,
        )
        assert len(slots) == 5
        assert slots[-1].start == _utc(2030, 1, 7, 2)

    def test_default_cap_is_2000_slots(self):
        every_day = [_rule(day_of_week=d, start=0, end=1440, slot=30) for d in range(7)]

        # generate_slots trusts its caller on range length; 60 days would be 2880 slots
        slots = _generate(
            every_day,
            from_utc=MONDAY_START,
            to_utc=MONDAY_START + timedelta(days=60),
            duration=30,
        )

        assert len(slots) == 2000

    def test_results_ascend_within_a_day(self):
        slots = _generate(
            [_rule(start=0, end=1440, slot=30)],
            from_utc=MONDAY_START,
            to_utc=MONDAY_END,
            duration=30,
        )
        starts = _starts(slots)
        assert starts == sorted(starts)
        assert len(starts) == 48

    @pytest.mark.parametrize("duration", [15, 50, 90])
    def test_unsupported_duration_rejected(self, duration):
        with pytest.raises(InvalidRequestException):
            validate_availability_request(MONDAY_START, MONDAY_END, duration)

    def test_reversed_or_empty_range_rejected(self):
        with pytest.raises(InvalidRequestException):
            validate_availability_request(MONDAY_END, MONDAY_START, 60)
        with pytest.raises(InvalidRequestException):
            validate_availability_request(MONDAY_START, MONDAY_START, 60)

    def test_range_longer_than_31_days_rejected(self):
        validate_availability_request(MONDAY_START, MONDAY_START + timedelta(days=31), 60)
        with pytest.raises(InvalidRequestException) as exc_info:
            validate_availability_request(
                MONDAY_START, MONDAY_START + timedelta(days=31, minutes=1), 60
            )
        assert exc_info.value.details == {"max_range_days": 31}


class TestTimeZones:
    def test_rule_is_interpreted_in_tutor_local_time(self):
        berlin = pytz.timezone("Europe/Berlin")  # UTC+1 in January

        slots = _generate(
            [_rule(start=540, end=600)], from_utc=MONDAY_START, to_utc=MONDAY_END, tz=berlin
        )

        assert _starts(slots) == [_utc(2030, 1, 7, 8)]

    def test_local_day_spanning_two_utc_days(self):
        tokyo = pytz.timezone("Asia/Tokyo")  # Monday 09:00 JST is Monday 00:00 UTC

        slots = _generate(
            [_rule(start=540, end=600)],
            from_utc=_utc(2030, 1, 6, 12),
            to_utc=_utc(2030, 1, 7, 12),
            tz=tokyo,
        )

        assert _starts(slots) == [_utc(2030, 1, 7, 0)]

    def test_spring_forward_gap_slots_are_skipped(self):
        # Sunday 2024-03-10: local 02:00-03:00 does not exist in New York
        sunday_rule = _rule(day_of_week=0, start=120, end=240, slot=30)

        slots = _generate(
            [sunday_rule],
            from_utc=_utc(2024, 3, 10),
            to_utc=_utc(2024, 3, 11, 12),
            duration=30,
            tz=NEW_YORK,
        )

        assert _starts(slots) == [_utc(2024, 3, 10, 7), _utc(2024, 3, 10, 7, 30)]

    def test_fall_back_fold_uses_first_occurrence(self):
        # Sunday 2024-11-03: local 01:00-02:00 happens twice in New York
        sunday_rule = _rule(day_of_week=0, start=0, end=180, slot=60)

        slots = _generate(
            [sunday_rule],
            from_utc=_utc(2024, 11, 3),
            to_utc=_utc(2024, 11, 4),
            tz=NEW_YORK,
        )

        # 00:00 EDT, 01:00 EDT (earlier of the two), 02:00 EST
        assert _starts(slots) == [
            _utc(2024, 11, 3, 4),
            _utc(2024, 11, 3, 5),
            _utc(2024, 11, 3, 7),
        ]
