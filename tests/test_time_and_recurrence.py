from datetime import date, time, timezone

import pytest

from blueprints.core.errors import EmptyPattern, InvalidRange, RangeTooLarge, ValidationFailed
from blueprints.schedule.recurrence import (
    add_one_year, expand_monthly_pattern, expand_rule, js_weekday, make_slot,
)
from blueprints.schedule.timeutils import (
    add_minutes, overlaps, parse_hhmm, to_minutes, utc_anchor,
)

INTERVALS = [
    ("09:00", "10:00"), ("09:30", "10:30"), ("10:00", "11:00"),
    ("08:00", "12:00"), ("10:59", "11:01"), ("23:00", "23:59"),
]


def test_overlap_is_symmetric():
    for a in INTERVALS:
        for b in INTERVALS:
            assert overlaps(*a, *b) == overlaps(*b, *a)


def test_touching_intervals_do_not_overlap():
    assert not overlaps("10:00", "11:00", "11:00", "12:00")
    assert not overlaps("11:00", "12:00", "10:00", "11:00")
    assert overlaps("10:00", "11:00", "10:59", "12:00")
    assert overlaps("08:00", "12:00", "09:00", "10:00")


def test_parse_hhmm_rejects_malformed_values():
    assert parse_hhmm("07:05") == time(7, 5)
    for bad in ("24:00", "9:00", "10:60", "ab:cd", "", None):
        with pytest.raises(ValidationFailed):
            parse_hhmm(bad)


def test_time_helpers():
    assert to_minutes(time(1, 30)) == 90
    assert add_minutes(time(23, 30), 60) == time(0, 30)
    anchored = utc_anchor(time(10, 15))
    assert (anchored.year, anchored.month, anchored.day) == (1970, 1, 1)
    assert anchored.tzinfo == timezone.utc


def test_expand_rule_mon_wed():
    dates = expand_rule([1, 3], date(2024, 1, 1), date(2024, 1, 10))
    assert dates == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)]
    # повторная развёртка даёт тот же результат
    assert expand_rule({3, 1, 1}, date(2024, 1, 1), date(2024, 1, 10)) == dates
    assert dates == sorted(set(dates))


def test_sunday_is_zero():
    assert js_weekday(date(2024, 1, 7)) == 0   # воскресенье
    assert expand_rule([0], date(2024, 1, 1), date(2024, 1, 14)) == [date(2024, 1, 7), date(2024, 1, 14)]


def test_exactly_one_year_is_allowed():
    dates = expand_rule(range(7), date(2024, 1, 1), date(2025, 1, 1))
    assert len(dates) == 367
    assert dates[-1] == date(2025, 1, 1)


def test_one_year_and_one_day_is_rejected():
    with pytest.raises(RangeTooLarge):
        expand_rule([1], date(2024, 1, 1), date(2025, 1, 2))


def test_rule_validation_errors():
    with pytest.raises(InvalidRange):
        expand_rule([1], date(2024, 2, 1), date(2024, 1, 1))
    with pytest.raises(EmptyPattern):
        expand_rule([], date(2024, 1, 1), date(2024, 1, 31))
    with pytest.raises(ValidationFailed):
        expand_rule([7], date(2024, 1, 1), date(2024, 1, 31))


def test_leap_day_year_boundary():
    assert add_one_year(date(2024, 2, 29)) == date(2025, 2, 28)
    expand_rule([1], date(2024, 2, 29), date(2025, 2, 28))
    with pytest.raises(RangeTooLarge):
        expand_rule([1], date(2024, 2, 29), date(2025, 3, 1))


def test_monthly_pattern_covers_whole_month():
    slots = [make_slot("mon", "10:00"), make_slot("THU", "18:30", room_id=7)]
    out = expand_monthly_pattern("2024-02", slots, 90)
    mondays = [c for c in out if c.room_id is None]
    thursdays = [c for c in out if c.room_id == 7]
    assert [c.date.day for c in mondays] == [5, 12, 19, 26]
    assert [c.date.day for c in thursdays] == [1, 8, 15, 22, 29]
    assert mondays[0].end_time == time(11, 30)
    assert thursdays[0].end_time == time(20, 0)


def test_monthly_pattern_rejects_midnight_wrap_and_bad_input():
    with pytest.raises(ValidationFailed):
        expand_monthly_pattern("2024-02", [make_slot("MON", "23:30")], 60)
    with pytest.raises(ValidationFailed):
        make_slot("XYZ", "10:00")
    with pytest.raises(ValidationFailed):
        expand_monthly_pattern("2024-13", [make_slot("MON", "10:00")], 60)
    with pytest.raises(EmptyPattern):
        expand_monthly_pattern("2024-02", [], 60)
