# blueprints/schedule/recurrence.py
"""Развёртка правил повторения в конкретные даты. Чистые функции, без БД."""
from __future__ import annotations
import calendar
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, Optional

from blueprints.core.errors import EmptyPattern, InvalidRange, RangeTooLarge, ValidationFailed
from .timeutils import add_minutes, daterange, ensure_window, parse_hhmm, parse_month

# 0 = воскресенье ... 6 = суббота
DAY_TO_NUMBER = {"SUN": 0, "MON": 1, "TUE": 2, "WED": 3, "THU": 4, "FRI": 5, "SAT": 6}


def js_weekday(d: date) -> int:
    return (d.weekday() + 1) % 7


def add_one_year(d: date) -> date:
    try:
        return d.replace(year=d.year + 1)
    except ValueError:
        # 29 февраля -> 28 февраля следующего года
        return d.replace(year=d.year + 1, day=28)


def expand_rule(days_of_week: Iterable[int], start_date: date, end_date: date) -> List[date]:
    days = set(days_of_week or [])
    if start_date > end_date:
        raise InvalidRange("Start date must be before end date",
                           start_date=start_date.isoformat(), end_date=end_date.isoformat())
    if end_date > add_one_year(start_date):
        raise RangeTooLarge("Date range cannot exceed 1 year",
                            start_date=start_date.isoformat(), end_date=end_date.isoformat())
    if not days:
        raise EmptyPattern("At least one day of week must be selected")
    bad = [d for d in days if not isinstance(d, int) or not 0 <= d <= 6]
    if bad:
        raise ValidationFailed("days_of_week must be integers 0..6 (0 = Sunday)", invalid=bad)

    return [d for d in daterange(start_date, end_date) if js_weekday(d) in days]


@dataclass(frozen=True)
class WeeklySlot:
    day: str                      # MON..SUN
    start_time: time
    room_id: Optional[int] = None  # переопределение комнаты группы


@dataclass(frozen=True)
class SessionCandidate:
    date: date
    start_time: time
    end_time: time
    room_id: Optional[int]


def make_slot(day: str, start_time, room_id: Optional[int] = None) -> WeeklySlot:
    code = str(day or "").upper()
    if code not in DAY_TO_NUMBER:
        raise ValidationFailed(f"unknown day code {day!r}", day=day)
    return WeeklySlot(day=code, start_time=parse_hhmm(start_time), room_id=room_id)


def expand_monthly_pattern(month: str, slots: Iterable[WeeklySlot], duration_minutes: int) -> List[SessionCandidate]:
    """Недельный шаблон группы на весь месяц: от первого до последнего дня."""
    slots = list(slots or [])
    if not slots:
        raise EmptyPattern("Weekly pattern must contain at least one slot")
    if duration_minutes <= 0:
        raise ValidationFailed("duration must be positive", duration_minutes=duration_minutes)

    year, mon = parse_month(month)
    first = date(year, mon, 1)
    last = date(year, mon, calendar.monthrange(year, mon)[1])

    out: List[SessionCandidate] = []
    for d in daterange(first, last):
        wd = js_weekday(d)
        for slot in slots:
            if DAY_TO_NUMBER[slot.day] != wd:
                continue
            end = add_minutes(slot.start_time, duration_minutes)
            # конец, перешедший через полночь, не даёт валидного окна start < end
            ensure_window(slot.start_time, end)
            out.append(SessionCandidate(date=d, start_time=slot.start_time, end_time=end, room_id=slot.room_id))
    return out
