# blueprints/schedule/timeutils.py
from __future__ import annotations
import re
from datetime import date, datetime, time, timedelta, timezone

from blueprints.core.errors import ValidationFailed

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value) -> time:
    """'HH:MM' (24h) -> time. Уже готовый time пропускаем как есть."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    m = HHMM_RE.match(str(value or "").strip())
    if not m:
        raise ValidationFailed(f"invalid time {value!r}, expected HH:MM", value=value)
    return time(int(m.group(1)), int(m.group(2)))


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationFailed(f"invalid date {value!r}, expected YYYY-MM-DD", value=value) from e


def parse_month(value: str) -> tuple[int, int]:
    m = MONTH_RE.match(str(value or "").strip())
    if not m:
        raise ValidationFailed(f"invalid month {value!r}, expected YYYY-MM", value=value)
    return int(m.group(1)), int(m.group(2))


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def to_minutes(t) -> int:
    if not isinstance(t, time):
        t = parse_hhmm(t)
    return t.hour * 60 + t.minute


def from_minutes(total: int) -> time:
    total %= MINUTES_PER_DAY
    return time(total // 60, total % 60)


def add_minutes(t: time, minutes: int) -> time:
    """Сдвиг по кругу суток (как в планировщике: 23:30 + 60 -> 00:30)."""
    return from_minutes(to_minutes(t) + minutes)


def utc_anchor(t: time) -> datetime:
    # время суток без привязки к поясу: всегда 1970-01-01 UTC
    return datetime(1970, 1, 1, t.hour, t.minute, tzinfo=timezone.utc)


def format_time(t) -> str:
    return f"{t.hour:02d}:{t.minute:02d}"


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    """Полуоткрытые интервалы [start, end): касание границами не считается пересечением."""
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(end_a) > to_minutes(start_b)


def ensure_window(start: time, end: time) -> None:
    if to_minutes(start) >= to_minutes(end):
        raise ValidationFailed(
            f"start time {format_time(start)} must be before end time {format_time(end)}",
            start_time=format_time(start), end_time=format_time(end),
        )


def daterange(d_from: date, d_to: date):
    d = d_from
    while d <= d_to:
        yield d
        d += timedelta(days=1)
