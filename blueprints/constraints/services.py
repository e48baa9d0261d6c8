# blueprints/constraints/services.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from models import (
    Schedule, ScheduleStatus, Rental, Event, BookingStatus,
)
from blueprints.core.errors import ConflictDetected
from blueprints.schedule.timeutils import format_time, overlaps

ROOM, TEACHER, RENTAL, EVENT, BATCH = "room", "teacher", "rental", "event", "batch"


@dataclass
class Conflict:
    kind: str
    reason: str
    entity_id: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = {"type": self.kind, "reason": self.reason, "entity_id": self.entity_id,
               "start_time": self.start_time, "end_time": self.end_time}
        out.update(self.extra)
        return out


@dataclass
class Slot:
    """Кандидат на проверку: день, окно, комнаты, преподаватель."""
    date: date
    start_time: time
    end_time: time
    room_ids: List[int]
    teacher_id: Optional[int]
    exclude_ids: tuple = ()


def _window(obj) -> str:
    return f"{format_time(obj.start_time)} - {format_time(obj.end_time)}"


def _room_label(room) -> str:
    return room.name if room else "?"


# ---------- отдельные реестры ----------
def room_sessions(session: Session, slot: Slot) -> List[Conflict]:
    if not slot.room_ids:
        return []
    q = (select(Schedule)
         .options(joinedload(Schedule.group), joinedload(Schedule.room))
         .where(Schedule.date == slot.date,
                Schedule.room_id.in_(slot.room_ids),
                Schedule.status != ScheduleStatus.CANCELLED)
         .order_by(Schedule.start_time, Schedule.id))
    if slot.exclude_ids:
        q = q.where(Schedule.id.not_in(slot.exclude_ids))
    out = []
    for s in session.scalars(q).unique():
        if not overlaps(slot.start_time, slot.end_time, s.start_time, s.end_time):
            continue
        group_name = s.group.name if s.group else "индивидуальное занятие"
        out.append(Conflict(
            kind=ROOM,
            reason=(f'Комната уже занята занятием (группа: {group_name}) '
                    f'в комнате "{_room_label(s.room)}" в это время: {_window(s)}'),
            entity_id=s.id, start_time=format_time(s.start_time), end_time=format_time(s.end_time),
            extra={"room_id": s.room_id},
        ))
    return out


def teacher_sessions(session: Session, slot: Slot) -> List[Conflict]:
    if not slot.teacher_id:
        return []
    q = (select(Schedule)
         .options(joinedload(Schedule.teacher))
         .where(Schedule.date == slot.date,
                Schedule.teacher_id == slot.teacher_id,
                Schedule.status != ScheduleStatus.CANCELLED)
         .order_by(Schedule.start_time, Schedule.id))
    if slot.exclude_ids:
        q = q.where(Schedule.id.not_in(slot.exclude_ids))
    out = []
    for s in session.scalars(q).unique():
        if not overlaps(slot.start_time, slot.end_time, s.start_time, s.end_time):
            continue
        out.append(Conflict(
            kind=TEACHER,
            reason=f"Преподаватель {s.teacher.full_name} уже занят в это время: {_window(s)}",
            entity_id=s.id, start_time=format_time(s.start_time), end_time=format_time(s.end_time),
            extra={"teacher_id": s.teacher_id},
        ))
    return out


def room_rentals(session: Session, slot: Slot) -> List[Conflict]:
    if not slot.room_ids:
        return []
    q = (select(Rental)
         .options(joinedload(Rental.room))
         .where(Rental.date == slot.date,
                Rental.room_id.in_(slot.room_ids),
                Rental.status != BookingStatus.CANCELLED)
         .order_by(Rental.start_time, Rental.id))
    out = []
    for r in session.scalars(q).unique():
        if not overlaps(slot.start_time, slot.end_time, r.start_time, r.end_time):
            continue
        out.append(Conflict(
            kind=RENTAL,
            reason=f'Комната "{_room_label(r.room)}" уже сдана в аренду в это время: {_window(r)}',
            entity_id=r.id, start_time=format_time(r.start_time), end_time=format_time(r.end_time),
            extra={"room_id": r.room_id},
        ))
    return out


def room_events(session: Session, slot: Slot) -> List[Conflict]:
    if not slot.room_ids:
        return []
    q = (select(Event)
         .options(joinedload(Event.room))
         .where(Event.date == slot.date,
                Event.room_id.in_(slot.room_ids),
                Event.status != BookingStatus.CANCELLED)
         .order_by(Event.start_time, Event.id))
    out = []
    for e in session.scalars(q).unique():
        if not overlaps(slot.start_time, slot.end_time, e.start_time, e.end_time):
            continue
        kind_label = f" ({e.event_type})" if e.event_type else ""
        out.append(Conflict(
            kind=EVENT,
            reason=(f'Комната "{_room_label(e.room)}" занята мероприятием "{e.name}"{kind_label} '
                    f'в это время: {_window(e)}'),
            entity_id=e.id, start_time=format_time(e.start_time), end_time=format_time(e.end_time),
            extra={"room_id": e.room_id},
        ))
    return out


# порядок важен: первый найденный конфликт попадает в отчёт;
# занятость преподавателя намеренно проверяется раньше аренды и мероприятий
LEDGERS = (room_sessions, teacher_sessions, room_rentals, room_events)


def _slot(day, start_time, end_time, room_ids, teacher_id, exclude_schedule_id) -> Slot:
    if isinstance(exclude_schedule_id, (list, tuple, set)):
        exclude = tuple(exclude_schedule_id)
    else:
        exclude = (exclude_schedule_id,) if exclude_schedule_id else ()
    return Slot(date=day, start_time=start_time, end_time=end_time,
                room_ids=[r for r in (room_ids or []) if r], teacher_id=teacher_id,
                exclude_ids=exclude)


def find_first_conflict(session: Session, *, day: date, start_time: time, end_time: time,
                        room_ids: Iterable[int], teacher_id: Optional[int],
                        exclude_schedule_id=None) -> Optional[Conflict]:
    slot = _slot(day, start_time, end_time, room_ids, teacher_id, exclude_schedule_id)
    for ledger in LEDGERS:
        found = ledger(session, slot)
        if found:
            return found[0]
    return None


def check_conflicts(session: Session, **kw) -> None:
    """Без конфликтов возвращает None, иначе ConflictDetected по первому найденному."""
    conflict = find_first_conflict(session, **kw)
    if conflict is not None:
        raise ConflictDetected(conflict)


def check_conflicts_detailed(session: Session, *, day: date, start_time: time, end_time: time,
                             room_ids: Iterable[int], teacher_id: Optional[int],
                             exclude_schedule_id=None) -> List[Conflict]:
    slot = _slot(day, start_time, end_time, room_ids, teacher_id, exclude_schedule_id)
    conflicts: List[Conflict] = []
    for ledger in LEDGERS:
        conflicts += ledger(session, slot)
    return conflicts
