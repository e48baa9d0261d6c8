# blueprints/schedule/services.py
from __future__ import annotations
import logging
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from extensions import db
from models import (
    Attendance, AttendanceStatus, Group, Room, Schedule, ScheduleStatus, ScheduleType, Teacher,
)
from unit_of_work import UnitOfWork
from blueprints.core.errors import (
    ConflictDetected, EntityNotFound, InvariantViolation, StaleVersion, TransactionAborted,
    ValidationFailed, failure_kind,
)
from blueprints.constraints.services import check_conflicts
from .enrollment import auto_enroll
from .notify import Notification
from .recurrence import expand_rule
from .timeutils import ensure_window, format_time
from .writer import ScheduleDraft, write_schedule

log = logging.getLogger(__name__)

# поля, изменение которых требует повторной проверки конфликтов
CONFLICT_FIELDS = ("date", "start_time", "end_time", "room_id", "teacher_id")
UPDATABLE_FIELDS = CONFLICT_FIELDS + (
    "group_id", "type", "status", "is_compensated", "cancellation_note",
)
# колонки NOT NULL: явный null для них запрещён
NON_NULLABLE_FIELDS = CONFLICT_FIELDS + ("type", "status", "is_compensated")


def reject_nulls(changes: Dict[str, Any]) -> None:
    nulls = sorted(k for k in NON_NULLABLE_FIELDS if k in changes and changes[k] is None)
    if nulls:
        raise ValidationFailed(f"fields cannot be null: {', '.join(nulls)}", fields=nulls)


def schedule_to_dict(s: Schedule) -> Dict[str, Any]:
    return {
        "id": s.id,
        "group_id": s.group_id,
        "group_name": s.group.name if s.group else None,
        "teacher_id": s.teacher_id,
        "teacher_name": s.teacher.full_name if s.teacher else None,
        "room_id": s.room_id,
        "room_name": s.room.name if s.room else None,
        "date": s.date.isoformat(),
        "start_time": format_time(s.start_time),
        "end_time": format_time(s.end_time),
        "type": s.type.value,
        "status": s.status.value,
        "is_recurring": s.is_recurring,
        "is_compensated": s.is_compensated,
        "cancellation_note": s.cancellation_note,
        "version": s.version,
    }


def ensure_references(session: Session, *, group_id: Optional[int] = None,
                      teacher_id: Optional[int] = None, room_id: Optional[int] = None) -> None:
    """Группа / преподаватель / комната должны существовать (иначе фатальная ошибка)."""
    for model, label, pk in ((Group, "Group", group_id), (Teacher, "Teacher", teacher_id), (Room, "Room", room_id)):
        if pk is not None and session.get(model, pk) is None:
            raise EntityNotFound(label, pk)


def _notifier(notifier=None):
    if notifier is not None:
        return notifier
    return current_app.extensions.get("notifications")


def notify(kind: str, schedule_id: int, payload: Optional[dict] = None, notifier=None) -> None:
    dispatcher = _notifier(notifier)
    if dispatcher is not None:
        dispatcher.dispatch(Notification(kind=kind, schedule_id=schedule_id, payload=payload or {}))


# ---------- чтение ----------
def get_schedule(schedule_id: int) -> Dict[str, Any]:
    s = db.session.get(Schedule, schedule_id)
    if s is None:
        raise EntityNotFound("Schedule", schedule_id)
    out = schedule_to_dict(s)
    out["attendance_count"] = db.session.scalar(
        select(func.count(Attendance.id)).where(Attendance.schedule_id == schedule_id))
    return out


def list_schedules(*, day: date | None = None, date_from: date | None = None, date_to: date | None = None,
                   group_id: int | None = None, teacher_id: int | None = None, room_id: int | None = None,
                   status: ScheduleStatus | None = None) -> List[Dict[str, Any]]:
    q = select(Schedule)
    if day:
        q = q.where(Schedule.date == day)
    if date_from:
        q = q.where(Schedule.date >= date_from)
    if date_to:
        q = q.where(Schedule.date <= date_to)
    if group_id:
        q = q.where(Schedule.group_id == group_id)
    if teacher_id:
        q = q.where(Schedule.teacher_id == teacher_id)
    if room_id:
        q = q.where(Schedule.room_id == room_id)
    if status:
        q = q.where(Schedule.status == status)
    q = q.order_by(Schedule.date, Schedule.start_time, Schedule.id)
    return [schedule_to_dict(s) for s in db.session.scalars(q)]


# ---------- создание ----------
def create_schedule(*, teacher_id: int, room_id: int, date: date, start_time: time, end_time: time,
                    group_id: Optional[int] = None, type: Optional[ScheduleType] = None,
                    auto_enroll_clients: bool = False) -> Dict[str, Any]:
    ensure_window(start_time, end_time)
    ensure_references(db.session, group_id=group_id, teacher_id=teacher_id, room_id=room_id)
    s = write_schedule(ScheduleDraft(
        group_id=group_id, teacher_id=teacher_id, room_id=room_id,
        date=date, start_time=start_time, end_time=end_time, type=type,
    ))
    out = schedule_to_dict(s)
    out["enrolled_clients"] = auto_enroll(s.id) if auto_enroll_clients and group_id else 0
    return out


def create_recurring(*, teacher_id: int, room_id: int, days_of_week: Iterable[int],
                     start_date: date, end_date: date, start_time: time, end_time: time,
                     group_id: Optional[int] = None, type: Optional[ScheduleType] = None,
                     auto_enroll_clients: bool = False) -> Dict[str, Any]:
    """Развернуть правило и создать по занятию на каждую дату.

    Конфликтующие даты пропускаются (skipped), остальные создаются
    независимо, каждая в своей транзакции.
    """
    ensure_window(start_time, end_time)
    ensure_references(db.session, group_id=group_id, teacher_id=teacher_id, room_id=room_id)
    dates = expand_rule(days_of_week, start_date, end_date)

    draft = ScheduleDraft(
        group_id=group_id, teacher_id=teacher_id, room_id=room_id, date=start_date,
        start_time=start_time, end_time=end_time, type=type, is_recurring=True,
    )
    created: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    for d in dates:
        try:
            s = write_schedule(draft.on(d))
        except (ConflictDetected, TransactionAborted) as err:
            log.info("recurring date %s skipped: %s", d.isoformat(), err.message,
                     extra={"event": "recurring_skipped"})
            skipped.append({"date": d.isoformat(), "type": failure_kind(err), "reason": err.message})
            continue
        item = schedule_to_dict(s)
        item["enrolled_clients"] = auto_enroll(s.id) if auto_enroll_clients and group_id else 0
        created.append(item)

    return {
        "total_dates": len(dates),
        "created": created,
        "skipped": skipped,
    }


# ---------- изменение ----------
def _mark_cancelled_attendance(session: Session, schedule_id: int, status: AttendanceStatus) -> int:
    res = session.execute(
        update(Attendance)
        .where(Attendance.schedule_id == schedule_id, Attendance.status == AttendanceStatus.PRESENT)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0


def apply_update(session: Session, schedule_id: int, changes: Dict[str, Any],
                 version: Optional[int] = None) -> Schedule:
    """Изменение занятия с оптимистической блокировкой.

    version задан -> UPDATE ... WHERE id = :id AND version = :version;
    0 строк -> StaleVersion. Без version побеждает последняя запись.
    Каждое успешное изменение увеличивает version на 1.
    """
    s = session.get(Schedule, schedule_id)
    if s is None:
        raise EntityNotFound("Schedule", schedule_id)

    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    reject_nulls(changes)
    ensure_references(session, group_id=changes.get("group_id"),
                      teacher_id=changes.get("teacher_id"), room_id=changes.get("room_id"))

    target = {f: changes.get(f, getattr(s, f)) for f in CONFLICT_FIELDS}
    ensure_window(target["start_time"], target["end_time"])

    old_status = s.status
    new_status = changes.get("status", old_status)
    moved = any(f in changes and changes[f] != getattr(s, f) for f in CONFLICT_FIELDS)
    uncancel = old_status == ScheduleStatus.CANCELLED and new_status == ScheduleStatus.PLANNED
    if new_status == ScheduleStatus.PLANNED and (moved or uncancel):
        check_conflicts(
            session,
            day=target["date"], start_time=target["start_time"], end_time=target["end_time"],
            room_ids=[target["room_id"]], teacher_id=target["teacher_id"],
            exclude_schedule_id=schedule_id,
        )
    if uncancel:
        changes["is_compensated"] = False
        changes["cancellation_note"] = None

    stmt = update(Schedule).where(Schedule.id == schedule_id)
    if version is not None:
        stmt = stmt.where(Schedule.version == version)
    res = session.execute(
        stmt.values(**changes, version=Schedule.version + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if not res.rowcount:
        current = session.scalar(select(Schedule.version).where(Schedule.id == schedule_id))
        if current is None:
            raise EntityNotFound("Schedule", schedule_id)
        raise StaleVersion("Schedule", schedule_id, expected=version, current=current)

    if uncancel:
        # компенсированная отмена оставляла EXCUSED, убираем
        session.execute(
            delete(Attendance)
            .where(Attendance.schedule_id == schedule_id, Attendance.status == AttendanceStatus.EXCUSED)
            .execution_options(synchronize_session=False)
        )
    elif old_status != ScheduleStatus.CANCELLED and new_status == ScheduleStatus.CANCELLED:
        _mark_cancelled_attendance(
            session, schedule_id,
            AttendanceStatus.EXCUSED if changes.get("is_compensated") else AttendanceStatus.ABSENT,
        )

    session.expire(s)
    return s


def update_schedule(schedule_id: int, changes: Dict[str, Any], version: Optional[int] = None,
                    notifier=None) -> Dict[str, Any]:
    with UnitOfWork() as uow:
        apply_update(uow.session, schedule_id, changes, version)
    s = db.session.get(Schedule, schedule_id)
    out = schedule_to_dict(s)
    # уведомление в фоне, на ответ не влияет
    notify("schedule_updated", schedule_id,
           {"changed": sorted(changes), "version": s.version}, notifier=notifier)
    return out


# ---------- удаление ----------
def delete_schedule(schedule_id: int) -> None:
    """Одиночное удаление допустимо только без записей посещаемости."""
    with UnitOfWork() as uow:
        s = uow.session.get(Schedule, schedule_id)
        if s is None:
            raise EntityNotFound("Schedule", schedule_id)
        count = uow.session.scalar(
            select(func.count(Attendance.id)).where(Attendance.schedule_id == schedule_id))
        if count:
            raise InvariantViolation(
                "Cannot delete schedule with attendance records; use bulk delete to refund visits",
                schedule_id=schedule_id, attendance_count=count,
            )
        uow.session.delete(s)
    log.info("schedule deleted", extra={"event": "schedule_deleted", "schedule_id": schedule_id})
