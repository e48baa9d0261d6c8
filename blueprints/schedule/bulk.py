# blueprints/schedule/bulk.py
"""Массовые операции над набором занятий.

Каждый элемент обрабатывается в своей транзакции, в порядке переданных id.
Ошибка одного элемента попадает в отчёт и не останавливает остальные.
"""
from __future__ import annotations
import logging
from datetime import date, time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from extensions import db
from models import (
    Attendance, AttendanceStatus, Schedule, ScheduleStatus, Subscription,
)
from unit_of_work import UnitOfWork
from blueprints.core.errors import (
    EngineError, EntityNotFound, ValidationFailed, failure_kind,
)
from blueprints.constraints.services import check_conflicts
from .enrollment import auto_enroll, refund_visit
from .services import apply_update, ensure_references, notify, reject_nulls, schedule_to_dict
from .timeutils import month_key
from .writer import ScheduleDraft, insert_schedule

log = logging.getLogger(__name__)

CANCEL, TRANSFER = "CANCEL", "TRANSFER"


def _unique(ids: Sequence[int]) -> List[int]:
    seen, out = set(), []
    for i in ids or []:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _resolve_ids(ids: Sequence[int]) -> Tuple[List[int], List[int]]:
    """(существующие, неизвестные); все неизвестны -> NotFound на весь запрос."""
    ids = _unique(ids)
    if not ids:
        raise ValidationFailed("schedule_ids must not be empty")
    known = set(db.session.scalars(select(Schedule.id).where(Schedule.id.in_(ids))))
    if not known:
        raise EntityNotFound("Schedule", ids)
    return [i for i in ids if i in known], [i for i in ids if i not in known]


def _failure(schedule_id: int, err: EngineError, **extra) -> Dict[str, Any]:
    return {"schedule_id": schedule_id, "type": failure_kind(err), "reason": err.message, **extra}


def _missing(schedule_id: int) -> Dict[str, Any]:
    return {"schedule_id": schedule_id, "type": "not_found", "reason": f"Schedule with ID {schedule_id} not found"}


# ---------- Bulk Update ----------
def bulk_update(schedule_ids: Sequence[int], changes: Dict[str, Any], notifier=None) -> Dict[str, Any]:
    # null в NOT NULL поле отклоняет весь запрос, а не каждый элемент
    reject_nulls(changes)
    ids, unknown = _resolve_ids(schedule_ids)
    ensure_references(db.session, group_id=changes.get("group_id"),
                      teacher_id=changes.get("teacher_id"), room_id=changes.get("room_id"))

    updated: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = [_missing(i) for i in unknown]
    for sid in ids:
        try:
            with UnitOfWork() as uow:
                apply_update(uow.session, sid, dict(changes))
        except EngineError as err:
            errors.append(_failure(sid, err))
            continue
        updated.append(schedule_to_dict(db.session.get(Schedule, sid)))
        notify("schedule_updated", sid, {"changed": sorted(changes)}, notifier=notifier)

    return {
        "updated": {"count": len(updated), "schedules": updated},
        "failed": {"count": len(errors), "errors": errors},
    }


# ---------- Copy ----------
def copy_schedules(schedule_ids: Sequence[int], target_date: date,
                   auto_enroll_clients: bool = False) -> Dict[str, Any]:
    ids, unknown = _resolve_ids(schedule_ids)
    created: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = [
        {**_missing(i), "original_schedule_id": i, "target_date": target_date.isoformat()} for i in unknown
    ]
    for sid in ids:
        src = db.session.get(Schedule, sid)
        draft = ScheduleDraft(
            group_id=src.group_id, teacher_id=src.teacher_id, room_id=src.room_id,
            date=target_date, start_time=src.start_time, end_time=src.end_time,
            type=src.type, status=ScheduleStatus.PLANNED, is_recurring=False,
        )
        try:
            with UnitOfWork() as uow:
                new_id = insert_schedule(uow.session, draft).id
        except EngineError as err:
            skipped.append(_failure(sid, err, original_schedule_id=sid, target_date=target_date.isoformat()))
            continue
        item = schedule_to_dict(db.session.get(Schedule, new_id))
        item["copied_from"] = sid
        item["enrolled_clients"] = auto_enroll(new_id) if auto_enroll_clients and draft.group_id else 0
        created.append(item)

    return {
        "created": {"count": len(created), "schedules": created},
        "skipped": {"count": len(skipped), "items": skipped},
    }


# ---------- Cancel / Transfer ----------
def _cancel_one(session: Session, schedule_id: int, *, is_compensated: bool, note: Optional[str]) -> None:
    s = session.get(Schedule, schedule_id)
    if s is None:
        raise EntityNotFound("Schedule", schedule_id)
    changes = {"status": ScheduleStatus.CANCELLED}
    if is_compensated:
        changes["is_compensated"] = True
    if note is not None:
        changes["cancellation_note"] = note
    apply_update(session, schedule_id, changes)


def _transfer_one(session: Session, schedule_id: int, *, transfer_date: date,
                  start_time: Optional[time], end_time: Optional[time],
                  note: Optional[str]) -> Tuple[int, int]:
    src = session.get(Schedule, schedule_id)
    if src is None:
        raise EntityNotFound("Schedule", schedule_id)
    if src.status == ScheduleStatus.CANCELLED:
        raise ValidationFailed("schedule is already cancelled", schedule_id=schedule_id)
    new_start = start_time or src.start_time
    new_end = end_time or src.end_time

    # проверяем место назначения до отмены исходного занятия
    check_conflicts(
        session, day=transfer_date, start_time=new_start, end_time=new_end,
        room_ids=[src.room_id], teacher_id=src.teacher_id, exclude_schedule_id=schedule_id,
    )
    attendees = [(a.client_id, a.subscription_id) for a in
                 session.scalars(select(Attendance).where(Attendance.schedule_id == schedule_id))]
    draft = ScheduleDraft(
        group_id=src.group_id, teacher_id=src.teacher_id, room_id=src.room_id,
        date=transfer_date, start_time=new_start, end_time=new_end,
        type=src.type, status=ScheduleStatus.PLANNED,
    )

    changes = {"status": ScheduleStatus.CANCELLED}
    if note is not None:
        changes["cancellation_note"] = note
    apply_update(session, schedule_id, changes)

    target = insert_schedule(session, draft)
    # посещаемость переносится заново: PRESENT, без списания
    for client_id, subscription_id in attendees:
        session.add(Attendance(
            schedule_id=target.id, client_id=client_id, subscription_id=subscription_id,
            status=AttendanceStatus.PRESENT, subscription_deducted=False,
        ))
    session.flush()
    return target.id, len(attendees)


def cancel_or_transfer(schedule_ids: Sequence[int], action: str, *,
                       transfer_date: Optional[date] = None,
                       start_time: Optional[time] = None, end_time: Optional[time] = None,
                       is_compensated: bool = False, cancellation_note: Optional[str] = None,
                       notifier=None) -> Dict[str, Any]:
    action = (action or "").upper()
    if action not in (CANCEL, TRANSFER):
        raise ValidationFailed("action must be CANCEL or TRANSFER", action=action)
    if action == TRANSFER and transfer_date is None:
        raise ValidationFailed("transfer_date is required for TRANSFER")
    ids, unknown = _resolve_ids(schedule_ids)

    cancelled: List[int] = []
    transferred: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = [_missing(i) for i in unknown]
    for sid in ids:
        try:
            with UnitOfWork() as uow:
                if action == CANCEL:
                    _cancel_one(uow.session, sid, is_compensated=is_compensated, note=cancellation_note)
                else:
                    new_id, moved = _transfer_one(
                        uow.session, sid, transfer_date=transfer_date,
                        start_time=start_time, end_time=end_time, note=cancellation_note,
                    )
        except EngineError as err:
            reason = f"Cannot transfer: {err.message}" if action == TRANSFER else err.message
            errors.append({**_failure(sid, err), "reason": reason})
            continue

        cancelled.append(sid)
        if action == CANCEL:
            notify("schedule_cancelled", sid, notifier=notifier)
        else:
            item = schedule_to_dict(db.session.get(Schedule, new_id))
            item["transferred_from"] = sid
            item["transferred_clients"] = moved
            transferred.append(item)
            notify("schedule_transferred", sid, {"to": new_id}, notifier=notifier)

    out: Dict[str, Any] = {
        "cancelled": {"count": len(cancelled), "schedule_ids": cancelled},
        "failed": {"count": len(errors), "errors": errors},
    }
    if action == TRANSFER:
        out["transferred"] = {"count": len(transferred), "schedules": transferred}
    return out


# ---------- Delete (с возвратом посещений) ----------
def refund_subscription_id(session: Session, attendance: Attendance, schedule: Schedule) -> Optional[int]:
    """Абонемент для возврата: по клиенту + группе + месяцу занятия, самый свежий.

    Для занятия без группы берём абонемент, привязанный к записи посещения.
    """
    if schedule.group_id is None:
        return attendance.subscription_id
    day = schedule.date
    q = (select(Subscription.id)
         .where(Subscription.client_id == attendance.client_id,
                Subscription.group_id == schedule.group_id,
                or_(Subscription.valid_month == month_key(day),
                    (Subscription.start_date <= day) & (Subscription.end_date >= day)))
         .order_by(Subscription.created_at.desc(), Subscription.id.desc())
         .limit(1))
    return session.scalar(q) or attendance.subscription_id


def _delete_one(session: Session, schedule_id: int, today: date) -> Tuple[int, int]:
    s = session.get(Schedule, schedule_id)
    if s is None:
        raise EntityNotFound("Schedule", schedule_id)
    attendances = list(session.scalars(select(Attendance).where(Attendance.schedule_id == schedule_id)))
    refunded = 0
    for a in attendances:
        if not a.subscription_deducted:
            continue
        sub_id = refund_subscription_id(session, a, s)
        if sub_id is not None and refund_visit(session, sub_id, today):
            refunded += 1
    session.execute(
        delete(Attendance).where(Attendance.schedule_id == schedule_id)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        delete(Schedule).where(Schedule.id == schedule_id)
        .execution_options(synchronize_session=False)
    )
    for obj in (*attendances, s):
        session.expunge(obj)
    return len(attendances), refunded


def bulk_delete(schedule_ids: Sequence[int], today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    ids, unknown = _resolve_ids(schedule_ids)
    deleted: List[int] = []
    errors: List[Dict[str, Any]] = [_missing(i) for i in unknown]
    total_enrollments = 0
    total_refunded = 0
    for sid in ids:
        try:
            with UnitOfWork() as uow:
                removed, refunded = _delete_one(uow.session, sid, today)
        except EngineError as err:
            errors.append(_failure(sid, err))
            continue
        deleted.append(sid)
        total_enrollments += removed
        total_refunded += refunded
        log.info("schedule %s deleted, %s enrollments removed, %s visits refunded", sid, removed, refunded,
                 extra={"event": "schedule_deleted", "schedule_id": sid})

    return {
        "deleted": {"count": len(deleted), "schedule_ids": deleted},
        "total_cancelled_enrollments": total_enrollments,
        "refunded_visits": total_refunded,
        "failed": {"count": len(errors), "errors": errors},
    }
