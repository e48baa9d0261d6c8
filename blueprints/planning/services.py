# blueprints/planning/services.py
from __future__ import annotations
import calendar
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

from extensions import db
from models import Schedule, ScheduleStatus, ScheduleType
from blueprints.core.errors import (
    ConflictDetected, EntityNotFound, TransactionAborted, failure_kind,
)
from blueprints.constraints.services import BATCH, Conflict, check_conflicts_detailed
from blueprints.directory.cache import ReferenceDataCache
from blueprints.directory.services import GROUPS, ROOMS, TEACHERS, lookup
from blueprints.schedule.enrollment import auto_enroll
from blueprints.schedule.recurrence import WeeklySlot, expand_monthly_pattern
from blueprints.schedule.services import ensure_references, schedule_to_dict
from blueprints.schedule.timeutils import ensure_window, format_time, overlaps, parse_month
from blueprints.schedule.writer import ScheduleDraft, write_schedule

log = logging.getLogger(__name__)


# ===== DTO =====
@dataclass
class GroupPlan:
    group_id: int
    teacher_id: int
    room_id: int
    slots: List[WeeklySlot]
    duration_minutes: int = 60


@dataclass
class PreviewSession:
    temp_id: str
    group_id: int
    group_name: str
    date: date
    start_time: time
    end_time: time
    room_id: int
    room_name: str
    teacher_id: int
    teacher_name: str
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "room_id": self.room_id,
            "room_name": self.room_name,
            "teacher_id": self.teacher_id,
            "teacher_name": self.teacher_name,
            "has_conflict": self.has_conflict,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def _batch_conflict(candidate: PreviewSession, earlier: Iterable[PreviewSession]) -> List[Conflict]:
    out = []
    for other in earlier:
        if other.date != candidate.date:
            continue
        if not overlaps(candidate.start_time, candidate.end_time, other.start_time, other.end_time):
            continue
        if other.room_id == candidate.room_id or other.teacher_id == candidate.teacher_id:
            out.append(Conflict(
                kind=BATCH,
                reason=(f"Пересекается с другим занятием предпросмотра (группа: {other.group_name}) "
                        f"в это время: {format_time(other.start_time)} - {format_time(other.end_time)}"),
                start_time=format_time(other.start_time), end_time=format_time(other.end_time),
                extra={"temp_id": other.temp_id},
            ))
    return out


# ===== симулятор =====
class PreviewSimulator:
    """Предпросмотр массового создания: развёртка + конфликты, без записи в БД.

    Проверка идёт против уже сохранённых данных. Пересечения кандидатов
    между собой проверяются только при check_batch_conflicts=True.
    """

    def __init__(self, cache: ReferenceDataCache):
        self.cache = cache

    def _ref(self, key: str, label: str, entity_id: int) -> dict:
        found = lookup(self.cache, key, entity_id)
        if found is None:
            raise EntityNotFound(label, entity_id)
        return found

    def preview(self, plans: List[GroupPlan], month: str, check_batch_conflicts: bool = False) -> Dict[str, Any]:
        parse_month(month)
        candidates: List[PreviewSession] = []
        # все ссылки проверяем до развёртки
        for plan in plans:
            self._ref(GROUPS, "Group", plan.group_id)
            self._ref(TEACHERS, "Teacher", plan.teacher_id)
            self._ref(ROOMS, "Room", plan.room_id)
            for slot in plan.slots:
                if slot.room_id is not None:
                    self._ref(ROOMS, "Room", slot.room_id)

        for plan in plans:
            group = self._ref(GROUPS, "Group", plan.group_id)
            teacher = self._ref(TEACHERS, "Teacher", plan.teacher_id)
            for c in expand_monthly_pattern(month, plan.slots, plan.duration_minutes):
                room_id = c.room_id or plan.room_id
                room = self._ref(ROOMS, "Room", room_id)
                candidates.append(PreviewSession(
                    temp_id=str(uuid.uuid4()),
                    group_id=plan.group_id, group_name=group["name"],
                    date=c.date, start_time=c.start_time, end_time=c.end_time,
                    room_id=room_id, room_name=room["name"],
                    teacher_id=plan.teacher_id, teacher_name=teacher["name"],
                ))

        candidates.sort(key=lambda s: (s.date, s.start_time))
        session = db.session
        for i, cand in enumerate(candidates):
            cand.conflicts = check_conflicts_detailed(
                session, day=cand.date, start_time=cand.start_time, end_time=cand.end_time,
                room_ids=[cand.room_id], teacher_id=cand.teacher_id,
            )
            if check_batch_conflicts:
                cand.conflicts += _batch_conflict(cand, candidates[:i])

        by_group: Dict[str, Dict[str, Any]] = {}
        for cand in candidates:
            g = by_group.setdefault(str(cand.group_id), {"total": 0, "conflicts": 0, "group_name": cand.group_name})
            g["total"] += 1
            g["conflicts"] += int(cand.has_conflict)

        return {
            "month": month,
            "sessions": [c.to_dict() for c in candidates],
            "summary": {
                "total": len(candidates),
                "with_conflicts": sum(1 for c in candidates if c.has_conflict),
                "by_group": by_group,
            },
        }


# ===== фиксация принятого предпросмотра =====
def bulk_create(sessions: List[Dict[str, Any]], auto_enroll_clients: bool = False) -> Dict[str, Any]:
    """Каждая сессия в своей транзакции; провал одной не мешает другим."""
    for s in sessions:
        ensure_window(s["start_time"], s["end_time"])
        ensure_references(db.session, group_id=s.get("group_id"),
                          teacher_id=s["teacher_id"], room_id=s["room_id"])

    created: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for s in sessions:
        draft = ScheduleDraft(
            group_id=s.get("group_id"), teacher_id=s["teacher_id"], room_id=s["room_id"],
            date=s["date"], start_time=s["start_time"], end_time=s["end_time"],
            type=s.get("type"), is_recurring=True,
        )
        try:
            row = write_schedule(draft)
        except (ConflictDetected, TransactionAborted) as err:
            errors.append({
                "schedule": {
                    "group_id": draft.group_id, "teacher_id": draft.teacher_id, "room_id": draft.room_id,
                    "date": draft.date.isoformat(),
                    "start_time": format_time(draft.start_time), "end_time": format_time(draft.end_time),
                },
                "type": failure_kind(err),
                "reason": err.message,
            })
            continue
        item = schedule_to_dict(row)
        item["enrolled_clients"] = auto_enroll(row.id) if auto_enroll_clients and draft.group_id else 0
        created.append(item)

    log.info("bulk create: %s created, %s failed", len(created), len(errors),
             extra={"event": "bulk_create"})
    return {
        "created": {"count": len(created), "schedules": created},
        "failed": {"count": len(errors), "errors": errors},
    }


# ===== выборки для планировщика =====
def list_planned(year: int, month: int, group_ids: Optional[List[int]] = None,
                 status: Optional[ScheduleStatus] = None) -> List[Dict[str, Any]]:
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    q = (select(Schedule)
         .where(Schedule.date >= first, Schedule.date <= last,
                Schedule.type == ScheduleType.GROUP_CLASS))
    if group_ids:
        q = q.where(Schedule.group_id.in_(group_ids))
    if status:
        q = q.where(Schedule.status == status)
    q = q.order_by(Schedule.date, Schedule.start_time, Schedule.id)
    return [schedule_to_dict(s) for s in db.session.scalars(q)]


def month_stats() -> List[Dict[str, Any]]:
    days = db.session.scalars(
        select(Schedule.date).where(Schedule.group_id.is_not(None),
                                    Schedule.status != ScheduleStatus.CANCELLED))
    counts = Counter(f"{d.year:04d}-{d.month:02d}" for d in days)
    return [{"month": m, "count": counts[m]} for m in sorted(counts)]
