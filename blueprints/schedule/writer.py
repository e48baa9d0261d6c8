# blueprints/schedule/writer.py
from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import date, time
from typing import Optional

from sqlalchemy.orm import Session

from models import Schedule, ScheduleStatus, ScheduleType
from unit_of_work import UnitOfWork
from blueprints.constraints.services import check_conflicts
from .timeutils import ensure_window

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleDraft:
    teacher_id: int
    room_id: int
    date: date
    start_time: time
    end_time: time
    group_id: Optional[int] = None
    type: Optional[ScheduleType] = None
    status: ScheduleStatus = ScheduleStatus.PLANNED
    is_recurring: bool = False

    def on(self, day: date) -> "ScheduleDraft":
        return replace(self, date=day)

    def resolved_type(self) -> ScheduleType:
        if self.type is not None:
            return self.type
        return ScheduleType.GROUP_CLASS if self.group_id else ScheduleType.INDIVIDUAL


def insert_schedule(session: Session, draft: ScheduleDraft) -> Schedule:
    """Проверка конфликтов + вставка в уже открытой транзакции."""
    ensure_window(draft.start_time, draft.end_time)
    check_conflicts(
        session,
        day=draft.date, start_time=draft.start_time, end_time=draft.end_time,
        room_ids=[draft.room_id], teacher_id=draft.teacher_id,
    )
    s = Schedule(
        group_id=draft.group_id,
        teacher_id=draft.teacher_id,
        room_id=draft.room_id,
        date=draft.date,
        start_time=draft.start_time,
        end_time=draft.end_time,
        type=draft.resolved_type(),
        status=draft.status,
        is_recurring=draft.is_recurring,
        version=1,
    )
    session.add(s)
    session.flush()
    return s


def write_schedule(draft: ScheduleDraft) -> Schedule:
    """Создаёт ровно одно занятие в serializable-транзакции.

    Проверка конфликтов повторяется внутри транзакции: результат любой
    предварительной проверки к этому моменту мог устареть. Ошибки:
    ConflictDetected (бизнес-правило), TransactionAborted (сериализация,
    дедлок, таймаут). Повторов здесь нет, решает вызывающий.
    """
    with UnitOfWork() as uow:
        s = insert_schedule(uow.session, draft)
        sid = s.id
    log.info("schedule created", extra={"event": "schedule_created", "schedule_id": sid})
    return uow.session.get(Schedule, sid)
