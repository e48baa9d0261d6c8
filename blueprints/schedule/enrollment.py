# blueprints/schedule/enrollment.py
from __future__ import annotations
import logging
from datetime import date
from typing import Dict, List

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import (
    Attendance, AttendanceStatus, Schedule, Subscription, SubscriptionStatus,
)
from unit_of_work import UnitOfWork
from blueprints.core.errors import EngineError
from .timeutils import month_key

log = logging.getLogger(__name__)


def eligible_subscriptions(session: Session, group_id: int, day: date) -> List[Subscription]:
    """Активные абонементы группы, покрывающие дату занятия.

    Два вида: фиксированный месяц (valid_month) или окно дат с остатком
    посещений (None = безлимит).
    """
    by_month = Subscription.valid_month == month_key(day)
    by_window = and_(
        Subscription.start_date.is_not(None),
        Subscription.end_date.is_not(None),
        Subscription.start_date <= day,
        Subscription.end_date >= day,
        or_(Subscription.remaining_visits.is_(None), Subscription.remaining_visits > 0),
    )
    q = (select(Subscription)
         .where(Subscription.group_id == group_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                or_(by_month, by_window))
         .order_by(Subscription.created_at.desc(), Subscription.id.desc()))
    return list(session.scalars(q))


def insert_ignore_attendance(session: Session, rows: List[dict]) -> int:
    """INSERT с пропуском дублей по (schedule_id, client_id). Возвращает число вставленных строк."""
    if not rows:
        return 0
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy import insert
        stmt = insert(Attendance.__table__).prefix_with("IGNORE").values(rows)
        return session.execute(stmt).rowcount or 0
    stmt = (insert(Attendance.__table__)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["schedule_id", "client_id"]))
    return session.execute(stmt).rowcount or 0


def enroll_clients(session: Session, schedule: Schedule) -> int:
    """Записывает клиентов с подходящим абонементом. Возвращает число новых записей."""
    if not schedule.group_id:
        return 0
    picked: Dict[int, int] = {}
    for sub in eligible_subscriptions(session, schedule.group_id, schedule.date):
        # самый свежий абонемент клиента
        picked.setdefault(sub.client_id, sub.id)
    rows = [
        {
            "schedule_id": schedule.id,
            "client_id": client_id,
            "subscription_id": sub_id,
            "status": AttendanceStatus.PRESENT,
            "subscription_deducted": False,
        }
        for client_id, sub_id in picked.items()
    ]
    return insert_ignore_attendance(session, rows)


def auto_enroll(schedule_id: int) -> int:
    """Запуск после коммита занятия, в собственной транзакции.

    Сбой записи не откатывает уже созданное занятие: пишем WARNING и
    возвращаем 0.
    """
    try:
        with UnitOfWork(isolation_level=None) as uow:
            schedule = uow.session.get(Schedule, schedule_id)
            if schedule is None:
                return 0
            enrolled = enroll_clients(uow.session, schedule)
    except (SQLAlchemyError, EngineError) as exc:
        log.warning("auto-enrollment failed for schedule %s: %s", schedule_id, exc,
                    extra={"event": "enrollment_failed", "schedule_id": schedule_id})
        return 0
    log.info("auto-enrolled %s clients", enrolled,
             extra={"event": "enrollment", "schedule_id": schedule_id, "count": enrolled})
    return enrolled


# ---------- остаток посещений абонемента ----------
def refund_visit(session: Session, subscription_id: int, today: date) -> bool:
    """Атомарно +1 посещение; EXPIRED с нулём в пределах срока снова ACTIVE.

    Безлимитные абонементы (remaining_visits IS NULL) не трогаем.
    """
    res = session.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id, Subscription.remaining_visits.is_not(None))
        .values(remaining_visits=Subscription.remaining_visits + 1, version=Subscription.version + 1)
        .execution_options(synchronize_session=False)
    )
    if not res.rowcount:
        return False
    # после инкремента 1 означает «было 0»
    session.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id,
               Subscription.status == SubscriptionStatus.EXPIRED,
               Subscription.remaining_visits == 1,
               or_(Subscription.start_date.is_(None), Subscription.start_date <= today),
               or_(Subscription.end_date.is_(None), Subscription.end_date >= today),
               or_(Subscription.valid_month.is_(None), Subscription.valid_month == month_key(today)))
        .values(status=SubscriptionStatus.ACTIVE)
        .execution_options(synchronize_session=False)
    )
    return True


def deduct_visits(session: Session, subscription_id: int, n: int = 1) -> bool:
    """Атомарное списание n посещений при условии остатка >= n."""
    res = session.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id,
               Subscription.remaining_visits.is_not(None),
               Subscription.remaining_visits >= n)
        .values(remaining_visits=Subscription.remaining_visits - n, version=Subscription.version + 1)
        .execution_options(synchronize_session=False)
    )
    return bool(res.rowcount)
