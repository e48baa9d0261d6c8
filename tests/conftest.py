from __future__ import annotations
from datetime import date, time
from types import SimpleNamespace

import pytest

from app import create_app
from extensions import db
from models import (
    Client, Group, Room, Schedule, ScheduleStatus, ScheduleType, Subscription, SubscriptionStatus, Teacher,
)


@pytest.fixture()
def app():
    app = create_app("test")
    app.config.update(TESTING=True, SQLALCHEMY_DATABASE_URI="sqlite:///:memory:")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def refs(app):
    """Базовые справочники: 2 группы, 2 преподавателя, 2 комнаты."""
    g1 = Group(name="Йога")
    g2 = Group(name="Стретчинг")
    t1 = Teacher(first_name="Анна", last_name="Петрова")
    t2 = Teacher(first_name="Игорь", last_name="Смирнов")
    r1 = Room(name="Зал 1", number="101", capacity=20)
    r2 = Room(name="Зал 2", number="102", capacity=12)
    db.session.add_all([g1, g2, t1, t2, r1, r2])
    db.session.commit()
    return SimpleNamespace(g1=g1.id, g2=g2.id, t1=t1.id, t2=t2.id, r1=r1.id, r2=r2.id)


def add_schedule(*, teacher_id, room_id, day, start, end, group_id=None,
                 status=ScheduleStatus.PLANNED, version=1) -> int:
    s = Schedule(
        group_id=group_id, teacher_id=teacher_id, room_id=room_id, date=day,
        start_time=start, end_time=end,
        type=ScheduleType.GROUP_CLASS if group_id else ScheduleType.INDIVIDUAL,
        status=status, version=version,
    )
    db.session.add(s)
    db.session.commit()
    return s.id


def add_client_with_subscription(group_id: int, *, first_name="Мария", valid_month="2024-01",
                                 remaining_visits=8, status=SubscriptionStatus.ACTIVE,
                                 start_date: date | None = None, end_date: date | None = None):
    c = Client(first_name=first_name, last_name="Иванова")
    db.session.add(c)
    db.session.flush()
    sub = Subscription(client_id=c.id, group_id=group_id, status=status, valid_month=valid_month,
                       start_date=start_date, end_date=end_date, remaining_visits=remaining_visits)
    db.session.add(sub)
    db.session.commit()
    return c.id, sub.id


T = time  # короткая запись в тестах: T(10, 0)
