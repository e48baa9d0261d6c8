from __future__ import annotations
import threading
from datetime import date, time

import pytest

from app import create_app
from extensions import db
from models import (
    Attendance, AttendanceStatus, Group, Rental, Room, Schedule, ScheduleStatus, Teacher,
)
from blueprints.core.errors import (
    ConflictDetected, EntityNotFound, InvariantViolation, StaleVersion, TransactionAborted,
    ValidationFailed,
)
from blueprints.schedule import services as svc
from blueprints.schedule.notify import NotificationDispatcher
from blueprints.schedule.writer import ScheduleDraft, write_schedule
from conftest import add_schedule, add_client_with_subscription


def test_recurring_creation_skips_conflicting_date(app, refs):
    db.session.add(Rental(room_id=refs.r1, date=date(2024, 1, 3),
                          start_time=time(10, 30), end_time=time(11, 30), client_name="ООО Ромашка"))
    db.session.commit()

    res = svc.create_recurring(
        group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1, days_of_week=[1, 3],
        start_date=date(2024, 1, 1), end_date=date(2024, 1, 10),
        start_time=time(10, 0), end_time=time(11, 0),
    )
    assert res["total_dates"] == 4
    assert [c["date"] for c in res["created"]] == ["2024-01-01", "2024-01-08", "2024-01-10"]
    assert len(res["skipped"]) == 1
    assert res["skipped"][0]["date"] == "2024-01-03"
    assert res["skipped"][0]["type"] == "rental"
    assert all(c["is_recurring"] for c in res["created"])
    assert Schedule.query.count() == 3


def test_recurring_with_unknown_teacher_is_fatal(app, refs):
    with pytest.raises(EntityNotFound):
        svc.create_recurring(
            group_id=refs.g1, teacher_id=999, room_id=refs.r1, days_of_week=[1],
            start_date=date(2024, 1, 1), end_date=date(2024, 1, 31),
            start_time=time(10, 0), end_time=time(11, 0),
        )
    assert Schedule.query.count() == 0


def test_recurring_enrolls_subscribers(app, refs):
    add_client_with_subscription(refs.g1, first_name="Мария")
    res = svc.create_recurring(
        group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1, days_of_week=[2],
        start_date=date(2024, 1, 1), end_date=date(2024, 1, 31),
        start_time=time(18, 0), end_time=time(19, 0), auto_enroll_clients=True,
    )
    assert len(res["created"]) == 5
    assert all(c["enrolled_clients"] == 1 for c in res["created"])
    assert Attendance.query.count() == 5


def test_second_booking_of_same_slot_is_rejected(app, refs):
    draft = ScheduleDraft(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                          date=date(2024, 5, 6), start_time=time(10, 0), end_time=time(11, 0))
    write_schedule(draft)
    with pytest.raises(ConflictDetected) as ei:
        write_schedule(draft)
    assert ei.value.kind == "room"
    # другой зал, тот же преподаватель
    with pytest.raises(ConflictDetected) as ei:
        write_schedule(ScheduleDraft(teacher_id=refs.t1, room_id=refs.r2, date=date(2024, 5, 6),
                                     start_time=time(10, 30), end_time=time(11, 30)))
    assert ei.value.kind == "teacher"
    assert Schedule.query.count() == 1


def test_concurrent_writers_book_slot_once(tmp_path):
    # файловая БД: у каждого потока своё соединение и свой контекст приложения
    app = create_app("test", overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}"})
    with app.app_context():
        db.create_all()
        group = Group(name="Йога")
        teacher = Teacher(first_name="Анна", last_name="Петрова")
        room = Room(name="Зал 1", number="101", capacity=20)
        db.session.add_all([group, teacher, room])
        db.session.commit()
        draft = ScheduleDraft(group_id=group.id, teacher_id=teacher.id, room_id=room.id,
                              date=date(2024, 5, 6), start_time=time(10, 0), end_time=time(11, 0))
        db.session.remove()

    writers = 4
    barrier = threading.Barrier(writers)
    outcomes = []

    def book():
        with app.app_context():
            try:
                barrier.wait(timeout=10)
                write_schedule(draft)
                outcomes.append("ok")
            except (ConflictDetected, TransactionAborted) as err:
                outcomes.append(type(err).__name__)
            except Exception as err:
                outcomes.append(repr(err))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=book) for _ in range(writers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    with app.app_context():
        try:
            assert len(outcomes) == writers
            assert outcomes.count("ok") == 1
            assert set(outcomes) - {"ok"} <= {"ConflictDetected", "TransactionAborted"}
            assert Schedule.query.count() == 1
        finally:
            db.session.remove()
            db.drop_all()
            db.engine.dispose()


def test_writer_rejects_inverted_window(app, refs):
    with pytest.raises(ValidationFailed):
        write_schedule(ScheduleDraft(teacher_id=refs.t1, room_id=refs.r1, date=date(2024, 5, 6),
                                     start_time=time(11, 0), end_time=time(10, 0)))


def test_stale_version_update(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0), version=3)
    a = svc.update_schedule(sid, {"start_time": time(10, 15)}, version=3)
    assert a["version"] == 4

    with pytest.raises(StaleVersion) as ei:
        svc.update_schedule(sid, {"end_time": time(11, 30)}, version=3)
    assert ei.value.expected == 3
    assert ei.value.current == 4

    s = db.session.get(Schedule, sid)
    assert s.end_time == time(11, 0)
    assert s.version == 4


def test_update_without_version_is_last_write_wins(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    svc.update_schedule(sid, {"room_id": refs.r2})
    out = svc.update_schedule(sid, {"room_id": refs.r1})
    assert out["room_id"] == refs.r1
    assert out["version"] == 3


def test_update_missing_schedule_is_not_found(app, refs):
    with pytest.raises(EntityNotFound):
        svc.update_schedule(12345, {"room_id": refs.r2}, version=1)


def test_update_rejects_null_for_required_column(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    with pytest.raises(ValidationFailed) as ei:
        svc.update_schedule(sid, {"status": None, "room_id": None}, version=1)
    assert ei.value.details["fields"] == ["room_id", "status"]
    s = db.session.get(Schedule, sid)
    assert s.status == ScheduleStatus.PLANNED
    assert s.version == 1


def test_update_into_occupied_slot_conflicts(app, refs):
    add_schedule(group_id=refs.g2, teacher_id=refs.t2, room_id=refs.r2,
                 day=date(2024, 2, 1), start=time(12, 0), end=time(13, 0))
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(12, 0), end=time(13, 0))
    with pytest.raises(ConflictDetected):
        svc.update_schedule(sid, {"room_id": refs.r2})
    assert db.session.get(Schedule, sid).room_id == refs.r1


def test_uncancel_clears_compensation(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    c1, sub1 = add_client_with_subscription(refs.g1, valid_month="2024-02")
    db.session.add(Attendance(schedule_id=sid, client_id=c1, subscription_id=sub1))
    db.session.commit()

    svc.update_schedule(sid, {"status": ScheduleStatus.CANCELLED, "is_compensated": True,
                              "cancellation_note": "болезнь тренера"})
    att = Attendance.query.filter_by(schedule_id=sid).one()
    assert att.status == AttendanceStatus.EXCUSED

    out = svc.update_schedule(sid, {"status": ScheduleStatus.PLANNED})
    assert out["status"] == "PLANNED"
    assert out["is_compensated"] is False
    assert out["cancellation_note"] is None
    assert Attendance.query.filter_by(schedule_id=sid).count() == 0


def test_notification_failure_does_not_affect_update(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    seen = []

    def broken_sender(note):
        raise RuntimeError("smtp down")

    dispatcher = NotificationDispatcher(app, sender=broken_sender, sync=True,
                                        on_error=lambda note, exc: seen.append((note.schedule_id, str(exc))))
    out = svc.update_schedule(sid, {"room_id": refs.r2}, notifier=dispatcher)
    assert out["room_id"] == refs.r2
    assert dispatcher.failures == 1
    assert seen == [(sid, "smtp down")]


def test_single_delete_requires_empty_attendance(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                       day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    c1, _ = add_client_with_subscription(refs.g1, valid_month="2024-02")
    db.session.add(Attendance(schedule_id=sid, client_id=c1))
    db.session.commit()
    with pytest.raises(InvariantViolation):
        svc.delete_schedule(sid)
    assert db.session.get(Schedule, sid) is not None

    empty = add_schedule(teacher_id=refs.t2, room_id=refs.r2,
                         day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    svc.delete_schedule(empty)
    assert db.session.get(Schedule, empty) is None


def test_list_schedules_filters(app, refs):
    add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1,
                 day=date(2024, 2, 1), start=time(10, 0), end=time(11, 0))
    add_schedule(group_id=refs.g2, teacher_id=refs.t2, room_id=refs.r2,
                 day=date(2024, 2, 2), start=time(10, 0), end=time(11, 0), status=ScheduleStatus.CANCELLED)
    assert len(svc.list_schedules()) == 2
    assert [s["group_name"] for s in svc.list_schedules(teacher_id=refs.t1)] == ["Йога"]
    assert len(svc.list_schedules(status=ScheduleStatus.CANCELLED)) == 1
    assert len(svc.list_schedules(date_from=date(2024, 2, 2))) == 1
