from datetime import date, time

from extensions import db
from models import Event, Rental, BookingStatus, ScheduleStatus
from blueprints.constraints.services import (
    check_conflicts, check_conflicts_detailed, find_first_conflict,
)
from blueprints.core.errors import ConflictDetected
from conftest import add_schedule

import pytest

D = date(2024, 3, 4)


def _check(refs, start, end, room=None, teacher=None, exclude=None):
    return check_conflicts_detailed(
        db.session, day=D, start_time=start, end_time=end,
        room_ids=[room or refs.r1], teacher_id=teacher or refs.t1,
        exclude_schedule_id=exclude,
    )


def test_no_conflicts_on_empty_day(app, refs):
    assert _check(refs, time(10, 0), time(11, 0)) == []
    check_conflicts(db.session, day=D, start_time=time(10, 0), end_time=time(11, 0),
                    room_ids=[refs.r1], teacher_id=refs.t1)


def test_room_conflict_reason_names_group_and_room(app, refs):
    add_schedule(group_id=refs.g1, teacher_id=refs.t2, room_id=refs.r1, day=D, start=time(10, 30), end=time(11, 30))
    conflicts = _check(refs, time(10, 0), time(11, 0))
    assert [c.kind for c in conflicts] == ["room"]
    assert "Йога" in conflicts[0].reason
    assert '"Зал 1"' in conflicts[0].reason
    assert "10:30 - 11:30" in conflicts[0].reason


def test_teacher_checked_only_against_schedules(app, refs):
    add_schedule(group_id=refs.g2, teacher_id=refs.t1, room_id=refs.r2, day=D, start=time(9, 30), end=time(10, 30))
    # аренда другой комнаты преподавателя не занимает
    db.session.add(Rental(room_id=refs.r2, date=D, start_time=time(10, 0), end_time=time(11, 0)))
    db.session.commit()
    conflicts = _check(refs, time(10, 0), time(11, 0))
    assert [c.kind for c in conflicts] == ["teacher"]
    assert "Анна Петрова" in conflicts[0].reason


def test_rentals_and_events_block_the_room(app, refs):
    db.session.add(Rental(room_id=refs.r1, date=D, start_time=time(10, 0), end_time=time(12, 0), client_name="ООО"))
    db.session.add(Event(room_id=refs.r1, date=D, start_time=time(10, 45), end_time=time(13, 0),
                         name="Мастер-класс", event_type="WORKSHOP"))
    db.session.commit()
    conflicts = _check(refs, time(10, 0), time(10, 45))
    assert [c.kind for c in conflicts] == ["rental"]
    conflicts = _check(refs, time(11, 0), time(12, 30))
    assert [c.kind for c in conflicts] == ["rental", "event"]
    assert "Мастер-класс" in conflicts[1].reason


def test_cancelled_bookings_are_ignored(app, refs):
    add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1, day=D,
                 start=time(10, 0), end=time(11, 0), status=ScheduleStatus.CANCELLED)
    db.session.add(Rental(room_id=refs.r1, date=D, start_time=time(10, 0), end_time=time(11, 0),
                          status=BookingStatus.CANCELLED))
    db.session.commit()
    assert _check(refs, time(10, 0), time(11, 0)) == []


def test_schedule_never_conflicts_with_itself(app, refs):
    sid = add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r1, day=D, start=time(10, 0), end=time(11, 0))
    assert [c.kind for c in _check(refs, time(10, 0), time(11, 0))] == ["room", "teacher"]
    assert _check(refs, time(10, 0), time(11, 0), exclude=sid) == []


def test_first_conflict_follows_ledger_order(app, refs):
    add_schedule(group_id=refs.g1, teacher_id=refs.t1, room_id=refs.r2, day=D, start=time(10, 0), end=time(11, 0))
    db.session.add(Rental(room_id=refs.r1, date=D, start_time=time(10, 0), end_time=time(11, 0)))
    db.session.commit()
    first = find_first_conflict(db.session, day=D, start_time=time(10, 0), end_time=time(11, 0),
                                room_ids=[refs.r1], teacher_id=refs.t1)
    assert first.kind == "teacher"
    with pytest.raises(ConflictDetected) as ei:
        check_conflicts(db.session, day=D, start_time=time(10, 0), end_time=time(11, 0),
                        room_ids=[refs.r1], teacher_id=refs.t1)
    assert ei.value.kind == "teacher"


def test_check_endpoint(client, refs):
    add_schedule(group_id=refs.g1, teacher_id=refs.t2, room_id=refs.r1, day=D, start=time(10, 0), end=time(11, 0))
    payload = {"teacher_id": refs.t1, "room_id": refs.r1, "date": D.isoformat(),
               "start_time": "10:30", "end_time": "11:30"}
    rv = client.post("/api/v1/constraints/check", json=payload)
    assert rv.status_code == 409
    body = rv.get_json()
    assert body["ok"] is False
    assert body["errors"][0]["details"]["type"] == "room"

    rv = client.post("/api/v1/constraints/check", json={**payload, "start_time": "11:00", "end_time": "12:00"})
    assert rv.status_code == 200
    assert rv.get_json() == {"ok": True, "errors": []}
