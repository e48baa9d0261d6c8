# blueprints/planning/routes.py
from __future__ import annotations
from datetime import date

from flask import Blueprint, current_app, request, jsonify, abort

from models import ScheduleStatus
from blueprints.schedule.recurrence import WeeklySlot
from .schemas import BulkCreateIn, PreviewIn
from .services import GroupPlan, PreviewSimulator, bulk_create, list_planned, month_stats

api_bp = Blueprint("planning_api", __name__)


def _simulator() -> PreviewSimulator:
    return PreviewSimulator(cache=current_app.extensions["reference_cache"])


@api_bp.post("/planning/preview")
def preview():
    data = PreviewIn.model_validate(request.get_json(silent=True) or {})
    plans = [
        GroupPlan(
            group_id=g.group_id, teacher_id=g.teacher_id, room_id=g.room_id,
            duration_minutes=g.duration_minutes,
            slots=[WeeklySlot(day=s.day, start_time=s.start_time, room_id=s.room_id) for s in g.slots],
        )
        for g in data.groups
    ]
    result = _simulator().preview(plans, data.month, check_batch_conflicts=data.check_batch_conflicts)
    return jsonify({"ok": True, **result}), 200


@api_bp.post("/planning/bulk-create")
def planning_bulk_create():
    data = BulkCreateIn.model_validate(request.get_json(silent=True) or {})
    sessions = [s.model_dump() for s in data.sessions]
    return jsonify(bulk_create(sessions, auto_enroll_clients=data.auto_enroll_clients)), 200


@api_bp.get("/planning/schedules")
def planning_schedules():
    today = date.today()
    year = request.args.get("year", type=int) or today.year
    month = request.args.get("month", type=int) or today.month
    if not 1 <= month <= 12:
        abort(400, description="month must be 1..12")
    group_ids = [int(x) for x in (request.args.get("group_ids") or "").split(",") if x.strip().isdigit()]
    status = request.args.get("status")
    try:
        status = ScheduleStatus(status.upper()) if status else None
    except ValueError:
        abort(400, description="Bad status")
    items = list_planned(year, month, group_ids or None, status)
    return jsonify({"year": year, "month": month, "items": items})


@api_bp.get("/planning/months")
def planning_months():
    return jsonify({"months": month_stats()})
