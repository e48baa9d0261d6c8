# blueprints/constraints/routes.py
from __future__ import annotations
from flask import Blueprint, request, jsonify

from extensions import db
from blueprints.schedule.schemas import ScheduleCreateIn
from .services import check_conflicts_detailed

api_bp = Blueprint("constraints_api", __name__)


@api_bp.post("/constraints/check")
def constraints_check():
    payload = request.get_json(silent=True) or {}
    exclude_id = payload.pop("exclude_schedule_id", None)
    data = ScheduleCreateIn.model_validate(payload)
    conflicts = check_conflicts_detailed(
        db.session,
        day=data.date, start_time=data.start_time, end_time=data.end_time,
        room_ids=[data.room_id], teacher_id=data.teacher_id,
        exclude_schedule_id=exclude_id,
    )
    if not conflicts:
        return jsonify({"ok": True, "errors": []}), 200
    # любой конфликт отдаём как 409
    norm = [{"code": "CONFLICT", "details": c.to_dict()} for c in conflicts]
    return jsonify({"ok": False, "errors": norm}), 409
