# blueprints/schedule/routes.py
from __future__ import annotations
from datetime import date
from flask import Blueprint, request, jsonify, abort

from models import ScheduleStatus
from blueprints.schedule import services as svc
from blueprints.schedule import bulk
from .timeutils import parse_date
from .schemas import (
    BulkUpdateIn, CancelIn, CopyIn, DeleteIn, RecurringIn, ScheduleCreateIn, ScheduleUpdateIn,
)

api_bp = Blueprint("schedule_api", __name__)


def _json() -> dict:
    return request.get_json(silent=True) or {}


def _date_arg(name: str) -> date | None:
    raw = request.args.get(name)
    return parse_date(raw) if raw else None


def _int_arg(name: str) -> int | None:
    return request.args.get(name, type=int)


# ---------- одиночные занятия ----------
@api_bp.get("/schedules")
def list_schedules():
    status = request.args.get("status")
    try:
        status = ScheduleStatus(status.upper()) if status else None
    except ValueError:
        abort(400, description="Bad status")
    items = svc.list_schedules(
        day=_date_arg("date"), date_from=_date_arg("date_from"), date_to=_date_arg("date_to"),
        group_id=_int_arg("group_id"), teacher_id=_int_arg("teacher_id"), room_id=_int_arg("room_id"),
        status=status,
    )
    return jsonify({"items": items, "total": len(items)})


@api_bp.get("/schedules/<int:schedule_id>")
def get_schedule(schedule_id: int):
    return jsonify(svc.get_schedule(schedule_id))


@api_bp.post("/schedules")
def create_schedule():
    data = ScheduleCreateIn.model_validate(_json())
    return jsonify(svc.create_schedule(**data.model_dump())), 201


@api_bp.route("/schedules/<int:schedule_id>", methods=["PUT", "PATCH"])
def update_schedule(schedule_id: int):
    data = ScheduleUpdateIn.model_validate(_json())
    return jsonify(svc.update_schedule(schedule_id, data.changes(), version=data.version))


@api_bp.delete("/schedules/<int:schedule_id>")
def delete_schedule(schedule_id: int):
    svc.delete_schedule(schedule_id)
    return jsonify({"ok": True, "deleted": schedule_id})


# ---------- повторяющиеся ----------
@api_bp.post("/schedules/recurring")
def create_recurring():
    data = RecurringIn.model_validate(_json())
    return jsonify(svc.create_recurring(**data.model_dump())), 201


# ---------- bulk: всегда 200, ошибки элементов в теле ответа ----------
@api_bp.post("/schedules/bulk/update")
def bulk_update():
    data = BulkUpdateIn.model_validate(_json())
    return jsonify(bulk.bulk_update(data.schedule_ids, data.changes()))


@api_bp.post("/schedules/bulk/copy")
def bulk_copy():
    data = CopyIn.model_validate(_json())
    return jsonify(bulk.copy_schedules(data.schedule_ids, data.target_date,
                                       auto_enroll_clients=data.auto_enroll_clients))


@api_bp.post("/schedules/bulk/cancel")
def bulk_cancel():
    data = CancelIn.model_validate(_json())
    return jsonify(bulk.cancel_or_transfer(
        data.schedule_ids, data.action,
        transfer_date=data.transfer_date, start_time=data.start_time, end_time=data.end_time,
        is_compensated=data.is_compensated, cancellation_note=data.cancellation_note,
    ))


@api_bp.post("/schedules/bulk/delete")
def bulk_delete():
    data = DeleteIn.model_validate(_json())
    return jsonify(bulk.bulk_delete(data.schedule_ids))
