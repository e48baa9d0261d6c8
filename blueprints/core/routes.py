from __future__ import annotations
import json, logging
from datetime import datetime

from flask import g, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import BadRequest, MethodNotAllowed, NotFound
from werkzeug.wrappers.response import Response

from . import bp                 # используем bp из __init__.py
from .errors import EngineError

log = logging.getLogger(__name__)

LOG_FIELDS = ("event", "path", "method", "status", "duration_ms", "schedule_id", "count")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in LOG_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _setup_structured_logging(app):
    logger = app.logger
    has_json = any(
        isinstance(h, logging.StreamHandler)
        and isinstance(getattr(h, "formatter", None), JSONFormatter)
        for h in logger.handlers
    )
    if not has_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        # логгеры модулей (blueprints.*, unit_of_work) пишут туда же
        for name in ("blueprints", "unit_of_work"):
            mod_logger = logging.getLogger(name)
            mod_logger.addHandler(handler)
            mod_logger.setLevel(logging.INFO)


def _error(code: str, status: int, message: str | None = None, details=None):
    return jsonify({"ok": False, "errors": [{"code": code, "message": message, "details": details}]}), status


@bp.before_app_request
def _start_timer():
    g._req_start = datetime.utcnow()


@bp.after_app_request
def _log_request(response: Response):
    start = getattr(g, "_req_start", None)
    duration_ms = int((datetime.utcnow() - start).total_seconds() * 1000) if start else None
    extra = {
        "event": "http_request",
        "path": request.path,
        "method": request.method,
        "status": response.status_code,
        "duration_ms": duration_ms,
    }
    # логгер уже настроен в _on_register
    log.info("request handled", extra=extra)
    return response


# ---------- ошибки → JSON ----------
@bp.app_errorhandler(EngineError)
def handle_engine_error(err: EngineError):
    if err.status >= 500:
        log.warning("request failed: %s", err.message, extra={"event": err.code.lower()})
    return jsonify({"ok": False, "errors": [err.to_dict()]}), err.status


@bp.app_errorhandler(ValidationError)
def handle_validation_error(ve: ValidationError):
    errs = ve.errors(include_url=False, include_context=False, include_input=False)
    return _error("VALIDATION_ERROR", 400, "request validation failed", errs)


@bp.app_errorhandler(BadRequest)
def handle_bad_request(err):
    return _error("BAD_REQUEST", 400, getattr(err, "description", None))


@bp.app_errorhandler(NotFound)
def handle_not_found(err):
    return _error("NOT_FOUND", 404, getattr(err, "description", None))


@bp.app_errorhandler(MethodNotAllowed)
def handle_method_not_allowed(err):
    return _error("METHOD_NOT_ALLOWED", 405)


@bp.record_once
def _on_register(state):
    _setup_structured_logging(state.app)


@bp.get("/health")
def health():
    return jsonify({
        "status": "ok",
        "ts": datetime.utcnow().isoformat(timespec="seconds") + "Z",
    })
