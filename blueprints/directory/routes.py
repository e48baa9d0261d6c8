from __future__ import annotations
import logging

from flask import current_app, jsonify, request

from . import bp
from .services import LOADERS, reference

log = logging.getLogger(__name__)


def _cache():
    return current_app.extensions["reference_cache"]


@bp.get("/lookup")
def lookup_all():
    kinds = [k for k in (request.args.get("kinds") or ",".join(LOADERS)).split(",") if k]
    unknown = [k for k in kinds if k not in LOADERS]
    if unknown:
        return jsonify({"ok": False, "errors": [{"code": "BAD_REQUEST", "message": "unknown lookup kind", "details": {"unknown": unknown}}]}), 400
    return jsonify({k: list(reference(_cache(), k).values()) for k in kinds})


@bp.get("/lookup/stats")
def lookup_stats():
    return jsonify(_cache().stats())


@bp.post("/lookup/invalidate")
def lookup_invalidate():
    key = (request.get_json(silent=True) or {}).get("key")
    if key:
        _cache().invalidate(key)
    else:
        _cache().clear()
    log.info("reference cache invalidated", extra={"event": "cache_invalidated"})
    return jsonify({"ok": True})
