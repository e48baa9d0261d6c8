# blueprints/directory/services.py
from __future__ import annotations
from typing import Dict

from sqlalchemy import select

from extensions import db
from models import Group, Teacher, Room
from .cache import ReferenceDataCache

GROUPS, TEACHERS, ROOMS = "groups", "teachers", "rooms"


def load_groups() -> Dict[int, dict]:
    rows = db.session.scalars(select(Group).order_by(Group.id))
    return {g.id: {"id": g.id, "name": g.name, "is_active": g.is_active} for g in rows}


def load_teachers() -> Dict[int, dict]:
    rows = db.session.scalars(select(Teacher).order_by(Teacher.id))
    return {t.id: {"id": t.id, "name": t.full_name} for t in rows}


def load_rooms() -> Dict[int, dict]:
    rows = db.session.scalars(select(Room).order_by(Room.id))
    return {r.id: {"id": r.id, "name": r.name, "number": r.number,
                   "capacity": r.capacity, "is_coworking": r.is_coworking} for r in rows}


LOADERS = {GROUPS: load_groups, TEACHERS: load_teachers, ROOMS: load_rooms}


def reference(cache: ReferenceDataCache, key: str) -> Dict[int, dict]:
    return cache.get_or_load(key, LOADERS[key])


def lookup(cache: ReferenceDataCache, key: str, entity_id: int) -> dict | None:
    """Поиск в кэше; при промахе кэш справочника перечитывается один раз."""
    found = reference(cache, key).get(entity_id)
    if found is None:
        cache.invalidate(key)
        found = reference(cache, key).get(entity_id)
    return found
