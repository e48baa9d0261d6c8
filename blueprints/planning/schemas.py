from __future__ import annotations
import datetime as dt
from datetime import time
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from blueprints.schedule.schemas import _hhmm
from models import ScheduleType


class WeeklySlotIn(BaseModel):
    day: str = Field(pattern="^(MON|TUE|WED|THU|FRI|SAT|SUN)$")
    start_time: time
    room_id: Optional[int] = None

    @field_validator("day", mode="before")
    @classmethod
    def _upper(cls, v):
        return str(v or "").upper()

    @field_validator("start_time", mode="before")
    @classmethod
    def _time(cls, v):
        return _hhmm(v)


class GroupPlanIn(BaseModel):
    group_id: int
    teacher_id: int
    room_id: int
    duration_minutes: int = Field(60, gt=0, le=24 * 60)
    slots: List[WeeklySlotIn] = Field(min_length=1)


class PreviewIn(BaseModel):
    month: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    groups: List[GroupPlanIn] = Field(min_length=1)
    check_batch_conflicts: bool = False


class SessionIn(BaseModel):
    group_id: Optional[int] = None
    teacher_id: int
    room_id: int
    date: dt.date
    start_time: time
    end_time: time
    type: Optional[ScheduleType] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _time(cls, v):
        return _hhmm(v)


class BulkCreateIn(BaseModel):
    sessions: List[SessionIn] = Field(min_length=1)
    auto_enroll_clients: bool = False
