from __future__ import annotations
import datetime as dt
from datetime import time
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blueprints.core.errors import ValidationFailed
from models import ScheduleStatus, ScheduleType
from .timeutils import parse_hhmm


def _hhmm(v):
    if v is None:
        return None
    try:
        return parse_hhmm(v)
    except ValidationFailed as e:
        raise ValueError(e.message) from e


# колонки занятия NOT NULL: явный null в изменениях отклоняется
_NOT_NULL = ("teacher_id", "room_id", "date", "start_time", "end_time", "type", "status", "is_compensated")


def _no_nulls(model: BaseModel) -> BaseModel:
    nulls = sorted(f for f in _NOT_NULL if f in model.model_fields_set and getattr(model, f) is None)
    if nulls:
        raise ValueError(f"fields cannot be null: {', '.join(nulls)}")
    return model


class _TimeWindow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("start_time", "end_time", mode="before", check_fields=False)
    @classmethod
    def _parse_time(cls, v):
        return _hhmm(v)


# ---------- Single ----------
class ScheduleCreateIn(_TimeWindow):
    group_id: Optional[int] = None
    teacher_id: int
    room_id: int
    date: dt.date
    start_time: time
    end_time: time
    type: Optional[ScheduleType] = None
    auto_enroll_clients: bool = False

    @model_validator(mode="after")
    def _window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ScheduleUpdateIn(_TimeWindow):
    group_id: Optional[int] = None
    teacher_id: Optional[int] = None
    room_id: Optional[int] = None
    date: Optional[dt.date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    type: Optional[ScheduleType] = None
    status: Optional[ScheduleStatus] = None
    is_compensated: Optional[bool] = None
    cancellation_note: Optional[str] = Field(None, max_length=1000)
    version: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _nulls(self):
        return _no_nulls(self)

    def changes(self) -> dict:
        # только явно переданные поля, version идёт отдельно
        return self.model_dump(exclude_unset=True, exclude={"version"})


# ---------- Recurring ----------
class RecurringIn(_TimeWindow):
    group_id: Optional[int] = None
    teacher_id: int
    room_id: int
    days_of_week: List[int] = Field(description="0 = воскресенье ... 6 = суббота")
    start_date: dt.date
    end_date: dt.date
    start_time: time
    end_time: time
    type: Optional[ScheduleType] = None
    auto_enroll_clients: bool = False

    @field_validator("days_of_week")
    @classmethod
    def _days(cls, v: List[int]):
        bad = [d for d in v if not 0 <= d <= 6]
        if bad:
            raise ValueError(f"days_of_week must be within 0..6, got {bad}")
        return v


# ---------- Bulk ----------
class BulkIds(BaseModel):
    schedule_ids: List[int] = Field(min_length=1)


class BulkUpdateIn(BulkIds, _TimeWindow):
    group_id: Optional[int] = None
    teacher_id: Optional[int] = None
    room_id: Optional[int] = None
    date: Optional[dt.date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    type: Optional[ScheduleType] = None
    status: Optional[ScheduleStatus] = None

    @model_validator(mode="after")
    def _nulls(self):
        return _no_nulls(self)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"schedule_ids"})


class CopyIn(BulkIds):
    target_date: dt.date
    auto_enroll_clients: bool = False


class CancelIn(BulkIds, _TimeWindow):
    action: Literal["CANCEL", "TRANSFER"]
    transfer_date: Optional[dt.date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_compensated: bool = False
    cancellation_note: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _transfer_target(self):
        if self.action == "TRANSFER" and self.transfer_date is None:
            raise ValueError("transfer_date is required for TRANSFER")
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class DeleteIn(BulkIds):
    pass
