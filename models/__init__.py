import datetime as dt
from datetime import datetime, time
from enum import Enum as PyEnum

from sqlalchemy import (
    Enum, ForeignKey, UniqueConstraint, Index, CheckConstraint, Boolean, Date, DateTime, Time,
    Integer, String, Text
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from extensions import db

# ---------- Enums ----------
class ScheduleType(PyEnum):
    GROUP_CLASS = "GROUP_CLASS"
    INDIVIDUAL = "INDIVIDUAL"
    OTHER = "OTHER"

class ScheduleStatus(PyEnum):
    PLANNED = "PLANNED"
    CANCELLED = "CANCELLED"

class BookingStatus(PyEnum):
    # аренды и мероприятия ведутся снаружи, нам важно только CANCELLED / не CANCELLED
    PLANNED = "PLANNED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class SubscriptionStatus(PyEnum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    FROZEN = "FROZEN"

class AttendanceStatus(PyEnum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"


# ---------- Reference Entities ----------
class Group(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    max_participants: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Group {self.name}>"


class Teacher(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(db.String(100), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Teacher {self.full_name}>"


class Room(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    number: Mapped[str | None] = mapped_column(db.String(50))
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_coworking: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Room {self.name}>"


class Client(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(db.String(50))


# ---------- External bookings (только чтение) ----------
class Rental(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("room.id", ondelete="RESTRICT"), nullable=False)
    client_name: Mapped[str | None] = mapped_column(db.String(255))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), default=BookingStatus.PLANNED, nullable=False)

    room = relationship("Room")

    __table_args__ = (
        Index("ix_rental_date_room", "date", "room_id"),
    )


class Event(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    event_type: Mapped[str | None] = mapped_column(db.String(100))
    room_id: Mapped[int] = mapped_column(ForeignKey("room.id", ondelete="RESTRICT"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), default=BookingStatus.PLANNED, nullable=False)

    room = relationship("Room")

    __table_args__ = (
        Index("ix_event_date_room", "date", "room_id"),
    )


class Subscription(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("client.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("group.id", ondelete="RESTRICT"), nullable=False, index=True)
    status: Mapped[SubscriptionStatus] = mapped_column(Enum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, nullable=False)
    valid_month: Mapped[str | None] = mapped_column(String(7))  # YYYY-MM
    start_date: Mapped[dt.date | None] = mapped_column(Date)
    end_date: Mapped[dt.date | None] = mapped_column(Date)
    remaining_visits: Mapped[int | None] = mapped_column(Integer)  # None = безлимит
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client = relationship("Client")
    group = relationship("Group")

    __table_args__ = (
        Index("ix_subscription_group_status", "group_id", "status"),
    )


# ---------- Schedule ----------
class Schedule(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("group.id", ondelete="RESTRICT"), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("teacher.id", ondelete="RESTRICT"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("room.id", ondelete="RESTRICT"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    type: Mapped[ScheduleType] = mapped_column(Enum(ScheduleType), default=ScheduleType.GROUP_CLASS, nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(Enum(ScheduleStatus), default=ScheduleStatus.PLANNED, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_compensated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancellation_note: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    group = relationship("Group")
    teacher = relationship("Teacher")
    room = relationship("Room")
    attendances = relationship("Attendance", back_populates="schedule")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_schedule_time_window"),
        Index("ix_schedule_date_room", "date", "room_id"),
        Index("ix_schedule_date_teacher", "date", "teacher_id"),
    )

    def __repr__(self):
        return f"<Schedule {self.id} {self.date} {self.start_time}-{self.end_time}>"


class Attendance(db.Model):
    id: Mapped[int] = mapped_column(primary_key=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey("schedule.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("client.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(Enum(AttendanceStatus), default=AttendanceStatus.PRESENT, nullable=False)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscription.id", ondelete="SET NULL"))
    subscription_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    schedule = relationship("Schedule", back_populates="attendances")
    client = relationship("Client")
    subscription = relationship("Subscription")

    __table_args__ = (
        UniqueConstraint("schedule_id", "client_id", name="uq_attendance_schedule_client"),
    )
