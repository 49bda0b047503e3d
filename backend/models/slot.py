"""Slot and doctor schedule binding model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from backend.core.timeutils import utc_now
from backend.database import Base


class Slot(Base):
    """A fixed candidate time interval, stored in UTC."""
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("start_time", "end_time", name="uq_slots_start_end"),
    )

    id = Column(Integer, primary_key=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class DoctorSchedule(Base):
    """Ties a slot to one doctor's availability."""
    __tablename__ = "doctor_schedules"

    doctor_id = Column(Integer, ForeignKey("doctors.id"), primary_key=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), primary_key=True)
    is_booked = Column(Boolean, nullable=False, default=False)
