from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_roles
from backend.core.exceptions import BookingError, raise_http_error
from backend.models.user import Doctor, User
from backend.routes.common import database_unavailable, ensure_database_ready, get_db
from backend.services import slot_service

router = APIRouter(prefix='/schedule', tags=['schedule'])

MAX_INTERVAL_MINUTES = 24 * 60


class GenerateSlotsRequest(BaseModel):
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    interval_minutes: int | None = Field(default=None, gt=0, le=MAX_INTERVAL_MINUTES)

    @model_validator(mode='after')
    def validate_date_range(self) -> 'GenerateSlotsRequest':
        if self.end_date < self.start_date:
            raise ValueError('End date must not be before start date.')
        return self


class SlotResponse(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime

    class Config:
        from_attributes = True


class AddDoctorSlotsRequest(BaseModel):
    slot_ids: list[int] = Field(min_length=1)

    @field_validator('slot_ids')
    @classmethod
    def deduplicate_slot_ids(cls, value: list[int]) -> list[int]:
        return sorted(set(value))


class DoctorSlotResponse(BaseModel):
    doctor_id: int
    slot_id: int
    is_booked: bool
    start_time: datetime
    end_time: datetime


def ensure_can_manage_doctor(db: Session, doctor_id: int, current_user: User) -> None:
    role = (current_user.role or '').lower()
    if role == 'admin':
        return

    if role == 'doctor':
        doctor = db.query(Doctor).filter(Doctor.email == (current_user.email or '').lower()).first()
        if doctor is not None and doctor.id == doctor_id:
            return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only admins or the doctor can manage this schedule.',
    )


@router.post('/slots', response_model=list[SlotResponse], status_code=status.HTTP_201_CREATED)
def create_slots(
    data: GenerateSlotsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    ensure_database_ready()

    try:
        return slot_service.generate_slots(
            db,
            start_date=data.start_date,
            end_date=data.end_date,
            start_time=data.start_time,
            end_time=data.end_time,
            interval_minutes=data.interval_minutes,
        )
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    ensure_database_ready()

    try:
        slot_service.delete_slot(db, slot_id)
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/doctors/{doctor_id}/slots',
    response_model=list[DoctorSlotResponse],
    status_code=status.HTTP_201_CREATED,
)
def add_doctor_slots(
    doctor_id: int,
    data: AddDoctorSlotsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()
    ensure_can_manage_doctor(db, doctor_id, current_user)

    try:
        slot_service.add_doctor_slots(db, doctor_id, data.slot_ids)
        bindings = slot_service.list_doctor_slots(db, doctor_id, only_available=False)
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    requested = set(data.slot_ids)
    return [
        DoctorSlotResponse(
            doctor_id=binding.doctor_id,
            slot_id=binding.slot_id,
            is_booked=binding.is_booked,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        for binding, slot in bindings
        if binding.slot_id in requested
    ]


@router.delete('/doctors/{doctor_id}/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_doctor_slot(
    doctor_id: int,
    slot_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()
    ensure_can_manage_doctor(db, doctor_id, current_user)

    try:
        slot_service.remove_doctor_slot(db, doctor_id, slot_id)
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/slots', response_model=list[DoctorSlotResponse])
def list_doctor_slots(
    doctor_id: int,
    available_only: bool = Query(default=True),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bindings = slot_service.list_doctor_slots(db, doctor_id, only_available=available_only)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        DoctorSlotResponse(
            doctor_id=binding.doctor_id,
            slot_id=binding.slot_id,
            is_booked=binding.is_booked,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        for binding, slot in bindings
    ]
