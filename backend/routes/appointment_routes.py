from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_roles
from backend.core.exceptions import BookingError, raise_http_error
from backend.models.appointment import AppointmentStatus
from backend.models.user import User
from backend.payments.gateway import PaymentGateway, get_payment_gateway
from backend.routes.common import database_unavailable, ensure_database_ready, get_db
from backend.services import booking_service

router = APIRouter(prefix='/appointments', tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    slot_id: int


class ChangeAppointmentStatusRequest(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: int
    status: str
    payment_status: str
    correlation_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentSessionResponse(BaseModel):
    appointment_id: int
    payment_url: str


@router.post('', response_model=PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('patient')),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    ensure_database_ready()

    try:
        result = booking_service.book_appointment(
            db,
            patient_email=current_user.email,
            doctor_id=data.doctor_id,
            slot_id=data.slot_id,
            pay_now=True,
            gateway=gateway,
        )
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return PaymentSessionResponse(appointment_id=result.appointment.id, payment_url=result.payment_url)


@router.post('/pay-later', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment_with_pay_later(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('patient')),
):
    ensure_database_ready()

    try:
        result = booking_service.book_appointment(
            db,
            patient_email=current_user.email,
            doctor_id=data.doctor_id,
            slot_id=data.slot_id,
            pay_now=False,
        )
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return result.appointment


@router.post('/{appointment_id}/initiate-payment', response_model=PaymentSessionResponse)
def initiate_payment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('patient')),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    ensure_database_ready()

    try:
        result = booking_service.initiate_payment(db, appointment_id, current_user.email, gateway)
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return PaymentSessionResponse(appointment_id=result.appointment.id, payment_url=result.payment_url)


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: int,
    data: ChangeAppointmentStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return booking_service.change_appointment_status(db, appointment_id, data.status, current_user)
    except BookingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
