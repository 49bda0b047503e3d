"""Appointment booking and payment-session issuance.

Reservation writes (binding flip, appointment, payment record) share one
transaction. When payment is requested up front the checkout session is
created before that transaction commits, and a gateway failure rolls the
whole reservation back: the slot is released and nothing is left for the
reaper to clean up. The gateway call is bounded by
``PAYMENT_GATEWAY_TIMEOUT_SECONDS``.
"""

import logging
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.exceptions import (
    BookingError,
    Conflict,
    NotFound,
    Unauthorized,
    UpstreamFailure,
    ValidationFailed,
)
from backend.core.timeutils import utc_now
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.models.payment import Payment
from backend.models.slot import DoctorSchedule, Slot
from backend.models.user import Doctor, Patient, User
from backend.payments.gateway import PaymentGateway, PaymentGatewayError
from backend.services.slot_service import get_active_doctor, release_binding, reserve_binding

logger = logging.getLogger(__name__)

ADMIN_ROLE = 'admin'
DOCTOR_ROLE = 'doctor'
PATIENT_ROLE = 'patient'


@dataclass
class BookingResult:
    appointment: Appointment
    payment: Payment
    payment_url: str | None = None


def get_patient_by_email(db: Session, email: str) -> Patient:
    normalized = (email or '').strip().lower()
    patient = db.query(Patient).filter(Patient.email == normalized).first()
    if patient is None:
        raise NotFound('Patient not found.')
    return patient


def build_correlation_metadata(appointment: Appointment, payment: Payment) -> dict[str, str]:
    return {'appointmentId': str(appointment.id), 'paymentId': str(payment.id)}


def request_checkout_session(
    gateway: PaymentGateway,
    doctor: Doctor,
    patient: Patient,
    appointment: Appointment,
    payment: Payment,
) -> str:
    try:
        session = gateway.create_checkout_session(
            payment.amount,
            config.PAYMENT_CURRENCY,
            build_correlation_metadata(appointment, payment),
            description=f'Appointment with {doctor.name or "your doctor"}',
            customer_email=patient.email,
        )
    except PaymentGatewayError as exc:
        logger.error('Payment gateway failed for appointment %s: %s', appointment.id, exc)
        raise UpstreamFailure('Payment gateway is unavailable. Please try again.') from exc

    return session.redirect_url


def book_appointment(
    db: Session,
    patient_email: str,
    doctor_id: int,
    slot_id: int,
    pay_now: bool,
    gateway: PaymentGateway | None = None,
) -> BookingResult:
    if pay_now and gateway is None:
        raise ValueError('A payment gateway is required when paying now.')

    patient = get_patient_by_email(db, patient_email)
    doctor = get_active_doctor(db, doctor_id)

    binding = db.get(DoctorSchedule, (doctor.id, slot_id))
    if binding is None:
        raise NotFound('Slot is not part of this doctor\'s schedule.')
    if binding.is_booked:
        raise Conflict('This slot is already booked.')

    slot = db.get(Slot, slot_id)
    if slot is None:
        raise NotFound('Slot not found.')
    if slot.start_time <= utc_now():
        raise ValidationFailed('Appointments must be scheduled in the future.')

    try:
        if not reserve_binding(db, doctor.id, slot_id):
            raise Conflict('This slot was booked by someone else.')

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            slot_id=slot_id,
            status=AppointmentStatus.SCHEDULED.value,
            payment_status=PaymentStatus.UNPAID.value,
            correlation_id=str(uuid4()),
        )
        db.add(appointment)
        db.flush()

        payment = Payment(
            appointment_id=appointment.id,
            amount=doctor.appointment_fee,
            transaction_id=str(uuid4()),
            status=PaymentStatus.UNPAID.value,
        )
        db.add(payment)
        db.flush()

        payment_url = None
        if pay_now:
            payment_url = request_checkout_session(gateway, doctor, patient, appointment, payment)

        db.commit()
    except BookingError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise Conflict('This slot was booked by someone else.') from exc
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(appointment)
    db.refresh(payment)
    logger.info(
        'Booked appointment %s for patient %s with doctor %s on slot %s (pay_now=%s)',
        appointment.id,
        patient.id,
        doctor.id,
        slot_id,
        pay_now,
    )
    return BookingResult(appointment=appointment, payment=payment, payment_url=payment_url)


def initiate_payment(
    db: Session,
    appointment_id: int,
    patient_email: str,
    gateway: PaymentGateway,
) -> BookingResult:
    patient = get_patient_by_email(db, patient_email)

    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.')
    if appointment.patient_id != patient.id:
        raise Unauthorized('This appointment belongs to another patient.')
    if appointment.status == AppointmentStatus.CANCELED.value:
        raise Conflict('Cannot pay for a canceled appointment.')
    if appointment.payment_status != PaymentStatus.UNPAID.value:
        raise Conflict('Payment already completed for this appointment.')

    payment = db.query(Payment).filter(Payment.appointment_id == appointment.id).first()
    if payment is None:
        raise NotFound('Payment record not found.')

    doctor = db.get(Doctor, appointment.doctor_id)
    if doctor is None:
        raise NotFound('Doctor not found.')

    payment_url = request_checkout_session(gateway, doctor, patient, appointment, payment)
    return BookingResult(appointment=appointment, payment=payment, payment_url=payment_url)


def _authorize_status_change(db: Session, appointment: Appointment, new_status: AppointmentStatus, actor: User) -> None:
    role = (actor.role or '').strip().lower()
    email = (actor.email or '').strip().lower()

    if role == ADMIN_ROLE:
        return

    if role == DOCTOR_ROLE:
        doctor = db.query(Doctor).filter(Doctor.email == email).first()
        if doctor is None or doctor.id != appointment.doctor_id:
            raise Unauthorized('This is not your appointment.')
        return

    if role == PATIENT_ROLE and new_status is AppointmentStatus.CANCELED:
        patient = db.query(Patient).filter(Patient.email == email).first()
        if patient is None or patient.id != appointment.patient_id:
            raise Unauthorized('This is not your appointment.')
        return

    raise Unauthorized('You are not allowed to change this appointment.')


def change_appointment_status(
    db: Session,
    appointment_id: int,
    new_status: AppointmentStatus,
    actor: User,
) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.')

    _authorize_status_change(db, appointment, new_status, actor)

    if new_status is AppointmentStatus.SCHEDULED:
        raise ValidationFailed('Appointments cannot be moved back to scheduled.')
    if appointment.status != AppointmentStatus.SCHEDULED.value:
        raise Conflict(f'Appointment is already {appointment.status.lower()}.')

    try:
        result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status == AppointmentStatus.SCHEDULED.value,
            )
            .values(status=new_status.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise Conflict('Appointment was changed concurrently.')

        if new_status is AppointmentStatus.CANCELED:
            release_binding(db, appointment.doctor_id, appointment.slot_id)
            db.execute(
                delete(Payment)
                .where(
                    Payment.appointment_id == appointment.id,
                    Payment.status == PaymentStatus.UNPAID.value,
                )
                .execution_options(synchronize_session=False)
            )

        db.commit()
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info('Appointment %s moved to %s by %s', appointment.id, new_status.value, actor.email)
    return appointment
