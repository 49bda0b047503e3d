"""Release of reservations whose payment never arrived."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.core import config
from backend.core.timeutils import utc_now
from backend.database import SessionLocal
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.models.payment import Payment
from backend.services.slot_service import release_binding

logger = logging.getLogger(__name__)


@dataclass
class ReaperSummary:
    examined: int = 0
    released: int = 0
    skipped: int = 0
    failed: int = 0


def find_stale_reservations(db: Session, cutoff: datetime) -> list[int]:
    rows = db.query(Appointment.id).filter(
        Appointment.payment_status == PaymentStatus.UNPAID.value,
        Appointment.status == AppointmentStatus.SCHEDULED.value,
        Appointment.created_at <= cutoff,
    ).order_by(Appointment.created_at.asc()).all()
    return [appointment_id for (appointment_id,) in rows]


def release_reservation(db: Session, appointment_id: int) -> bool:
    """Cancel one unpaid appointment; False when it was paid or changed meanwhile."""
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        return False

    try:
        result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.payment_status == PaymentStatus.UNPAID.value,
                Appointment.status == AppointmentStatus.SCHEDULED.value,
            )
            .values(status=AppointmentStatus.CANCELED.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            logger.info('Appointment %s was paid or changed before it could be released', appointment_id)
            return False

        release_binding(db, appointment.doctor_id, appointment.slot_id)
        db.execute(
            delete(Payment)
            .where(
                Payment.appointment_id == appointment_id,
                Payment.status == PaymentStatus.UNPAID.value,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Released unpaid reservation for appointment %s', appointment_id)
    return True


def release_unpaid_reservations(
    session_factory: sessionmaker = SessionLocal,
    now: datetime | None = None,
    timeout_minutes: int | None = None,
) -> ReaperSummary:
    if timeout_minutes is None:
        timeout_minutes = config.RESERVATION_TIMEOUT_MINUTES
    if timeout_minutes < 0:
        raise ValueError('Reservation timeout must not be negative.')
    cutoff = (now or utc_now()) - timedelta(minutes=timeout_minutes)

    db = session_factory()
    try:
        appointment_ids = find_stale_reservations(db, cutoff)
    finally:
        db.close()

    summary = ReaperSummary(examined=len(appointment_ids))
    for appointment_id in appointment_ids:
        db = session_factory()
        try:
            if release_reservation(db, appointment_id):
                summary.released += 1
            else:
                summary.skipped += 1
        except Exception:
            summary.failed += 1
            logger.exception('Failed to release reservation for appointment %s', appointment_id)
        finally:
            db.close()

    if summary.examined:
        logger.info(
            'Reservation sweep: examined=%d released=%d skipped=%d failed=%d',
            summary.examined,
            summary.released,
            summary.skipped,
            summary.failed,
        )
    return summary
