"""Application of payment gateway events to appointment and payment state.

A completion marks the appointment and its payment record PAID in a single
transaction. Both updates are conditional on the row still being UNPAID, so a
concurrent reaper or duplicate delivery can only ever lose cleanly. The
``payments.external_event_id`` unique key is the replay guard.

A completion that arrives after the appointment was canceled (usually by the
reaper) does not reinstate it. The appointment stays canceled and a
``refund_required`` reconciliation flag is written for an operator.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.timeutils import utc_now
from backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from backend.models.payment import Payment, PaymentReconciliationFlag, ReconciliationReason
from backend.payments.events import (
    Correlation,
    GatewayEvent,
    GatewayEventKind,
    extract_correlation,
    parse_event,
    verify_signature,
)

logger = logging.getLogger(__name__)

APPLIED = 'applied'
DUPLICATE = 'duplicate'
IGNORED = 'ignored'
FLAGGED = 'flagged'


@dataclass(frozen=True)
class WebhookOutcome:
    status: str
    event_id: str | None = None
    event_type: str | None = None
    detail: str = ''


def handle_gateway_event(
    db: Session,
    raw_payload: bytes,
    signature: str | None,
    secret: str | None = None,
) -> WebhookOutcome:
    """Verify, deduplicate and apply one gateway delivery.

    Raises ``SignatureInvalid`` before anything is read from the payload and
    ``MalformedEvent`` when the event cannot be tied to an appointment. Every
    other outcome is returned so the caller can acknowledge it.
    """
    verify_signature(raw_payload, signature, secret if secret is not None else config.STRIPE_WEBHOOK_SECRET)
    event = parse_event(raw_payload)

    if is_event_processed(db, event.id):
        logger.info('Ignoring replayed gateway event %s (%s)', event.id, event.type)
        return _outcome(DUPLICATE, event, 'Event already processed.')

    if event.kind is GatewayEventKind.OTHER:
        logger.info('Ignoring unhandled gateway event type %s (%s)', event.type, event.id)
        return _outcome(IGNORED, event, 'Unhandled event type.')

    correlation = extract_correlation(event)
    appointment = db.get(Appointment, correlation.appointment_id)
    if appointment is None:
        logger.error(
            'Gateway event %s references missing appointment %s',
            event.id,
            correlation.appointment_id,
        )
        return flag_event(db, event, correlation, ReconciliationReason.APPOINTMENT_MISSING, raw_payload)

    if event.kind is GatewayEventKind.SESSION_COMPLETED and event.is_paid:
        return apply_completion(db, event, correlation, raw_payload)

    logger.info(
        'Recorded %s (%s) for appointment %s; payment status left %s',
        event.kind.value,
        event.id,
        appointment.id,
        appointment.payment_status,
    )
    return _outcome(IGNORED, event, f'{event.kind.value} does not change payment state.')


def is_event_processed(db: Session, event_id: str) -> bool:
    if db.query(Payment.id).filter(Payment.external_event_id == event_id).first():
        return True
    flagged = db.query(PaymentReconciliationFlag.id).filter(
        PaymentReconciliationFlag.external_event_id == event_id,
    ).first()
    return flagged is not None


def apply_completion(
    db: Session,
    event: GatewayEvent,
    correlation: Correlation,
    raw_payload: bytes,
) -> WebhookOutcome:
    now = utc_now()
    try:
        appointment_result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == correlation.appointment_id,
                Appointment.payment_status == PaymentStatus.UNPAID.value,
                Appointment.status != AppointmentStatus.CANCELED.value,
            )
            .values(payment_status=PaymentStatus.PAID.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if appointment_result.rowcount == 0:
            db.rollback()
            return _resolve_unapplied(db, event, correlation, raw_payload)

        payment_result = db.execute(
            update(Payment)
            .where(
                Payment.id == correlation.payment_id,
                Payment.appointment_id == correlation.appointment_id,
                Payment.status == PaymentStatus.UNPAID.value,
            )
            .values(
                status=PaymentStatus.PAID.value,
                external_event_id=event.id,
                gateway_payload=raw_payload.decode('utf-8'),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if payment_result.rowcount != 1:
            db.rollback()
            logger.error(
                'Payment %s for appointment %s is missing or already paid; event %s not applied',
                correlation.payment_id,
                correlation.appointment_id,
                event.id,
            )
            return flag_event(db, event, correlation, ReconciliationReason.PAYMENT_MISSING, raw_payload)

        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('Gateway event %s was applied by a concurrent delivery', event.id)
        return _outcome(DUPLICATE, event, 'Event already processed.')
    except SQLAlchemyError:
        db.rollback()
        raise

    db.expire_all()
    logger.info('Appointment %s marked PAID by gateway event %s', correlation.appointment_id, event.id)
    return _outcome(APPLIED, event, 'Payment confirmed.')


def _resolve_unapplied(
    db: Session,
    event: GatewayEvent,
    correlation: Correlation,
    raw_payload: bytes,
) -> WebhookOutcome:
    db.expire_all()
    appointment = db.get(Appointment, correlation.appointment_id)

    if appointment is None:
        return flag_event(db, event, correlation, ReconciliationReason.APPOINTMENT_MISSING, raw_payload)

    if appointment.payment_status == PaymentStatus.PAID.value:
        logger.info('Appointment %s already PAID; event %s has nothing to apply', appointment.id, event.id)
        return _outcome(DUPLICATE, event, 'Appointment already paid.')

    logger.warning(
        'Payment completed for canceled appointment %s (event %s); flagging for refund',
        appointment.id,
        event.id,
    )
    return flag_event(db, event, correlation, ReconciliationReason.REFUND_REQUIRED, raw_payload)


def flag_event(
    db: Session,
    event: GatewayEvent,
    correlation: Correlation,
    reason: str,
    raw_payload: bytes,
) -> WebhookOutcome:
    flag = PaymentReconciliationFlag(
        external_event_id=event.id,
        appointment_id=correlation.appointment_id,
        payment_id=correlation.payment_id,
        reason=reason,
        gateway_payload=raw_payload.decode('utf-8'),
    )
    db.add(flag)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _outcome(DUPLICATE, event, 'Event already processed.')
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.warning('Flagged gateway event %s for manual reconciliation: %s', event.id, reason)
    return _outcome(FLAGGED, event, reason)


def _outcome(status: str, event: GatewayEvent, detail: str) -> WebhookOutcome:
    return WebhookOutcome(status=status, event_id=event.id, event_type=event.type, detail=detail)
