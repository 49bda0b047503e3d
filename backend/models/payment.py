"""Payment record and reconciliation flag model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from backend.core.timeutils import utc_now
from backend.models.appointment import PaymentStatus
from backend.database import Base


class Payment(Base):
    """The payable unit for one appointment."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    amount = Column(Integer, nullable=False)
    transaction_id = Column(String(36), unique=True, nullable=False)
    external_event_id = Column(String(255), unique=True, nullable=True)
    status = Column(String, nullable=False, default=PaymentStatus.UNPAID.value)
    gateway_payload = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class ReconciliationReason:
    REFUND_REQUIRED = "refund_required"
    APPOINTMENT_MISSING = "appointment_missing"
    PAYMENT_MISSING = "payment_missing"


class PaymentReconciliationFlag(Base):
    """A gateway event that could not be applied and needs an operator."""
    __tablename__ = "payment_reconciliation_flags"

    id = Column(Integer, primary_key=True)
    external_event_id = Column(String(255), unique=True, nullable=False)
    appointment_id = Column(Integer, index=True)
    payment_id = Column(Integer)
    reason = Column(String, nullable=False)
    gateway_payload = Column(Text)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)
