"""Verification and normalization of Stripe webhook deliveries."""

import json
from dataclasses import dataclass, field
from enum import Enum

import stripe

from backend.core.exceptions import MalformedEvent, SignatureInvalid

SIGNATURE_TOLERANCE_SECONDS = 300


class GatewayEventKind(str, Enum):
    SESSION_COMPLETED = "SessionCompleted"
    SESSION_EXPIRED = "SessionExpired"
    PAYMENT_FAILED = "PaymentFailed"
    OTHER = "Other"


EVENT_KINDS = {
    "checkout.session.completed": GatewayEventKind.SESSION_COMPLETED,
    "checkout.session.async_payment_succeeded": GatewayEventKind.SESSION_COMPLETED,
    "checkout.session.expired": GatewayEventKind.SESSION_EXPIRED,
    "checkout.session.async_payment_failed": GatewayEventKind.PAYMENT_FAILED,
    "payment_intent.payment_failed": GatewayEventKind.PAYMENT_FAILED,
}


@dataclass(frozen=True)
class GatewayEvent:
    id: str
    type: str
    kind: GatewayEventKind
    metadata: dict = field(default_factory=dict)
    payment_status: str | None = None

    @property
    def is_paid(self) -> bool:
        # Delayed payment methods complete the session before the money arrives.
        if self.type == "checkout.session.completed":
            return self.payment_status in (None, "paid", "no_payment_required")
        return self.kind is GatewayEventKind.SESSION_COMPLETED


@dataclass(frozen=True)
class Correlation:
    appointment_id: int
    payment_id: int


def verify_signature(raw_payload: bytes, signature: str | None, secret: str) -> None:
    """Check the ``Stripe-Signature`` header against the untouched request bytes."""
    if not secret:
        raise SignatureInvalid("Webhook secret is not configured.")
    if not signature:
        raise SignatureInvalid("Missing webhook signature.")

    try:
        payload = raw_payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SignatureInvalid("Webhook payload is not valid UTF-8.") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload, signature, secret, tolerance=SIGNATURE_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as exc:
        raise SignatureInvalid("Invalid webhook signature.") from exc


def parse_event(raw_payload: bytes) -> GatewayEvent:
    try:
        data = json.loads(raw_payload)
    except ValueError as exc:
        raise MalformedEvent("Webhook payload is not valid JSON.") from exc

    if not isinstance(data, dict):
        raise MalformedEvent("Webhook payload must be a JSON object.")

    event_id = data.get("id")
    event_type = data.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise MalformedEvent("Webhook event is missing its id or type.")

    envelope = data.get("data") or {}
    if not isinstance(envelope, dict):
        raise MalformedEvent("Webhook event data is not an object.")

    obj = envelope.get("object") or {}
    if not isinstance(obj, dict):
        raise MalformedEvent("Webhook event data is not an object.")

    metadata = obj.get("metadata") or {}
    return GatewayEvent(
        id=event_id,
        type=event_type,
        kind=EVENT_KINDS.get(event_type, GatewayEventKind.OTHER),
        metadata=metadata if isinstance(metadata, dict) else {},
        payment_status=obj.get("payment_status"),
    )


def extract_correlation(event: GatewayEvent) -> Correlation:
    appointment_id = _as_int(event.metadata.get("appointmentId"))
    payment_id = _as_int(event.metadata.get("paymentId"))
    if appointment_id is None or payment_id is None:
        raise MalformedEvent(f"Event {event.id} carries no appointmentId/paymentId metadata.")
    return Correlation(appointment_id=appointment_id, payment_id=payment_id)


def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
