"""Hosted checkout sessions issued through Stripe Checkout."""

import logging
from dataclasses import dataclass
from typing import Protocol

import stripe

from backend.core import config

logger = logging.getLogger(__name__)

_stripe_configured = False


class PaymentGatewayError(Exception):
    """The gateway could not issue a checkout session."""


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


class PaymentGateway(Protocol):
    def create_checkout_session(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        *,
        description: str = "",
        customer_email: str | None = None,
    ) -> CheckoutSession:
        ...


def configure_stripe(timeout_seconds: int | None = None) -> None:
    """Bound every Stripe call by a network timeout with a single retry."""
    global _stripe_configured

    if _stripe_configured:
        return

    stripe.default_http_client = stripe.RequestsClient(
        timeout=timeout_seconds or config.PAYMENT_GATEWAY_TIMEOUT_SECONDS
    )
    stripe.max_network_retries = 1
    _stripe_configured = True


class StripeCheckoutGateway:
    def __init__(
        self,
        secret_key: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else config.STRIPE_SECRET_KEY
        self.success_url = success_url or f"{config.FRONTEND_URL}/payment/success"
        self.cancel_url = cancel_url or f"{config.FRONTEND_URL}/dashboard/my-appointments"

    def create_checkout_session(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        *,
        description: str = "",
        customer_email: str | None = None,
    ) -> CheckoutSession:
        if not self.secret_key:
            raise PaymentGatewayError("Stripe secret key is not configured.")

        params = {
            "api_key": self.secret_key,
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": description or "Appointment"},
                        "unit_amount": amount * 100,
                    },
                    "quantity": 1,
                },
            ],
            "metadata": metadata,
            # Failed payment intents carry the same correlation metadata.
            "payment_intent_data": {"metadata": metadata},
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.warning("Stripe checkout session creation failed: %s", exc)
            raise PaymentGatewayError(str(exc)) from exc

        if not session.url:
            raise PaymentGatewayError(f"Checkout session {session.id} has no redirect URL.")

        logger.info("Created checkout session %s for metadata %s", session.id, metadata)
        return CheckoutSession(session_id=session.id, redirect_url=session.url)


def get_payment_gateway() -> PaymentGateway:
    configure_stripe()
    return StripeCheckoutGateway()
