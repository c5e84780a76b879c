"""
Stripe integration: PaymentIntent creation and signed webhook parsing.
"""
import json

import stripe
from flask import current_app

from .models import Order, User

WEBHOOK_TOLERANCE_SECONDS = 300


class PaymentConfigurationError(RuntimeError):
    pass


class PaymentProviderError(RuntimeError):
    pass


def require_stripe() -> str:
    secret_key = (current_app.config.get("STRIPE_SECRET_KEY") or "").strip()
    if not secret_key:
        raise PaymentConfigurationError("Stripe not configured")
    return secret_key


def require_webhook_secret() -> str:
    require_stripe()
    webhook_secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    if not webhook_secret:
        raise PaymentConfigurationError("Stripe not configured")
    return webhook_secret


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def create_payment_intent(order: Order, user: User):
    secret_key = require_stripe()
    try:
        return stripe.PaymentIntent.create(
            amount=to_minor_units(order.total),
            currency=current_app.config["STRIPE_CURRENCY"],
            metadata={"orderId": str(order.id), "userId": str(user.id)},
            api_key=secret_key,
        )
    except stripe.StripeError as exc:
        raise PaymentProviderError(str(exc)) from exc


def parse_event(payload: str, signature: str) -> dict:
    """Verify the ``Stripe-Signature`` header and decode the event body.

    Raises ``stripe.SignatureVerificationError`` when the signature does not
    match the configured webhook secret and ``ValueError`` for a body that is
    not a JSON object or carries no ``data.object``.
    """
    webhook_secret = require_webhook_secret()
    stripe.WebhookSignature.verify_header(
        payload, signature, webhook_secret, WEBHOOK_TOLERANCE_SECONDS
    )
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValueError("Webhook payload must be a JSON object")
    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise ValueError("Webhook event has no data object")
    return event


def extract_order_id(event: dict):
    metadata = event["data"]["object"].get("metadata")
    if not isinstance(metadata, dict):
        return None
    return metadata.get("orderId")
