"""
Stripe adapter for checkout and webhook events.

Provider calls happen here and only before settlement starts; nothing in this
module touches balances.
"""
import json
import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

import stripe
from app.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

# Initialize Stripe client
if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY
else:
    logger.warning("STRIPE_SECRET_KEY not configured - checkout disabled")

SUCCEEDED_EVENTS = ("payment_intent.succeeded",)
FAILED_EVENTS = ("payment_intent.payment_failed", "payment_intent.canceled")


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def create_payment_intent(
    amount: Decimal,
    currency: str,
    description: str,
    metadata: Dict[str, str],
) -> stripe.PaymentIntent:
    """
    Create a PaymentIntent for a plan or credit package.

    Raises:
        ValueError: Stripe is not configured or rejected the request
    """
    if not STRIPE_SECRET_KEY:
        raise ValueError("Stripe not configured - STRIPE_SECRET_KEY required")

    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=currency,
            description=description,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
    except stripe.error.StripeError as e:
        logger.error(f"Stripe error creating payment intent: {e}")
        raise ValueError(f"Failed to create payment intent: {str(e)}")

    logger.info(f"Created payment intent: payment_id={intent.id}, amount={amount} {currency}")
    return intent


def parse_webhook_event(payload: bytes, signature: Optional[str]) -> Dict:
    """
    Verify a webhook body with Stripe and return the event as a dict.

    Raises:
        ValueError: webhook secret not configured, bad signature or malformed payload
    """
    if not STRIPE_WEBHOOK_SECRET:
        raise ValueError("STRIPE_WEBHOOK_SECRET not configured")
    if not signature:
        raise ValueError("Missing Stripe-Signature header")

    # Events are handled as plain dicts
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValueError("Invalid webhook payload: expected a JSON object")

    try:
        stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=STRIPE_WEBHOOK_SECRET)
    except stripe.error.SignatureVerificationError as e:
        raise ValueError(f"Invalid webhook signature: {e}")
    return event


def payment_signal(event: Dict) -> Tuple[str, Optional[str], Dict]:
    """
    Extract ``(event_type, payment_id, metadata)`` from a payment event.

    ``payment_id`` is None for events that carry no PaymentIntent.

    Raises:
        ValueError: the event is not shaped like a Stripe event
    """
    data = event.get("data")
    data_object = (data.get("object") if isinstance(data, dict) else None) or {}
    if not isinstance(data_object, dict):
        raise ValueError("Invalid webhook payload: event data object is not a JSON object")
    metadata = data_object.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError("Invalid webhook payload: metadata is not a JSON object")

    event_type = str(event.get("type") or "")
    if data_object.get("object") == "payment_intent" or event_type.startswith("payment_intent."):
        payment_id = data_object.get("id")
    else:
        payment_id = data_object.get("payment_intent")
    return event_type, payment_id, dict(metadata)


def metadata_item_id(metadata: Dict) -> Optional[int]:
    """Purchased item id from PaymentIntent metadata, None when absent."""
    item_id = metadata.get("item_id")
    if item_id in (None, ""):
        return None
    try:
        return int(item_id)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid item_id in payment metadata: {item_id!r}")
