# storefront/services/payments.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe

from ..settings import settings
from .errors import (
    CheckoutSessionNotFound,
    PaymentProcessorError,
    PaymentProcessorUnavailable,
    ServiceNotConfigured,
)

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key

# Stripe caps metadata at 50 keys and 500 characters per value.
METADATA_VALUE_LIMIT = 500
METADATA_KEY_LIMIT = 50
ITEMS_KEY_PREFIX = "items_"

PAID_STATUSES = ("paid", "no_payment_required")


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    return obj.to_dict()


def _require_stripe() -> None:
    if not settings.stripe_secret_key:
        raise ServiceNotConfigured("Payment service is not configured. Please contact support.")
    stripe.api_key = settings.stripe_secret_key


def encode_items_metadata(items: List[Dict[str, Any]], reserved_keys: int = 0) -> Dict[str, str]:
    """
    Serialize the cart into numbered metadata keys (items_0, items_1, ...),
    each value within Stripe's per-value limit.
    """
    blob = json.dumps(items, separators=(",", ":"))
    chunks = [blob[i:i + METADATA_VALUE_LIMIT] for i in range(0, len(blob), METADATA_VALUE_LIMIT)]
    if len(chunks) + reserved_keys > METADATA_KEY_LIMIT:
        raise PaymentProcessorError("Cart is too large to check out in one order")
    return {f"{ITEMS_KEY_PREFIX}{i}": chunk for i, chunk in enumerate(chunks)}


def decode_items_metadata(meta: Mapping[str, str]) -> Optional[str]:
    """Reassemble the cart JSON; accepts the older single `items` key too."""
    parts = []
    i = 0
    while f"{ITEMS_KEY_PREFIX}{i}" in meta:
        parts.append(meta[f"{ITEMS_KEY_PREFIX}{i}"])
        i += 1
    if parts:
        return "".join(parts)
    return meta.get("items") or None


def create_checkout_session(
    line_items: List[Dict[str, Any]],
    metadata: Dict[str, str],
    success_url: str,
    cancel_url: str,
) -> str:
    """Create a hosted Checkout Session and return its id."""
    _require_stripe()
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=line_items,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error("stripe session create failed: %s", e)
        raise PaymentProcessorError(e.user_message or str(e) or "Failed to create checkout session") from e
    return session.id


def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    """
    Fetch a Checkout Session as a plain dict (metadata included).

    An id Stripe does not recognise raises CheckoutSessionNotFound; outages
    raise PaymentProcessorUnavailable.
    """
    _require_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.InvalidRequestError as e:
        logger.warning("stripe has no session %s: %s", session_id, e)
        raise CheckoutSessionNotFound("Checkout session not found") from e
    except (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError) as e:
        raise PaymentProcessorUnavailable(str(e) or "Payment service is unavailable") from e
    except stripe.StripeError as e:
        logger.error("stripe session retrieve failed: %s", e)
        raise PaymentProcessorError(e.user_message or str(e) or "Failed to retrieve checkout session") from e
    data = _as_dict(session)
    data["metadata"] = _as_dict(data.get("metadata"))
    return data


def verify_webhook(raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Check the Stripe-Signature header and return the decoded event.

    Raises ServiceNotConfigured when no webhook secret is set and
    ValueError when the signature is missing or does not match.
    """
    if not settings.stripe_webhook_secret or not settings.stripe_secret_key:
        raise ServiceNotConfigured("Webhook not configured")
    if not signature:
        raise ValueError("Missing signature")
    try:
        stripe.Webhook.construct_event(
            payload=raw_body, sig_header=signature, secret=settings.stripe_webhook_secret
        )
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("webhook signature verification failed: %s", e)
        raise ValueError("Invalid signature") from e
    # signature is good; decode the raw body ourselves into plain dicts
    return json.loads(raw_body.decode("utf-8"))
