from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from ..schemas.orders import CheckoutSessionIn, CheckoutSessionOut
from ..services import payments
from ..services.checkout import create_checkout_session
from ..services.errors import OrderValidationError, PaymentProcessorError, ServiceNotConfigured
from ..services.orders import handle_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


@router.post("/checkout/session", response_model=CheckoutSessionOut)
def create_checkout_session_endpoint(body: CheckoutSessionIn):
    try:
        return create_checkout_session(body.items, body.customerInfo, body.orderDetails)
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentProcessorError as e:
        raise HTTPException(status_code=502, detail=str(e) or "Failed to create checkout session")


@router.post("/webhook/stripe")
async def stripe_webhook(request: Request):
    """
    Stripe webhook receiver. Anything past signature verification is
    acknowledged with 200 so Stripe does not keep retrying; failures are logged.
    """
    raw = await request.body()
    try:
        event = payments.verify_webhook(raw, request.headers.get("stripe-signature"))
    except ServiceNotConfigured as e:
        logger.error("stripe webhook not configured")
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = await handle_webhook_event(event)
    except Exception:
        logger.exception("error processing stripe event %s", event.get("id"))
        return {"received": True}

    if result is not None and not result.created:
        return {"received": True, "message": result.message}
    return {"received": True}
