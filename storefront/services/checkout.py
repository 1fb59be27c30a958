# storefront/services/checkout.py
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional

from ..settings import settings
from . import payments
from .drafts import draft_from_payload, metadata_from_draft
from .errors import OrderValidationError, ServiceNotConfigured
from .order_types import CartLine
from .pricing import OrderTotals, compute_totals, to_cents

logger = logging.getLogger(__name__)


def _price_line(name: str, unit_price: float, quantity: int) -> Dict[str, Any]:
    return {
        "quantity": quantity,
        "price_data": {
            "currency": settings.currency.lower(),
            "unit_amount": to_cents(unit_price),
            "product_data": {"name": name},
        },
    }


def build_line_items(cart: List[CartLine], totals: OrderTotals) -> List[Dict[str, Any]]:
    """
    One Stripe line per cart line, one per addon ("+ name"), then a single
    Sales Tax line and a Tip line (omitted when zero).
    """
    lines: List[Dict[str, Any]] = []
    for item in cart:
        lines.append(_price_line(item.display_name, item.price, item.quantity))
        for addon in item.selected_addons:
            lines.append(_price_line(f"+ {addon.name}", addon.price, item.quantity))

    if totals.tax > 0:
        lines.append(_price_line("Sales Tax", totals.tax, 1))
    if totals.tip > 0:
        lines.append(_price_line("Tip", totals.tip, 1))
    return lines


def create_checkout_session(
    items: Any,
    customer_info: Optional[Mapping[str, Any]],
    order_details: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Validate a client cart, price it server-side and open a Stripe Checkout
    Session carrying everything needed to rebuild the order later.
    """
    if not settings.payments_configured:
        raise ServiceNotConfigured("Payment service is not configured. Please contact support.")

    draft = draft_from_payload(items, customer_info, order_details)
    totals = compute_totals(draft.items, draft.details.tip_percent, draft.details.tip_amount)

    if not math.isfinite(totals.total) or totals.total <= 0:
        raise OrderValidationError("Invalid order total. Please review your cart and try again.")

    metadata = {**metadata_from_draft(draft), **totals.as_metadata()}
    metadata.update(
        payments.encode_items_metadata(
            [line.to_json() for line in draft.items], reserved_keys=len(metadata)
        )
    )

    base = settings.site_url.rstrip("/")
    session_id = payments.create_checkout_session(
        line_items=build_line_items(draft.items, totals),
        metadata=metadata,
        success_url=f"{base}/order-confirmation?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/payment-cancel",
    )
    logger.info("checkout session %s created (total %.2f)", session_id, totals.total)
    return {"sessionId": session_id, "total": totals.total}
