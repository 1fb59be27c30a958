# storefront/services/drafts.py
"""
Turn client payloads and Stripe session metadata into an OrderDraft.

Checkout and the client fallback path share `draft_from_payload`, so an order
created after the redirect is validated exactly like the checkout request.
"""
from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .errors import OrderValidationError
from .order_types import (
    ORDER_TYPES,
    TIME_CHOICES,
    Addon,
    CartLine,
    CustomerInfo,
    OrderDetails,
    OrderDraft,
)
from .pricing import clamp_tip_percent

MAX_COMMENT_LENGTH = 400
MIN_PHONE_DIGITS = 10
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGITS = re.compile(r"\D")


def phone_digits(phone: str) -> str:
    return _NON_DIGITS.sub("", phone or "")


def _as_number(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    v = float(v)
    return v if math.isfinite(v) else None


def _parse_addons(raw: Any) -> List[Addon]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise OrderValidationError("Invalid item data")
    addons = []
    for a in raw:
        if not isinstance(a, Mapping):
            raise OrderValidationError("Invalid item data")
        name = str(a.get("name") or a.get("label") or "").strip()
        price = _as_number(a.get("price", 0))
        if not name or price is None:
            raise OrderValidationError("Invalid item data")
        if price < 0:
            raise OrderValidationError("Invalid item price or quantity")
        addons.append(Addon(name=name, price=price))
    return addons


def parse_cart_line(raw: Any) -> CartLine:
    if not isinstance(raw, Mapping):
        raise OrderValidationError("Invalid item data")
    item_id = str(raw.get("id") or "").strip()
    name = str(raw.get("name") or "").strip()
    price = _as_number(raw.get("price"))
    quantity = raw.get("quantity")
    if not item_id or not name or price is None or not quantity:
        raise OrderValidationError("Invalid item data")
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) or quantity != int(quantity):
        raise OrderValidationError("Invalid item data")
    if price < 0 or quantity < 1:
        raise OrderValidationError("Invalid item price or quantity")

    options = raw.get("selectedOptions") or []
    if not isinstance(options, list):
        raise OrderValidationError("Invalid item data")

    return CartLine(
        id=item_id,
        name=name,
        price=price,
        quantity=int(quantity),
        base_item_id=raw.get("base_item_id"),
        image_url=raw.get("image_url"),
        selected_options=[str(o) for o in options],
        selected_addons=_parse_addons(raw.get("selectedAddons")),
    )


def parse_cart(items: Any) -> List[CartLine]:
    if not items:
        raise OrderValidationError("Cart is empty")
    if not isinstance(items, list):
        raise OrderValidationError("Invalid item data")
    return [parse_cart_line(i) for i in items]


def parse_customer(info: Optional[Mapping[str, Any]]) -> CustomerInfo:
    if not info:
        raise OrderValidationError("Customer information is required")

    first = str(info.get("firstName") or "").strip()
    last = str(info.get("lastName") or "").strip()
    phone = str(info.get("phone") or "").strip()
    email = str(info.get("email") or "").strip() or None

    if not first or not last:
        raise OrderValidationError("Customer first and last name are required")
    if not phone:
        raise OrderValidationError("Customer phone number is required")
    if len(phone_digits(phone)) < MIN_PHONE_DIGITS:
        raise OrderValidationError("Please enter a valid phone number (at least 10 digits)")
    if email and not _EMAIL_RE.match(email):
        raise OrderValidationError("Please enter a valid email address")

    return CustomerInfo(first_name=first, last_name=last, phone=phone, email=email)


def parse_timestamp(v: Any) -> Optional[datetime]:
    if isinstance(v, datetime):
        return v
    if not v or not isinstance(v, str):
        return None
    s = v.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(s)
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def normalize_comments(v: Any) -> Optional[str]:
    text = str(v or "").strip()[:MAX_COMMENT_LENGTH]
    return text or None


def parse_details(details: Optional[Mapping[str, Any]]) -> OrderDetails:
    d = details or {}

    order_type = str(d.get("orderType") or "pickup").strip().lower()
    if order_type not in ORDER_TYPES:
        raise OrderValidationError("Order type must be pickup or delivery")

    time_choice = str(d.get("timeChoice") or "asap").strip().lower()
    if time_choice not in TIME_CHOICES:
        raise OrderValidationError("Time choice must be asap or scheduled")

    scheduled = None
    if time_choice == "scheduled":
        if not d.get("scheduledTime"):
            raise OrderValidationError("Scheduled time is required for scheduled orders")
        scheduled = parse_timestamp(d.get("scheduledTime"))
        if scheduled is None:
            raise OrderValidationError("Scheduled time is not a valid timestamp")

    explicit_tip = d.get("tipAmount")
    explicit_tip = _as_number(explicit_tip) if explicit_tip is not None else None

    return OrderDetails(
        order_type=order_type,
        time_choice=time_choice,
        scheduled_time=scheduled,
        payment_method=str(d.get("paymentMethod") or "online").strip() or "online",
        tip_percent=clamp_tip_percent(d.get("tipPercent", 0)),
        tip_amount=explicit_tip,
        comments=normalize_comments(d.get("comments")),
    )


def draft_from_payload(
    items: Any,
    customer_info: Optional[Mapping[str, Any]],
    order_details: Optional[Mapping[str, Any]],
) -> OrderDraft:
    """Validate a client payload, failing fast with a specific message."""
    cart = parse_cart(items)
    customer = parse_customer(customer_info)
    details = parse_details(order_details)
    return OrderDraft(customer=customer, details=details, items=cart)


# ---------- Stripe metadata ----------

def _meta_float(meta: Mapping[str, str], key: str) -> Optional[float]:
    raw = meta.get(key)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        v = float(raw)
    except ValueError:
        return None
    return v if math.isfinite(v) else None


def draft_from_metadata(meta: Mapping[str, str], items_json: Optional[str]) -> OrderDraft:
    """
    Rebuild a draft from metadata written by the checkout session initiator.

    The metadata was produced server-side, so it is trusted: fields are
    normalized rather than re-validated against the checkout rules.
    """
    customer_name = (meta.get("customer_name") or "").strip()
    phone = (meta.get("customer_phone") or "").strip()
    if not customer_name or not phone or not items_json:
        raise OrderValidationError("Missing required order metadata")

    name_parts = customer_name.split()
    first = (meta.get("customer_first_name") or "").strip() or (name_parts[0] if name_parts else customer_name)
    last = (meta.get("customer_last_name") or "").strip() or " ".join(name_parts[1:])

    try:
        raw_items = json.loads(items_json)
    except ValueError as exc:
        raise OrderValidationError("Order metadata contains an unreadable cart") from exc
    cart = parse_cart(raw_items)

    order_type = (meta.get("order_type") or "pickup").strip().lower()
    time_choice = (meta.get("time_choice") or "asap").strip().lower()

    details = OrderDetails(
        order_type=order_type if order_type in ORDER_TYPES else "pickup",
        time_choice=time_choice if time_choice in TIME_CHOICES else "asap",
        scheduled_time=parse_timestamp(meta.get("scheduled_time")),
        payment_method=(meta.get("payment_method") or "online").strip() or "online",
        tip_percent=clamp_tip_percent(_meta_float(meta, "tip_percent") or 0),
        tip_amount=_meta_float(meta, "tip_amount"),
        comments=normalize_comments(meta.get("comments")),
    )
    customer = CustomerInfo(
        first_name=first,
        last_name=last,
        phone=phone,
        email=(meta.get("customer_email") or "").strip() or None,
    )
    return OrderDraft(customer=customer, details=details, items=cart)


def metadata_from_draft(draft: OrderDraft) -> Dict[str, str]:
    """Customer and order-detail fields, as the string bag Stripe stores."""
    c, d = draft.customer, draft.details
    return {
        "customer_name": c.full_name,
        "customer_first_name": c.first_name,
        "customer_last_name": c.last_name,
        "customer_phone": c.phone,
        "customer_email": c.email or "",
        "order_type": d.order_type,
        "time_choice": d.time_choice,
        "scheduled_time": d.scheduled_time.isoformat() if d.scheduled_time else "",
        "payment_method": d.payment_method,
        "comments": d.comments or "",
    }
