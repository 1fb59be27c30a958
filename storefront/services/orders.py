# storefront/services/orders.py
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from fastapi.concurrency import run_in_threadpool

from ..db import order_store
from . import payments
from .drafts import draft_from_metadata, draft_from_payload, phone_digits
from .errors import (
    CheckoutSessionNotFound,
    InvalidStatusTransition,
    OrderNotFound,
    OrderPersistenceError,
    OrderValidationError,
    PaymentProcessorUnavailable,
    ServiceNotConfigured,
)
from .order_types import CartLine, OrderDraft, OrderStatus
from .pricing import OrderTotals, compute_totals

logger = logging.getLogger(__name__)

INSERT_ATTEMPTS = 3
# how long a losing concurrent request waits for the winner's items
SETTLE_POLLS = 5
SETTLE_DELAY = 0.05
LOOKUP_WINDOW = timedelta(days=30)


def _now():
    return datetime.now(timezone.utc)


def _oid():
    return uuid.uuid4().hex


@dataclass
class MaterializeResult:
    order: Dict[str, Any]
    created: bool

    @property
    def message(self) -> str:
        return "Order created successfully" if self.created else "Order already processed"


# ---------- record building ----------

def _order_record(
    session_id: str, draft: OrderDraft, totals: OrderTotals, order_number: Optional[int]
) -> Dict[str, Any]:
    c, d = draft.customer, draft.details
    return {
        "id": _oid(),
        "order_number": order_number,
        "customer_name": c.full_name,
        "customer_first_name": c.first_name or None,
        "customer_last_name": c.last_name or None,
        "customer_phone": c.phone,
        "customer_email": c.email,
        "order_type": d.order_type,
        "time_choice": d.time_choice,
        "scheduled_time": d.scheduled_time,
        "payment_method": d.payment_method,
        "tip_percent": totals.tip_percent,
        "tip_amount": totals.tip,
        "comments": d.comments,
        "total_amount": totals.total,
        "tax_amount": totals.tax,
        "status": OrderStatus.PENDING.value,
        "stripe_session_id": session_id,
    }


def _required_only(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k in order_store.REQUIRED_ORDER_COLUMNS}


def order_item_rows(order_id: str, cart: List[CartLine]) -> List[Dict[str, Any]]:
    """Flatten cart lines into order_items rows; each addon becomes its own row."""
    rows: List[Dict[str, Any]] = []

    def add(menu_item_id: str, name: str, quantity: int, price: float) -> None:
        rows.append({
            "id": _oid(),
            "order_id": order_id,
            "menu_item_id": menu_item_id,
            "menu_item_name": name,
            "quantity": quantity,
            "price": price,
            "position": len(rows),
        })

    for item in cart:
        add(item.id, item.display_name, item.quantity, item.price)
        for addon in item.selected_addons:
            add(f"{item.id}-addon-{addon.name}", f"+ {addon.name}", item.quantity, addon.price)
    return rows


# ---------- materialization ----------

async def _insert_order(record: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return await order_store.insert_order(record)
    except order_store.MissingColumnError as e:
        logger.warning("order insert retrying without optional columns: %s", e)
        await order_store.load_order_columns()
        return await order_store.insert_order(_required_only(record))


async def _existing(session_id: str) -> Optional[MaterializeResult]:
    order = await order_store.find_order_by_session(session_id)
    if order is None:
        return None
    logger.info("order already exists for session %s (%s)", session_id, order["id"])
    return MaterializeResult(order=order, created=False)


async def _settled(session_id: str) -> Optional[MaterializeResult]:
    """
    The order another request just inserted for this session, once its items
    are written. None if that request rolled its order back.
    """
    order = None
    for _ in range(SETTLE_POLLS):
        order = await order_store.find_order_by_session(session_id)
        if order is None:
            return None
        if order.get("order_items"):
            break
        await asyncio.sleep(SETTLE_DELAY)
    logger.info("order already exists for session %s (%s)", session_id, order["id"])
    return MaterializeResult(order=order, created=False)


async def materialize_order(session_id: str, draft: OrderDraft) -> MaterializeResult:
    """
    Persist exactly one order (plus its line items) for a Stripe session.

    Safe to call repeatedly and concurrently for the same session: the session
    id is unique in the store, so a losing insert resolves to the winner's row.
    """
    if not session_id:
        raise OrderValidationError("Session ID is required")

    found = await _existing(session_id)
    if found:
        return found

    totals = compute_totals(draft.items, draft.details.tip_percent, draft.details.tip_amount)

    order = None
    for _ in range(INSERT_ATTEMPTS):
        number = await order_store.next_order_number()
        record = _order_record(session_id, draft, totals, number)
        try:
            order = await _insert_order(record)
            break
        except order_store.DuplicateSessionError:
            found = await _settled(session_id)
            if found:
                return found
            logger.info("order for session %s was rolled back, retrying", session_id)
        except order_store.DuplicateOrderNumberError:
            logger.info("order number %s taken, retrying", number)
    if order is None:
        raise OrderPersistenceError("Failed to create order")

    rows = order_item_rows(order["id"], draft.items)
    try:
        await order_store.insert_order_items(rows)
    except Exception as e:
        logger.error("order items failed for %s, removing order: %s", order["id"], e)
        try:
            await order_store.delete_order(order["id"])
        except Exception:
            logger.exception("could not remove order %s after item failure", order["id"])
        raise OrderPersistenceError("Failed to create order items") from e

    full = await order_store.get_order(order["id"])
    if full is None:
        full = {**order, "order_items": rows}
    logger.info(
        "order %s created for session %s (#%s, total %.2f)",
        order["id"], session_id, order.get("order_number"), totals.total,
    )
    return MaterializeResult(order=full, created=True)


async def materialize_from_session(session: Mapping[str, Any]) -> MaterializeResult:
    """Webhook path: the session and its metadata came from Stripe."""
    session_id = session.get("id")
    if not session_id:
        raise OrderValidationError("Session ID is required")
    found = await _existing(session_id)
    if found:
        return found
    meta = session.get("metadata") or {}
    draft = draft_from_metadata(meta, payments.decode_items_metadata(meta))
    return await materialize_order(session_id, draft)


async def ensure_order(
    session_id: str,
    items: Any = None,
    customer_info: Optional[Mapping[str, Any]] = None,
    order_details: Optional[Mapping[str, Any]] = None,
) -> MaterializeResult:
    """
    Return the order for a session, creating it if the webhook has not landed.

    Prefers the session metadata held by Stripe; falls back to the client's
    copy of the cart only when Stripe cannot be asked. A session Stripe does
    not know about is rejected.
    """
    if not session_id:
        raise OrderValidationError("Session ID is required")

    found = await _existing(session_id)
    if found:
        return found

    try:
        session = await run_in_threadpool(payments.retrieve_checkout_session, session_id)
    except CheckoutSessionNotFound as e:
        raise OrderValidationError(str(e)) from e
    except (ServiceNotConfigured, PaymentProcessorUnavailable) as e:
        logger.warning("could not read session %s from Stripe, using client data: %s", session_id, e)
        session = None

    if session is not None:
        if session.get("payment_status") not in payments.PAID_STATUSES:
            raise OrderValidationError("Payment has not been completed for this session")
        if payments.decode_items_metadata(session.get("metadata") or {}):
            return await materialize_from_session(session)

    if not items:
        raise OrderValidationError("Cart items are required")
    draft = draft_from_payload(items, customer_info, order_details)
    return await materialize_order(session_id, draft)


# ---------- webhook ----------

async def handle_webhook_event(event: Mapping[str, Any]) -> Optional[MaterializeResult]:
    """Materialize orders for completed checkouts; other events are ignored."""
    typ = event.get("type")
    session = (event.get("data") or {}).get("object") or {}

    if typ == "checkout.session.completed":
        if session.get("payment_status") not in payments.PAID_STATUSES:
            logger.info("session %s completed but unpaid (%s); waiting", session.get("id"), session.get("payment_status"))
            return None
        return await materialize_from_session(session)
    if typ == "checkout.session.async_payment_succeeded":
        return await materialize_from_session(session)

    logger.debug("ignoring stripe event %s", typ)
    return None


# ---------- status ----------

async def update_order_status(order_id: str, status: str) -> Dict[str, Any]:
    """
    Move an order to `status`. Only the next state (or the current one, as a
    no-op) is accepted; the update is conditional so a stale request cannot
    move an order backwards.
    """
    try:
        target = OrderStatus(status)
    except ValueError:
        raise OrderValidationError(
            f"Invalid status. Must be one of: {', '.join(OrderStatus.values())}"
        ) from None

    allowed_from = [target.value]
    prev = [s for s in OrderStatus if s.next() == target]
    allowed_from += [s.value for s in prev]

    updated = await order_store.advance_order_status(order_id, target.value, allowed_from)
    if updated is not None:
        return updated

    current = await order_store.get_order(order_id)
    if current is None:
        raise OrderNotFound("Order not found")
    raise InvalidStatusTransition(
        f"Cannot change order status from {current['status']} to {target.value}"
    )


# ---------- queries ----------

async def list_orders(limit: int = 200) -> List[Dict[str, Any]]:
    return await order_store.list_orders(limit=limit)


async def lookup_orders(
    phone: Optional[str] = None,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Customer tracking: exact order id, or recent orders (30 days) by phone."""
    order_id = (order_id or "").strip()
    phone = (phone or "").strip()
    if not order_id and not phone:
        raise OrderValidationError("Phone number or Order ID is required")

    if order_id:
        order = await order_store.get_order(order_id)
        return [order] if order else []

    digits = phone_digits(phone)
    if not digits:
        raise OrderValidationError("Please enter a valid phone number")
    since = (now or _now()) - LOOKUP_WINDOW
    return await order_store.find_orders_by_phone(digits, since)
