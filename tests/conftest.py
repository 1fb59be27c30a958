"""Shared fixtures: in-memory order store and a fake Stripe so tests run without credentials."""
from __future__ import annotations

import asyncio
import copy
import os
import re
from datetime import datetime, timezone

# Set dummy env vars BEFORE any app imports
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ADMIN_PASSWORD", "letmein")
os.environ.setdefault("ADMIN_TOKEN_SECRET", "test-token-secret-0123456789abcdef")
os.environ.setdefault("SITE_URL", "http://shop.test")

import pytest

from storefront.db import order_store
from storefront.services.errors import (
    CheckoutSessionNotFound,
    PaymentProcessorError,
    PaymentProcessorUnavailable,
)


# ---------- Fake order store ----------

class FakeOrderStore:
    """
    Mirrors the Postgres store, including the unique constraints on
    stripe_session_id and order_number. Every call yields to the event loop
    so concurrent materializations interleave like real round trips.
    """

    def __init__(self):
        self.orders: list[dict] = []
        self.items: list[dict] = []
        self.missing_columns: set[str] = set()
        self.fail_items = False
        self.item_failures_left = 0
        self.fail_delete = False
        self.deleted: list[str] = []
        self.probes = 0

    def _with_items(self, order: dict) -> dict:
        out = copy.deepcopy(order)
        out["order_items"] = [copy.deepcopy(i) for i in self.items if i["order_id"] == order["id"]]
        return out

    def add_order(self, **fields) -> dict:
        """Seed an order directly (bypassing materialization)."""
        order = {
            "id": fields.pop("id", f"seed-{len(self.orders)}"),
            "customer_name": "Seed Customer",
            "customer_phone": "720-555-0100",
            "customer_email": None,
            "total_amount": 10.8,
            "tax_amount": 0.8,
            "status": "pending",
            "stripe_session_id": f"cs_seed_{len(self.orders)}",
            "created_at": datetime.now(timezone.utc),
        }
        order.update(fields)
        self.orders.append(order)
        return order

    async def load_order_columns(self):
        self.probes += 1
        return set(order_store.OPTIONAL_ORDER_COLUMNS) - self.missing_columns

    async def find_order_by_session(self, session_id):
        await asyncio.sleep(0)
        for o in self.orders:
            if o["stripe_session_id"] == session_id:
                return self._with_items(o)
        return None

    async def next_order_number(self):
        await asyncio.sleep(0)
        numbers = [o["order_number"] for o in self.orders if o.get("order_number")]
        return (max(numbers) if numbers else 999) + 1

    async def insert_order(self, record):
        await asyncio.sleep(0)
        bad = [k for k in record if k in self.missing_columns and record[k] is not None]
        if bad:
            raise order_store.MissingColumnError(f'column "{bad[0]}" of relation "orders" does not exist')
        if any(o["stripe_session_id"] == record["stripe_session_id"] for o in self.orders):
            raise order_store.DuplicateSessionError("duplicate key value violates unique constraint")
        num = record.get("order_number")
        if num is not None and any(o.get("order_number") == num for o in self.orders):
            raise order_store.DuplicateOrderNumberError("duplicate order number")
        row = {
            k: v for k, v in record.items()
            if v is not None or k in order_store.REQUIRED_ORDER_COLUMNS
        }
        row["created_at"] = datetime.now(timezone.utc)
        self.orders.append(row)
        return copy.deepcopy(row)

    async def insert_order_items(self, rows):
        await asyncio.sleep(0)
        if self.item_failures_left:
            self.item_failures_left -= 1
            raise RuntimeError("insert into order_items failed")
        if self.fail_items:
            raise RuntimeError("insert into order_items failed")
        self.items.extend(copy.deepcopy(list(rows)))

    async def delete_order(self, order_id):
        if self.fail_delete:
            raise RuntimeError("delete failed")
        self.deleted.append(order_id)
        self.orders = [o for o in self.orders if o["id"] != order_id]
        self.items = [i for i in self.items if i["order_id"] != order_id]

    async def get_order(self, order_id):
        for o in self.orders:
            if o["id"] == order_id:
                return self._with_items(o)
        return None

    async def advance_order_status(self, order_id, status, allowed_from):
        for o in self.orders:
            if o["id"] == order_id and o["status"] in allowed_from:
                o["status"] = status
                return self._with_items(o)
        return None

    async def list_orders(self, limit=200):
        rows = sorted(self.orders, key=lambda o: o["created_at"], reverse=True)[:limit]
        return [self._with_items(o) for o in rows]

    async def find_orders_by_phone(self, digits, since, limit=50):
        rows = [
            o for o in self.orders
            if digits in re.sub(r"\D", "", o["customer_phone"]) and o["created_at"] >= since
        ]
        rows.sort(key=lambda o: o["created_at"], reverse=True)
        return [self._with_items(o) for o in rows[:limit]]


_STORE_FUNCS = (
    "load_order_columns",
    "find_order_by_session",
    "next_order_number",
    "insert_order",
    "insert_order_items",
    "delete_order",
    "get_order",
    "advance_order_status",
    "list_orders",
    "find_orders_by_phone",
)


@pytest.fixture(autouse=True)
def fake_store(monkeypatch):
    """Replace order_store functions with the in-memory fake."""
    store = FakeOrderStore()
    for name in _STORE_FUNCS:
        monkeypatch.setattr(f"storefront.db.order_store.{name}", getattr(store, name))
    return store


# ---------- Fake Stripe ----------

class FakeStripe:
    def __init__(self):
        self.created: list[dict] = []
        self.sessions: dict[str, dict] = {}
        self.fail_create: str | None = None
        self.unreachable = False

    def create_checkout_session(self, line_items, metadata, success_url, cancel_url):
        if self.fail_create:
            raise PaymentProcessorError(self.fail_create)
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({
            "id": session_id,
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        self.sessions[session_id] = {"id": session_id, "payment_status": "unpaid", "metadata": dict(metadata)}
        return session_id

    def pay(self, session_id):
        self.sessions[session_id]["payment_status"] = "paid"

    def retrieve_checkout_session(self, session_id):
        if self.unreachable:
            raise PaymentProcessorUnavailable("Could not connect to Stripe")
        if session_id not in self.sessions:
            raise CheckoutSessionNotFound("Checkout session not found")
        return copy.deepcopy(self.sessions[session_id])


@pytest.fixture(autouse=True)
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr("storefront.services.payments.create_checkout_session", fake.create_checkout_session)
    monkeypatch.setattr("storefront.services.payments.retrieve_checkout_session", fake.retrieve_checkout_session)
    return fake


# ---------- Payload builders ----------

def cart_line(id="kabob1", name="Chicken Kabob", price=10.0, quantity=1, options=None, addons=None):
    return {
        "id": id,
        "name": name,
        "price": price,
        "quantity": quantity,
        "selectedOptions": options or [],
        "selectedAddons": addons or [],
    }


CUSTOMER = {"firstName": "Sam", "lastName": "Rivera", "phone": "720-555-0100", "email": "sam@example.com"}


@pytest.fixture()
def client():
    """FastAPI TestClient (sync)."""
    from fastapi.testclient import TestClient
    from storefront.main import app
    return TestClient(app)


@pytest.fixture()
def admin_headers(client):
    resp = client.post("/auth/login", json={"password": "letmein"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}
