"""Tests for the asyncpg order store, run against a stub pool instead of Postgres."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

import asyncpg
import pytest

from storefront.db import order_store


@pytest.fixture(autouse=True)
def fake_store():
    # this module exercises the real store functions
    return None


class StubConnection:
    def __init__(self):
        self.calls = []
        self.fetch_results = []
        self.fetchrow_result = None
        self.fetchval_result = None
        self.error = None

    def _record(self, method, sql, args):
        self.calls.append((method, " ".join(sql.split()), args))
        if self.error is not None:
            raise self.error

    async def fetchrow(self, sql, *args):
        self._record("fetchrow", sql, args)
        return self.fetchrow_result

    async def fetch(self, sql, *args):
        self._record("fetch", sql, args)
        return self.fetch_results.pop(0) if self.fetch_results else []

    async def fetchval(self, sql, *args):
        self._record("fetchval", sql, args)
        return self.fetchval_result

    async def executemany(self, sql, rows):
        self._record("executemany", sql, (rows,))


class StubPool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture()
def conn(monkeypatch):
    conn = StubConnection()
    pool = StubPool(conn)

    async def get_pool():
        return pool

    monkeypatch.setattr(order_store, "get_pool", get_pool)
    monkeypatch.setattr(order_store, "_order_columns", None)
    return conn


def _record(**overrides):
    record = {
        "id": "o1",
        "order_number": 1000,
        "customer_name": "Sam Rivera",
        "customer_phone": "720-555-0100",
        "customer_email": None,
        "order_type": "pickup",
        "scheduled_time": None,
        "comments": "no onions",
        "total_amount": 27.06,
        "tax_amount": 1.76,
        "status": "pending",
        "stripe_session_id": "cs_1",
    }
    record.update(overrides)
    return record


def _unique_violation(constraint):
    err = asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
    err.constraint_name = constraint
    return err


# ---------- insert_order ----------

def test_insert_keeps_required_and_probed_columns(conn, monkeypatch):
    monkeypatch.setattr(order_store, "_order_columns", {"order_number", "order_type", "scheduled_time"})
    conn.fetchrow_result = {"id": "o1", "total_amount": Decimal("27.06")}

    row = asyncio.run(order_store.insert_order(_record()))

    method, sql, args = conn.calls[0]
    cols = sql[sql.index("(") + 1:sql.index(")")].split(", ")
    # customer_email is required so it is written even when None;
    # scheduled_time is probed but None; comments was never probed
    assert cols == [
        "id", "order_number", "customer_name", "customer_phone", "customer_email",
        "order_type", "total_amount", "tax_amount", "status", "stripe_session_id",
    ]
    assert args[cols.index("total_amount")] == Decimal("27.06")
    assert args[cols.index("customer_email")] is None
    assert row == {"id": "o1", "total_amount": 27.06}


def test_insert_before_probe_writes_all_known_columns(conn):
    conn.fetchrow_result = {"id": "o1"}
    asyncio.run(order_store.insert_order(_record()))
    sql = conn.calls[0][1]
    assert "comments" in sql and "order_type" in sql
    assert "scheduled_time" not in sql


@pytest.mark.parametrize("constraint, expected", [
    (order_store.SESSION_CONSTRAINT, order_store.DuplicateSessionError),
    (order_store.ORDER_NUMBER_CONSTRAINT, order_store.DuplicateOrderNumberError),
])
def test_unique_violations_map_by_constraint(conn, constraint, expected):
    conn.error = _unique_violation(constraint)
    with pytest.raises(expected):
        asyncio.run(order_store.insert_order(_record()))


def test_other_unique_violations_propagate(conn):
    conn.error = _unique_violation("orders_pkey")
    with pytest.raises(asyncpg.UniqueViolationError):
        asyncio.run(order_store.insert_order(_record()))


def test_missing_column_is_reported(conn):
    conn.error = asyncpg.UndefinedColumnError('column "order_type" of relation "orders" does not exist')
    with pytest.raises(order_store.MissingColumnError, match="order_type"):
        asyncio.run(order_store.insert_order(_record()))


# ---------- order numbers ----------

def test_next_order_number_starts_at_1000(conn):
    assert asyncio.run(order_store.next_order_number()) == 1000
    conn.fetchval_result = 1041
    assert asyncio.run(order_store.next_order_number()) == 1042


def test_next_order_number_without_the_column(conn, monkeypatch):
    monkeypatch.setattr(order_store, "_order_columns", {"order_type"})
    assert asyncio.run(order_store.next_order_number()) is None
    assert conn.calls == []


def test_next_order_number_when_the_column_vanished(conn):
    conn.error = asyncpg.UndefinedColumnError('column "order_number" does not exist')
    assert asyncio.run(order_store.next_order_number()) is None


def test_probe_caches_present_optional_columns(conn):
    conn.fetch_results = [[{"column_name": c} for c in ("id", "status", "order_number", "comments")]]
    cols = asyncio.run(order_store.load_order_columns())
    assert cols == {"order_number", "comments"}
    assert order_store._order_columns == {"order_number", "comments"}


# ---------- items ----------

def test_items_are_attached_to_their_orders(conn):
    conn.fetch_results = [
        [{"id": "o1", "total_amount": Decimal("10.80")}, {"id": "o2", "total_amount": Decimal("5.40")}],
        [
            {"id": "i1", "order_id": "o1", "menu_item_name": "Tea", "price": Decimal("2.00"), "position": 0},
            {"id": "i2", "order_id": "o1", "menu_item_name": "+ honey", "price": Decimal("0.50"), "position": 1},
            {"id": "i3", "order_id": "o2", "menu_item_name": "Rice", "price": Decimal("5.00"), "position": 0},
        ],
    ]
    orders = asyncio.run(order_store.list_orders(limit=10))

    assert [o["id"] for o in orders] == ["o1", "o2"]
    assert [i["menu_item_name"] for i in orders[0]["order_items"]] == ["Tea", "+ honey"]
    assert [i["id"] for i in orders[1]["order_items"]] == ["i3"]
    assert orders[0]["order_items"][1]["price"] == 0.5
    items_sql = conn.calls[1][1]
    assert items_sql.endswith("ORDER BY order_id, position")
    assert conn.calls[1][2] == (["o1", "o2"],)


def test_order_without_items_gets_an_empty_list(conn):
    conn.fetchrow_result = {"id": "o1"}
    order = asyncio.run(order_store.get_order("o1"))
    assert order == {"id": "o1", "order_items": []}


def test_insert_items_batches_rows_in_column_order(conn):
    rows = [
        {"id": "i1", "order_id": "o1", "menu_item_id": "tea", "menu_item_name": "Tea",
         "quantity": 2, "price": 2.0, "position": 0},
    ]
    asyncio.run(order_store.insert_order_items(rows))
    method, sql, (batch,) = conn.calls[0]
    assert method == "executemany"
    assert "VALUES ($1, $2, $3, $4, $5, $6, $7)" in sql
    assert batch == [("i1", "o1", "tea", "Tea", 2, Decimal("2.0"), 0)]


def test_insert_items_skips_empty_batches(conn):
    asyncio.run(order_store.insert_order_items([]))
    assert conn.calls == []
