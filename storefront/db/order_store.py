"""Postgres record store for orders and their line items."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

import asyncpg

from . import get_pool

logger = logging.getLogger(__name__)

REQUIRED_ORDER_COLUMNS = (
    "id",
    "customer_name",
    "customer_phone",
    "customer_email",
    "total_amount",
    "tax_amount",
    "status",
    "stripe_session_id",
)
OPTIONAL_ORDER_COLUMNS = (
    "order_number",
    "customer_first_name",
    "customer_last_name",
    "order_type",
    "time_choice",
    "scheduled_time",
    "payment_method",
    "tip_percent",
    "tip_amount",
    "comments",
)
ORDER_ITEM_COLUMNS = (
    "id", "order_id", "menu_item_id", "menu_item_name", "quantity", "price", "position",
)
_ITEM_PLACEHOLDERS = ", ".join(f"${i}" for i in range(1, len(ORDER_ITEM_COLUMNS) + 1))

SESSION_CONSTRAINT = "orders_stripe_session_id_key"
ORDER_NUMBER_CONSTRAINT = "orders_order_number_key"

# Optional columns present in the live schema; None until probed.
_order_columns: Optional[Set[str]] = None


class DuplicateSessionError(Exception):
    """An order already exists for this Stripe session id."""


class DuplicateOrderNumberError(Exception):
    pass


class MissingColumnError(Exception):
    pass


def _jsonable(v: Any) -> Any:
    if isinstance(v, Decimal):
        return float(v)
    return v


def _db_value(v: Any) -> Any:
    if isinstance(v, float):
        return Decimal(str(v))
    return v


def _row_to_dict(row) -> Dict[str, Any]:
    return {k: _jsonable(v) for k, v in dict(row).items()}


async def load_order_columns() -> Set[str]:
    """
    Probe which optional order columns exist. Run once at startup so inserts
    skip columns from migrations that have not been applied yet.
    """
    global _order_columns
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT column_name FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = 'orders'
            """
        )
    present = {r["column_name"] for r in rows}
    _order_columns = {c for c in OPTIONAL_ORDER_COLUMNS if c in present}
    missing = set(OPTIONAL_ORDER_COLUMNS) - _order_columns
    if missing:
        logger.warning("orders table is missing optional columns: %s", ", ".join(sorted(missing)))
    return _order_columns


async def _attach_items(conn, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not orders:
        return orders
    rows = await conn.fetch(
        "SELECT * FROM order_items WHERE order_id = ANY($1::text[]) ORDER BY order_id, position",
        [o["id"] for o in orders],
    )
    by_order: Dict[str, List[Dict[str, Any]]] = {}
    for r in rows:
        by_order.setdefault(r["order_id"], []).append(_row_to_dict(r))
    for o in orders:
        o["order_items"] = by_order.get(o["id"], [])
    return orders


async def find_order_by_session(session_id: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM orders WHERE stripe_session_id = $1", session_id)
        if not row:
            return None
        return (await _attach_items(conn, [_row_to_dict(row)]))[0]


async def next_order_number() -> Optional[int]:
    """(max order_number, or 999) + 1; None when the column does not exist."""
    if _order_columns is not None and "order_number" not in _order_columns:
        return None
    pool = await get_pool()
    async with pool.acquire() as conn:
        try:
            current = await conn.fetchval("SELECT MAX(order_number) FROM orders")
        except asyncpg.UndefinedColumnError:
            return None
    return (current or 999) + 1


async def insert_order(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert one order row and return it.

    Keys for optional columns the live schema lacks are dropped. A unique
    violation is reported as DuplicateSessionError or DuplicateOrderNumberError.
    """
    allowed = _order_columns if _order_columns is not None else set(OPTIONAL_ORDER_COLUMNS)
    cols = [
        c for c, v in record.items()
        if c in REQUIRED_ORDER_COLUMNS or (c in allowed and v is not None)
    ]
    placeholders = ", ".join(f"${i}" for i in range(1, len(cols) + 1))
    sql = f"INSERT INTO orders ({', '.join(cols)}) VALUES ({placeholders}) RETURNING *"

    pool = await get_pool()
    async with pool.acquire() as conn:
        try:
            row = await conn.fetchrow(sql, *[_db_value(record.get(c)) for c in cols])
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name == SESSION_CONSTRAINT:
                raise DuplicateSessionError(str(e)) from e
            if e.constraint_name == ORDER_NUMBER_CONSTRAINT:
                raise DuplicateOrderNumberError(str(e)) from e
            raise
        except asyncpg.UndefinedColumnError as e:
            raise MissingColumnError(str(e)) from e
    return _row_to_dict(row)


async def insert_order_items(items: Iterable[Dict[str, Any]]) -> None:
    rows = [tuple(_db_value(i[c]) for c in ORDER_ITEM_COLUMNS) for i in items]
    if not rows:
        return
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.executemany(
            f"""
            INSERT INTO order_items ({', '.join(ORDER_ITEM_COLUMNS)})
            VALUES ({_ITEM_PLACEHOLDERS})
            """,
            rows,
        )


async def delete_order(order_id: str) -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute("DELETE FROM orders WHERE id = $1", order_id)


async def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1", order_id)
        if not row:
            return None
        return (await _attach_items(conn, [_row_to_dict(row)]))[0]


async def advance_order_status(
    order_id: str, status: str, allowed_from: Iterable[str]
) -> Optional[Dict[str, Any]]:
    """
    Set status only if the current one is in `allowed_from`.
    Returns the updated order, or None when no row matched.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            UPDATE orders SET status = $2
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING *
            """,
            order_id,
            status,
            list(allowed_from),
        )
        if not row:
            return None
        return (await _attach_items(conn, [_row_to_dict(row)]))[0]


async def list_orders(limit: int = 200) -> List[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT * FROM orders ORDER BY created_at DESC LIMIT $1", limit
        )
        return await _attach_items(conn, [_row_to_dict(r) for r in rows])


async def find_orders_by_phone(
    digits: str, since: datetime, limit: int = 50
) -> List[Dict[str, Any]]:
    """Orders whose phone, stripped to digits, contains `digits`; newest first."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT * FROM orders
            WHERE regexp_replace(customer_phone, '\\D', '', 'g') LIKE '%' || $1 || '%'
              AND created_at >= $2
            ORDER BY created_at DESC
            LIMIT $3
            """,
            digits,
            since,
            limit,
        )
        return await _attach_items(conn, [_row_to_dict(r) for r in rows])
