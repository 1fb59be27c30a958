# storefront/client.py
"""
Async HTTP client for the storefront API: the customer checkout/confirmation
flow and the admin dashboard's polling loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .services.cart import CartStore, PendingCheckout
from .services.order_types import OrderStatus

logger = logging.getLogger(__name__)

CONFIRM_ATTEMPTS = 3
CONFIRM_RETRY_DELAY = 1.5
POLL_INTERVAL = 5.0


class StorefrontAPIError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _raise_for_status(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if resp.is_error:
        detail = data.get("detail") if isinstance(data, dict) else None
        raise StorefrontAPIError(resp.status_code, detail or resp.reason_phrase)
    return data


@dataclass
class Confirmation:
    # confirmed=False still means "show success": the card was charged and
    # record keeping may simply be behind.
    confirmed: bool
    order: Optional[Dict[str, Any]] = None


class StorefrontClient:
    def __init__(
        self,
        base_url: str,
        cart: CartStore,
        pending: PendingCheckout,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.cart = cart
        self.pending = pending
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=30)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def start_checkout(
        self, customer_info: Dict[str, Any], order_details: Optional[Dict[str, Any]] = None
    ) -> str:
        """Open a Stripe Checkout Session for the current cart; returns the session id."""
        resp = await self._http.post("/checkout/session", json={
            "items": self.cart.as_payload(),
            "customerInfo": customer_info,
            "orderDetails": order_details,
        })
        data = _raise_for_status(resp)
        self.pending.save(customer_info, order_details)
        return data["sessionId"]

    async def confirm_order(
        self,
        session_id: str,
        attempts: int = CONFIRM_ATTEMPTS,
        delay: float = CONFIRM_RETRY_DELAY,
    ) -> Confirmation:
        """
        After the redirect back from Stripe, make sure the order exists.

        Retries a few times, then reports an unconfirmed success rather than a
        failure. The local cart and checkout snapshot are cleared once the
        order is confirmed.
        """
        snapshot = self.pending.load() or {}
        body = {
            "sessionId": session_id,
            "items": self.cart.as_payload(),
            "customerInfo": snapshot.get("customerInfo"),
            "orderDetails": snapshot.get("orderDetails"),
        }
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._http.post("/orders/materialize", json=body)
                data = _raise_for_status(resp)
            except (httpx.HTTPError, StorefrontAPIError) as e:
                logger.warning("order confirmation attempt %d failed: %s", attempt, e)
            else:
                self.cart.clear()
                self.pending.clear()
                return Confirmation(confirmed=True, order=data.get("order"))
            if attempt < attempts:
                await asyncio.sleep(delay)

        logger.warning("order for session %s not confirmed; showing success anyway", session_id)
        return Confirmation(confirmed=False)

    async def track_orders(
        self, phone: Optional[str] = None, order_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"orderId": order_id} if order_id else {"phone": phone or ""}
        resp = await self._http.get("/orders/lookup", params=params)
        return _raise_for_status(resp)["orders"]


class AdminClient:
    def __init__(self, base_url: str, http: Optional[httpx.AsyncClient] = None):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=30)
        self._token: Optional[str] = None

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def login(self, password: str) -> str:
        resp = await self._http.post("/auth/login", json={"password": password})
        self._token = _raise_for_status(resp)["token"]
        return self._token

    async def list_orders(self) -> List[Dict[str, Any]]:
        resp = await self._http.get("/orders", headers=self._headers())
        return _raise_for_status(resp)["orders"]

    async def advance(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Move an order to its next status; completed orders are returned as-is."""
        nxt = OrderStatus(order["status"]).next()
        if nxt is None:
            return order
        resp = await self._http.patch(
            f"/orders/{order['id']}", json={"status": nxt.value}, headers=self._headers()
        )
        return _raise_for_status(resp)["order"]

    async def poll_orders(self, interval: float = POLL_INTERVAL) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield the order list every `interval` seconds until the caller stops
        iterating. Failed polls are skipped; a 401 is raised so the caller can
        log in again.
        """
        while True:
            try:
                orders = await self.list_orders()
            except StorefrontAPIError as e:
                if e.status_code == 401:
                    raise
                logger.warning("order poll failed (%s): %s", e.status_code, e.detail)
            except httpx.HTTPError as e:
                logger.warning("order poll failed: %s", e)
            else:
                yield orders
            await asyncio.sleep(interval)
