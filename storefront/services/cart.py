# storefront/services/cart.py
"""
Customer-side cart persisted to a JSON file.

Every mutation rewrites the whole file (last writer wins) and notifies
every CartStore opened on the same file, the way a browser cart notifies
its other tabs.
"""
from __future__ import annotations

import json
import logging
import os
import dataclasses
from typing import Any, Callable, Dict, List, Optional, Sequence

from .drafts import parse_cart_line
from .order_types import Addon, CartLine

logger = logging.getLogger(__name__)

Listener = Callable[[List[CartLine]], None]

# path -> listeners, shared by every store opened on that file
_listeners: Dict[str, List[Listener]] = {}


def cart_item_id(
    base_item_id: str,
    selected_options: Sequence[str] = (),
    selected_addons: Sequence[Addon] = (),
) -> str:
    """Same item with the same options and addons (in any order) gives the same id."""
    options_key = "|".join(sorted(selected_options))
    addons_key = "|".join(sorted(a.name for a in selected_addons))
    return f"{base_item_id}-{options_key}-{addons_key}"


def new_cart_line(
    base_item_id: str,
    name: str,
    price: float,
    selected_options: Sequence[str] = (),
    selected_addons: Sequence[Addon] = (),
    image_url: Optional[str] = None,
) -> CartLine:
    return CartLine(
        id=cart_item_id(base_item_id, selected_options, selected_addons),
        base_item_id=base_item_id,
        name=name,
        price=price,
        quantity=1,
        image_url=image_url,
        selected_options=list(selected_options),
        selected_addons=list(selected_addons),
    )


class CartStore:
    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    # ---------- persistence ----------
    def get(self) -> List[CartLine]:
        """Current cart; a missing or unreadable file is an empty cart."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [parse_cart_line(r) for r in raw]
        except (OSError, ValueError, TypeError):
            logger.warning("cart at %s is unreadable; starting empty", self.path)
            return []

    def _save(self, cart: List[CartLine]) -> List[CartLine]:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([c.to_json() for c in cart], f, ensure_ascii=False, indent=2)
        self._notify(cart)
        return cart

    # ---------- notifications ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        _listeners.setdefault(self.path, []).append(listener)

        def _unsubscribe() -> None:
            subs = _listeners.get(self.path, [])
            if listener in subs:
                subs.remove(listener)

        return _unsubscribe

    def _notify(self, cart: List[CartLine]) -> None:
        for listener in list(_listeners.get(self.path, [])):
            try:
                listener(list(cart))
            except Exception:
                logger.exception("cart listener failed")

    # ---------- mutations ----------
    def add(self, item: CartLine) -> List[CartLine]:
        cart = self.get()
        existing = next((c for c in cart if c.id == item.id), None)
        if existing:
            existing.quantity += 1
        else:
            cart.append(dataclasses.replace(item, quantity=1))
        return self._save(cart)

    def update_quantity(self, item_id: str, quantity: int) -> List[CartLine]:
        if quantity <= 0:
            return self.remove(item_id)
        cart = self.get()
        for c in cart:
            if c.id == item_id:
                c.quantity = quantity
        return self._save(cart)

    def remove(self, item_id: str) -> List[CartLine]:
        return self._save([c for c in self.get() if c.id != item_id])

    def replace(self, original_id: str, new_item: CartLine, quantity: int) -> List[CartLine]:
        """Swap an edited line in; merges into an existing line with the new identity."""
        qty = max(1, quantity)
        cart = [c for c in self.get() if c.id != original_id]
        existing = next((c for c in cart if c.id == new_item.id), None)
        if existing:
            existing.quantity += qty
        else:
            cart.append(dataclasses.replace(new_item, quantity=qty))
        return self._save(cart)

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        self._notify([])

    # ---------- helpers ----------
    def item_count(self) -> int:
        return sum(c.quantity for c in self.get())

    def as_payload(self) -> List[Dict[str, Any]]:
        return [c.to_json() for c in self.get()]


class PendingCheckout:
    """
    Customer info and order details saved before the Stripe redirect, so the
    confirmation step can recreate the order if the webhook is late.
    """

    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    def save(self, customer_info: Dict[str, Any], order_details: Optional[Dict[str, Any]]) -> None:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"customerInfo": customer_info, "orderDetails": order_details}, f)

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) and data.get("customerInfo") else None

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
