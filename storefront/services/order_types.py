# storefront/services/order_types.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"

    def next(self) -> Optional["OrderStatus"]:
        members = list(OrderStatus)
        idx = members.index(self)
        return members[idx + 1] if idx + 1 < len(members) else None

    @classmethod
    def values(cls) -> List[str]:
        return [s.value for s in cls]


ORDER_TYPES = ("pickup", "delivery")
TIME_CHOICES = ("asap", "scheduled")


@dataclass
class Addon:
    name: str
    price: float


@dataclass
class CartLine:
    """One priced cart line: base price plus per-unit addons, times quantity."""
    id: str
    name: str
    price: float
    quantity: int = 1
    base_item_id: Optional[str] = None
    image_url: Optional[str] = None
    selected_options: List[str] = field(default_factory=list)
    selected_addons: List[Addon] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        if self.selected_options:
            return f"{self.name} ({', '.join(self.selected_options)})"
        return self.name

    def to_json(self) -> Dict[str, Any]:
        """Shape shared by the browser cart, checkout payloads and Stripe metadata."""
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "selectedOptions": list(self.selected_options),
            "selectedAddons": [asdict(a) for a in self.selected_addons],
        }
        if self.base_item_id:
            out["base_item_id"] = self.base_item_id
        if self.image_url:
            out["image_url"] = self.image_url
        return out


@dataclass
class CustomerInfo:
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class OrderDetails:
    order_type: str = "pickup"
    time_choice: str = "asap"
    scheduled_time: Optional[datetime] = None
    payment_method: str = "online"
    tip_percent: float = 0.0
    tip_amount: Optional[float] = None  # explicit tip wins over tip_percent when > 0
    comments: Optional[str] = None


@dataclass
class OrderDraft:
    """Everything needed to persist an order, before it has an id."""
    customer: CustomerInfo
    details: OrderDetails
    items: List[CartLine]
