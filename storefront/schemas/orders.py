from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel

# Request bodies stay loose on purpose: the services reject bad carts and
# customer fields with specific 400 messages instead of a generic 422.


class CheckoutSessionIn(BaseModel):
    items: Optional[List[Any]] = None
    customerInfo: Optional[Dict[str, Any]] = None
    orderDetails: Optional[Dict[str, Any]] = None


class CheckoutSessionOut(BaseModel):
    sessionId: str
    total: float


class MaterializeIn(CheckoutSessionIn):
    sessionId: Optional[str] = None


class StatusUpdateIn(BaseModel):
    status: Optional[str] = None


class OrderItemOut(BaseModel):
    id: str
    order_id: str
    menu_item_id: str
    menu_item_name: str
    quantity: int
    price: float
    position: Optional[int] = None


class OrderOut(BaseModel):
    id: str
    order_number: Optional[int] = None
    customer_name: str
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_phone: str
    customer_email: Optional[str] = None
    order_type: Optional[str] = None
    time_choice: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    payment_method: Optional[str] = None
    tip_percent: Optional[float] = None
    tip_amount: Optional[float] = None
    comments: Optional[str] = None
    total_amount: float
    tax_amount: float
    status: str
    stripe_session_id: Optional[str] = None
    created_at: Optional[datetime] = None
    order_items: List[OrderItemOut] = []


class OrderEnvelope(BaseModel):
    order: OrderOut
    message: Optional[str] = None


class OrdersOut(BaseModel):
    orders: List[OrderOut]
