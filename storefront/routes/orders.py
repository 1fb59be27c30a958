from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .auth import require_admin
from ..schemas.orders import MaterializeIn, OrderEnvelope, OrdersOut, StatusUpdateIn
from ..services.errors import (
    InvalidStatusTransition,
    OrderNotFound,
    OrderPersistenceError,
    OrderValidationError,
    PaymentProcessorError,
    ServiceNotConfigured,
)
from ..services.orders import ensure_order, list_orders, lookup_orders, update_order_status


router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrdersOut, dependencies=[Depends(require_admin)])
async def list_orders_endpoint():
    """Recent orders, newest first, for the admin dashboard (polled every few seconds)."""
    try:
        return {"orders": await list_orders()}
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/lookup", response_model=OrdersOut)
async def lookup_orders_endpoint(
    phone: Optional[str] = Query(None),
    orderId: Optional[str] = Query(None),
):
    try:
        return {"orders": await lookup_orders(phone=phone, order_id=orderId)}
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/materialize", response_model=OrderEnvelope)
async def materialize_order_endpoint(body: MaterializeIn):
    """
    Idempotent "make sure the order for this session exists". Called by the
    confirmation page when it gets back from Stripe before the webhook does.
    """
    try:
        result = await ensure_order(
            body.sessionId or "",
            items=body.items,
            customer_info=body.customerInfo,
            order_details=body.orderDetails,
        )
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ServiceNotConfigured, OrderPersistenceError) as e:
        raise HTTPException(status_code=500, detail=str(e))
    except PaymentProcessorError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"order": result.order, "message": result.message}


@router.patch("/{order_id}", response_model=OrderEnvelope, dependencies=[Depends(require_admin)])
async def update_order_status_endpoint(order_id: str, body: StatusUpdateIn):
    try:
        order = await update_order_status(order_id, body.status or "")
    except OrderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ServiceNotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"order": order}
