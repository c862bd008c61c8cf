"""
Customer order endpoints: checkout snapshot intake and order history.

Endpoints:
    POST /api/orders        create order from checkout snapshot
    GET  /api/orders        caller's orders, newest first
    GET  /api/orders/{id}   one of the caller's orders
"""
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import require_customer
from domain.errors import NotFoundError
from domain.identity import RequestIdentity
from domain.responses import success_response
from services import order_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


class LineItem(BaseModel):
    product_id: str = Field(..., alias="productId", min_length=1)
    name: str = Field(..., min_length=1, max_length=300)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1, le=100)
    image: str | None = None

    model_config = {"populate_by_name": True}


class ShippingAddress(BaseModel):
    full_name: str = Field(..., alias="fullName", min_length=1, max_length=200)
    phone: str = Field(..., min_length=10, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)
    locality: str | None = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=4, max_length=10)
    landmark: str | None = None

    model_config = {"populate_by_name": True}


class OrderCreateRequest(BaseModel):
    items: list[LineItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    subtotal: float = Field(..., ge=0)
    shipping_charges: float = Field(0.0, alias="shippingCharges", ge=0)
    tax: float = Field(0.0, ge=0)
    discount: float = Field(0.0, ge=0)
    total: float = Field(..., ge=0)
    payment_method: str = Field(..., alias="paymentMethod", min_length=2, max_length=20)
    customer_email: str | None = Field(default=None, alias="customerEmail", max_length=200)

    model_config = {"populate_by_name": True}


@router.post("", status_code=201)
async def create_order(
    request: OrderCreateRequest,
    identity: RequestIdentity = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.create_order(
        db,
        customer_id=identity.subject,
        customer_email=request.customer_email,
        items=[i.model_dump(by_alias=True) for i in request.items],
        shipping_address=request.shipping_address.model_dump(by_alias=True),
        subtotal=request.subtotal,
        shipping_charges=request.shipping_charges,
        tax=request.tax,
        discount=request.discount,
        total=request.total,
        payment_method=request.payment_method,
    )
    await db.commit()
    return success_response(data=order_service.order_to_dict(order))


@router.get("")
async def list_my_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: RequestIdentity = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_customer_orders(
        db, customer_id=identity.subject, limit=limit, offset=offset
    )
    return success_response(
        data=[order_service.order_to_dict(o) for o in orders],
        meta={"limit": limit, "offset": offset, "count": len(orders)},
    )


@router.get("/{order_id}")
async def get_my_order(
    order_id: int,
    identity: RequestIdentity = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_order(db, order_id=order_id)
    # Someone else's order reads as missing
    if not order or order.customer_id != identity.subject:
        raise NotFoundError("Order", str(order_id))
    return success_response(data=order_service.order_to_dict(order))
