"""
Admin operator endpoints.

Endpoints:
    POST /api/admin/login                         exchange operator credentials for a token
    GET  /api/admin/orders                        filtered, paginated order table
    GET  /api/admin/orders/{id}                   one order
    POST /api/admin/orders/{id}/approve           approval gate
    POST /api/admin/orders/{id}/reject            cancel with reason
    POST /api/admin/orders/{id}/dispatch          hand to Shiprocket
    PUT  /api/admin/orders/{id}/status            processing → shipped → delivered
    GET  /api/admin/customers/{customer_id}/summary
"""
import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from deps import PageParams, page_params, require_admin
from domain.enums import OrderStatus, PaymentStatus, Role
from domain.errors import AuthError, ValidationError
from domain.identity import RequestIdentity
from domain.responses import paginated_response, success_response
from middleware.auth import check_admin_credentials, issue_access_token
from middleware.rate_limit import rate_limit
from services import approval_service, fulfillment_service, order_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


class AdminLoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=200)


class RejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class StatusUpdateRequest(BaseModel):
    order_status: str = Field(..., alias="orderStatus")

    model_config = {"populate_by_name": True}


def _split_csv(value: str | None, allowed: set[str], field: str) -> list[str] | None:
    if not value:
        return None
    parts = [p.strip() for p in value.split(",") if p.strip()]
    bad = [p for p in parts if p not in allowed]
    if bad:
        raise ValidationError(f"Unknown value(s): {', '.join(bad)}", field=field)
    return parts


# ════════════════════════════════════════════════════════════════════
# Auth
# ════════════════════════════════════════════════════════════════════


@router.post("/login")
async def admin_login(
    request: AdminLoginRequest,
    _rate=Depends(rate_limit(max_requests=5, window_seconds=300)),
):
    if not check_admin_credentials(request.username, request.password):
        logger.warning(f"security: failed admin login for '{request.username[:32]}'")
        raise AuthError("Invalid credentials")

    token = issue_access_token(subject=request.username, role=Role.ADMIN)
    logger.info(f"Admin '{request.username}' logged in")
    return success_response(
        data={
            "accessToken": token,
            "tokenType": "Bearer",
            "expiresInSeconds": settings.jwt_access_ttl_minutes * 60,
        }
    )


# ════════════════════════════════════════════════════════════════════
# Order table
# ════════════════════════════════════════════════════════════════════


@router.get("/orders")
async def list_orders(
    order_status: str | None = Query(None, alias="orderStatus"),
    payment_status: str | None = Query(None, alias="paymentStatus"),
    search: str | None = Query(None, max_length=100),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    paging: PageParams = Depends(page_params),
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    orders, total = await order_service.list_orders(
        db,
        order_statuses=_split_csv(order_status, {s.value for s in OrderStatus}, "orderStatus"),
        payment_statuses=_split_csv(payment_status, {s.value for s in PaymentStatus}, "paymentStatus"),
        search=search,
        start_date=datetime.combine(start_date, time.min) if start_date else None,
        end_date=datetime.combine(end_date, time.max) if end_date else None,
        page=paging["page"],
        limit=paging["limit"],
    )
    return paginated_response(
        [order_service.order_to_dict(o) for o in orders],
        page=paging["page"],
        limit=paging["limit"],
        total=total,
    )


@router.get("/orders/{order_id}")
async def get_order(
    order_id: int,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.require_order(db, order_id=order_id)
    return success_response(data=order_service.order_to_dict(order))


# ════════════════════════════════════════════════════════════════════
# Approval gate / dispatch
# ════════════════════════════════════════════════════════════════════


@router.post("/orders/{order_id}/approve")
async def approve_order(
    order_id: int,
    admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await approval_service.approve(db, order_id=order_id, approver=admin)
    await db.commit()
    return success_response(data=order_service.order_to_dict(order))


@router.post("/orders/{order_id}/reject")
async def reject_order(
    order_id: int,
    request: RejectRequest,
    admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await approval_service.reject(
        db, order_id=order_id, approver=admin, reason=request.reason or ""
    )
    await db.commit()
    return success_response(data=order_service.order_to_dict(order))


@router.post("/orders/{order_id}/dispatch")
async def dispatch_order(
    order_id: int,
    admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Send to Shiprocket. 200 once the carrier order exists and is recorded;
    AWB, pickup and notification outcomes only show up in logs and on the
    order itself.
    """
    order = await fulfillment_service.dispatch(db, order_id=order_id, operator=admin)
    return success_response(data=order_service.order_to_dict(order))


@router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: int,
    request: StatusUpdateRequest,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.advance_status(db, order_id=order_id, target=request.order_status)
    await db.commit()
    return success_response(data=order_service.order_to_dict(order))


@router.get("/customers/{customer_id}/summary")
async def customer_summary(
    customer_id: str,
    _admin: RequestIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return success_response(data=await order_service.customer_summary(db, customer_id=customer_id))
