"""
Payment endpoints: the three ingress paths plus checkout initiation.

Endpoints:
    POST     /api/payment/initiate                    open PhonePe checkout (customer)
    GET      /api/payment/status/{merchant_order_id}  poll (customer, owner only)
    POST     /api/payment/webhook                     PhonePe push (credential digest)
    GET|POST /payment-callback                        browser return from PhonePe
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from deps import require_customer
from domain.identity import RequestIdentity
from domain.responses import success_response
from services import payment_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payments"])

# Browser callback lives outside /api
callback_router = APIRouter(tags=["payments"])


class InitiatePaymentRequest(BaseModel):
    order_id: int = Field(..., alias="orderId", gt=0)

    model_config = {"populate_by_name": True}


@router.post("/initiate")
async def initiate_payment(
    request: InitiatePaymentRequest,
    identity: RequestIdentity = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    result = await payment_reconciler.initiate_payment(db, order_id=request.order_id, identity=identity)
    await db.commit()
    return success_response(data=result)


@router.get("/status/{merchant_order_id}")
async def payment_status(
    merchant_order_id: str,
    identity: RequestIdentity = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    result = await payment_reconciler.poll_status(
        db, merchant_order_id=merchant_order_id, identity=identity
    )
    await db.commit()
    return success_response(data=result)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    PhonePe server-to-server callback.

    The Authorization header must equal SHA256(username:password) for the
    configured webhook credentials; otherwise 401 and nothing is written.
    """
    raw_body = await request.body()
    order = await payment_reconciler.handle_webhook(
        db,
        authorization=request.headers.get("authorization"),
        raw_body=raw_body,
    )
    await db.commit()
    return success_response(
        data={
            "orderNumber": order.order_number if order else None,
            "paymentStatus": order.payment_status if order else None,
        }
    )


async def _callback_hint(request: Request) -> tuple[str | None, str | None]:
    """(base64 payload, plain merchantOrderId) from query or body, whichever is present."""
    encoded = request.query_params.get("response")
    merchant_order_id = request.query_params.get("merchantOrderId")

    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        try:
            if "application/json" in content_type:
                body = await request.json()
            elif "form" in content_type:
                body = dict(await request.form())
            else:
                body = {}
        except ValueError:
            logger.warning("[redirect] Unreadable callback body")
            body = {}
        if isinstance(body, dict):
            encoded = encoded or body.get("response")
            merchant_order_id = merchant_order_id or body.get("merchantOrderId")

    return encoded, merchant_order_id


@callback_router.api_route("/payment-callback", methods=["GET", "POST"])
async def payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Browser return from PhonePe checkout.

    Whatever the browser carries is only a hint: the status shown comes from
    a fresh PhonePe query. Always redirects, never errors.
    """
    encoded, merchant_order_id = await _callback_hint(request)
    try:
        state, merchant_order_id = await payment_reconciler.handle_redirect(
            db, encoded_payload=encoded, merchant_order_id=merchant_order_id
        )
        await db.commit()
    except SQLAlchemyError as e:
        logger.error(f"[redirect] Database error while reconciling {merchant_order_id}: {e}", exc_info=True)
        await db.rollback()
        state = "ERROR"

    query = urlencode({"paymentStatus": state, "merchantOrderId": merchant_order_id or ""})
    return RedirectResponse(
        url=f"{settings.frontend_url.rstrip('/')}/orders?{query}",
        status_code=303,
    )
