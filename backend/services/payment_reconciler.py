"""
Payment reconciler: folds payment observations from every ingress path
into one consistent payment state per order.

Ingress paths:
    webhook   PhonePe push, authenticated by credential digest
    redirect  browser return from checkout; payload is only a lookup hint
    poll      customer pull; the only path that answers synchronously

Rules:
    - A payment signal never creates an order
    - paid / failed are terminal: later observations never regress them
    - The write is guarded on payment_status == pending, so two racing
      observations resolve to whichever commits first
    - Settling as paid unlocks approval; it never approves
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order
from domain.constants import COD_PAYMENT_METHOD, GATEWAY_FAILURE_STATES, GATEWAY_SUCCESS_STATES
from domain.enums import PaymentChannel, PaymentStatus
from domain.errors import ConflictError, PermissionDeniedError, UpstreamError, ValidationError
from domain.identity import RequestIdentity
from services import order_service, phonepe_service
from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentObservation:
    """One gateway state report, tagged with the path it arrived through."""
    merchant_order_id: str
    gateway_state: str
    channel: PaymentChannel
    transaction_id: str | None = None
    gateway_order_id: str | None = None
    details: Any = None

    @classmethod
    def from_gateway(cls, payload: dict, channel: PaymentChannel) -> "PaymentObservation":
        return cls(
            merchant_order_id=payload.get("merchantOrderId") or "",
            gateway_state=(payload.get("state") or "PENDING").upper(),
            channel=channel,
            transaction_id=payload.get("transactionId"),
            gateway_order_id=payload.get("orderId"),
            details=payload.get("paymentDetails"),
        )


def map_gateway_state(state: str | None) -> PaymentStatus:
    """Collapse the gateway vocabulary onto pending / paid / failed."""
    state = (state or "").upper()
    if state in GATEWAY_SUCCESS_STATES:
        return PaymentStatus.PAID
    if state in GATEWAY_FAILURE_STATES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def _is_terminal(order: Order) -> bool:
    return PaymentStatus(order.payment_status).is_terminal


def _reflects(order: Order, values: dict) -> bool:
    """True when writing `values` would change nothing."""
    return all(getattr(order, column) == value for column, value in values.items())


# ════════════════════════════════════════════════════════════════════
# Core merge
# ════════════════════════════════════════════════════════════════════


async def apply_payment_update(db: AsyncSession, observation: PaymentObservation) -> Order | None:
    """
    Apply one observation to the order it names.

    Returns the order as it stands afterwards, or None when no order matches.
    Never raises on a stale or losing observation.
    """
    tag = f"[{observation.channel.value}]"

    if not observation.merchant_order_id:
        logger.warning(f"{tag} Payment observation without merchantOrderId ignored")
        return None

    order = await order_service.get_order(db, order_number=observation.merchant_order_id)
    if not order:
        logger.warning(f"{tag} Payment observation for unknown order: {observation.merchant_order_id}")
        return None

    if _is_terminal(order):
        logger.info(
            f"{tag} {order.order_number} already {order.payment_status}; "
            f"ignoring gateway state {observation.gateway_state}"
        )
        return order

    mapped = map_gateway_state(observation.gateway_state)
    values: dict[str, Any] = {
        "payment_status": mapped.value,
        "phonepe_payment_state": observation.gateway_state,
        "phonepe_merchant_order_id": order.order_number,
    }
    if observation.details is not None:
        values["phonepe_payment_details"] = observation.details
    if observation.transaction_id:
        values["phonepe_transaction_id"] = observation.transaction_id
    if observation.gateway_order_id:
        values["phonepe_order_id"] = observation.gateway_order_id

    if _reflects(order, values):
        return order

    try:
        order = await order_service.apply_conditional(
            db, order.id, [order_service.PAYMENT_PENDING], values
        )
    except ConflictError:
        # Another observation settled the order between our read and write
        logger.info(f"{tag} {observation.merchant_order_id} settled concurrently; observation dropped")
        return await order_service.get_order(db, order_id=order.id)

    if mapped is PaymentStatus.PAID:
        logger.info(f"{tag} ✅ {order.order_number} paid ({observation.gateway_state}); awaiting approval")
    elif mapped is PaymentStatus.FAILED:
        logger.warning(f"{tag} ❌ {order.order_number} payment failed ({observation.gateway_state})")
    else:
        logger.info(f"{tag} {order.order_number} still pending ({observation.gateway_state})")

    return order


# ════════════════════════════════════════════════════════════════════
# Ingress paths
# ════════════════════════════════════════════════════════════════════


async def handle_webhook(db: AsyncSession, *, authorization: str | None, raw_body: bytes) -> Order | None:
    """Verify and apply a pushed observation. SignatureError leaves every order untouched."""
    payload = phonepe_service.verify_webhook(authorization, raw_body)
    observation = PaymentObservation.from_gateway(payload, PaymentChannel.WEBHOOK)
    logger.info(
        f"[webhook] 📩 {observation.merchant_order_id or '?'} state={observation.gateway_state}"
    )
    return await apply_payment_update(db, observation)


def extract_redirect_hint(encoded: str | None) -> str | None:
    """Best-effort merchant order id from the browser's base64 payload."""
    if not encoded or not isinstance(encoded, str):
        return None
    decoded = phonepe_service.decode_base64_json(encoded)
    if decoded is None:
        logger.warning("[redirect] Could not decode callback payload")
        return None
    hint = phonepe_service.normalize_payload(phonepe_service.unwrap_body(decoded))["merchantOrderId"]
    return hint if isinstance(hint, str) and hint else None


async def handle_redirect(
    db: AsyncSession,
    *,
    encoded_payload: str | None = None,
    merchant_order_id: str | None = None,
) -> tuple[str, str | None]:
    """
    Resolve the order from the hint, re-query PhonePe, and apply *that*.

    Returns (gateway state to show the customer, merchant order id or None).
    Never raises; an unresolvable callback shows as PENDING.
    """
    if not isinstance(merchant_order_id, str):
        merchant_order_id = None
    merchant_order_id = merchant_order_id or extract_redirect_hint(encoded_payload)
    if not merchant_order_id:
        logger.warning("[redirect] No merchantOrderId in callback; showing pending")
        return "PENDING", None

    order = await order_service.get_order(db, order_number=merchant_order_id)
    if not order:
        logger.warning(f"[redirect] Callback for unknown order: {merchant_order_id}")
        return "PENDING", merchant_order_id

    try:
        payload = await phonepe_service.check_order_status(merchant_order_id)
    except UpstreamError as e:
        logger.error(f"[redirect] Status re-query failed for {merchant_order_id}: {e.message}")
        return order.phonepe_payment_state or "PENDING", merchant_order_id

    observation = PaymentObservation.from_gateway(payload, PaymentChannel.REDIRECT)
    order = await apply_payment_update(db, observation) or order
    return order.phonepe_payment_state or "PENDING", merchant_order_id


def _status_view(order: Order, *, amount: int | None = None) -> dict:
    state = order.phonepe_payment_state
    if not state or (_is_terminal(order) and map_gateway_state(state) is PaymentStatus.PENDING):
        state = {"paid": "COMPLETED", "failed": "FAILED"}.get(order.payment_status, "PENDING")
    return {
        "state": state,
        "paymentStatus": order.payment_status,
        "gatewayOrderId": order.phonepe_order_id,
        "amount": amount if amount is not None else round(order.total * 100),
        "paymentDetails": order.phonepe_payment_details or {},
    }


async def poll_status(db: AsyncSession, *, merchant_order_id: str, identity: RequestIdentity) -> dict:
    """
    Customer status pull.

    Terminal orders answer from cache with no upstream call. Otherwise PhonePe
    is queried and applied; if it is unreachable the cached state is returned
    and the customer simply polls again.
    """
    order = await order_service.require_order(db, order_number=merchant_order_id)
    if order.customer_id != identity.subject:
        logger.warning(f"[poll] {identity.subject} tried to read payment of {merchant_order_id}")
        raise PermissionDeniedError("Unauthorized access to order")

    if _is_terminal(order):
        return _status_view(order)

    try:
        payload = await phonepe_service.check_order_status(merchant_order_id)
    except UpstreamError as e:
        logger.warning(f"[poll] PhonePe unavailable for {merchant_order_id}, serving cached state: {e.message}")
        return _status_view(order)

    observation = PaymentObservation.from_gateway(payload, PaymentChannel.POLL)
    order = await apply_payment_update(db, observation) or order
    return _status_view(order, amount=payload.get("amount"))


# ════════════════════════════════════════════════════════════════════
# Initiation
# ════════════════════════════════════════════════════════════════════


async def initiate_payment(db: AsyncSession, *, order_id: int, identity: RequestIdentity) -> dict:
    """Open a PhonePe checkout for a customer's unpaid prepaid order."""
    order = await order_service.require_order(db, order_id=order_id)
    if order.customer_id != identity.subject:
        raise PermissionDeniedError("Unauthorized access to order")
    if order.payment_method == COD_PAYMENT_METHOD:
        raise ValidationError("Cash-on-delivery orders are not paid online", field="paymentMethod")
    if order.payment_status != PaymentStatus.PENDING.value:
        raise ConflictError(f"Payment already {order.payment_status}")

    checkout = await phonepe_service.initiate_payment(
        merchant_order_id=order.order_number,
        amount_paisa=round(order.total * 100),
        redirect_url=settings.payment_redirect_url,
        callback_url=settings.payment_webhook_url,
        udf={"udf1": str(order.id), "udf2": order.customer_id},
    )

    values = {
        "phonepe_merchant_order_id": order.order_number,
        "phonepe_payment_state": checkout["state"],
    }
    if checkout.get("orderId"):
        values["phonepe_order_id"] = checkout["orderId"]
    await order_service.apply_conditional(db, order.id, [order_service.PAYMENT_PENDING], values)

    return {
        "redirectUrl": checkout["redirectUrl"],
        "orderId": checkout.get("orderId"),
        "merchantOrderId": order.order_number,
    }
