"""
Fulfillment dispatcher: hands an approved order to Shiprocket.

Steps:
    claim  conditional write marking a dispatch in flight
    A      create carrier order                    (must succeed, else UpstreamError)
    B      persist carrier ids, status=processing  (committed before anything else runs)
    C      assign AWB (+ label)                    (best effort)
    D      schedule pickup, only if C succeeded    (best effort)
    E      customer confirmation                   (background, best effort)

The caller sees success once A and B are committed. An order with a shipment
id and no AWB is a legitimate state the operator can act on.
"""
import logging
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Order, utcnow
from domain.enums import OrderStatus
from domain.errors import UpstreamError
from domain.identity import RequestIdentity
from services import async_executor, order_service, shiprocket_service, whatsapp_service

logger = logging.getLogger(__name__)


async def _release_claim(db: AsyncSession, order_id: int) -> None:
    await order_service.apply_conditional(
        db,
        order_id,
        [order_service.NOT_DISPATCHED],
        {"dispatch_claimed_at": None},
        touch=False,
    )
    await db.commit()


async def dispatch(db: AsyncSession, *, order_id: int, operator: RequestIdentity) -> Order:
    """
    Send an approved order to the carrier.

    Raises:
        ConflictError if the order is not approved, already sent, or another
        dispatch for it is in flight
        UpstreamError if carrier order creation fails (order left as it was)
    """
    claimed_at = utcnow()
    stale_before = claimed_at - timedelta(seconds=settings.dispatch_claim_ttl_seconds)

    order = await order_service.apply_conditional(
        db,
        order_id,
        [
            order_service.IS_APPROVED,
            order_service.NOT_DISPATCHED,
            order_service.dispatch_unclaimed(stale_before),
        ],
        {"dispatch_claimed_at": claimed_at},
        touch=False,
    )
    await db.commit()

    order_number = order.order_number
    logger.info(f"  📦 Dispatching {order_number} to Shiprocket (operator={operator.subject})")

    # ── Step A ──────────────────────────────────────────────────────
    payload = shiprocket_service.build_order_payload(order)
    try:
        created = await shiprocket_service.create_order(payload)
    except Exception as e:
        await _release_claim(db, order_id)
        if isinstance(e, UpstreamError):
            raise
        logger.error(f"  ❌ Carrier order creation failed for {order_number}: {e}")
        raise UpstreamError("Carrier order creation failed", service=shiprocket_service.SERVICE) from e

    carrier_order_id = created["carrierOrderId"]
    shipment_id = created["shipmentId"]

    # ── Step B ──────────────────────────────────────────────────────
    try:
        order = await order_service.apply_conditional(
            db,
            order_id,
            [order_service.NOT_DISPATCHED],
            {
                "shiprocket_order_id": carrier_order_id,
                "shiprocket_shipment_id": shipment_id,
                "order_status": OrderStatus.PROCESSING.value,
                "dispatch_claimed_at": None,
            },
        )
        await db.commit()
    except Exception:
        logger.critical(
            f"  ‼️ {order_number} created at carrier (order={carrier_order_id}, "
            f"shipment={shipment_id}) but could not be recorded; reconcile by hand"
        )
        raise

    logger.info(f"  🚚 {order_number} → carrier order {carrier_order_id}, shipment {shipment_id}")

    # ── Steps C / D ─────────────────────────────────────────────────
    if shipment_id:
        order = await _enrich_shipment(db, order, shipment_id)
    else:
        logger.warning(f"  Carrier returned no shipment id for {order_number}; AWB and pickup skipped")

    # ── Step E ──────────────────────────────────────────────────────
    _notify_customer(order)

    return order


async def _record(db: AsyncSession, order: Order, values: dict, what: str) -> Order:
    """Best-effort write after Step B; a storage failure is logged and the order re-read."""
    order_id = order.id
    order_number = order.order_number
    try:
        order = await order_service.apply_conditional(db, order_id, [], values)
        await db.commit()
        return order
    except SQLAlchemyError as e:
        logger.error(f"  ❌ Could not record {what} for {order_number}: {e}")
        await db.rollback()
        return await order_service.get_order(db, order_id=order_id) or order


async def _enrich_shipment(db: AsyncSession, order: Order, shipment_id: int) -> Order:
    order_number = order.order_number

    awb = await async_executor.run_best_effort(
        f"AWB assignment for {order_number}",
        lambda: shiprocket_service.assign_awb(shipment_id),
    )
    if not awb:
        return order

    order = await _record(
        db,
        order,
        {
            "shiprocket_awb_code": awb["awbCode"],
            "shiprocket_courier_id": awb.get("courierId"),
            "shiprocket_courier_name": awb.get("courierName"),
            "shiprocket_tracking_url": shiprocket_service.tracking_url(awb["awbCode"]),
        },
        f"AWB {awb['awbCode']}",
    )
    logger.info(f"  🏷️  {order_number} AWB {awb['awbCode']} via {awb.get('courierName')}")

    label_url = await async_executor.run_best_effort(
        f"Label generation for {order_number}",
        lambda: shiprocket_service.generate_label(shipment_id),
    )
    if label_url:
        order = await _record(db, order, {"shiprocket_label_url": label_url}, "label URL")

    pickup = await async_executor.run_best_effort(
        f"Pickup scheduling for {order_number}",
        lambda: shiprocket_service.schedule_pickup(shipment_id),
    )
    if pickup is not None:
        logger.info(f"  Pickup scheduled for {order_number}")

    return order


def _notify_customer(order: Order) -> None:
    address = order.shipping_address or {}
    phone = address.get("phone")
    if not phone:
        logger.warning(f"  No contact number on {order.order_number}; confirmation not sent")
        return

    name_parts = (address.get("fullName") or "").split()
    first_name = name_parts[0] if name_parts else "Customer"
    order_number = order.order_number

    async_executor.spawn_best_effort(
        f"Order confirmation for {order_number}",
        lambda: whatsapp_service.send_order_confirmation(phone, order_number, first_name),
    )
