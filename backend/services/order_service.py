"""
Order record store: creation, lookup, and guarded mutation of orders.

Every state change after creation goes through apply_conditional(), which
issues a single UPDATE ... WHERE id = :id AND <preconditions>. If the row
count is zero the current row is re-read and the first precondition that no
longer holds is reported as a ConflictError. Two writers racing on the same
order therefore resolve at the storage layer: the first commit wins and the
other sees a failed precondition instead of overwriting it.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from db_models import Order, utcnow
from domain.constants import (
    COD_PAYMENT_METHOD,
    MANUAL_STATUS_TRANSITIONS,
    ORDER_NUMBER_PREFIX,
)
from domain.enums import OrderStatus, PaymentStatus
from domain.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════
# Preconditions
# ════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Precondition:
    """
    A guard evaluated twice: as SQL inside the UPDATE, and in Python against
    the re-read row to explain which guard failed.
    """
    reason: str
    clause: ColumnElement
    holds: Callable[[Order], bool]


def _is_cod(order: Order) -> bool:
    return (order.payment_method or "").lower() == COD_PAYMENT_METHOD


NOT_APPROVED = Precondition(
    "Order already approved",
    Order.approved.is_(False),
    lambda o: not o.approved,
)

NOT_REJECTED = Precondition(
    "Order already rejected",
    Order.rejected_at.is_(None),
    lambda o: o.rejected_at is None,
)

NOT_CANCELLED = Precondition(
    "Order is already cancelled",
    Order.order_status != OrderStatus.CANCELLED.value,
    lambda o: o.order_status != OrderStatus.CANCELLED.value,
)

PAYMENT_SETTLED_OR_COD = Precondition(
    "Payment not completed",
    or_(
        Order.payment_method == COD_PAYMENT_METHOD,
        Order.payment_status == PaymentStatus.PAID.value,
    ),
    lambda o: _is_cod(o) or o.payment_status == PaymentStatus.PAID.value,
)

PAYMENT_PENDING = Precondition(
    "Payment already settled",
    Order.payment_status == PaymentStatus.PENDING.value,
    lambda o: o.payment_status == PaymentStatus.PENDING.value,
)

IS_APPROVED = Precondition(
    "Order must be approved first",
    Order.approved.is_(True),
    lambda o: bool(o.approved),
)

NOT_DISPATCHED = Precondition(
    "Order already sent to carrier",
    Order.shiprocket_shipment_id.is_(None) & Order.shiprocket_order_id.is_(None),
    lambda o: o.shiprocket_shipment_id is None and o.shiprocket_order_id is None,
)


def status_is(status: str) -> Precondition:
    return Precondition(
        f"Order status must be '{status}'",
        Order.order_status == status,
        lambda o: o.order_status == status,
    )


def dispatch_unclaimed(stale_before: datetime) -> Precondition:
    """No dispatch in flight, or the previous claim is older than the TTL."""
    return Precondition(
        "Dispatch already in progress",
        or_(Order.dispatch_claimed_at.is_(None), Order.dispatch_claimed_at < stale_before),
        lambda o: o.dispatch_claimed_at is None or o.dispatch_claimed_at < stale_before,
    )


def dispatch_claimed() -> Precondition:
    return Precondition(
        "Dispatch claim was lost",
        Order.dispatch_claimed_at.is_not(None),
        lambda o: o.dispatch_claimed_at is not None,
    )


# ════════════════════════════════════════════════════════════════════
# Reads
# ════════════════════════════════════════════════════════════════════


async def _reload(db: AsyncSession, order_id: int) -> Order | None:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_order(
    db: AsyncSession,
    *,
    order_id: int | None = None,
    order_number: str | None = None,
) -> Order | None:
    """Fetch an order by internal id or by order number (fresh from the DB)."""
    if order_id is not None:
        return await _reload(db, order_id)
    if order_number:
        res = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()
    return None


async def require_order(
    db: AsyncSession,
    *,
    order_id: int | None = None,
    order_number: str | None = None,
) -> Order:
    order = await get_order(db, order_id=order_id, order_number=order_number)
    if not order:
        raise NotFoundError("Order", str(order_id if order_id is not None else order_number))
    return order


# ════════════════════════════════════════════════════════════════════
# Writes
# ════════════════════════════════════════════════════════════════════


async def apply_conditional(
    db: AsyncSession,
    order_id: int,
    preconditions: list[Precondition],
    values: dict[str, Any],
    *,
    touch: bool = True,
) -> Order:
    """
    Atomically apply `values` to the order only if every precondition holds.

    touch=False leaves updated_at alone (bookkeeping columns only).

    Raises:
        NotFoundError if the order does not exist
        ConflictError naming the first violated precondition
    """
    values = dict(values)
    if touch:
        values["updated_at"] = utcnow()

    stmt = (
        update(Order)
        .where(Order.id == order_id, *[p.clause for p in preconditions])
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    current = await _reload(db, order_id)

    if result.rowcount == 1:
        return current

    if current is None:
        raise NotFoundError("Order", str(order_id))

    for p in preconditions:
        if not p.holds(current):
            raise ConflictError(
                p.reason,
                details={"orderNumber": current.order_number, "orderStatus": current.order_status},
            )

    # Row changed between the UPDATE and the re-read
    raise ConflictError(
        "Order was modified concurrently",
        details={"orderNumber": current.order_number},
    )


def generate_order_number() -> str:
    return f"{ORDER_NUMBER_PREFIX}{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


async def create_order(
    db: AsyncSession,
    *,
    customer_id: str,
    items: list[dict],
    shipping_address: dict,
    subtotal: float,
    total: float,
    payment_method: str,
    shipping_charges: float = 0.0,
    tax: float = 0.0,
    discount: float = 0.0,
    customer_email: str | None = None,
    order_number: str | None = None,
) -> Order:
    """Persist a checkout snapshot as a new pending order."""
    if not items:
        raise ValidationError("Order must contain at least one item", field="items")
    if total < 0 or subtotal < 0:
        raise ValidationError("Amounts must not be negative", field="total")
    if not payment_method:
        raise ValidationError("Payment method is required", field="paymentMethod")

    now = utcnow()
    order = Order(
        order_number=order_number or generate_order_number(),
        customer_id=customer_id,
        customer_email=customer_email,
        items=items,
        shipping_address=shipping_address,
        subtotal=subtotal,
        shipping_charges=shipping_charges,
        tax=tax,
        discount=discount,
        total=total,
        payment_method=payment_method.lower(),
        payment_status=PaymentStatus.PENDING.value,
        order_status=OrderStatus.PENDING.value,
        approved=False,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    await db.flush()

    logger.info(
        f"  🧾 Order created: {order.order_number} "
        f"(customer={customer_id}, total={total}, method={order.payment_method})"
    )
    return order


async def advance_status(db: AsyncSession, *, order_id: int, target: str) -> Order:
    """
    Operator-driven carrier progress: processing → shipped → delivered.

    Every other transition is owned by the approval gate, the dispatcher,
    or rejection.
    """
    required = MANUAL_STATUS_TRANSITIONS.get(target)
    if required is None:
        raise ValidationError(
            f"Status can only be set to one of: {', '.join(MANUAL_STATUS_TRANSITIONS)}",
            field="orderStatus",
        )

    order = await apply_conditional(
        db,
        order_id,
        [IS_APPROVED, status_is(required)],
        {"order_status": target},
    )
    logger.info(f"  🚚 Order {order.order_number} → {target}")
    return order


# ════════════════════════════════════════════════════════════════════
# Listings & summaries
# ════════════════════════════════════════════════════════════════════


async def list_customer_orders(
    db: AsyncSession,
    *,
    customer_id: str,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    res = await db.execute(
        select(Order)
        .where(Order.customer_id == customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return res.scalars().all()


async def list_orders(
    db: AsyncSession,
    *,
    order_statuses: list[str] | None = None,
    payment_statuses: list[str] | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """Admin listing with filters; returns (page of orders, total matching)."""
    filters = []
    if order_statuses:
        filters.append(Order.order_status.in_(order_statuses))
    if payment_statuses:
        filters.append(Order.payment_status.in_(payment_statuses))
    if search:
        like = f"%{search}%"
        filters.append(or_(Order.order_number.ilike(like), Order.customer_email.ilike(like)))
    if start_date:
        filters.append(Order.created_at >= start_date)
    if end_date:
        filters.append(Order.created_at <= end_date)

    total = (
        await db.execute(select(func.count(Order.id)).where(*filters))
    ).scalar_one()

    res = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return res.scalars().all(), total


async def customer_summary(db: AsyncSession, *, customer_id: str) -> dict:
    """Order totals for one customer, computed on read."""
    row = (
        await db.execute(
            select(
                func.count(Order.id),
                func.sum(
                    case((Order.payment_status == PaymentStatus.PAID.value, Order.total), else_=0.0)
                ),
                func.max(Order.created_at),
            ).where(Order.customer_id == customer_id)
        )
    ).one()
    order_count, paid_total, last_order_at = row
    return {
        "customerId": customer_id,
        "orderCount": order_count,
        "paidTotal": round(float(paid_total or 0.0), 2),
        "lastOrderAt": last_order_at.isoformat() if last_order_at else None,
    }


# ════════════════════════════════════════════════════════════════════
# Serialization
# ════════════════════════════════════════════════════════════════════


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerId": order.customer_id,
        "items": order.items or [],
        "shippingAddress": order.shipping_address or {},
        "subtotal": order.subtotal,
        "shippingCharges": order.shipping_charges,
        "tax": order.tax,
        "discount": order.discount,
        "total": order.total,
        "paymentMethod": order.payment_method,
        "paymentStatus": order.payment_status,
        "phonePeMerchantOrderId": order.phonepe_merchant_order_id,
        "phonePeOrderId": order.phonepe_order_id,
        "phonePePaymentState": order.phonepe_payment_state,
        "phonePePaymentDetails": order.phonepe_payment_details,
        "phonePeTransactionId": order.phonepe_transaction_id,
        "orderStatus": order.order_status,
        "approved": bool(order.approved),
        "approvedBy": order.approved_by,
        "approvedAt": _iso(order.approved_at),
        "rejectedBy": order.rejected_by,
        "rejectedAt": _iso(order.rejected_at),
        "rejectionReason": order.rejection_reason,
        "shiprocketOrderId": order.shiprocket_order_id,
        "shiprocketShipmentId": order.shiprocket_shipment_id,
        "shiprocketAwbCode": order.shiprocket_awb_code,
        "shiprocketCourierId": order.shiprocket_courier_id,
        "shiprocketCourierName": order.shiprocket_courier_name,
        "shiprocketLabelUrl": order.shiprocket_label_url,
        "shiprocketTrackingUrl": order.shiprocket_tracking_url,
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }
