"""
Approval gate: the operator decision between "payment settled" and
"cleared for shipment".

approve() and reject() are mutually exclusive and each happens at most once;
both are a single conditional write, so two operators clicking at the same
time get one success and one ConflictError.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order, utcnow
from domain.enums import OrderStatus
from domain.errors import ValidationError
from domain.identity import RequestIdentity
from services import order_service
from services.order_service import Precondition

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500

# Reject-specific wording for the same guard
_NOT_APPROVED_FOR_REJECT = Precondition(
    "Cannot reject an already approved order",
    order_service.NOT_APPROVED.clause,
    order_service.NOT_APPROVED.holds,
)


async def approve(db: AsyncSession, *, order_id: int, approver: RequestIdentity) -> Order:
    """
    Clear an order for shipment.

    Raises ConflictError: "Order already approved", "Order already rejected",
    or "Payment not completed" (prepaid orders only; COD is exempt).
    """
    order = await order_service.apply_conditional(
        db,
        order_id,
        [
            order_service.NOT_APPROVED,
            order_service.NOT_REJECTED,
            order_service.NOT_CANCELLED,
            order_service.PAYMENT_SETTLED_OR_COD,
        ],
        {
            "approved": True,
            "approved_by": approver.subject,
            "approved_at": utcnow(),
            "order_status": OrderStatus.APPROVED.value,
        },
    )
    logger.info(f"  ✅ Order {order.order_number} approved by {approver.subject} (awaiting dispatch)")
    return order


async def reject(db: AsyncSession, *, order_id: int, approver: RequestIdentity, reason: str) -> Order:
    """Cancel an unapproved order. Terminal."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required", field="reason")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Must be at most {MAX_REASON_LENGTH} characters", field="reason")

    order = await order_service.apply_conditional(
        db,
        order_id,
        [_NOT_APPROVED_FOR_REJECT, order_service.NOT_CANCELLED],
        {
            "order_status": OrderStatus.CANCELLED.value,
            "rejected_by": approver.subject,
            "rejected_at": utcnow(),
            "rejection_reason": reason,
        },
    )
    logger.info(f"  🚫 Order {order.order_number} rejected by {approver.subject}: {reason}")
    return order
