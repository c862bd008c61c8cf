"""
SQLAlchemy ORM models for the order service.

Tables:
    orders: placed orders with their payment, approval and fulfillment state

Line items and the shipping address are snapshots taken at checkout and are
stored as JSON; they never change after creation.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, String, Float, Boolean, DateTime, Text, JSON, Index,
)

from database import Base


def utcnow() -> datetime:
    # Naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Order(Base):
    """
    One customer order.

    Lifecycle:
        1. Checkout creates the row (payment=pending, status=pending)
        2. Webhook / redirect / poll settle payment_status
        3. An operator approves (or rejects → cancelled)
        4. Dispatch hands the order to the carrier (status=processing)
        5. Carrier progress moves it to shipped → delivered
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)  # merchant order id
    customer_id = Column(String(64), nullable=False, index=True)
    customer_email = Column(String(200), nullable=True)

    # Commerce snapshot
    items = Column(JSON, nullable=False)             # [{productId, name, price, quantity, image}]
    shipping_address = Column(JSON, nullable=False)  # {fullName, phone, address, locality, city, state, pincode, landmark}
    subtotal = Column(Float, nullable=False)
    shipping_charges = Column(Float, nullable=False, default=0.0)
    tax = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # Payment
    payment_method = Column(String(20), nullable=False)  # "cod" | "online" | ...
    payment_status = Column(String(10), nullable=False, default="pending")  # pending | paid | failed
    phonepe_merchant_order_id = Column(String(40), nullable=True, index=True)
    phonepe_order_id = Column(String(64), nullable=True)
    phonepe_payment_state = Column(String(30), nullable=True)  # last raw gateway state
    phonepe_payment_details = Column(JSON, nullable=True)
    phonepe_transaction_id = Column(String(64), nullable=True)

    # Approval / rejection (mutually exclusive)
    approved = Column(Boolean, nullable=False, default=False)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(100), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Fulfillment
    order_status = Column(String(20), nullable=False, default="pending")
    dispatch_claimed_at = Column(DateTime, nullable=True)  # set while a carrier call is in flight
    shiprocket_order_id = Column(BigInteger, nullable=True)
    shiprocket_shipment_id = Column(BigInteger, nullable=True)
    shiprocket_awb_code = Column(String(64), nullable=True)
    shiprocket_courier_id = Column(Integer, nullable=True)
    shiprocket_courier_name = Column(String(100), nullable=True)
    shiprocket_label_url = Column(Text, nullable=True)
    shiprocket_tracking_url = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        # Admin listing filters by status and sorts by recency
        Index("ix_orders_status_created", "order_status", "created_at"),
        Index("ix_orders_payment_created", "payment_status", "created_at"),
        # Customer order history
        Index("ix_orders_customer_created", "customer_id", "created_at"),
    )
