"""
Domain enums for order payment and fulfillment state.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentChannel(str, Enum):
    """Ingress path a payment observation arrived through."""
    WEBHOOK = "webhook"
    REDIRECT = "redirect"
    POLL = "poll"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
