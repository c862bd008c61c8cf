"""
Domain constants used across services/routers.
"""
from domain.enums import OrderStatus

# Merchant order ids handed to the gateway and carrier
ORDER_NUMBER_PREFIX = "RM"

COD_PAYMENT_METHOD = "cod"

# Gateway vocabulary → internal payment status
GATEWAY_SUCCESS_STATES = frozenset({"COMPLETED", "PAYMENT_SUCCESS"})
GATEWAY_FAILURE_STATES = frozenset({"FAILED", "PAYMENT_FAILED", "PAYMENT_ERROR"})

# Manual (operator-driven) carrier progress: target → required current status
MANUAL_STATUS_TRANSITIONS = {
    OrderStatus.SHIPPED.value: OrderStatus.PROCESSING.value,
    OrderStatus.DELIVERED.value: OrderStatus.SHIPPED.value,
}

# Carrier line-item defaults
DEFAULT_HSN_CODE = 5208
DEFAULT_BILLING_COUNTRY = "India"
FALLBACK_CUSTOMER_EMAIL = "customer@example.com"
