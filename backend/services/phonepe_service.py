"""
PhonePe payment gateway client.

Handles:
    1. OAuth client-credential token (cached until shortly before expiry)
    2. Payment initiation (checkout URL for the customer)
    3. Authoritative order status query by merchant order id
    4. Webhook authenticity check + payload normalisation

The merchant order id sent to PhonePe is always our order number.

Security:
    - verify_webhook() FAILS CLOSED when webhook credentials are missing
    - Digest comparison is constant-time
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx

from config import settings
from domain.errors import SignatureError, UpstreamError

logger = logging.getLogger(__name__)

SERVICE = "phonepe"

# Tests swap this for an httpx.MockTransport
_transport: Optional[httpx.AsyncBaseTransport] = None

_token_cache: dict = {"token": None, "expires_at": 0.0}


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.phonepe_base_url,
        timeout=settings.gateway_timeout_seconds,
        transport=_transport,
    )


def reset_token_cache() -> None:
    _token_cache["token"] = None
    _token_cache["expires_at"] = 0.0


# ════════════════════════════════════════════════════════════════════
# Auth
# ════════════════════════════════════════════════════════════════════


async def _get_access_token(client: httpx.AsyncClient) -> str:
    """Fetch (or reuse) an O-Bearer token for merchant API calls."""
    if _token_cache["token"] and _token_cache["expires_at"] - 60 > time.time():
        return _token_cache["token"]

    if not settings.phonepe_client_id or not settings.phonepe_client_secret:
        raise UpstreamError("Payment gateway credentials not configured", service=SERVICE)

    response = await client.post(
        "/v1/oauth/token",
        data={
            "client_id": settings.phonepe_client_id,
            "client_version": settings.phonepe_client_version,
            "client_secret": settings.phonepe_client_secret,
            "grant_type": "client_credentials",
        },
    )
    response.raise_for_status()
    body = response.json()

    _token_cache["token"] = body["access_token"]
    _token_cache["expires_at"] = float(body.get("expires_at") or time.time() + 3600)
    return _token_cache["token"]


async def _request(method: str, path: str, *, json_body: dict | None = None) -> dict:
    """Authenticated call; every transport or HTTP failure becomes UpstreamError."""
    try:
        async with _http_client() as client:
            token = await _get_access_token(client)
            response = await client.request(
                method,
                path,
                json=json_body,
                headers={"Authorization": f"O-Bearer {token}"},
            )
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException as e:
        logger.error(f"PhonePe {method} {path} timed out: {e}")
        raise UpstreamError("Payment gateway timed out", service=SERVICE)
    except httpx.HTTPStatusError as e:
        logger.error(f"PhonePe {method} {path} returned {e.response.status_code}: {e.response.text[:200]}")
        raise UpstreamError(
            "Payment gateway rejected the request",
            service=SERVICE,
            details={"status": e.response.status_code},
        )
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.error(f"PhonePe {method} {path} failed: {e}")
        raise UpstreamError("Payment gateway unavailable", service=SERVICE)


# ════════════════════════════════════════════════════════════════════
# Payments
# ════════════════════════════════════════════════════════════════════


async def initiate_payment(
    *,
    merchant_order_id: str,
    amount_paisa: int,
    redirect_url: str,
    callback_url: str | None = None,
    udf: dict | None = None,
) -> dict:
    """
    Create a checkout session.

    Returns:
        dict: {orderId, state, redirectUrl}
    """
    body = {
        "merchantOrderId": merchant_order_id,
        "amount": amount_paisa,
        "paymentFlow": {
            "type": "PG_CHECKOUT",
            "merchantUrls": {"redirectUrl": redirect_url},
        },
    }
    if callback_url:
        body["paymentFlow"]["merchantUrls"]["callbackUrl"] = callback_url
    if udf:
        body["metaInfo"] = udf

    data = await _request("POST", "/checkout/v2/pay", json_body=body)
    logger.info(f"  💳 PhonePe checkout created: {merchant_order_id} (₹{amount_paisa / 100:.2f})")
    return {
        "orderId": data.get("orderId"),
        "state": data.get("state", "PENDING"),
        "redirectUrl": data.get("redirectUrl"),
    }


async def check_order_status(merchant_order_id: str) -> dict:
    """
    Authoritative status for a merchant order.

    Returns:
        dict: {merchantOrderId, orderId, state, amount, transactionId, paymentDetails}
    """
    data = await _request("GET", f"/checkout/v2/order/{merchant_order_id}/status")
    if not isinstance(data, dict):
        logger.error(f"PhonePe status for {merchant_order_id} is not an object")
        raise UpstreamError("Payment gateway returned an unreadable status", service=SERVICE)
    return normalize_payload({**data, "merchantOrderId": merchant_order_id})


# ════════════════════════════════════════════════════════════════════
# Webhooks
# ════════════════════════════════════════════════════════════════════


def expected_authorization() -> str:
    """SHA256(username:password) hex digest PhonePe sends in Authorization."""
    raw = f"{settings.phonepe_webhook_username}:{settings.phonepe_webhook_password}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def verify_webhook(authorization: str | None, raw_body: bytes) -> dict:
    """
    Verify a webhook and return its normalised payload.

    Raises:
        SignatureError if credentials are missing, the header does not match,
        or the body cannot be decoded.
    """
    if not settings.phonepe_webhook_username or not settings.phonepe_webhook_password:
        logger.error(
            "security: webhook credentials not configured: rejecting webhook. "
            "Set PHONEPE_WEBHOOK_USERNAME / PHONEPE_WEBHOOK_PASSWORD."
        )
        raise SignatureError()

    if not authorization:
        logger.warning("security: webhook received without Authorization header")
        raise SignatureError()

    presented = authorization.strip()
    if presented.lower().startswith("sha256 "):
        presented = presented[7:].strip()

    if not hmac.compare_digest(presented.lower().encode("utf-8"), expected_authorization().encode("utf-8")):
        logger.warning("security: webhook Authorization digest mismatch")
        raise SignatureError()

    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        logger.warning("security: webhook body is not valid JSON")
        raise SignatureError("Malformed webhook payload")
    if not isinstance(body, dict):
        raise SignatureError("Malformed webhook payload")

    return normalize_payload(unwrap_body(body))


def unwrap_body(body: dict) -> dict:
    """
    Accept the plain JSON form, the {event, payload} envelope, and the
    legacy {response: <base64 JSON>} form.
    """
    if isinstance(body.get("response"), str):
        decoded = decode_base64_json(body["response"])
        if decoded is not None:
            body = decoded
    if isinstance(body.get("payload"), dict):
        body = body["payload"]
    return body


def decode_base64_json(value: str) -> dict | None:
    try:
        decoded = json.loads(base64.b64decode(value, validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _text(value) -> str | None:
    return value if isinstance(value, str) and value else None


def normalize_payload(data: dict) -> dict:
    """Gateway payload reduced to the fields we use; wrongly typed fields read as absent."""
    details = data.get("paymentDetails")
    transaction_id = _text(data.get("transactionId"))
    if not transaction_id and isinstance(details, list) and details and isinstance(details[-1], dict):
        transaction_id = _text(details[-1].get("transactionId"))

    return {
        "merchantOrderId": _text(data.get("merchantOrderId")) or _text(data.get("merchantTransactionId")),
        "orderId": _text(data.get("orderId")),
        "state": (_text(data.get("state")) or "PENDING").upper(),
        "amount": data.get("amount"),
        "transactionId": transaction_id,
        "paymentDetails": details,
    }
