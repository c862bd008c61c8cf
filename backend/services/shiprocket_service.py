"""
Shiprocket carrier client.

Calls used by dispatch, in order:
    create_order      → {carrierOrderId, shipmentId}      (must succeed)
    assign_awb        → {awbCode, courierId, courierName} (best effort)
    generate_label    → label URL                         (best effort)
    schedule_pickup   → ack                               (best effort)

Auth is an email/password login returning a bearer token, cached in-process
and refreshed once on a 401.
"""
import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from config import settings
from db_models import Order
from domain.constants import DEFAULT_BILLING_COUNTRY, DEFAULT_HSN_CODE, FALLBACK_CUSTOMER_EMAIL
from domain.errors import UpstreamError

logger = logging.getLogger(__name__)

SERVICE = "shiprocket"
TRACKING_URL_TEMPLATE = "https://shiprocket.co/tracking/{awb}"

# Tests swap this for an httpx.MockTransport
_transport: Optional[httpx.AsyncBaseTransport] = None

_token_cache: dict = {"token": None, "expires_at": 0.0}


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.shiprocket_base_url,
        timeout=settings.carrier_timeout_seconds,
        transport=_transport,
    )


def reset_token_cache() -> None:
    _token_cache["token"] = None
    _token_cache["expires_at"] = 0.0


async def _get_token(client: httpx.AsyncClient) -> str:
    if _token_cache["token"] and _token_cache["expires_at"] > time.time():
        return _token_cache["token"]

    if not settings.shiprocket_email or not settings.shiprocket_password:
        raise UpstreamError("Carrier credentials not configured", service=SERVICE)

    response = await client.post(
        "/auth/login",
        json={"email": settings.shiprocket_email, "password": settings.shiprocket_password},
    )
    response.raise_for_status()
    _token_cache["token"] = response.json()["token"]
    _token_cache["expires_at"] = time.time() + settings.shiprocket_token_ttl_hours * 3600
    return _token_cache["token"]


async def _request(method: str, path: str, json_body: dict) -> dict:
    try:
        async with _http_client() as client:
            token = await _get_token(client)
            response = await client.request(
                method, path, json=json_body, headers={"Authorization": f"Bearer {token}"}
            )
            if response.status_code == 401:
                # Token revoked or expired early
                reset_token_cache()
                token = await _get_token(client)
                response = await client.request(
                    method, path, json=json_body, headers={"Authorization": f"Bearer {token}"}
                )
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException as e:
        logger.error(f"Shiprocket {method} {path} timed out: {e}")
        raise UpstreamError("Carrier timed out", service=SERVICE)
    except httpx.HTTPStatusError as e:
        logger.error(f"Shiprocket {method} {path} returned {e.response.status_code}: {e.response.text[:200]}")
        raise UpstreamError(
            "Carrier rejected the request",
            service=SERVICE,
            details={"status": e.response.status_code},
        )
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.error(f"Shiprocket {method} {path} failed: {e}")
        raise UpstreamError("Carrier unavailable", service=SERVICE)


# ════════════════════════════════════════════════════════════════════
# Request building
# ════════════════════════════════════════════════════════════════════


def package_weight_kg(items: list[dict]) -> float:
    return round(sum(int(i.get("quantity", 1)) * settings.package_weight_per_unit_kg for i in items), 3)


def build_order_payload(order: Order, *, now: datetime | None = None) -> dict:
    """Shiprocket adhoc-order body for one of our orders."""
    now = now or datetime.now()
    address = order.shipping_address or {}
    items = order.items or []

    name_parts = (address.get("fullName") or "").split()
    first_name = name_parts[0] if name_parts else "Customer"
    last_name = " ".join(name_parts[1:])

    street = ", ".join(p for p in (address.get("address"), address.get("locality")) if p)

    return {
        "order_id": order.order_number,
        "order_date": now.strftime("%Y-%m-%d %H:%M"),
        "pickup_location": settings.shiprocket_pickup_location,
        "billing_customer_name": first_name,
        "billing_last_name": last_name,
        "billing_address": street,
        "billing_city": address.get("city", ""),
        "billing_pincode": address.get("pincode", ""),
        "billing_state": address.get("state", ""),
        "billing_country": DEFAULT_BILLING_COUNTRY,
        "billing_email": order.customer_email or FALLBACK_CUSTOMER_EMAIL,
        "billing_phone": address.get("phone", ""),
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.get("name"),
                "sku": f"SKU-{item.get('productId') or index}",
                "units": int(item.get("quantity", 1)),
                "selling_price": item.get("price"),
                "discount": 0,
                "tax": 0,
                "hsn": DEFAULT_HSN_CODE,
            }
            for index, item in enumerate(items)
        ],
        "payment_method": "COD" if order.payment_method == "cod" else "Prepaid",
        "sub_total": order.subtotal,
        "length": settings.package_length_cm,
        "breadth": settings.package_breadth_cm,
        "height": settings.package_height_cm,
        "weight": package_weight_kg(items),
    }


# ════════════════════════════════════════════════════════════════════
# Carrier calls
# ════════════════════════════════════════════════════════════════════


async def create_order(payload: dict) -> dict:
    data = await _request("POST", "/orders/create/adhoc", payload)
    if not data.get("order_id"):
        raise UpstreamError("Carrier did not return an order id", service=SERVICE)
    return {
        "carrierOrderId": int(data["order_id"]),
        "shipmentId": int(data["shipment_id"]) if data.get("shipment_id") else None,
        "status": data.get("status"),
    }


async def assign_awb(shipment_id: int) -> dict:
    data = await _request("POST", "/courier/assign/awb", {"shipment_id": shipment_id})
    awb = ((data.get("response") or {}).get("data") or {})
    if not awb.get("awb_code"):
        raise UpstreamError("Carrier did not assign an AWB", service=SERVICE)
    return {
        "awbCode": awb["awb_code"],
        "courierId": awb.get("courier_company_id"),
        "courierName": awb.get("courier_name"),
    }


async def generate_label(shipment_id: int) -> str | None:
    data = await _request("POST", "/courier/generate/label", {"shipment_id": [shipment_id]})
    return data.get("label_url")


async def schedule_pickup(shipment_id: int) -> dict:
    return await _request("POST", "/courier/generate/pickup", {"shipment_id": [shipment_id]})


def tracking_url(awb_code: str) -> str:
    return TRACKING_URL_TEMPLATE.format(awb=awb_code)
