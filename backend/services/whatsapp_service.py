"""
WhatsApp notification sender (order confirmations).

Callers run this through async_executor so a failed message never affects
the order operation that triggered it; here failures simply raise.
"""
import logging
import re
from typing import Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

# Tests swap this for an httpx.MockTransport
_transport: Optional[httpx.AsyncBaseTransport] = None


class NotificationError(Exception):
    """Raised when a message cannot be built or delivered."""
    pass


def format_phone_number(phone: str) -> str:
    """Normalise to 91XXXXXXXXXX."""
    cleaned = re.sub(r"\D", "", phone or "")

    if cleaned.startswith("91") and len(cleaned) == 12:
        return cleaned
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    if len(cleaned) == 10:
        return "91" + cleaned

    raise NotificationError(
        f"Invalid phone number: expected 10 digits or 12 with country code, got {len(cleaned)} digits"
    )


def confirmation_text(order_number: str, customer_name: str) -> str:
    return (
        f"Hi {customer_name},\n\n"
        f"Your order #{order_number} has been confirmed and is being processed. "
        f"You'll receive a tracking update soon.\n\n"
        f"Thank you for shopping with {settings.store_name}!"
    )


async def send_order_confirmation(phone_number: str, order_number: str, customer_name: str) -> bool:
    """
    Send the order confirmation text.

    Returns False (without sending) when the channel is not configured.
    """
    if not settings.whatsapp_api_key or not settings.whatsapp_phone_number_id:
        logger.warning("WhatsApp credentials not configured; order confirmation skipped")
        return False

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": format_phone_number(phone_number),
        "type": "text",
        "text": {"preview_url": False, "body": confirmation_text(order_number, customer_name)},
    }

    url = f"{settings.whatsapp_base_url}/send/{settings.whatsapp_phone_number_id}"
    async with httpx.AsyncClient(timeout=settings.best_effort_timeout_seconds, transport=_transport) as client:
        response = await client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.whatsapp_api_key}"},
        )
        if response.status_code >= 400:
            raise NotificationError(f"WhatsApp API error {response.status_code}: {response.text[:200]}")

    logger.info(f"  📱 Order confirmation sent for {order_number}")
    return True
