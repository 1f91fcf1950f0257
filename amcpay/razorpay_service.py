import logging

import httpx

from amcpay.config import Settings
from amcpay.errors import GatewayError

logger = logging.getLogger(__name__)

# Razorpay rejects receipts longer than 40 characters
RECEIPT_MAX_LENGTH = 40


def create_order(settings: Settings, amount_minor: int, currency: str, receipt: str, notes: dict) -> dict:
    """Register an order with Razorpay and return the order entity."""
    payload = {
        "amount": amount_minor,
        "currency": currency,
        "receipt": receipt[:RECEIPT_MAX_LENGTH],
        "notes": notes,
    }
    url = f"{settings.razorpay_api_url}/v1/orders"

    try:
        r = httpx.post(
            url,
            json=payload,
            auth=(settings.razorpay_key_id, settings.razorpay_key_secret),
            timeout=settings.http_timeout,
        )
    except httpx.HTTPError as e:
        logger.error("Razorpay order request failed: %s", e)
        raise GatewayError("Failed to create payment order") from e

    if not r.is_success:
        logger.error("Razorpay order creation failed: %s %s", r.status_code, r.text[:500])
        raise GatewayError("Failed to create payment order")

    order = r.json()
    if not order.get("id"):
        logger.error("Razorpay order response without id: %s", order)
        raise GatewayError("Failed to create payment order")

    logger.info("Razorpay order created: %s", order["id"])
    return order
