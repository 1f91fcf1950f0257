"""
Hands a paid order over to the invoice/contract generator, which renders the
documents and emails them to the customer.

Runs as a background task after the response has been sent, so nothing in
here may raise: the payment is already durable by the time it runs.
"""
import logging
from typing import Optional

import httpx

from amcpay.config import Settings

logger = logging.getLogger(__name__)


def trigger_document_generation(settings: Settings, order_form_id: str, invoice_number: Optional[str] = None) -> Optional[int]:
    """POST the order to the document generator. Returns the HTTP status, or None."""
    if not settings.documents_configured:
        logger.warning("Document generation not configured; skipping for %s", order_form_id)
        return None

    try:
        r = httpx.post(
            settings.documents_url,
            json={"amc_form_id": order_form_id, "invoice_number": invoice_number},
            headers={"Authorization": f"Bearer {settings.documents_token}"},
            timeout=settings.http_timeout,
        )
    except httpx.HTTPError as e:
        logger.warning("Document generation trigger failed for %s: %s", order_form_id, e)
        return None

    if r.is_success:
        logger.info("Document generation triggered for %s: %s", order_form_id, r.status_code)
    else:
        logger.warning("Document generation for %s returned %s", order_form_id, r.status_code)
    return r.status_code
