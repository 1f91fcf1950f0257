import logging
import secrets
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from amcpay.models import Invoice

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 5


def generate_invoice_number(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"INV-{today:%Y%m%d}-{secrets.randbelow(10000):04d}"


def issue_invoice(
    db: Session,
    order_form_id: str,
    amount: int,
    validity_start: date,
    validity_end: date,
    paid_at: datetime,
) -> Optional[str]:
    """
    Insert a paid invoice and return its number.

    invoice_number is unique; a collision on the random suffix just draws a
    new number. Returns None if the invoice could not be written, the caller
    treats that as non-fatal.
    """
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        number = generate_invoice_number(validity_start)
        db.add(Invoice(
            order_form_id=order_form_id,
            invoice_number=number,
            amount=amount,
            status="paid",
            validity_start=validity_start,
            validity_end=validity_end,
            due_date=validity_start,
            paid_at=paid_at,
        ))
        try:
            db.commit()
            return number
        except IntegrityError:
            db.rollback()
            logger.info("Invoice number %s taken (attempt %d), regenerating", number, attempt)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Invoice creation failed for %s: %s", order_form_id, e)
            return None

    logger.warning("Could not allocate an invoice number for %s", order_form_id)
    return None


def latest_invoice_number(db: Session, order_form_id: str) -> Optional[str]:
    invoice = (
        db.query(Invoice)
        .filter_by(order_form_id=order_form_id)
        .order_by(Invoice.id.desc())
        .first()
    )
    return invoice.invoice_number if invoice else None
