import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amcpay.models import PaymentAuditLog

logger = logging.getLogger(__name__)


def log_audit(db: Session, order_form_id, payment_id, gateway_order_id, amount, action, actor, details=None) -> bool:
    """Append an audit row. Failures are logged, never raised."""
    try:
        db.add(PaymentAuditLog(
            order_form_id=order_form_id,
            payment_id=payment_id,
            gateway_order_id=gateway_order_id,
            amount=amount,
            action=action,
            actor=actor,
            details=json.dumps(details or {}, default=str),
        ))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Audit log failed (non-critical): %s", e)
        return False
