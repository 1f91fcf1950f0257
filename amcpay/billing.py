"""
Order creation and payment capture for AMC subscriptions.

The capture path is shared by the client-side verification callback and the
Razorpay webhook. Its writes are strictly ordered: the payment intent is
marked captured (conditionally, so only one concurrent caller wins) before
the order is activated, and only then are the invoice, audit row and
document generation attempted. Failures in those last three never fail the
request.
"""
import json
import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from amcpay import pricing
from amcpay.audit import log_audit
from amcpay.config import Settings
from amcpay.documents import trigger_document_generation
from amcpay.errors import (
    AmountValidationError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
    VerificationError,
)
from amcpay.invoices import issue_invoice, latest_invoice_number
from amcpay.lifecycle import (
    InvalidTransition,
    OrderPaymentStatus,
    OrderStatus,
    PaymentState,
    advance,
    can_transition,
    subscription_state,
)
from amcpay.models import Order, PaymentIntent, utcnow
from amcpay.razorpay_service import create_order as create_gateway_order
from amcpay.signatures import verify_payment_signature, verify_webhook_signature

logger = logging.getLogger(__name__)

SUBSCRIPTION_DAYS = 365


def subscription_window(today=None):
    start = today or utcnow().date()
    return start, start + timedelta(days=SUBSCRIPTION_DAYS)


def _present(*values) -> bool:
    return all(isinstance(v, str) and v.strip() for v in values)


def _isoformat(value):
    return value.isoformat() if value else None


# --- order creation ---------------------------------------------------------

def create_order(
    db: Session,
    settings: Settings,
    order_form_id,
    system_count,
    customer_name,
    customer_email,
    customer_phone,
) -> dict:
    settings.require("razorpay_key_id", "razorpay_key_secret")

    if system_count is None or not _present(order_form_id, customer_name, customer_email, customer_phone):
        raise ValidationError("Missing required fields")

    amount = pricing.compute_amount(system_count)

    paid = db.query(PaymentIntent).filter_by(order_form_id=order_form_id, status=PaymentState.CAPTURED.value).first()
    if paid is not None:
        raise ConflictError("Order is already paid")

    logger.info(
        "Creating Razorpay order for AMC %s: %d systems, amount %d %s",
        order_form_id, system_count, amount, pricing.CURRENCY,
    )

    customer = {
        "customer_name": customer_name,
        "customer_email": customer_email,
        "customer_phone": customer_phone,
    }
    notes = {
        "amc_form_id": order_form_id,
        "system_count": str(system_count),
        "price_per_system": str(pricing.UNIT_PRICE),
        **customer,
    }
    gateway_order = create_gateway_order(
        settings,
        amount_minor=pricing.to_minor_units(amount),
        currency=pricing.CURRENCY,
        receipt=order_form_id,
        notes=notes,
    )

    _upsert_intent(db, order_form_id, gateway_order["id"], amount, system_count, customer)

    return {
        "success": True,
        "orderId": gateway_order["id"],
        "amount": amount,
        "amountInPaise": pricing.to_minor_units(amount),
        "currency": pricing.CURRENCY,
        "systemCount": system_count,
        "pricePerSystem": pricing.UNIT_PRICE,
        "keyId": settings.razorpay_key_id,
        "prefill": {
            "name": customer_name,
            "email": customer_email,
            "contact": customer_phone,
        },
    }


def _upsert_intent(db, order_form_id, gateway_order_id, amount, system_count, customer):
    """
    One live intent per order; a retried create replaces the previous one.

    The replace is conditional on the intent not being captured, so a capture
    that commits while the gateway call is in flight is never overwritten.
    """
    values = {
        "gateway_order_id": gateway_order_id,
        "gateway_payment_id": None,
        "amount": amount,
        "currency": pricing.CURRENCY,
        "system_count": system_count,
        "status": PaymentState.CREATED.value,
        "customer": customer,
        "created_at": utcnow(),
        "verified_at": None,
    }
    try:
        rows = (
            db.query(PaymentIntent)
            .filter(
                PaymentIntent.order_form_id == order_form_id,
                PaymentIntent.status != PaymentState.CAPTURED.value,
            )
            .update(values, synchronize_session=False)
        )
        if rows == 0:
            if db.query(PaymentIntent).filter_by(order_form_id=order_form_id).first() is not None:
                db.rollback()
                logger.warning("AMC %s was paid while order %s was being created", order_form_id, gateway_order_id)
                raise ConflictError("Order is already paid")
            db.add(PaymentIntent(order_form_id=order_form_id, **values))
        db.commit()
        logger.info("Payment record stored for order %s", gateway_order_id)
    except SQLAlchemyError as e:
        # The gateway order exists, checkout can still go ahead
        db.rollback()
        logger.error("Failed to store payment record for %s: %s", gateway_order_id, e)


# --- verification & activation ---------------------------------------------

def find_intent_by_payment(db: Session, gateway_payment_id):
    return db.query(PaymentIntent).filter_by(gateway_payment_id=gateway_payment_id).first()


def find_intent_by_order(db: Session, gateway_order_id):
    return db.query(PaymentIntent).filter_by(gateway_order_id=gateway_order_id).first()


def verify_payment(
    db: Session,
    settings: Settings,
    gateway_order_id,
    gateway_payment_id,
    signature,
    order_form_id,
    enqueue=None,
) -> dict:
    settings.require("razorpay_key_secret")

    if not _present(gateway_order_id, gateway_payment_id, signature, order_form_id):
        raise ValidationError("Missing required payment verification fields")

    logger.info("Verifying payment for AMC %s, order %s", order_form_id, gateway_order_id)

    existing = find_intent_by_payment(db, gateway_payment_id)
    if existing is not None and existing.status == PaymentState.CAPTURED.value:
        logger.info("Payment %s already processed", gateway_payment_id)
        return processed_payload(db, existing)

    if not verify_payment_signature(gateway_order_id, gateway_payment_id, signature, settings.razorpay_key_secret):
        logger.warning("Payment signature verification failed for order %s", gateway_order_id)
        raise VerificationError()

    intent = find_intent_by_order(db, gateway_order_id)
    if intent is None:
        logger.error("Payment record not found for order %s", gateway_order_id)
        raise NotFoundError("Payment record not found")
    if intent.order_form_id != order_form_id:
        logger.warning(
            "Order %s belongs to AMC %s, not %s", gateway_order_id, intent.order_form_id, order_form_id
        )
        raise ValidationError("Payment does not belong to this order")

    return capture_and_activate(db, settings, intent, gateway_payment_id, actor="client", enqueue=enqueue)


def capture_and_activate(
    db: Session,
    settings: Settings,
    intent: PaymentIntent,
    gateway_payment_id: str,
    actor: str,
    enqueue=None,
    audit_details=None,
) -> dict:
    try:
        pricing.validate_amount(intent.amount, intent.system_count)
    except AmountValidationError:
        logger.error("Amount validation failed for order %s: amount=%s systems=%s",
                     intent.gateway_order_id, intent.amount, intent.system_count)
        raise

    order_form_id = intent.order_form_id
    gateway_order_id = intent.gateway_order_id
    amount = intent.amount
    system_count = intent.system_count
    start, end = subscription_window()
    now = utcnow()

    try:
        advance(intent.status, PaymentState.CAPTURED)
    except InvalidTransition:
        return _lost_capture_race(db, gateway_order_id, gateway_payment_id)

    # Conditional update: concurrent callers race here and exactly one wins.
    try:
        rows = (
            db.query(PaymentIntent)
            .filter(
                PaymentIntent.id == intent.id,
                PaymentIntent.status != PaymentState.CAPTURED.value,
            )
            .update(
                {
                    "gateway_payment_id": gateway_payment_id,
                    "status": PaymentState.CAPTURED.value,
                    "verified_at": now,
                },
                synchronize_session=False,
            )
        )
        if rows == 0:
            db.rollback()
            return _lost_capture_race(db, gateway_order_id, gateway_payment_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        return _lost_capture_race(db, gateway_order_id, gateway_payment_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to update payment record for order %s: %s", gateway_order_id, e)
        raise ServiceError("Failed to record payment") from e

    advance(PaymentState.CAPTURED, PaymentState.ACTIVATED)
    try:
        rows = (
            db.query(Order)
            .filter(Order.order_form_id == order_form_id)
            .update(
                {
                    "payment_status": OrderPaymentStatus.PAID.value,
                    "payment_id": gateway_payment_id,
                    "gateway_order_id": gateway_order_id,
                    "amount": amount,
                    "status": OrderStatus.ACTIVE.value,
                    "subscription_start_date": start,
                    "subscription_end_date": end,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if rows == 0:
            db.rollback()
        else:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Payment %s captured but AMC %s not activated: %s", gateway_payment_id, order_form_id, e)
        raise ServiceError("Failed to activate subscription") from e
    if rows == 0:
        logger.error("Payment %s captured but AMC %s does not exist", gateway_payment_id, order_form_id)
        raise ServiceError("Failed to activate subscription")

    invoice_number = issue_invoice(db, order_form_id, amount, start, end, now)
    if invoice_number is None:
        logger.warning("No invoice issued for AMC %s; needs backfill", order_form_id)

    details = {
        "invoice_number": invoice_number,
        "subscription_start": start.isoformat(),
        "subscription_end": end.isoformat(),
    }
    details.update(audit_details or {})
    log_audit(db, order_form_id, gateway_payment_id, gateway_order_id, amount, "payment_captured", actor, details)

    if enqueue is not None:
        enqueue(trigger_document_generation, settings, order_form_id, invoice_number)

    logger.info("Payment verified: AMC %s active until %s", order_form_id, end.isoformat())

    return {
        "success": True,
        "verified": True,
        "amcFormId": order_form_id,
        "paymentId": gateway_payment_id,
        "orderId": gateway_order_id,
        "amount": amount,
        "systemCount": system_count,
        "subscriptionStart": start.isoformat(),
        "subscriptionEnd": end.isoformat(),
        "invoiceNumber": invoice_number,
    }


def _lost_capture_race(db: Session, gateway_order_id, gateway_payment_id) -> dict:
    db.expire_all()
    intent = find_intent_by_order(db, gateway_order_id)
    if (
        intent is not None
        and intent.status == PaymentState.CAPTURED.value
        and intent.gateway_payment_id == gateway_payment_id
    ):
        logger.info("Payment %s captured by a concurrent request", gateway_payment_id)
        return processed_payload(db, intent)
    logger.warning("Order %s already captured by another payment; rejecting %s", gateway_order_id, gateway_payment_id)
    raise ConflictError("Payment already captured for this order")


def processed_payload(db: Session, intent: PaymentIntent) -> dict:
    """Success payload for a payment that was captured earlier."""
    order = db.get(Order, intent.order_form_id)
    return {
        "success": True,
        "verified": True,
        "alreadyProcessed": True,
        "amcFormId": intent.order_form_id,
        "paymentId": intent.gateway_payment_id,
        "orderId": intent.gateway_order_id,
        "amount": intent.amount,
        "systemCount": intent.system_count,
        "subscriptionStart": _isoformat(order.subscription_start_date) if order else None,
        "subscriptionEnd": _isoformat(order.subscription_end_date) if order else None,
        "invoiceNumber": latest_invoice_number(db, intent.order_form_id),
    }


# --- webhook ----------------------------------------------------------------

def handle_webhook(db: Session, settings: Settings, body: bytes, signature, enqueue=None) -> dict:
    settings.require("razorpay_webhook_secret", message="Webhook not configured")

    if not signature:
        logger.warning("Webhook without signature")
        raise AuthenticationError("Missing signature")
    if not verify_webhook_signature(body, signature, settings.razorpay_webhook_secret):
        logger.warning("Invalid webhook signature")
        raise AuthenticationError("Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid payload")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    event = payload.get("event")
    entities = payload.get("payload") or {}
    logger.info("Processing webhook event: %s", event)

    if event == "payment.captured":
        payment = (entities.get("payment") or {}).get("entity")
        if payment:
            status = _webhook_captured(db, settings, payment, event, enqueue)
            if status:
                return {"status": status, "event": event}
        else:
            logger.error("No payment entity in %s payload", event)
    elif event == "payment.failed":
        payment = (entities.get("payment") or {}).get("entity")
        if payment:
            _webhook_failed(db, payment, event)
    elif event == "order.paid":
        order = (entities.get("order") or {}).get("entity") or {}
        logger.info("Order paid confirmation: %s", order.get("id"))
    else:
        logger.info("Unhandled event type: %s", event)

    return {"status": "received", "event": event}


def _webhook_captured(db, settings, payment, event, enqueue):
    gateway_order_id = payment.get("order_id")
    gateway_payment_id = payment.get("id")

    existing = find_intent_by_payment(db, gateway_payment_id)
    if existing is not None and existing.status == PaymentState.CAPTURED.value:
        logger.info("Payment %s already processed", gateway_payment_id)
        return "already_processed"

    intent = find_intent_by_order(db, gateway_order_id)
    if intent is None:
        # Acknowledge anyway, retries would not help
        logger.error("Payment record not found for order %s", gateway_order_id)
        return "order_not_found"

    received = pricing.from_minor_units(payment.get("amount") or 0)
    if received != intent.amount:
        logger.error("Amount mismatch on %s: expected %s, got %s", gateway_payment_id, intent.amount, received)
        log_audit(
            db, intent.order_form_id, gateway_payment_id, gateway_order_id, intent.amount,
            "amount_mismatch", "webhook", {"expected": intent.amount, "received": received},
        )

    try:
        result = capture_and_activate(
            db, settings, intent, gateway_payment_id, actor="webhook",
            enqueue=enqueue, audit_details={"webhook_event": event},
        )
    except ConflictError:
        return "ignored"
    except AmountValidationError:
        # The stored intent is corrupt; redelivery would fail the same way
        log_audit(
            db, intent.order_form_id, gateway_payment_id, gateway_order_id, intent.amount,
            "amount_mismatch", "webhook",
            {"expected": intent.system_count * pricing.UNIT_PRICE, "stored": intent.amount,
             "webhook_event": event},
        )
        return "ignored"
    if result.get("alreadyProcessed"):
        return "already_processed"
    return None


def _webhook_failed(db, payment, event):
    gateway_order_id = payment.get("order_id")
    intent = find_intent_by_order(db, gateway_order_id)
    if intent is None:
        logger.warning("Failed payment %s for unknown order %s", payment.get("id"), gateway_order_id)
        return

    logger.info("Payment failed: %s for order %s", payment.get("id"), gateway_order_id)
    if not can_transition(intent.status, PaymentState.FAILED):
        logger.info("Ignoring failure for %s intent on order %s", intent.status, gateway_order_id)
        return
    # Never downgrade a captured intent, even one captured since the read above
    rows = (
        db.query(PaymentIntent)
        .filter(
            PaymentIntent.id == intent.id,
            PaymentIntent.status == PaymentState.CREATED.value,
        )
        .update({"status": PaymentState.FAILED.value, "verified_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    if rows:
        log_audit(
            db, intent.order_form_id, payment.get("id"), gateway_order_id,
            pricing.from_minor_units(payment.get("amount") or 0),
            "payment_failed", "webhook", {"webhook_event": event},
        )


# --- status -----------------------------------------------------------------

def get_payment_status(db: Session, gateway_payment_id) -> dict:
    intent = find_intent_by_payment(db, gateway_payment_id)
    if intent is None:
        raise NotFoundError("Payment not found")
    order = db.get(Order, intent.order_form_id)
    state = subscription_state(intent.status, order.status if order else None)
    return {
        "paymentId": intent.gateway_payment_id,
        "orderId": intent.gateway_order_id,
        "amcFormId": intent.order_form_id,
        "status": intent.status,
        "state": state.value,
        "amount": intent.amount,
        "currency": intent.currency,
        "systemCount": intent.system_count,
        "verifiedAt": _isoformat(intent.verified_at),
    }
