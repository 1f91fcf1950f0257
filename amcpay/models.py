from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Integer, JSON, String, Text

from amcpay.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class PaymentIntent(Base):
    __tablename__ = "amc_payments"

    id = Column(Integer, primary_key=True, index=True)
    order_form_id = Column(String, unique=True, index=True, nullable=False)
    gateway_order_id = Column(String, unique=True, index=True, nullable=False)  # Razorpay order_xxx
    gateway_payment_id = Column(String, unique=True, index=True, nullable=True)  # Razorpay pay_xxx
    amount = Column(Integer, nullable=False)        # major units (rupees)
    currency = Column(String, nullable=False, default="INR")
    system_count = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="created")  # created | captured | failed
    customer = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    verified_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
    """The customer's AMC contract request, owned by the portal."""

    __tablename__ = "amc_orders"

    order_form_id = Column(String, primary_key=True)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    payment_status = Column(String, nullable=False, default="Pending")  # Pending | Paid
    payment_id = Column(String, nullable=True)
    gateway_order_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="new")  # new | active | inactive | cancelled
    subscription_start_date = Column(Date, nullable=True)
    subscription_end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    order_form_id = Column(String, index=True, nullable=False)
    invoice_number = Column(String, unique=True, nullable=False)  # INV-YYYYMMDD-XXXX
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="paid")
    validity_start = Column(Date, nullable=True)
    validity_end = Column(Date, nullable=True)
    due_date = Column(Date, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PaymentAuditLog(Base):
    """Append-only trail of payment events. Rows are never updated."""

    __tablename__ = "payment_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    order_form_id = Column(String, index=True, nullable=False)
    payment_id = Column(String, nullable=True)
    gateway_order_id = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)
    action = Column(String, nullable=False)   # payment_captured | payment_failed | amount_mismatch
    actor = Column(String, nullable=False)    # client | webhook
    details = Column(Text, nullable=True)     # JSON
    created_at = Column(DateTime(timezone=True), default=utcnow)
