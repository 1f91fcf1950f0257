"""Subscription lifecycle shared by the create, verify and webhook handlers.

A payment intent is ``created`` when the gateway order is registered,
becomes ``captured`` once a signed payment is verified, and the subscription
is ``activated`` when the order row is switched on. ``activated`` is only
reachable from ``captured``. A ``failed`` attempt can still be followed by a
successful capture on the same gateway order.
"""
import enum


class PaymentState(str, enum.Enum):
    CREATED = "created"
    CAPTURED = "captured"
    ACTIVATED = "activated"
    FAILED = "failed"


TRANSITIONS = {
    PaymentState.CREATED: {PaymentState.CAPTURED, PaymentState.FAILED},
    PaymentState.FAILED: {PaymentState.CAPTURED},
    PaymentState.CAPTURED: {PaymentState.ACTIVATED},
    PaymentState.ACTIVATED: set(),
}


class OrderStatus(str, enum.Enum):
    NEW = "new"
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"


class InvalidTransition(Exception):
    pass


def can_transition(current, target) -> bool:
    return PaymentState(target) in TRANSITIONS[PaymentState(current)]


def advance(current, target) -> PaymentState:
    """Return ``target`` if the move from ``current`` is allowed."""
    current, target = PaymentState(current), PaymentState(target)
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value} is not allowed")
    return target


def subscription_state(intent_status, order_status=None) -> PaymentState:
    """Combined state of an intent and the order it pays for."""
    state = PaymentState(intent_status)
    if state is PaymentState.CAPTURED and order_status == OrderStatus.ACTIVE.value:
        return PaymentState.ACTIVATED
    return state
