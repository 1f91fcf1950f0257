import hashlib
import hmac

from amcpay.signatures import (
    payment_signature,
    verify_payment_signature,
    verify_webhook_signature,
    webhook_signature,
)


def test_payment_signature_matches_razorpay_scheme():
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert payment_signature("order_1", "pay_1", "secret") == expected
    assert verify_payment_signature("order_1", "pay_1", expected, "secret")


def test_swapped_ids_do_not_verify():
    signature = payment_signature("order_1", "pay_1", "secret")

    assert not verify_payment_signature("pay_1", "order_1", signature, "secret")
    assert not verify_payment_signature("order_1", "pay_2", signature, "secret")


def test_garbage_signature():
    assert not verify_payment_signature("order_1", "pay_1", "", "secret")
    assert not verify_payment_signature("order_1", "pay_1", "ünïcode", "secret")
    assert not verify_payment_signature("order_1", "pay_1", 12345, "secret")


def test_webhook_signature():
    body = b'{"event":"payment.captured"}'
    signature = webhook_signature(body, "whsec")

    assert verify_webhook_signature(body, signature, "whsec")
    assert not verify_webhook_signature(body + b" ", signature, "whsec")
    assert not verify_webhook_signature(body, None, "whsec")
