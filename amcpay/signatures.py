import hashlib
import hmac


def _hmac_hex(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    """Signature Razorpay's checkout returns for an order/payment pair."""
    return _hmac_hex(secret, f"{gateway_order_id}|{gateway_payment_id}")


def verify_payment_signature(gateway_order_id, gateway_payment_id, signature, secret) -> bool:
    expected = payment_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected.encode(), str(signature).encode("utf-8"))


def webhook_signature(body: bytes, secret: str) -> str:
    return _hmac_hex(secret, body)


def verify_webhook_signature(body: bytes, signature, secret) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(webhook_signature(body, secret).encode(), str(signature).encode("utf-8"))
