import json

import pytest

from amcpay.models import Invoice, Order, PaymentAuditLog, PaymentIntent
from amcpay.signatures import webhook_signature

from conftest import WEBHOOK_SECRET, TestingSessionLocal


@pytest.fixture
def intent(db, amc_order):
    db.add(PaymentIntent(order_form_id="AMC-1001", gateway_order_id="order_wh",
                         amount=999, system_count=1, status="created"))
    db.commit()


@pytest.fixture(autouse=True)
def documents(mocker):
    return mocker.patch("amcpay.billing.trigger_document_generation", return_value=200)


def payment_event(event, payment_id="pay_wh", order_id="order_wh", amount=99900):
    return {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "amount": amount,
                    "currency": "INR",
                    "status": "captured" if event == "payment.captured" else "failed",
                }
            }
        },
    }


def post_event(client, event, secret=WEBHOOK_SECRET):
    body = json.dumps(event).encode()
    return client.post(
        "/razorpay/webhook",
        content=body,
        headers={"x-razorpay-signature": webhook_signature(body, secret),
                 "content-type": "application/json"},
    )


def test_payment_captured_activates(client, intent, documents):
    response = post_event(client, payment_event("payment.captured"))

    assert response.status_code == 200
    assert response.json() == {"status": "received", "event": "payment.captured"}

    db = TestingSessionLocal()
    assert db.query(PaymentIntent).one().status == "captured"
    order = db.get(Order, "AMC-1001")
    assert order.status == "active"
    assert order.payment_id == "pay_wh"
    assert db.query(Invoice).count() == 1
    audit = db.query(PaymentAuditLog).one()
    assert audit.actor == "webhook"
    assert json.loads(audit.details)["webhook_event"] == "payment.captured"
    db.close()
    documents.assert_called_once()


def test_payment_captured_twice(client, intent):
    post_event(client, payment_event("payment.captured"))

    response = post_event(client, payment_event("payment.captured"))

    assert response.json() == {"status": "already_processed", "event": "payment.captured"}
    db = TestingSessionLocal()
    assert db.query(Invoice).count() == 1
    db.close()


def test_webhook_after_client_verification(client, intent):
    from conftest import sign
    client.post("/razorpay/verify-payment", json={
        "razorpay_order_id": "order_wh",
        "razorpay_payment_id": "pay_wh",
        "razorpay_signature": sign("order_wh", "pay_wh"),
        "amc_form_id": "AMC-1001",
    })

    response = post_event(client, payment_event("payment.captured"))

    assert response.json()["status"] == "already_processed"


def test_amount_mismatch_is_audited(client, intent):
    post_event(client, payment_event("payment.captured", amount=50000))

    db = TestingSessionLocal()
    actions = [row.action for row in db.query(PaymentAuditLog).order_by(PaymentAuditLog.id)]
    assert actions == ["amount_mismatch", "payment_captured"]
    db.close()


def test_corrupt_intent_is_acknowledged_and_audited(client, db, amc_order, documents):
    db.add(PaymentIntent(order_form_id="AMC-1001", gateway_order_id="order_wh",
                         amount=1, system_count=1, status="created"))
    db.commit()

    response = post_event(client, payment_event("payment.captured", amount=100))

    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "event": "payment.captured"}

    check = TestingSessionLocal()
    assert check.query(PaymentIntent).one().status == "created"
    assert check.get(Order, "AMC-1001").status == "new"
    audit = check.query(PaymentAuditLog).one()
    assert audit.action == "amount_mismatch"
    assert json.loads(audit.details)["expected"] == 999
    check.close()
    documents.assert_not_called()


def test_webhook_work_runs_in_threadpool(client, intent, mocker):
    from fastapi.concurrency import run_in_threadpool

    offload = mocker.patch("amcpay.routes.run_in_threadpool", side_effect=run_in_threadpool)

    response = post_event(client, payment_event("payment.captured"))

    assert response.status_code == 200
    offload.assert_called_once()
    assert offload.call_args.args[0].__name__ == "handle_webhook"


def test_unknown_order_is_acknowledged(client, amc_order):
    response = post_event(client, payment_event("payment.captured", order_id="order_unknown"))

    assert response.status_code == 200
    assert response.json()["status"] == "order_not_found"


def test_payment_failed(client, intent):
    response = post_event(client, payment_event("payment.failed"))

    assert response.status_code == 200
    db = TestingSessionLocal()
    assert db.query(PaymentIntent).one().status == "failed"
    assert db.query(PaymentAuditLog).one().action == "payment_failed"
    assert db.get(Order, "AMC-1001").status == "new"
    db.close()


def test_payment_failed_does_not_downgrade_capture(client, intent):
    post_event(client, payment_event("payment.captured"))

    post_event(client, payment_event("payment.failed", payment_id="pay_late"))

    db = TestingSessionLocal()
    assert db.query(PaymentIntent).one().status == "captured"
    db.close()


def test_capture_after_failed_attempt(client, intent):
    post_event(client, payment_event("payment.failed", payment_id="pay_first"))

    post_event(client, payment_event("payment.captured", payment_id="pay_second"))

    db = TestingSessionLocal()
    intent = db.query(PaymentIntent).one()
    assert intent.status == "captured"
    assert intent.gateway_payment_id == "pay_second"
    db.close()


def test_order_paid_is_acknowledged(client):
    event = {"event": "order.paid", "payload": {"order": {"entity": {"id": "order_wh"}}}}

    response = post_event(client, event)

    assert response.json() == {"status": "received", "event": "order.paid"}


def test_invalid_signature(client, intent):
    response = post_event(client, payment_event("payment.captured"), secret="wrong")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    db = TestingSessionLocal()
    assert db.query(PaymentIntent).one().status == "created"
    db.close()


def test_missing_signature(client):
    response = client.post("/razorpay/webhook", content=b"{}")

    assert response.status_code == 401
    assert response.json() == {"error": "Missing signature"}


def test_webhook_not_configured(client, settings):
    settings.razorpay_webhook_secret = None

    response = post_event(client, payment_event("payment.captured"))

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook not configured"}
