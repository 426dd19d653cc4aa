import hashlib
import hmac
import json
import time

import pytest


stripe = pytest.importorskip("stripe")

from application.dtos.payments import IgnoredEvent, PaymentSucceededEvent  # noqa: E402
from core.settings import StripeSettings  # noqa: E402
from infrastructure.external.payments import get_payment_processor  # noqa: E402
from infrastructure.external.payments.exceptions import PaymentSignatureError  # noqa: E402
from infrastructure.external.payments.stripe_client import StripeClient  # noqa: E402


SECRET = "whsec_test_secret"


def _sign(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.".encode() + body
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _event(event_type="checkout.session.completed", payment_status="paid", **session):
    obj = {
        "id": "cs_test_a1",
        "object": "checkout.session",
        "payment_status": payment_status,
        "payment_intent": "pi_123",
        "payment_link": None,
        "metadata": {"draft_order_id": "d1"},
        **session,
    }
    return json.dumps({"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}).encode()


@pytest.fixture
def client(settings) -> StripeClient:
    gw = get_payment_processor(settings)
    assert isinstance(gw, StripeClient)
    return gw


def test_paid_session_becomes_payment_succeeded(client):
    body = _event(payment_link="plink_9")
    evt = client.parse_webhook({"stripe-signature": _sign(body)}, body)
    assert isinstance(evt, PaymentSucceededEvent)
    assert evt.session_id == "cs_test_a1"
    assert evt.payment_intent_id == "pi_123"
    assert evt.payment_link_id == "plink_9"
    assert evt.event_type == "checkout.session.completed"


def test_async_payment_succeeded_is_actionable(client):
    body = _event("checkout.session.async_payment_succeeded")
    evt = client.parse_webhook({"Stripe-Signature": _sign(body)}, body)
    assert isinstance(evt, PaymentSucceededEvent)


def test_completed_but_unpaid_is_ignored(client):
    body = _event(payment_status="unpaid")
    evt = client.parse_webhook({"Stripe-Signature": _sign(body)}, body)
    assert isinstance(evt, IgnoredEvent)
    assert evt.reason == "not_paid"


def test_unsupported_type_is_acknowledged_and_ignored(client):
    body = json.dumps({"id": "evt_2", "type": "customer.created", "data": {"object": {"id": "cus_1"}}}).encode()
    evt = client.parse_webhook({"Stripe-Signature": _sign(body)}, body)
    assert isinstance(evt, IgnoredEvent)
    assert evt.reason == "unhandled_type"


def test_tampered_body_is_rejected(client):
    body = _event()
    header = _sign(body)
    tampered = body.replace(b"pi_123", b"pi_999")
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook({"Stripe-Signature": header}, tampered)


def test_wrong_secret_is_rejected(client):
    body = _event()
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook({"Stripe-Signature": _sign(body, secret="whsec_other")}, body)


def test_stale_timestamp_is_rejected(client):
    body = _event()
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook({"Stripe-Signature": _sign(body, timestamp=int(time.time()) - 3600)}, body)


def test_missing_header_is_rejected(client):
    with pytest.raises(PaymentSignatureError):
        client.parse_webhook({}, _event())


def test_missing_secret_fails_closed(settings):
    no_secret = settings.model_copy(update={"stripe": StripeSettings(secret_key="sk_test_123")})
    body = _event()
    with pytest.raises(PaymentSignatureError):
        StripeClient(no_secret).parse_webhook({"Stripe-Signature": _sign(body)}, body)
