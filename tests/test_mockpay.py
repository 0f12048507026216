import json

import pytest

from gigtickets.errors import InvalidWebhook
from gigtickets.mockpay import SIGNATURE_HEADER, MockPay


@pytest.fixture
def mockpay():
    return MockPay("testsecret")


def _event(**overrides):
    event = {
        "type": "payment.succeeded",
        "payment_ref": "pay_1",
        "customer_email": "a@x.com",
        "amount": 9000,
        "unit_price": 4500,
    }
    event.update(overrides)
    return event


def _signed(mockpay, body: bytes):
    return body, {SIGNATURE_HEADER: mockpay.sign(body)}


def test_signed_payload_verifies(mockpay):
    body, headers = _signed(mockpay, json.dumps(_event()).encode())
    event = mockpay.verify_webhook(body, headers)
    assert event["payment_ref"] == "pay_1"
    assert mockpay.event_kind(event) == "succeeded"


def test_tampered_payload_is_rejected(mockpay):
    body, headers = _signed(mockpay, json.dumps(_event()).encode())
    tampered = body.replace(b"9000", b"90000")
    with pytest.raises(InvalidWebhook):
        mockpay.verify_webhook(tampered, headers)


def test_missing_or_foreign_signature_is_rejected(mockpay):
    body = json.dumps(_event()).encode()
    with pytest.raises(InvalidWebhook):
        mockpay.verify_webhook(body, {})
    with pytest.raises(InvalidWebhook):
        mockpay.verify_webhook(
            body, {SIGNATURE_HEADER: MockPay("other").sign(body)}
        )


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff\xfe"])
def test_signed_garbage_is_rejected(mockpay, body):
    with pytest.raises(InvalidWebhook):
        mockpay.verify_webhook(*_signed(mockpay, body))


def test_payment_confirmed(mockpay):
    confirmed = mockpay.payment_confirmed(_event(), 9999)
    assert confirmed.payment_ref == "pay_1"
    assert confirmed.buyer_email == "a@x.com"
    assert confirmed.amount_paid == 9000
    assert confirmed.unit_price == 4500


def test_unit_price_falls_back_to_configured_price(mockpay):
    event = _event()
    del event["unit_price"]
    assert mockpay.payment_confirmed(event, 4500).unit_price == 4500


@pytest.mark.parametrize("overrides", [
    {"payment_ref": ""},
    {"customer_email": "not-an-email"},
    {"amount": -1},
    {"amount": "9000"},
    {"amount": True},
    {"amount": None},
    {"unit_price": 0},
])
def test_bad_event_fields(mockpay, overrides):
    with pytest.raises(InvalidWebhook):
        mockpay.payment_confirmed(_event(**overrides), 4500)


@pytest.mark.parametrize("kind,expected", [
    ("payment.failed", "failed"),
    ("payment.canceled", "canceled"),
    ("", ""),
])
def test_event_kind(mockpay, kind, expected):
    assert mockpay.event_kind({"type": kind}) == expected
