from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional
import base64
import hashlib
import hmac
import json

from .errors import InvalidWebhook
from .fulfillment import PaymentConfirmed
from .helpers import is_valid_email

SIGNATURE_HEADER = "x-mockpay-signature"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    # raises InvalidWebhook on a bad signature or body
    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "succeeded" | "failed" | "canceled"
    @abstractmethod
    def event_kind(self, event: dict) -> str:
        ...

    @abstractmethod
    def payment_confirmed(
        self, event: dict, default_unit_price: int
    ) -> PaymentConfirmed:
        ...


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    def __init__(self, secret: str) -> None:
        self.secret = secret

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise InvalidWebhook("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidWebhook("Invalid JSON")
        if not isinstance(event, dict):
            raise InvalidWebhook("Invalid JSON")
        return event

    def event_kind(self, event: dict) -> str:
        return str(event.get("type", "")).split(".")[-1]

    def payment_confirmed(
        self, event: dict, default_unit_price: int
    ) -> PaymentConfirmed:
        ref = str(event.get("payment_ref") or "").strip()
        email = str(event.get("customer_email") or "").strip()
        if not ref:
            raise InvalidWebhook("missing payment_ref")
        if not is_valid_email(email):
            raise InvalidWebhook("missing or invalid customer_email")
        amount = _non_negative_int(event.get("amount"), "amount")
        unit_price = event.get("unit_price")
        if unit_price is None:
            unit_price = default_unit_price
        unit_price = _non_negative_int(unit_price, "unit_price")
        if unit_price == 0:
            raise InvalidWebhook("unit_price must be positive")
        return PaymentConfirmed(
            payment_ref=ref,
            buyer_email=email,
            amount_paid=amount,
            unit_price=unit_price,
        )


def _non_negative_int(value: Optional[object], name: str) -> int:
    # bool is an int subclass; a JSON true is not an amount
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidWebhook(f"{name} must be a non-negative integer")
    return value
