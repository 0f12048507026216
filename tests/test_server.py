import json

import fakeredis
import pytest
from fastapi.testclient import TestClient

from gigtickets.config import Settings
from gigtickets.helpers import current_event_date
from gigtickets.mockpay import SIGNATURE_HEADER, MockPay
from gigtickets.model.ledger import RedisLedger
from gigtickets.server import create_app, local_path

from .conftest import RecordingNotifier


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'server.db'}",
        mock_secret="testsecret",
        session_secret="test-session",
        admin_username="door",
        admin_password="letmein",
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(settings, notifier):
    with TestClient(create_app(settings, notifier=notifier)) as c:
        yield c


def pay(client, secret="testsecret", **overrides):
    event = {
        "type": "payment.succeeded",
        "payment_ref": "pay_1",
        "customer_email": "a@x.com",
        "amount": 9000,
        "unit_price": 4500,
    }
    event.update(overrides)
    body = json.dumps(event).encode()
    return client.post(
        "/payments/webhook",
        content=body,
        headers={
            SIGNATURE_HEADER: MockPay(secret).sign(body),
            "content-type": "application/json",
        },
    )


def codes_of(client, order_id):
    r = client.get(f"/api/orders/{order_id}")
    assert r.status_code == 200
    return [t["ticket_code"] for t in r.json()["tickets"]]


def login(client):
    return client.post("/admin/login", data={
        "username": "door", "password": "letmein", "next": "/admin/stats",
    })


def test_health(client):
    body = client.get("/").json()
    assert body["status"] == "ok"
    assert body["version"]


def test_current_event(client):
    body = client.get("/current-event").json()
    assert body["event_date"] == current_event_date()
    assert body["price"] == 4500
    assert body["currency"] == "aud"


def test_webhook_mints_tickets(client, notifier):
    r = pay(client)
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] and not body["idempotent"]
    assert body["tickets"] == 2
    assert body["notified"] is True

    order = client.get(f"/api/orders/{body['order_id']}").json()
    assert order["amount"] == 9000
    assert len(order["tickets"]) == 2
    assert all(not t["redeemed"] for t in order["tickets"])
    assert {t["event_date"] for t in order["tickets"]} == {
        current_event_date()
    }
    assert len(notifier.sent) == 1


def test_webhook_redelivery_is_idempotent(client, notifier):
    first = pay(client).json()
    again = pay(client)
    assert again.status_code == 200
    assert again.json() == {"ok": True, "idempotent": True}
    assert len(codes_of(client, first["order_id"])) == 2
    assert len(notifier.sent) == 1


def test_webhook_rejects_bad_signature(client):
    assert pay(client, secret="wrong").status_code == 400


def test_webhook_rejects_bad_email(client):
    assert pay(client, customer_email="nope").status_code == 400


def test_webhook_ignores_failed_payments(client):
    r = pay(client, type="payment.failed")
    assert r.json() == {"ok": True, "ignored": "failed"}


def test_unknown_order_is_404(client):
    assert client.get("/api/orders/nope").status_code == 404


def test_checkin_flow(client):
    code = codes_of(client, pay(client).json()["order_id"])[0]
    date = current_event_date()

    def checkin(c, d=date):
        return client.post(
            "/checkin", json={"ticketCode": c, "eventDate": d}
        ).json()

    assert checkin("ABC123") == {
        "status": "invalid", "message": "Invalid ticket",
    }
    assert checkin(code.lower()) == {
        "status": "valid", "message": "Entry allowed",
    }
    assert checkin(code) == {
        "status": "used", "message": "Already checked in",
    }
    assert checkin(code, "2001-01-06")["status"] == "invalid"


def test_checkin_without_code(client):
    r = client.post("/checkin", json={"eventDate": "2026-10-24"})
    assert r.json() == {"status": "invalid", "message": "Ticket code required"}


def test_checkin_defaults_to_current_event(client):
    code = codes_of(client, pay(client).json()["order_id"])[0]
    r = client.post("/checkin", json={"ticketCode": code})
    assert r.json()["status"] == "valid"


def test_verify_page(client):
    code = codes_of(client, pay(client).json()["order_id"])[0]
    assert "Valid Ticket" in client.get(f"/verify/{code}").text
    assert "Already Used" in client.get(f"/verify/{code}").text
    assert "Invalid Ticket" in client.get("/verify/ABC123").text


def test_ticket_page(client):
    code = codes_of(client, pay(client).json()["order_id"])[0]
    r = client.get(f"/tickets/{code}")
    assert r.status_code == 200
    assert code in r.text
    assert "data:image/png;base64," in r.text
    assert client.get("/tickets/ABC123").status_code == 404


@pytest.mark.parametrize(
    "path", ["/admin/stats", "/offline-tickets", "/admin/timings", "/admin"]
)
def test_admin_routes_need_login(client, path):
    r = client.get(path, follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == f"/admin/login?next={path}"


def test_admin_login_rejects_wrong_password(client):
    r = client.post("/admin/login", data={
        "username": "door", "password": "nope", "next": "/admin",
    })
    assert r.status_code == 401
    assert "Invalid credentials" in r.text


def test_admin_stats_and_export(client):
    order_id = pay(client).json()["order_id"]
    codes = codes_of(client, order_id)
    client.post("/checkin", json={"ticketCode": codes[0]})

    r = login(client)
    assert r.status_code == 200
    assert r.json() == {"sold": 2, "scanned": 1, "remaining": 1}

    offline = client.get("/offline-tickets").json()
    assert offline == [{"ticket_code": c} for c in sorted(codes)]

    page = client.get("/admin")
    assert page.status_code == 200
    assert "Remaining" in page.text

    kinds = {t["kind"] for t in client.get("/admin/timings").json()["items"]}
    assert "ledger.mark_redeemed" in kinds

    client.get("/admin/logout")
    assert client.get(
        "/admin/stats", follow_redirects=False
    ).status_code == 307


@pytest.mark.parametrize("dest", [
    "https://evil.test/",
    "//evil.test/",
    "/\\evil.test/",
    "evil.test",
])
def test_login_never_redirects_off_site(client, dest):
    r = client.post("/admin/login", data={
        "username": "door", "password": "letmein", "next": dest,
    }, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin"


@pytest.mark.parametrize("dest,expected", [
    ("/admin/stats", "/admin/stats"),
    ("/offline-tickets?date=2026-10-24", "/offline-tickets?date=2026-10-24"),
    ("//evil.test/", "/admin"),
    ("/\\evil.test", "/admin"),
    ("", "/admin"),
])
def test_local_path(dest, expected):
    assert local_path(dest) == expected


def test_storage_outage_is_503(settings, notifier):
    server = fakeredis.FakeServer()
    server.connected = False
    ledger = RedisLedger(
        fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    )
    app = create_app(settings, ledger=ledger, notifier=notifier)
    with TestClient(app) as c:
        r = c.post("/checkin", json={"ticketCode": "AAAA00000001"})
        assert r.status_code == 503
        assert r.json() == {"status": "error", "message": "Database error"}
        assert pay(c).status_code == 503
