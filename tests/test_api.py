import time as unix_time
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.domain.availability.router import get_busy_calendar
from app.domain.payments import router as payments_router
from app.domain.payments.gateway import MercadoPagoGateway, PaymentGateway, PayPalGateway, get_payment_gateway
from app.main import app
from app.services.notification_service import get_notification_dispatcher
from app.shared.clock import get_clock
from app.webhook_security import compute_hmac_sha256, mercadopago_manifest

from .conftest import ADMIN_HEADERS, StubCalendar

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


class MercadoPagoPayments:
    def __init__(self):
        self.payments = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payment_id = request.url.path.rsplit("/", 1)[1]
        if payment_id not in self.payments:
            return httpx.Response(404, json={"message": "Payment not found"})
        return httpx.Response(200, json=self.payments[payment_id])


@pytest.fixture
def mercadopago():
    return MercadoPagoPayments()


@pytest.fixture
def client(session_factory, clock, dispatcher, mercadopago):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    gateway = PaymentGateway(
        mercadopago=MercadoPagoGateway(access_token="TEST-token", transport=httpx.MockTransport(mercadopago)),
        paypal=PayPalGateway(client_id=None, client_secret=None),
    )
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_busy_calendar] = lambda: StubCalendar()
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def hold_body(professional_id, start="09:00", end="10:00"):
    return {
        "professional_id": professional_id,
        "appointment_date": "2026-10-20",
        "start_time": start,
        "end_time": end,
        "contact_email": "cliente@example.com",
        "consultation_goal": "Recuperar movilidad de hombro",
        "available_equipment": ["banda elástica"],
    }


def create_hold(client, professional_id, start="09:00", end="10:00"):
    response = client.post("/appointments", json=hold_body(professional_id, start, end), headers=USER)
    assert response.status_code == 201, response.text
    return response.json()["appointment_id"]


def payment_webhook(client, payment_id, headers=None):
    return client.post(
        f"/webhooks/mercadopago?type=payment&data.id={payment_id}",
        json={"type": "payment", "action": "payment.updated", "data": {"id": payment_id}},
        headers=headers or {},
    )


def confirm_via_webhook(client, mercadopago, appointment_id, payment_id="111"):
    mercadopago.payments[payment_id] = {"id": int(payment_id), "status": "approved", "external_reference": appointment_id}
    response = payment_webhook(client, payment_id)
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


# ============================================================================
# PROFESSIONALS AND SLOTS
# ============================================================================


def test_list_professionals(client, professional):
    response = client.get("/professionals")

    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["Ana Pérez"]
    assert "contact_email" not in response.json()[0]


def test_create_professional_requires_admin(client):
    body = {"name": "Bruno Díaz", "specialty": "Kinesiología"}

    assert client.post("/professionals", json=body).status_code == 403
    response = client.post("/professionals", json=body, headers=ADMIN_HEADERS)

    assert response.status_code == 201
    assert response.json()["price_amount"] == 35000


def test_unknown_professional_is_404(client):
    response = client.get("/professionals/999")

    assert response.status_code == 404
    assert response.json()["code"] == "professional_not_found"


def test_slots(client, professional):
    response = client.get(f"/professionals/{professional.id}/slots", params={"date": "2026-10-20"})

    assert response.status_code == 200
    data = response.json()
    assert data["timezone"] == "America/Santiago"
    assert data["slots"] == [
        {"start_time": "09:00:00", "end_time": "10:00:00"},
        {"start_time": "10:00:00", "end_time": "11:00:00"},
        {"start_time": "11:00:00", "end_time": "12:00:00"},
    ]


def test_slots_require_a_valid_date(client, professional):
    assert client.get(f"/professionals/{professional.id}/slots").status_code == 422
    assert client.get(f"/professionals/{professional.id}/slots", params={"date": "20-10-2026"}).status_code == 422


# ============================================================================
# HOLDS AND READS
# ============================================================================


def test_hold_requires_user(client, professional):
    response = client.post("/appointments", json=hold_body(professional.id))

    assert response.status_code == 401


def test_hold_and_conflict(client, professional):
    response = client.post("/appointments", json=hold_body(professional.id), headers=USER)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending_payment"
    assert data["price_amount"] == 35000
    assert data["hold_expires_at"] == "2026-10-19T12:15:00"

    conflict = client.post("/appointments", json=hold_body(professional.id), headers=OTHER_USER)
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "slot_already_taken"

    slots = client.get(f"/professionals/{professional.id}/slots", params={"date": "2026-10-20"}).json()["slots"]
    assert [slot["start_time"] for slot in slots] == ["10:00:00", "11:00:00"]


def test_hold_on_unoffered_range(client, professional):
    response = client.post("/appointments", json=hold_body(professional.id, "09:30", "10:30"), headers=USER)

    assert response.status_code == 422
    assert response.json()["code"] == "slot_not_offered"


def test_hold_with_reversed_range(client, professional):
    response = client.post("/appointments", json=hold_body(professional.id, "10:00", "09:00"), headers=USER)

    assert response.status_code == 422


def test_appointments_are_private(client, professional):
    appointment_id = create_hold(client, professional.id)

    mine = client.get(f"/appointments/{appointment_id}", headers=USER)
    theirs = client.get(f"/appointments/{appointment_id}", headers=OTHER_USER)

    assert mine.status_code == 200
    assert mine.json()["consultation_goal"] == "Recuperar movilidad de hombro"
    assert theirs.status_code == 404
    assert client.get("/appointments", headers=OTHER_USER).json() == []
    assert len(client.get("/appointments", headers=USER).json()) == 1


def test_cancel_frees_slot(client, professional, dispatcher):
    appointment_id = create_hold(client, professional.id)

    assert client.post(f"/appointments/{appointment_id}/cancel", headers=OTHER_USER).status_code == 404
    response = client.post(f"/appointments/{appointment_id}/cancel", headers=USER)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "user"
    slots = client.get(f"/professionals/{professional.id}/slots", params={"date": "2026-10-20"}).json()["slots"]
    assert len(slots) == 3

    again = client.post(f"/appointments/{appointment_id}/cancel", headers=USER)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"


# ============================================================================
# PAYMENTS
# ============================================================================


def test_payment_webhook_confirms_once(client, professional, mercadopago, dispatcher):
    appointment_id = create_hold(client, professional.id)

    first = confirm_via_webhook(client, mercadopago, appointment_id)
    second = payment_webhook(client, "111").json()

    assert first == {"status": "confirmed", "appointment_id": appointment_id}
    assert second == {"status": "duplicate", "appointment_id": appointment_id}
    assert len(dispatcher.confirmed) == 1
    appointment = client.get(f"/appointments/{appointment_id}", headers=USER).json()
    assert appointment["status"] == "confirmed"
    assert appointment["payment_status"] == "paid"


def test_payment_webhook_after_expiry(client, professional, mercadopago, clock):
    appointment_id = create_hold(client, professional.id)
    clock.advance(minutes=16)
    expired = client.post("/appointments/expire-holds", headers=ADMIN_HEADERS).json()
    assert expired == {"expired": 1, "appointment_ids": [appointment_id]}

    result = confirm_via_webhook(client, mercadopago, appointment_id)

    assert result["status"] == "hold_expired"


def test_webhook_ignores_other_topics(client):
    response = client.post("/webhooks/mercadopago", json={"type": "plan", "data": {"id": "1"}})

    assert response.json() == {"status": "ignored", "appointment_id": None}


def test_webhook_gateway_failure_is_502(client):
    response = payment_webhook(client, "404")

    assert response.status_code == 502
    assert response.json()["code"] == "payment_gateway_error"


def test_signed_webhook(client, professional, mercadopago, monkeypatch):
    monkeypatch.setattr(payments_router, "MERCADOPAGO_WEBHOOK_SECRET", "mp-secret")
    appointment_id = create_hold(client, professional.id)
    mercadopago.payments["222"] = {"id": 222, "status": "approved", "external_reference": appointment_id}

    assert payment_webhook(client, "222").status_code == 401

    ts = str(int(unix_time.time()))
    signature = compute_hmac_sha256("mp-secret", mercadopago_manifest("222", "req-1", ts).encode())
    response = payment_webhook(client, "222", headers={"x-signature": f"ts={ts},v1={signature}", "x-request-id": "req-1"})

    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"


def test_checkout_with_unconfigured_provider(client, professional):
    appointment_id = create_hold(client, professional.id)

    response = client.post(f"/appointments/{appointment_id}/payment", json={"provider": "paypal"}, headers=USER)

    assert response.status_code == 502


def test_checkout_with_unknown_provider(client, professional):
    appointment_id = create_hold(client, professional.id)

    response = client.post(f"/appointments/{appointment_id}/payment", json={"provider": "bitcoin"}, headers=USER)

    assert response.status_code == 422


def test_paypal_return_failure_redirects(client):
    response = client.get("/webhooks/paypal/return", params={"token": "ORDER-9"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"].endswith("/payment/result?status=failed&order=ORDER-9")


# ============================================================================
# ADMIN
# ============================================================================


def test_admin_routes_require_key(client, professional):
    appointment_id = create_hold(client, professional.id)

    assert client.post(f"/appointments/{appointment_id}/complete").status_code == 403
    assert client.post(f"/appointments/{appointment_id}/complete", headers={"X-Admin-Key": "wrong"}).status_code == 403
    assert client.get(f"/professionals/{professional.id}/availability/rules", headers=USER).status_code == 403


def test_complete_only_after_session_ends(client, professional, mercadopago, clock):
    appointment_id = create_hold(client, professional.id)
    confirm_via_webhook(client, mercadopago, appointment_id)

    early = client.post(f"/appointments/{appointment_id}/complete", headers=ADMIN_HEADERS)
    assert early.status_code == 409

    # Tuesday 10:05 in Santiago
    clock.current = datetime(2026, 10, 20, 13, 5)
    response = client.post(f"/appointments/{appointment_id}/complete", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "completed"


def test_set_meeting_link_by_hand(client, professional, mercadopago):
    appointment_id = create_hold(client, professional.id)
    confirm_via_webhook(client, mercadopago, appointment_id)

    rejected = client.put(
        f"/appointments/{appointment_id}/meeting", json={"meeting_link": "ftp://meet"}, headers=ADMIN_HEADERS
    )
    response = client.put(
        f"/appointments/{appointment_id}/meeting",
        json={"meeting_link": "https://meet.google.com/abc-defg-hij"},
        headers=ADMIN_HEADERS,
    )

    assert rejected.status_code == 422
    assert response.status_code == 200
    link = client.get(f"/appointments/{appointment_id}", headers=USER).json()["external_meeting_link"]
    assert link == "https://meet.google.com/abc-defg-hij"


def test_admin_cancel_of_paid_appointment(client, professional, mercadopago, dispatcher):
    appointment_id = create_hold(client, professional.id)
    confirm_via_webhook(client, mercadopago, appointment_id)

    response = client.post(f"/appointments/{appointment_id}/admin-cancel", headers=ADMIN_HEADERS)

    assert response.json()["payment_status"] == "refund_pending"
    assert response.json()["cancellation_reason"] == "admin"
    assert dispatcher.cancelled[0][1] is True


def test_delete_appointment(client, professional):
    appointment_id = create_hold(client, professional.id)

    assert client.delete(f"/appointments/{appointment_id}", headers=ADMIN_HEADERS).status_code == 200
    assert client.get(f"/appointments/{appointment_id}", headers=USER).status_code == 404


def test_replace_rules(client, professional):
    body = {
        "rules": [
            {"day_of_week": 1, "open_time": "14:00", "close_time": "16:00", "slot_duration_minutes": 30},
            {"day_of_week": 3, "open_time": "09:00", "close_time": "12:00"},
        ]
    }

    response = client.put(f"/professionals/{professional.id}/availability/rules", json=body, headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert [rule["day_of_week"] for rule in response.json()] == [1, 3]
    slots = client.get(f"/professionals/{professional.id}/slots", params={"date": "2026-10-20"}).json()["slots"]
    assert [slot["start_time"] for slot in slots] == ["14:00:00", "14:30:00", "15:00:00", "15:30:00"]


def test_invalid_rules_are_rejected(client, professional):
    reversed_rule = {"rules": [{"day_of_week": 1, "open_time": "12:00", "close_time": "09:00"}]}
    duplicated = {
        "rules": [
            {"day_of_week": 1, "open_time": "09:00", "close_time": "12:00"},
            {"day_of_week": 1, "open_time": "14:00", "close_time": "16:00"},
        ]
    }
    url = f"/professionals/{professional.id}/availability/rules"

    response = client.put(url, json=reversed_rule, headers=ADMIN_HEADERS)
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_rule"
    assert client.put(url, json=duplicated, headers=ADMIN_HEADERS).status_code == 422

    rules = client.get(url, headers=ADMIN_HEADERS).json()
    assert [(rule["open_time"], rule["close_time"]) for rule in rules] == [("09:00:00", "12:00:00")]


def test_exceptions(client, professional):
    url = f"/professionals/{professional.id}/availability/exceptions"
    invalid = client.post(
        url, json={"exception_date": "2026-10-20", "start_time": "11:00", "end_time": "10:00"}, headers=ADMIN_HEADERS
    )
    assert invalid.status_code == 422
    assert invalid.json()["code"] == "invalid_exception"

    created = client.post(
        url,
        json={"exception_date": "2026-10-20", "start_time": "10:00", "end_time": "11:00", "reason": "Trámite"},
        headers=ADMIN_HEADERS,
    )
    assert created.status_code == 201
    slots = client.get(f"/professionals/{professional.id}/slots", params={"date": "2026-10-20"}).json()["slots"]
    assert [slot["start_time"] for slot in slots] == ["09:00:00", "11:00:00"]

    exception_id = created.json()["id"]
    assert client.delete(f"/availability/exceptions/{exception_id}", headers=ADMIN_HEADERS).status_code == 200
    assert client.delete(f"/availability/exceptions/{exception_id}", headers=ADMIN_HEADERS).status_code == 404
    assert client.get(url, headers=ADMIN_HEADERS).json() == []
