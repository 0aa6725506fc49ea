import json
from datetime import time

import httpx
import pytest

from app.domain.appointments.lifecycle import CONFIRMED
from app.domain.appointments.schemas import AppointmentCreate
from app.domain.appointments.service import AppointmentService
from app.domain.payments.gateway import MercadoPagoGateway, PaymentGateway, PayPalGateway
from app.domain.payments.service import PaymentService
from app.errors import HoldExpired, InvalidTransition, PaymentGatewayError

from .conftest import TUESDAY


class FakeProviders:
    """MercadoPago and PayPal sandboxes answering from in-memory state"""

    def __init__(self):
        self.requests = []
        self.payments = {}
        self.orders = {}
        self.captured = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/checkout/preferences":
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={"id": "pref-1", "init_point": f"https://mp.test/checkout?ref={body['external_reference']}"},
            )
        if path.startswith("/v1/payments/"):
            payment_id = path.rsplit("/", 1)[1]
            if payment_id not in self.payments:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=self.payments[payment_id])

        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
        if path == "/v2/checkout/orders":
            body = json.loads(request.content)
            self.orders["ORDER-1"] = body["purchase_units"][0]["reference_id"]
            return httpx.Response(
                201,
                json={
                    "id": "ORDER-1",
                    "status": "CREATED",
                    "links": [{"rel": "approve", "href": "https://paypal.test/checkoutnow?token=ORDER-1"}],
                },
            )
        if path.endswith("/capture"):
            order_id = path.split("/")[-2]
            if order_id in self.captured:
                return httpx.Response(
                    422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]}
                )
            self.captured.add(order_id)
            return httpx.Response(201, json=self.completed_order(order_id))
        if path.startswith("/v2/checkout/orders/"):
            return httpx.Response(200, json=self.completed_order(path.rsplit("/", 1)[1]))

        return httpx.Response(404)

    def completed_order(self, order_id):
        return {
            "id": order_id,
            "status": "COMPLETED",
            "purchase_units": [
                {
                    "reference_id": self.orders[order_id],
                    "payments": {"captures": [{"id": "CAPTURE-1", "status": "COMPLETED"}]},
                }
            ],
        }


@pytest.fixture
def providers():
    return FakeProviders()


@pytest.fixture
def gateway(providers):
    transport = httpx.MockTransport(providers)
    return PaymentGateway(
        mercadopago=MercadoPagoGateway(access_token="TEST-token", transport=transport),
        paypal=PayPalGateway(
            client_id="client", client_secret="secret", api_base="https://api-m.sandbox.paypal.com", transport=transport
        ),
    )


@pytest.fixture
def appointments(db, clock, dispatcher):
    return AppointmentService(db, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def payments(db, gateway, appointments):
    return PaymentService(db, gateway, appointments)


@pytest.fixture
def hold(appointments, professional):
    return appointments.create_hold(
        "user-1",
        AppointmentCreate(
            professional_id=professional.id,
            appointment_date=TUESDAY,
            start_time=time(9),
            end_time=time(10),
            contact_email="cliente@example.com",
        ),
    )


def test_paypal_converts_clp_to_usd():
    paypal = PayPalGateway(client_id="client", client_secret="secret", clp_per_usd=900)

    assert paypal.to_usd(35000, "CLP") == "38.89"
    assert paypal.to_usd(50, "USD") == "50.00"


@pytest.mark.asyncio
async def test_unconfigured_gateway_raises(hold, professional):
    with pytest.raises(PaymentGatewayError):
        await MercadoPagoGateway(access_token=None).create_checkout(hold, professional, "s", "f")
    with pytest.raises(PaymentGatewayError):
        await PayPalGateway(client_id=None, client_secret=None).capture_order("ORDER-1")


# ============================================================================
# MERCADOPAGO
# ============================================================================


@pytest.mark.asyncio
async def test_mercadopago_checkout(payments, providers, hold):
    session = await payments.start_checkout(hold.id, "user-1", "mercadopago")

    assert session.payment_url == f"https://mp.test/checkout?ref={hold.id}"
    assert session.provider_reference == "pref-1"

    preference = json.loads(providers.requests[0].content)
    assert preference["external_reference"] == hold.id
    assert preference["items"][0]["unit_price"] == 35000
    assert preference["items"][0]["currency_id"] == "CLP"
    assert preference["notification_url"].endswith("/webhooks/mercadopago")
    assert preference["expiration_date_to"] == "2026-10-19T12:15:00.000+00:00"
    assert preference["payer"] == {"email": "cliente@example.com"}
    assert providers.requests[0].headers["Authorization"] == "Bearer TEST-token"
    assert hold.payment_provider == "mercadopago"


@pytest.mark.asyncio
async def test_mercadopago_payment_confirms_once(payments, providers, dispatcher, hold):
    providers.payments["111"] = {"id": 111, "status": "approved", "external_reference": hold.id}

    first = await payments.handle_mercadopago_payment("111")
    second = await payments.handle_mercadopago_payment("111")

    assert first.appointment.status == CONFIRMED
    assert first.appointment.payment_reference == "111"
    assert first.appointment.payment_provider == "mercadopago"
    assert not first.duplicate
    assert second.duplicate
    assert len(dispatcher.confirmed) == 1


@pytest.mark.asyncio
async def test_second_payment_for_confirmed_hold_needs_refund(payments, providers, dispatcher, hold):
    providers.payments["111"] = {"id": 111, "status": "approved", "external_reference": hold.id}
    providers.payments["114"] = {"id": 114, "status": "approved", "external_reference": hold.id}
    await payments.handle_mercadopago_payment("111")

    second = await payments.handle_mercadopago_payment("114")

    assert second.duplicate and second.refund_required
    assert second.appointment.payment_reference == "111"
    assert dispatcher.refunds == [(hold.id, "114", "already_confirmed")]


@pytest.mark.asyncio
async def test_mercadopago_pending_payment_changes_nothing(payments, providers, hold):
    providers.payments["112"] = {"id": 112, "status": "in_process", "external_reference": hold.id}

    assert await payments.handle_mercadopago_payment("112") is None
    assert payments.appointments.get(hold.id).status == "pending_payment"


@pytest.mark.asyncio
async def test_mercadopago_unknown_payment_is_a_gateway_error(payments):
    with pytest.raises(PaymentGatewayError):
        await payments.handle_mercadopago_payment("999")


@pytest.mark.asyncio
async def test_late_payment_after_sweep(payments, providers, appointments, clock, hold):
    clock.advance(minutes=16)
    appointments.expire_stale_holds()
    providers.payments["113"] = {"id": 113, "status": "approved", "external_reference": hold.id}

    with pytest.raises(HoldExpired):
        await payments.handle_mercadopago_payment("113")


# ============================================================================
# PAYPAL
# ============================================================================


@pytest.mark.asyncio
async def test_paypal_checkout_and_capture(payments, providers, hold):
    session = await payments.start_checkout(hold.id, "user-1", "paypal")

    assert session.payment_url == "https://paypal.test/checkoutnow?token=ORDER-1"
    order_request = providers.requests[1]
    assert order_request.headers["Authorization"] == "Bearer pp-token"
    order = json.loads(order_request.content)
    assert order["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "38.89"}
    assert order["application_context"]["return_url"].endswith("/webhooks/paypal/return")

    result = await payments.handle_paypal_return("ORDER-1")

    assert result.appointment.status == CONFIRMED
    assert result.appointment.payment_reference == "CAPTURE-1"
    assert result.appointment.payment_provider == "paypal"


@pytest.mark.asyncio
async def test_paypal_return_twice_reads_captured_order(payments, providers, hold):
    await payments.start_checkout(hold.id, "user-1", "paypal")
    await payments.handle_paypal_return("ORDER-1")

    again = await payments.handle_paypal_return("ORDER-1")

    assert again.duplicate
    assert providers.requests[-1].method == "GET"


# ============================================================================
# CHECKOUT GUARDS
# ============================================================================


@pytest.mark.asyncio
async def test_checkout_after_deadline_is_refused(payments, clock, hold):
    clock.advance(minutes=15)

    with pytest.raises(HoldExpired):
        await payments.start_checkout(hold.id, "user-1", "mercadopago")


@pytest.mark.asyncio
async def test_checkout_of_confirmed_appointment_is_refused(payments, appointments, hold):
    await appointments.confirm(hold.id, "mp-1")

    with pytest.raises(InvalidTransition):
        await payments.start_checkout(hold.id, "user-1", "mercadopago")
