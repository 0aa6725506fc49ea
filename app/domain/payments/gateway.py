"""Payment gateway adapters - MercadoPago and PayPal checkout over their REST APIs"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ...config import (
    MERCADOPAGO_ACCESS_TOKEN,
    MERCADOPAGO_API_BASE,
    PAYPAL_API_BASE,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_CLP_PER_USD,
    PUBLIC_API_URL,
)
from ...errors import PaymentGatewayError
from ...models import Appointment, Professional

logger = logging.getLogger(__name__)

MERCADOPAGO = "mercadopago"
PAYPAL = "paypal"
PROVIDERS = (MERCADOPAGO, PAYPAL)


@dataclass
class CheckoutSession:
    provider: str
    payment_url: str
    provider_reference: str  # Preference ID or order ID


@dataclass
class PaymentNotice:
    provider: str
    appointment_id: str
    payment_reference: str
    status: str
    approved: bool


def describe_session(appointment: Appointment, professional: Professional) -> str:
    return (
        f"Sesión con {professional.name} - {appointment.appointment_date.isoformat()} "
        f"{appointment.start_time.strftime('%H:%M')}"
    )


class MercadoPagoGateway:
    """MercadoPago Checkout Pro preferences and payment lookups"""

    def __init__(
        self,
        access_token: Optional[str] = MERCADOPAGO_ACCESS_TOKEN,
        api_base: str = MERCADOPAGO_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.transport = transport

    def is_available(self) -> bool:
        return bool(self.access_token)

    def _client(self) -> httpx.AsyncClient:
        if not self.access_token:
            raise PaymentGatewayError("MercadoPago is not configured")
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=30.0,
            transport=self.transport,
        )

    async def create_checkout(
        self,
        appointment: Appointment,
        professional: Professional,
        success_url: str,
        failure_url: str,
    ) -> CheckoutSession:
        preference = {
            "items": [
                {
                    "id": appointment.id,
                    "title": f"Sesión online - {professional.name}",
                    "description": describe_session(appointment, professional),
                    "quantity": 1,
                    "currency_id": appointment.currency,
                    "unit_price": appointment.price_amount,
                }
            ],
            "back_urls": {"success": success_url, "failure": failure_url, "pending": success_url},
            "auto_return": "approved",
            "external_reference": appointment.id,
            "notification_url": f"{PUBLIC_API_URL}/webhooks/mercadopago",
            "expires": True,
            "expiration_date_to": appointment.hold_expires_at.strftime("%Y-%m-%dT%H:%M:%S.000+00:00"),
        }
        if appointment.contact_email:
            preference["payer"] = {"email": appointment.contact_email}

        try:
            async with self._client() as client:
                response = await client.post("/checkout/preferences", json=preference)
        except httpx.HTTPError as e:
            logger.error(f"❌ MercadoPago preference request failed: {e}")
            raise PaymentGatewayError("MercadoPago could not be reached") from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ MercadoPago preference rejected ({response.status_code}): {response.text}")
            raise PaymentGatewayError("MercadoPago rejected the checkout")

        data = response.json()
        logger.info(f"✅ MercadoPago preference {data['id']} created for appointment {appointment.id}")
        return CheckoutSession(provider=MERCADOPAGO, payment_url=data["init_point"], provider_reference=data["id"])

    async def get_payment(self, payment_id: str) -> PaymentNotice:
        """Look up a payment announced by a webhook"""
        try:
            async with self._client() as client:
                response = await client.get(f"/v1/payments/{payment_id}")
        except httpx.HTTPError as e:
            logger.error(f"❌ MercadoPago payment lookup failed: {e}")
            raise PaymentGatewayError("MercadoPago could not be reached") from e

        if response.status_code != 200:
            logger.error(f"❌ MercadoPago payment {payment_id} lookup returned {response.status_code}")
            raise PaymentGatewayError(f"MercadoPago payment {payment_id} could not be read")

        data = response.json()
        status = data.get("status", "unknown")
        return PaymentNotice(
            provider=MERCADOPAGO,
            appointment_id=data.get("external_reference") or "",
            payment_reference=str(data.get("id", payment_id)),
            status=status,
            approved=status == "approved",
        )


class PayPalGateway:
    """PayPal Orders v2: create an order, capture it when the payer returns"""

    def __init__(
        self,
        client_id: Optional[str] = PAYPAL_CLIENT_ID,
        client_secret: Optional[str] = PAYPAL_CLIENT_SECRET,
        api_base: str = PAYPAL_API_BASE,
        clp_per_usd: float = PAYPAL_CLP_PER_USD,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.clp_per_usd = clp_per_usd
        self.transport = transport

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def to_usd(self, amount: int, currency: str) -> str:
        value = amount / self.clp_per_usd if currency == "CLP" else amount
        return f"{value:.2f}"

    def _client(self) -> httpx.AsyncClient:
        if not self.is_available():
            raise PaymentGatewayError("PayPal is not configured")
        return httpx.AsyncClient(base_url=self.api_base, timeout=30.0, transport=self.transport)

    async def _authorize(self, client: httpx.AsyncClient) -> None:
        """Fetch an OAuth token and attach it to the client"""
        response = await client.post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error(f"❌ PayPal authentication failed ({response.status_code}): {response.text}")
            raise PaymentGatewayError("PayPal authentication failed")
        client.headers["Authorization"] = f"Bearer {response.json()['access_token']}"

    async def create_checkout(
        self,
        appointment: Appointment,
        professional: Professional,
        return_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        order = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": appointment.id,
                    "custom_id": appointment.id,
                    "description": describe_session(appointment, professional),
                    "amount": {
                        "currency_code": "USD",
                        "value": self.to_usd(appointment.price_amount, appointment.currency),
                    },
                }
            ],
            "application_context": {
                "return_url": return_url,
                "cancel_url": cancel_url,
                "user_action": "PAY_NOW",
                "shipping_preference": "NO_SHIPPING",
            },
        }

        try:
            async with self._client() as client:
                await self._authorize(client)
                response = await client.post("/v2/checkout/orders", json=order)
        except httpx.HTTPError as e:
            logger.error(f"❌ PayPal order request failed: {e}")
            raise PaymentGatewayError("PayPal could not be reached") from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ PayPal order rejected ({response.status_code}): {response.text}")
            raise PaymentGatewayError("PayPal rejected the checkout")

        data = response.json()
        approve_url = next(
            (link["href"] for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not approve_url:
            raise PaymentGatewayError("PayPal order has no approval link")

        logger.info(f"✅ PayPal order {data['id']} created for appointment {appointment.id}")
        return CheckoutSession(provider=PAYPAL, payment_url=approve_url, provider_reference=data["id"])

    async def capture_order(self, order_id: str) -> PaymentNotice:
        """Capture an approved order; an already captured order is read back instead"""
        try:
            async with self._client() as client:
                await self._authorize(client)
                response = await client.post(f"/v2/checkout/orders/{order_id}/capture", json={})
                if response.status_code == 422 and "ORDER_ALREADY_CAPTURED" in response.text:
                    logger.info(f"ℹ️ PayPal order {order_id} already captured")
                    response = await client.get(f"/v2/checkout/orders/{order_id}")
        except httpx.HTTPError as e:
            logger.error(f"❌ PayPal capture request failed: {e}")
            raise PaymentGatewayError("PayPal could not be reached") from e

        if response.status_code not in (200, 201):
            logger.error(f"❌ PayPal capture of {order_id} failed ({response.status_code}): {response.text}")
            raise PaymentGatewayError(f"PayPal order {order_id} could not be captured")

        data = response.json()
        unit = (data.get("purchase_units") or [{}])[0]
        captures = unit.get("payments", {}).get("captures", [])
        status = data.get("status", "unknown")
        return PaymentNotice(
            provider=PAYPAL,
            appointment_id=unit.get("reference_id") or unit.get("custom_id") or "",
            payment_reference=captures[0]["id"] if captures else order_id,
            status=status,
            approved=status == "COMPLETED",
        )


class PaymentGateway:
    """Checkout providers by name"""

    def __init__(
        self,
        mercadopago: Optional[MercadoPagoGateway] = None,
        paypal: Optional[PayPalGateway] = None,
    ):
        self.mercadopago = mercadopago or MercadoPagoGateway()
        self.paypal = paypal or PayPalGateway()

    async def create_checkout(
        self,
        provider: str,
        appointment: Appointment,
        professional: Professional,
        success_url: str,
        failure_url: str,
    ) -> CheckoutSession:
        if provider == MERCADOPAGO:
            return await self.mercadopago.create_checkout(appointment, professional, success_url, failure_url)
        if provider == PAYPAL:
            return await self.paypal.create_checkout(appointment, professional, success_url, failure_url)
        raise PaymentGatewayError(f"Unknown payment provider '{provider}'")


def get_payment_gateway() -> PaymentGateway:
    """Dependency injection for the payment gateway"""
    return PaymentGateway()
