"""PayPal Orders v2. Webhooks are verified by PayPal itself via verify-webhook-signature."""
import json
import logging

import requests

from tripc.core.config import settings
from tripc.core.errors import ProviderError
from tripc.services.providers.base import PaymentProvider, IntentResult, ProviderEvent, SUCCESS, PENDING, FAILED

logger = logging.getLogger(__name__)

TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

EVENT_OUTCOMES = {
    "PAYMENT.CAPTURE.COMPLETED": SUCCESS,
    "CHECKOUT.ORDER.APPROVED": PENDING,
    "PAYMENT.CAPTURE.PENDING": PENDING,
    "PAYMENT.CAPTURE.DENIED": FAILED,
    "PAYMENT.CAPTURE.DECLINED": FAILED,
    "CHECKOUT.ORDER.VOIDED": FAILED,
}


def _base_url() -> str:
    return "https://api-m.paypal.com" if settings.PAYPAL_MODE == "live" else "https://api-m.sandbox.paypal.com"


def _cents_to_value(amount: int) -> str:
    return f"{amount / 100:.2f}"


def _value_to_cents(value) -> int | None:
    try:
        return int(round(float(value) * 100))
    except (TypeError, ValueError):
        return None


class PaypalProvider(PaymentProvider):
    name = "paypal"
    currency = "USD"

    def _access_token(self) -> str:
        try:
            r = requests.post(
                f"{_base_url()}/v1/oauth2/token",
                auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_SECRET),
                data={"grant_type": "client_credentials"},
                timeout=20,
            )
        except requests.RequestException as e:
            raise ProviderError(f"PayPal auth failed: {e}") from e
        if r.status_code >= 400:
            raise ProviderError(f"PayPal auth failed: {r.status_code}")
        return r.json()["access_token"]

    def create_intent(self, booking_id, txn_ref, amount, currency, return_url, notify_url):
        if settings.PAYMENTS_SANDBOX:
            return IntentResult(
                payment_url=f"{settings.APP_BASE_URL}/sandbox/paypal?token={txn_ref}",
                provider_txn_id=txn_ref,
                metadata={"sandbox": True},
            )
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": booking_id,
                "custom_id": txn_ref,
                "amount": {"currency_code": currency, "value": _cents_to_value(amount)},
                "description": f"Booking {booking_id}",
            }],
            "application_context": {
                "return_url": return_url,
                "cancel_url": return_url.split("?")[0],
                "brand_name": "TripC",
                "user_action": "PAY_NOW",
            },
        }
        token = self._access_token()
        try:
            r = requests.post(
                f"{_base_url()}/v2/checkout/orders",
                json=body,
                headers={"Authorization": f"Bearer {token}", "PayPal-Request-Id": txn_ref},
                timeout=25,
            )
        except requests.RequestException as e:
            raise ProviderError(f"PayPal gateway error: {e}") from e
        if r.status_code >= 400:
            raise ProviderError(f"PayPal create order failed: {r.status_code} {r.text}")
        data = r.json()
        approve = next((l["href"] for l in data.get("links", []) if l.get("rel") in ("approve", "payer-action")), None)
        if not approve:
            raise ProviderError("No approval link in PayPal response")
        return IntentResult(payment_url=approve, provider_txn_id=data["id"], metadata={"orderId": data["id"], "status": data.get("status")})

    def verify_webhook(self, headers, raw_body, payload):
        lowered = {k.lower(): v for k, v in headers.items()}
        values = {field: lowered.get(h) for field, h in TRANSMISSION_HEADERS.items()}
        if not all(values.values()) or not settings.PAYPAL_WEBHOOK_ID:
            return False
        body = {**values, "webhook_id": settings.PAYPAL_WEBHOOK_ID, "webhook_event": json.loads(raw_body or b"{}")}
        token = self._access_token()
        try:
            r = requests.post(
                f"{_base_url()}/v1/notifications/verify-webhook-signature",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=20,
            )
        except requests.RequestException as e:
            raise ProviderError(f"PayPal verification unavailable: {e}") from e
        if r.status_code >= 400:
            raise ProviderError(f"PayPal verification unavailable: {r.status_code}")
        return r.json().get("verification_status") == "SUCCESS"

    def parse_webhook(self, payload):
        resource = payload.get("resource") or {}
        event_type = payload.get("event_type", "")
        outcome = EVENT_OUTCOMES.get(event_type, PENDING)
        if event_type.startswith("PAYMENT.CAPTURE."):
            # Captures reference the order they belong to
            txn_id = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id") or resource.get("id", "")
            amount = resource.get("amount") or {}
        else:
            txn_id = resource.get("id", "")
            units = resource.get("purchase_units") or [{}]
            amount = units[0].get("amount") or {}
        return ProviderEvent(
            provider_txn_id=str(txn_id),
            outcome=outcome,
            amount=_value_to_cents(amount.get("value")),
            currency=amount.get("currency_code"),
            metadata={"eventType": event_type, "resourceId": resource.get("id")},
        )

    def capture_order(self, order_id: str) -> dict:
        token = self._access_token()
        try:
            r = requests.post(
                f"{_base_url()}/v2/checkout/orders/{order_id}/capture",
                json={},
                headers={"Authorization": f"Bearer {token}"},
                timeout=25,
            )
        except requests.RequestException as e:
            raise ProviderError(f"PayPal capture failed: {e}") from e
        if r.status_code >= 400:
            err = r.json() if r.content else {}
            issue = ((err.get("details") or [{}])[0]).get("issue")
            if issue == "ORDER_ALREADY_CAPTURED":
                return {"id": order_id, "status": "COMPLETED"}
            raise ProviderError(f"PayPal capture failed: {err.get('message') or r.status_code}")
        return r.json()

    def query_status(self, provider_txn_id):
        data = self.capture_order(provider_txn_id)
        status = str(data.get("status") or "").upper()
        logger.info("PayPal capture order=%s status=%s", provider_txn_id, status)
        outcome = SUCCESS if status == "COMPLETED" else (FAILED if status in ("VOIDED", "DECLINED") else PENDING)
        return ProviderEvent(provider_txn_id=provider_txn_id, outcome=outcome, metadata={"captureStatus": status})
