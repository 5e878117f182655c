"""MoMo wallet (captureWallet, v2 gateway)."""
import hashlib
import hmac
import logging
import time

import requests

from tripc.core.config import settings
from tripc.core.errors import ProviderError
from tripc.services.providers.base import PaymentProvider, IntentResult, ProviderEvent, SUCCESS, PENDING, FAILED

logger = logging.getLogger(__name__)

# Field order of the raw signature strings is fixed by MoMo
CREATE_FIELDS = ("accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo", "partnerCode", "redirectUrl", "requestId", "requestType")
IPN_FIELDS = ("accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType", "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId")
QUERY_FIELDS = ("accessKey", "orderId", "partnerCode", "requestId")

RESULT_SUCCESS = 0
RESULT_PENDING = (7000, 9000)  # processing / authorised awaiting capture


def sign(values: dict, fields: tuple[str, ...], secret_key: str) -> str:
    raw = "&".join(f"{k}={values.get(k, '')}" for k in fields)
    return hmac.new(secret_key.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


def _outcome(result_code) -> str:
    try:
        code = int(result_code)
    except (TypeError, ValueError):
        return FAILED
    if code == RESULT_SUCCESS:
        return SUCCESS
    if code in RESULT_PENDING:
        return PENDING
    return FAILED


class MomoProvider(PaymentProvider):
    name = "momo"
    currency = "VND"

    def create_intent(self, booking_id, txn_ref, amount, currency, return_url, notify_url):
        order_id = txn_ref
        values = {
            "accessKey": settings.MOMO_ACCESS_KEY,
            "amount": int(amount),
            "extraData": "",
            "ipnUrl": notify_url,
            "orderId": order_id,
            "orderInfo": f"Booking {booking_id}",
            "partnerCode": settings.MOMO_PARTNER_CODE,
            "redirectUrl": return_url,
            "requestId": order_id,
            "requestType": "captureWallet",
        }
        if settings.PAYMENTS_SANDBOX:
            return IntentResult(
                payment_url=f"{settings.APP_BASE_URL}/sandbox/momo?orderId={order_id}",
                provider_txn_id=order_id,
                metadata={"sandbox": True, "requestId": order_id},
            )

        body = {
            "partnerCode": settings.MOMO_PARTNER_CODE,
            "partnerName": "TripC",
            "storeId": "TripC_Store",
            "requestId": order_id,
            "amount": int(amount),
            "orderId": order_id,
            "orderInfo": values["orderInfo"],
            "redirectUrl": return_url,
            "ipnUrl": notify_url,
            "lang": "vi",
            "requestType": "captureWallet",
            "autoCapture": True,
            "extraData": "",
            "signature": sign(values, CREATE_FIELDS, settings.MOMO_SECRET_KEY),
        }
        try:
            r = requests.post(settings.MOMO_CREATE_ENDPOINT, json=body, timeout=25)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"MoMo gateway error: {e}") from e
        if data.get("resultCode") != 0:
            raise ProviderError(f"MoMo rejected payment: {data.get('message') or data.get('localMessage')}")
        return IntentResult(
            payment_url=data.get("payUrl", ""),
            provider_txn_id=order_id,
            metadata={"requestId": order_id, "qrCodeUrl": data.get("qrCodeUrl")},
        )

    def verify_webhook(self, headers, raw_body, payload):
        received = str(payload.get("signature") or "")
        if not received or not settings.MOMO_SECRET_KEY:
            return False
        values = dict(payload)
        values["accessKey"] = settings.MOMO_ACCESS_KEY
        expected = sign(values, IPN_FIELDS, settings.MOMO_SECRET_KEY)
        return hmac.compare_digest(expected, received)

    def parse_webhook(self, payload):
        order_info = str(payload.get("orderInfo") or "")
        hint = order_info.split("Booking ", 1)[1].strip() if order_info.startswith("Booking ") else None
        return ProviderEvent(
            provider_txn_id=str(payload.get("orderId") or ""),
            outcome=_outcome(payload.get("resultCode")),
            amount=int(payload["amount"]) if str(payload.get("amount", "")).isdigit() else None,
            currency="VND",
            booking_hint=hint,
            metadata={"momoTransId": payload.get("transId"), "message": payload.get("message"), "payType": payload.get("payType")},
        )

    def acknowledgement(self, result):
        # MoMo expects an empty 2xx; the body is informational
        return {"ok": True}

    def query_status(self, provider_txn_id):
        request_id = f"{provider_txn_id}-q{int(time.time())}"
        values = {
            "accessKey": settings.MOMO_ACCESS_KEY,
            "orderId": provider_txn_id,
            "partnerCode": settings.MOMO_PARTNER_CODE,
            "requestId": request_id,
        }
        body = {
            "partnerCode": settings.MOMO_PARTNER_CODE,
            "requestId": request_id,
            "orderId": provider_txn_id,
            "lang": "vi",
            "signature": sign(values, QUERY_FIELDS, settings.MOMO_SECRET_KEY),
        }
        try:
            r = requests.post(settings.MOMO_QUERY_ENDPOINT, json=body, timeout=25)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"MoMo query failed: {e}") from e
        logger.info("MoMo query order=%s resultCode=%s", provider_txn_id, data.get("resultCode"))
        return ProviderEvent(
            provider_txn_id=provider_txn_id,
            outcome=_outcome(data.get("resultCode")),
            amount=data.get("amount"),
            currency="VND",
            metadata={"momoTransId": data.get("transId"), "message": data.get("message")},
        )
