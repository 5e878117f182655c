"""VNPay gateway (v2.1.0). Payment URLs are signed locally; no outbound call is needed to create one."""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode, quote_plus

from tripc.core.config import settings
from tripc.services.providers.base import PaymentProvider, IntentResult, ProviderEvent, SUCCESS, FAILED

VN_TZ = timezone(timedelta(hours=7))
HASH_FIELDS_EXCLUDED = ("vnp_SecureHash", "vnp_SecureHashType")


def canonical_query(params: dict) -> str:
    items = sorted((k, str(v)) for k, v in params.items() if k.startswith("vnp_") and k not in HASH_FIELDS_EXCLUDED and v not in (None, ""))
    return urlencode(items, quote_via=quote_plus)


def sign(params: dict, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), canonical_query(params).encode("utf-8"), hashlib.sha512).hexdigest()


class VnpayProvider(PaymentProvider):
    name = "vnpay"
    currency = "VND"

    def create_intent(self, booking_id, txn_ref, amount, currency, return_url, notify_url):
        now = datetime.now(VN_TZ)
        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": settings.VNPAY_TMN_CODE,
            "vnp_Amount": int(amount) * 100,  # VNPay amounts carry two implied decimals
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": f"Booking {booking_id}",
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": return_url,
            "vnp_IpAddr": "127.0.0.1",
            "vnp_CreateDate": now.strftime("%Y%m%d%H%M%S"),
            "vnp_ExpireDate": (now + timedelta(minutes=settings.HOLD_MINUTES_DEFAULT)).strftime("%Y%m%d%H%M%S"),
        }
        query = canonical_query(params)
        secure_hash = sign(params, settings.VNPAY_HASH_SECRET)
        return IntentResult(
            payment_url=f"{settings.VNPAY_PAYMENT_URL}?{query}&vnp_SecureHash={secure_hash}",
            provider_txn_id=txn_ref,
            metadata={"createDate": params["vnp_CreateDate"], "sandbox": settings.PAYMENTS_SANDBOX},
        )

    def verify_webhook(self, headers, raw_body, payload):
        received = str(payload.get("vnp_SecureHash") or "")
        if not received or not settings.VNPAY_HASH_SECRET:
            return False
        expected = sign(payload, settings.VNPAY_HASH_SECRET)
        return hmac.compare_digest(expected.lower(), received.lower())

    def parse_webhook(self, payload):
        ok = payload.get("vnp_ResponseCode") == "00" and payload.get("vnp_TransactionStatus", "00") == "00"
        info = str(payload.get("vnp_OrderInfo") or "")
        raw_amount = str(payload.get("vnp_Amount") or "")
        return ProviderEvent(
            provider_txn_id=str(payload.get("vnp_TxnRef") or ""),
            outcome=SUCCESS if ok else FAILED,
            amount=int(raw_amount) // 100 if raw_amount.isdigit() else None,
            currency="VND",
            booking_hint=info.split("Booking ", 1)[1].strip() if info.startswith("Booking ") else None,
            metadata={
                "vnpTransactionNo": payload.get("vnp_TransactionNo"),
                "responseCode": payload.get("vnp_ResponseCode"),
                "bankCode": payload.get("vnp_BankCode"),
            },
        )

    def acknowledgement(self, result):
        if result == "already_processed":
            return {"ok": True, "RspCode": "02", "Message": "Order already confirmed"}
        return {"ok": True, "RspCode": "00", "Message": "Confirm Success"}
