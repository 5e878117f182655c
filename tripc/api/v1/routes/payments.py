import json
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from tripc.core.errors import ValidationError
from tripc.db.session import get_db
from tripc.schemas.payments import PaymentCreateOut, PaymentCreateRequest, PaymentSyncRequest
from tripc.services.payment_service import create_payment_intent, handle_webhook, sync_payment

router = APIRouter(tags=["payments"])


@router.post("/payments/create", response_model=PaymentCreateOut)
def create_payment(body: PaymentCreateRequest, db: Session = Depends(get_db)):
    return create_payment_intent(db, body.bookingId, body.provider, body.returnUrl)


async def _read_payload(req: Request) -> tuple[bytes, dict]:
    """Signature checks need the raw bytes, so the body is read here and the sync handler runs off the event loop."""
    body = await req.body()
    if req.method == "GET":
        return body, dict(req.query_params)
    content_type = req.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        return body, dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Malformed webhook body")
    if not isinstance(payload, dict):
        raise ValidationError("Malformed webhook body")
    return body, payload


@router.post("/payments/webhooks/{provider}")
async def provider_webhook(provider: str, req: Request, db: Session = Depends(get_db)):
    raw_body, payload = await _read_payload(req)
    return await run_in_threadpool(handle_webhook, db, provider, dict(req.headers), raw_body, payload)


@router.get("/payments/webhooks/{provider}")
async def provider_webhook_get(provider: str, req: Request, db: Session = Depends(get_db)):
    """VNPay delivers its IPN as a GET with the signed parameters in the query string."""
    raw_body, payload = await _read_payload(req)
    return await run_in_threadpool(handle_webhook, db, provider, dict(req.headers), raw_body, payload)


@router.post("/payments/sync")
def sync(body: PaymentSyncRequest, db: Session = Depends(get_db)):
    provider_txn_id = body.providerTxnId or body.token
    if not provider_txn_id:
        raise ValidationError("Missing required fields", fields=["providerTxnId"])
    return sync_payment(db, body.provider, provider_txn_id)
