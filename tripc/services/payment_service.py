"""Payment intents and provider webhooks.

Webhook handling order: verify signature (no writes on failure), match the transaction,
short-circuit if it already succeeded, then apply the outcome. The success path marks
the transaction with a compare-and-set (status != success) so two concurrent deliveries
cannot both settle.
"""
import json
import logging
import uuid
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from tripc.core.config import settings
from tripc.core.errors import (
    BookingNotPayableError,
    NotFoundError,
    ProviderError,
    SignatureVerificationError,
    TransactionNotFoundError,
    ValidationError,
)
from tripc.core.timeutils import ensure_utc, utcnow
from tripc.db.session import commit_or_raise
from tripc.models.booking import Booking, HELD, PENDING_PAYMENT, CANCELLED, EXPIRED, TERMINAL_STATUSES, UNPAID_STATUSES
from tripc.models.payment import PaymentTransaction
from tripc.services import settlement_service
from tripc.services.event_service import log_booking_event
from tripc.services.hold_service import expire_booking, mark_pending_payment, reopen_hold
from tripc.services.providers import get_provider, PaymentProvider, ProviderEvent, SUCCESS, PENDING
from tripc.services.settings_service import convert_amount

logger = logging.getLogger(__name__)

# Webhook results
PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"
DUPLICATE = "duplicate_payment"
CLOSED = "closed_booking"


def _txn_ref(provider: PaymentProvider) -> str:
    return f"{provider.name.upper()}{uuid.uuid4().hex[:20].upper()}"


def _notify_url(provider: PaymentProvider) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/api/v1/payments/webhooks/{provider.name}"


def create_payment_intent(db: Session, booking_id: str, provider_name: str, return_url: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    provider = get_provider(provider_name)
    if not return_url:
        raise ValidationError("Missing required fields", fields=["returnUrl"])

    b = db.get(Booking, booking_id)
    if not b:
        raise NotFoundError("Booking not found")
    if b.status in UNPAID_STATUSES and ensure_utc(b.expires_at) and ensure_utc(b.expires_at) <= now:
        if expire_booking(db, b, now=now):
            commit_or_raise(db, "hold expiry")
            db.refresh(b)
    if b.status in TERMINAL_STATUSES:
        raise BookingNotPayableError(f"Booking is {b.status} and cannot be paid")
    if b.payment_status == "paid" or db.query(PaymentTransaction.id).filter(
        PaymentTransaction.booking_id == b.id, PaymentTransaction.status == SUCCESS
    ).first():
        raise BookingNotPayableError("Booking is already paid")
    if b.status not in (HELD, PENDING_PAYMENT):
        raise BookingNotPayableError(f"Booking is {b.status} and cannot be paid")

    amount = convert_amount(db, b.total_amount, b.currency, provider.currency)
    ref = _txn_ref(provider)
    txn = PaymentTransaction(
        id=str(uuid.uuid4()),
        booking_id=b.id,
        provider=provider.name,
        provider_transaction_id=ref,
        amount=amount,
        currency=provider.currency,
        status="pending",
    )
    db.add(txn)
    commit_or_raise(db, "payment transaction")

    try:
        result = provider.create_intent(b.id, ref, amount, provider.currency, return_url, _notify_url(provider))
    except ProviderError as e:
        txn.status = "failed"
        txn.metadata_json = json.dumps({"error": str(e)})
        log_booking_event(db, b.id, "PAYMENT_INTENT_FAILED", {"provider": provider.name, "error": str(e)})
        commit_or_raise(db, "failed payment transaction")
        logger.warning("Payment intent failed booking=%s provider=%s: %s", b.id, provider.name, e)
        raise

    txn.provider_transaction_id = result.provider_txn_id
    txn.payment_url = result.payment_url
    txn.metadata_json = json.dumps(result.metadata, ensure_ascii=False, default=str)
    log_booking_event(db, b.id, "PAYMENT_INTENT_CREATED", {
        "provider": provider.name,
        "providerTxnId": result.provider_txn_id,
        "amount": amount,
        "currency": provider.currency,
    })
    commit_or_raise(db, "payment intent")
    logger.info(
        "Payment intent created booking=%s provider=%s provider_txn=%s amount=%s %s",
        b.id, provider.name, result.provider_txn_id, amount, provider.currency,
    )
    return {
        "paymentUrl": result.payment_url,
        "providerTxnId": result.provider_txn_id,
        "transactionId": txn.id,
        "amount": amount,
        "currency": provider.currency,
    }


def _find_txn(db: Session, provider: str, provider_txn_id: str) -> PaymentTransaction | None:
    if not provider_txn_id:
        return None
    return db.query(PaymentTransaction).filter(
        PaymentTransaction.provider == provider,
        PaymentTransaction.provider_transaction_id == provider_txn_id,
    ).first()


def _mark_txn(db: Session, txn: PaymentTransaction, status: str, payload: dict | None) -> bool:
    """CAS the transaction away from a non-success status. False if it already succeeded."""
    values = {"status": status, "updated_at": utcnow()}
    if payload is not None:
        values["webhook_payload_json"] = json.dumps(payload, ensure_ascii=False, default=str)
    result = db.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.id == txn.id, PaymentTransaction.status != SUCCESS)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply_outcome(db: Session, provider: PaymentProvider, event: ProviderEvent, payload: dict | None, now: datetime | None = None) -> str:
    """Apply a verified provider outcome. Shared by webhooks and status sync."""
    now = now or utcnow()
    txn = _find_txn(db, provider.name, event.provider_txn_id)
    if txn is None:
        logger.error("Webhook transaction not found provider=%s provider_txn=%s", provider.name, event.provider_txn_id)
        if event.booking_hint and db.get(Booking, event.booking_hint):
            log_booking_event(db, event.booking_hint, "WEBHOOK_UNMATCHED", {
                "provider": provider.name,
                "providerTxnId": event.provider_txn_id,
            })
            commit_or_raise(db, "unmatched webhook event")
        raise TransactionNotFoundError("Transaction not found")

    if txn.status == SUCCESS:
        logger.info("Webhook already processed provider=%s txn=%s booking=%s", provider.name, txn.id, txn.booking_id)
        return ALREADY_PROCESSED

    booking = db.get(Booking, txn.booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    if event.outcome == SUCCESS:
        result = _apply_success(db, booking, txn, payload, now)
    elif event.outcome == PENDING:
        result = _apply_pending(db, booking, txn, payload, now)
    else:
        result = _apply_failure(db, booking, txn, payload, now)
    return result


def _apply_success(db: Session, booking: Booking, txn: PaymentTransaction, payload: dict | None, now: datetime) -> str:
    if booking.status in (CANCELLED, EXPIRED):
        if not _mark_txn(db, txn, SUCCESS, payload):
            db.rollback()
            return ALREADY_PROCESSED
        log_booking_event(db, booking.id, "PAYMENT_ON_CLOSED_BOOKING", {"transactionId": txn.id, "bookingStatus": booking.status})
        commit_or_raise(db, "payment on closed booking")
        logger.error(
            "Reconciliation discrepancy: payment txn=%s succeeded for %s booking=%s code=%s, refund required",
            txn.id, booking.status, booking.id, booking.booking_code,
        )
        return CLOSED

    if booking.payment_status == "paid" or booking.status not in (HELD, PENDING_PAYMENT):
        return _record_duplicate(db, booking, txn)

    if not _mark_txn(db, txn, SUCCESS, payload):
        db.rollback()
        return ALREADY_PROCESSED
    if not settlement_service.settle(db, booking, txn, now=now):
        # Booking moved on between our read and the CAS; re-evaluate against the fresh row
        db.rollback()
        db.refresh(booking)
        if booking.status in (CANCELLED, EXPIRED):
            return _apply_success(db, booking, txn, payload, now)
        return _record_duplicate(db, booking, txn)
    commit_or_raise(db, "settlement")

    db.refresh(booking)
    settlement_service.dispatch_confirmation(db, booking)
    return PROCESSED


def _record_duplicate(db: Session, booking: Booking, txn: PaymentTransaction) -> str:
    log_booking_event(db, booking.id, "DUPLICATE_PAYMENT", {"transactionId": txn.id, "providerTxnId": txn.provider_transaction_id})
    commit_or_raise(db, "duplicate payment event")
    logger.error(
        "Reconciliation discrepancy: duplicate successful payment txn=%s for already confirmed booking=%s code=%s, refund required",
        txn.id, booking.id, booking.booking_code,
    )
    return DUPLICATE


def _apply_pending(db: Session, booking: Booking, txn: PaymentTransaction, payload: dict | None, now: datetime) -> str:
    if booking.status == HELD and not mark_pending_payment(db, booking, now=now):
        logger.warning("Pending payment on lapsed hold booking=%s txn=%s", booking.id, txn.id)
    log_booking_event(db, booking.id, "PAYMENT_PENDING", {"transactionId": txn.id})
    commit_or_raise(db, "pending payment")
    logger.info("Payment pending booking=%s txn=%s", booking.id, txn.id)
    return PROCESSED


def _apply_failure(db: Session, booking: Booking, txn: PaymentTransaction, payload: dict | None, now: datetime) -> str:
    if not _mark_txn(db, txn, "failed", payload):
        db.rollback()
        return ALREADY_PROCESSED
    # The payer may retry while the window lasts; after that the capacity goes back
    if booking.status == PENDING_PAYMENT and not reopen_hold(db, booking, now=now):
        expire_booking(db, booking, now=now)
    log_booking_event(db, booking.id, "PAYMENT_FAILED", {"transactionId": txn.id})
    commit_or_raise(db, "failed payment")
    db.refresh(booking)
    logger.info("Payment failed booking=%s txn=%s status=%s", booking.id, txn.id, booking.status)
    return PROCESSED


def handle_webhook(db: Session, provider_name: str, headers: dict, raw_body: bytes, payload: dict) -> dict:
    provider = get_provider(provider_name)
    if not provider.verify_webhook(headers, raw_body, payload):
        logger.warning(
            "Webhook signature rejected provider=%s, potential forged request (payload keys=%s)",
            provider.name, sorted(payload.keys()),
        )
        raise SignatureVerificationError("Invalid signature")

    event = provider.parse_webhook(payload)
    logger.info("Webhook verified provider=%s provider_txn=%s outcome=%s", provider.name, event.provider_txn_id, event.outcome)
    result = apply_outcome(db, provider, event, payload)
    return {**provider.acknowledgement(result), "result": result}


def sync_payment(db: Session, provider_name: str, provider_txn_id: str) -> dict:
    """Ask the provider for the outcome directly, for when webhooks cannot reach us."""
    provider = get_provider(provider_name)
    txn = _find_txn(db, provider.name, provider_txn_id)
    if txn is None:
        raise TransactionNotFoundError("Transaction not found")
    if txn.status == SUCCESS:
        return {"ok": True, "result": ALREADY_PROCESSED, "bookingId": txn.booking_id, "status": SUCCESS}
    try:
        event = provider.query_status(provider_txn_id)
    except NotImplementedError as e:
        raise ValidationError(str(e)) from e
    result = apply_outcome(db, provider, event, None)
    db.refresh(txn)
    return {"ok": txn.status == SUCCESS, "result": result, "bookingId": txn.booking_id, "status": txn.status}
