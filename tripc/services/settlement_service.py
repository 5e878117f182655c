"""Settlement: side effects applied once a payment is confirmed.

settle() runs inside the webhook's unit of work and does not commit; the caller commits
the transaction status, booking confirmation, voucher consumption, shop order and loyalty accrual
together. Notification happens after that commit and never undoes it.
"""
import json
import logging
import random
import string
import uuid
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tripc.core.config import settings
from tripc.core.errors import StoreError
from tripc.core.timeutils import utcnow
from tripc.models.booking import Booking, CONFIRMED
from tripc.models.payment import PaymentTransaction
from tripc.models.shop_order import ShopOrder, ShopOrderItem
from tripc.services import ledger_service
from tripc.services.email_service import notify_booking_confirmed
from tripc.services.event_service import log_booking_event, has_event
from tripc.services.hold_service import transition
from tripc.services.settings_service import convert_amount
from tripc.services.voucher_service import consume_for_booking

logger = logging.getLogger(__name__)

LOYALTY_REASON = "loyalty_accrual"


def loyalty_points(db: Session, booking: Booking) -> int:
    cents = convert_amount(db, booking.total_amount, booking.currency, "USD")
    return (cents // 100) * settings.LOYALTY_POINTS_PER_USD


def _consume_voucher(db: Session, booking: Booking, now: datetime) -> bool:
    savepoint = db.begin_nested()
    try:
        ok = consume_for_booking(db, booking, now=now)
    except SQLAlchemyError:
        logger.exception("Voucher consumption errored booking=%s", booking.id)
        ok = False
    if ok:
        savepoint.commit()
        return True
    savepoint.rollback()
    logger.error(
        "Reconciliation discrepancy: booking=%s code=%s confirmed but voucher=%s user_voucher=%s was not consumed",
        booking.id, booking.booking_code, booking.voucher_id, booking.user_voucher_id,
    )
    log_booking_event(db, booking.id, "VOUCHER_CONSUMPTION_FAILED", {
        "voucherId": booking.voucher_id,
        "userVoucherId": booking.user_voucher_id,
    })
    return False


def _order_number(db: Session) -> str:
    for _ in range(10):
        number = "ORD-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=10))
        if not db.query(ShopOrder.id).filter(ShopOrder.order_number == number).first():
            return number
    raise StoreError("Could not allocate an order number")


def place_shop_order(db: Session, booking: Booking) -> ShopOrder:
    """Turn a paid shop booking into an order with its item snapshot. Idempotent per booking. Does not commit."""
    existing = db.query(ShopOrder).filter(ShopOrder.booking_id == booking.id).first()
    if existing:
        return existing
    items = json.loads(booking.metadata_json or "{}").get("items") or []
    order = ShopOrder(
        id=str(uuid.uuid4()),
        order_number=_order_number(db),
        booking_id=booking.id,
        user_id=booking.user_id,
        subtotal=booking.total_amount,
        currency=booking.currency,
    )
    db.add(order)
    for item in items:
        qty, price = int(item.get("quantity") or 1), int(item.get("price") or 0)
        db.add(ShopOrderItem(
            id=str(uuid.uuid4()),
            order_id=order.id,
            product_id=item.get("productId"),
            title_snapshot=item.get("name") or "Item",
            qty=qty,
            unit_price=price,
            line_total=qty * price,
        ))
    db.flush()
    logger.info("Shop order placed booking=%s order=%s items=%s", booking.id, order.order_number, len(items))
    return order


def _fulfil_shop(db: Session, booking: Booking) -> dict:
    return {"orderNumber": place_shop_order(db, booking).order_number}


# Category-specific fulfilment run inside the settlement transaction
CATEGORY_HOOKS = {
    "shop": _fulfil_shop,
}


def settle(db: Session, booking: Booking, txn: PaymentTransaction, now: datetime | None = None) -> bool:
    """Confirm the booking and apply its ledger and voucher effects. Returns False if already settled
    or the booking could not be moved to confirmed."""
    now = now or utcnow()
    if has_event(db, booking.id, "SETTLEMENT_COMPLETED"):
        return False
    if not transition(db, booking.id, CONFIRMED, payment_status="paid", confirmed_at=now, expires_at=None):
        return False
    db.refresh(booking)

    voucher_consumed = None
    if booking.voucher_id or booking.user_voucher_id:
        voucher_consumed = _consume_voucher(db, booking, now)

    fulfilment = {}
    hook = CATEGORY_HOOKS.get(booking.category)
    if hook:
        fulfilment = hook(db, booking)

    points = 0
    if booking.user_id:
        points = loyalty_points(db, booking)
        if points > 0:
            ledger_service.post_entry(
                db, booking.user_id, points, LOYALTY_REASON,
                description=f"Loyalty for {booking.booking_code}",
                related_booking_id=booking.id,
                reference_type="booking", reference_id=booking.id,
            )

    log_booking_event(db, booking.id, "SETTLEMENT_COMPLETED", {
        "transactionId": txn.id,
        "provider": txn.provider,
        "providerTxnId": txn.provider_transaction_id,
        "loyaltyPoints": points,
        "voucherConsumed": voucher_consumed,
        **fulfilment,
    })
    logger.info("Settlement completed booking=%s code=%s txn=%s points=%s", booking.id, booking.booking_code, txn.id, points)
    return True


def dispatch_confirmation(db: Session, booking: Booking) -> None:
    """Queue the confirmation e-mail. Runs after the settlement commit."""
    try:
        notify_booking_confirmed(db, booking)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Notifier failed for booking=%s, will need manual resend: %s", booking.booking_code, e)
