import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tripc.core.config import settings
from tripc.core.errors import BookingNotCancellableError, ForbiddenError, InsufficientFundsError, NotFoundError
from tripc.core.security import AuthenticatedIdentity, GuestIdentity, Identity
from tripc.core.timeutils import ensure_utc, slot_start, utcnow
from tripc.db.session import commit_or_raise
from tripc.models.booking import Booking, CONFIRMED, CANCELLED, TRANSITIONS, UNPAID_STATUSES
from tripc.models.ledger import LedgerEntry
from tripc.services import ledger_service
from tripc.services.email_service import notify_booking_cancelled
from tripc.services.event_service import log_booking_event
from tripc.services.hold_service import expire_booking, release_slots, transition
from tripc.services.settlement_service import LOYALTY_REASON

logger = logging.getLogger(__name__)

# Categories whose confirmed bookings fall under the no-cancellation window
APPOINTMENT_CATEGORIES = ("dining", "beauty", "wellness", "activity")


def booking_to_dict(b: Booking) -> dict:
    return {
        "bookingId": b.id,
        "bookingCode": b.booking_code,
        "category": b.category,
        "title": b.title,
        "status": b.status,
        "paymentStatus": b.payment_status,
        "userId": b.user_id,
        "resourceId": b.resource_id,
        "date": b.slot_date,
        "time": b.slot_time,
        "partySize": b.party_size,
        "subtotalAmount": b.subtotal_amount,
        "discountAmount": b.discount_amount,
        "totalAmount": b.total_amount,
        "currency": b.currency,
        "expiresAt": ensure_utc(b.expires_at).isoformat() if b.expires_at else None,
        "confirmedAt": ensure_utc(b.confirmed_at).isoformat() if b.confirmed_at else None,
        "cancelledAt": ensure_utc(b.cancelled_at).isoformat() if b.cancelled_at else None,
        "cancellationReason": b.cancellation_reason or None,
        "metadata": json.loads(b.metadata_json or "{}"),
        "createdAt": ensure_utc(b.created_at).isoformat() if b.created_at else None,
    }


def get_booking(db: Session, booking_id: str, now: datetime | None = None) -> Booking:
    """Load a booking, expiring it first if its unpaid window has lapsed."""
    now = now or utcnow()
    b = db.get(Booking, booking_id)
    if not b:
        raise NotFoundError("Booking not found")
    if b.status in UNPAID_STATUSES and b.expires_at and ensure_utc(b.expires_at) <= now:
        if expire_booking(db, b, now=now):
            commit_or_raise(db, "hold expiry")
        db.refresh(b)
    return b


def list_user_bookings(db: Session, user_id: str, limit: int = 50) -> list[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc())
        .limit(limit)
        .all()
    )


def check_access(b: Booking, identity: Identity, is_staff: bool, action: str = "cancel") -> None:
    """Staff, the owning user, or a guest presenting the checkout e-mail."""
    if is_staff:
        return
    if isinstance(identity, AuthenticatedIdentity) and b.user_id == identity.user_id:
        return
    if isinstance(identity, GuestIdentity) and b.user_id is None:
        email = (identity.contact.email or "").strip().lower()
        if email and email == (b.guest_email or "").lower():
            return
    raise ForbiddenError(f"You cannot {action} this booking")


def _check_window(b: Booking, now: datetime) -> None:
    if b.status != CONFIRMED or b.category not in APPOINTMENT_CATEGORIES or not (b.slot_date and b.slot_time):
        return
    if slot_start(b.slot_date, b.slot_time) - now < timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS):
        raise BookingNotCancellableError(
            f"Bookings cannot be cancelled within {settings.CANCELLATION_CUTOFF_HOURS} hours of the appointment"
        )


def _reverse_loyalty(db: Session, b: Booking) -> int:
    accrued = db.execute(
        select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
            LedgerEntry.related_booking_id == b.id,
            LedgerEntry.reason == LOYALTY_REASON,
        )
    ).scalar_one()
    if not accrued or not b.user_id:
        return 0
    try:
        ledger_service.post_entry(
            db, b.user_id, -int(accrued), "loyalty_reversal",
            description=f"Cancelled {b.booking_code}",
            related_booking_id=b.id,
            reference_type="booking", reference_id=b.id,
        )
    except InsufficientFundsError:
        logger.error(
            "Reconciliation discrepancy: cannot reverse %s loyalty points for cancelled booking=%s user=%s",
            accrued, b.id, b.user_id,
        )
        return 0
    return int(accrued)


def cancel_booking(
    db: Session,
    booking_id: str,
    identity: Identity,
    reason: str = "",
    is_staff: bool = False,
    now: datetime | None = None,
) -> Booking:
    now = now or utcnow()
    b = get_booking(db, booking_id, now=now)
    check_access(b, identity, is_staff)
    if CANCELLED not in TRANSITIONS.get(b.status, set()):
        raise BookingNotCancellableError(f"Booking is {b.status} and cannot be cancelled")
    _check_window(b, now)

    was_confirmed = b.status == CONFIRMED
    if not transition(db, b.id, CANCELLED, cancelled_at=now, cancellation_reason=(reason or "")[:500]):
        db.rollback()
        db.refresh(b)
        raise BookingNotCancellableError(f"Booking is {b.status} and cannot be cancelled")

    released = release_slots(db, b.id, now=now)
    reversed_points = _reverse_loyalty(db, b) if was_confirmed else 0
    log_booking_event(
        db, b.id, "BOOKING_CANCELLED",
        {"reason": reason, "releasedUnits": released, "loyaltyReversed": reversed_points},
        actor="staff" if is_staff else "customer",
    )
    commit_or_raise(db, "cancellation")
    db.refresh(b)
    logger.info("Booking cancelled booking=%s code=%s released=%s", b.id, b.booking_code, released)

    try:
        notify_booking_cancelled(db, b)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Notifier failed for cancelled booking=%s: %s", b.booking_code, e)
    return b
