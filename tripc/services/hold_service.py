"""Hold Manager: time-boxed held bookings that provisionally occupy capacity.

Capacity is taken with a single conditional UPDATE per key
(consumed = consumed + n WHERE consumed + n <= total_capacity), so two concurrent
checkouts cannot both succeed past the last free unit. Every key of a booking is taken
inside one transaction: if any key fails the whole hold is rolled back.
"""
import json
import logging
import random
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tripc.core.config import settings
from tripc.core.errors import AvailabilityError, StoreError
from tripc.core.timeutils import ensure_utc, utcnow
from tripc.db.session import commit_or_raise
from tripc.models.booking import Booking, BookingSlot, HELD, EXPIRED, PENDING_PAYMENT, UNPAID_STATUSES, sources_for
from tripc.models.resource import Resource, SlotCapacity
from tripc.services.availability_service import check_keys
from tripc.services.event_service import log_booking_event

logger = logging.getLogger(__name__)

CODE_PREFIXES = {
    "hotel": "HTL",
    "flight": "FLT",
    "dining": "DIN",
    "activity": "ACT",
    "event": "EVT",
    "wellness": "WEL",
    "beauty": "BTY",
    "transport": "TRN",
    "shop": "SHP",
}


@dataclass
class HoldRequest:
    """Everything needed to persist a held booking; built by the checkout orchestrator."""
    category: str
    title: str
    currency: str
    subtotal_amount: int
    discount_amount: int
    total_amount: int
    party_size: int = 1
    resource_id: str | None = None
    keys: list[tuple[str, str]] = field(default_factory=list)  # (date, time) capacity keys
    user_id: str | None = None
    guest_name: str = ""
    guest_email: str = ""
    guest_phone: str = ""
    voucher_id: str | None = None
    user_voucher_id: str | None = None
    metadata: dict = field(default_factory=dict)


def make_booking_code(category: str) -> str:
    return CODE_PREFIXES.get(category, "BKG") + "-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


def _allocate_code(db: Session, category: str) -> str:
    # booking_code must be unique
    for _ in range(10):
        code = make_booking_code(category)
        exists = db.query(Booking.id).filter(Booking.booking_code == code).first()
        if not exists:
            return code
    raise StoreError("could not allocate booking code")


def _get_or_create_slot(db: Session, resource: Resource, date_str: str, time_str: str) -> SlotCapacity:
    sc = db.query(SlotCapacity).filter_by(resource_id=resource.id, date_str=date_str, time_str=time_str).first()
    if sc:
        return sc
    try:
        with db.begin_nested():
            sc = SlotCapacity(
                id=str(uuid.uuid4()),
                resource_id=resource.id,
                date_str=date_str,
                time_str=time_str,
                total_capacity=resource.capacity,
                consumed=0,
            )
            db.add(sc)
        return sc
    except IntegrityError:
        # Another request created the key concurrently
        return db.query(SlotCapacity).filter_by(resource_id=resource.id, date_str=date_str, time_str=time_str).one()


def _try_consume(db: Session, slot_id: str, units: int) -> bool:
    result = db.execute(
        update(SlotCapacity)
        .where(SlotCapacity.id == slot_id, SlotCapacity.consumed + units <= SlotCapacity.total_capacity)
        .values(consumed=SlotCapacity.consumed + units)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_slots(db: Session, booking_id: str, now: datetime | None = None) -> int:
    """Give back every unreleased capacity unit of a booking. Does not commit."""
    now = now or utcnow()
    released = 0
    slots = db.query(BookingSlot).filter(BookingSlot.booking_id == booking_id, BookingSlot.released_at.is_(None)).all()
    for s in slots:
        db.execute(
            update(SlotCapacity)
            .where(SlotCapacity.id == s.slot_capacity_id, SlotCapacity.consumed >= s.units)
            .values(consumed=SlotCapacity.consumed - s.units)
            .execution_options(synchronize_session=False)
        )
        s.released_at = now
        released += s.units
    return released


def transition(db: Session, booking_id: str, target: str, **values) -> bool:
    """Compare-and-set a booking status along an allowed transition. Returns False if the row moved on."""
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status.in_(sources_for(target)))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_booking(db: Session, booking: Booking, now: datetime | None = None) -> bool:
    """Expire one unpaid booking whose window has lapsed and release its capacity. Does not commit."""
    now = now or utcnow()
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status.in_(UNPAID_STATUSES), Booking.expires_at <= now)
        .values(status=EXPIRED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    units = release_slots(db, booking.id, now=now)
    log_booking_event(db, booking.id, "HOLD_EXPIRED", {"releasedUnits": units})
    logger.info("Hold expired booking=%s code=%s released=%s", booking.id, booking.booking_code, units)
    return True


def mark_pending_payment(db: Session, booking: Booking, now: datetime | None = None) -> bool:
    """held -> pending_payment while the hold is live, stretching expires_at to the pending window.
    Does not commit."""
    now = now or utcnow()
    window = now + timedelta(minutes=settings.PENDING_PAYMENT_MINUTES)
    current = ensure_utc(booking.expires_at)
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == HELD, Booking.expires_at > now)
        .values(status=PENDING_PAYMENT, payment_status="pending", expires_at=max(window, current or window))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def reopen_hold(db: Session, booking: Booking, now: datetime | None = None) -> bool:
    """pending_payment -> held after a failed attempt, keeping expires_at. Does not commit."""
    now = now or utcnow()
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == PENDING_PAYMENT, Booking.expires_at > now)
        .values(status=HELD, payment_status="unpaid")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_stale_holds(
    db: Session,
    now: datetime | None = None,
    resource_id: str | None = None,
    keys: list[tuple[str, str]] | None = None,
) -> int:
    """Expire lapsed holds, optionally narrowed to one resource (and its keys). Does not commit."""
    now = now or utcnow()
    q = db.query(Booking).filter(
        Booking.status.in_(UNPAID_STATUSES),
        Booking.expires_at.isnot(None),
        Booking.expires_at <= now,
    )
    if resource_id:
        q = q.filter(Booking.resource_id == resource_id)
        if keys:
            dates = sorted({d for d, _ in keys})
            booking_ids = db.query(BookingSlot.booking_id).filter(
                BookingSlot.resource_id == resource_id,
                BookingSlot.date_str.in_(dates),
            )
            q = q.filter(Booking.id.in_(booking_ids))
    count = 0
    for b in q.all():
        if expire_booking(db, b, now=now):
            count += 1
    return count


def create_held_booking(db: Session, req: HoldRequest, now: datetime | None = None) -> Booking:
    now = now or utcnow()
    resource = db.get(Resource, req.resource_id) if req.resource_id else None

    if resource is not None and req.keys:
        # Lazy expiry on the keys we are about to take
        if expire_stale_holds(db, now=now, resource_id=resource.id, keys=req.keys):
            commit_or_raise(db, "hold expiry")

        result = check_keys(db, resource.id, req.keys, req.party_size, now=now)
        if not result.available:
            raise AvailabilityError(result.reason or "Slot not available")

    booking = Booking(
        id=str(uuid.uuid4()),
        booking_code=_allocate_code(db, req.category),
        category=req.category,
        title=req.title,
        user_id=req.user_id,
        guest_name=req.guest_name,
        guest_email=req.guest_email.lower(),
        guest_phone=req.guest_phone,
        status=HELD,
        payment_status="unpaid",
        resource_id=req.resource_id,
        slot_date=req.keys[0][0] if req.keys else None,
        slot_time=req.keys[0][1] if req.keys else None,
        party_size=req.party_size,
        subtotal_amount=req.subtotal_amount,
        discount_amount=req.discount_amount,
        total_amount=req.total_amount,
        currency=req.currency,
        voucher_id=req.voucher_id,
        user_voucher_id=req.user_voucher_id,
        expires_at=now + timedelta(minutes=settings.hold_minutes_for(req.category)),
        metadata_json=json.dumps(req.metadata, ensure_ascii=False, default=str),
    )
    db.add(booking)

    if resource is not None:
        for date_str, time_str in req.keys:
            sc = _get_or_create_slot(db, resource, date_str, time_str)
            if not _try_consume(db, sc.id, req.party_size):
                db.rollback()
                logger.info("Hold lost race resource=%s key=%s %s", resource.id, date_str, time_str)
                raise AvailabilityError("Slot not available")
            db.add(BookingSlot(
                id=str(uuid.uuid4()),
                booking_id=booking.id,
                slot_capacity_id=sc.id,
                resource_id=resource.id,
                date_str=date_str,
                time_str=time_str,
                units=req.party_size,
            ))

    log_booking_event(db, booking.id, "BOOKING_CREATED", {"category": req.category, "total": req.total_amount})
    commit_or_raise(db, "held booking")
    db.refresh(booking)
    logger.info(
        "Hold created booking=%s code=%s category=%s expires_at=%s",
        booking.id, booking.booking_code, booking.category, booking.expires_at,
    )
    return booking
