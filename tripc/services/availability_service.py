"""Availability Checker: can N units be reserved at a capacity key.

Read-only. Consumed capacity is recomputed from bookings on every call, and an unpaid
booking whose expires_at has passed is ignored even if the reaper has not run yet.
"""
import json
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, and_
from sqlalchemy.orm import Session

from tripc.core.errors import NotFoundError
from tripc.core.timeutils import parse_date, slot_start, to_minutes, utcnow
from tripc.models.booking import Booking, BookingSlot, CAPACITY_STATUSES, UNPAID_STATUSES
from tripc.models.resource import Resource, SlotCapacity, BlockedDate

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
NIGHT_KEY = "00:00"


@dataclass
class Availability:
    available: bool
    reason: str | None = None
    remaining: int | None = None

    def as_dict(self) -> dict:
        out = {"available": self.available}
        if self.reason:
            out["reason"] = self.reason
        if self.remaining is not None:
            out["remaining"] = self.remaining
        return out


def get_resource(db: Session, resource_id: str) -> Resource:
    r = db.get(Resource, resource_id)
    if not r or not r.is_active:
        raise NotFoundError("Resource not found")
    return r


def operating_range(resource: Resource, date_str: str) -> tuple[int, int] | None:
    """(open, close) in minutes for the given date, or None when the resource has no hours set."""
    if not resource.operating_hours_json:
        return None
    hours = json.loads(resource.operating_hours_json) or {}
    day = hours.get(DAY_NAMES[parse_date(date_str).weekday()])
    if day is None:
        return (0, 0)  # closed that weekday
    return to_minutes(day["open"]), to_minutes(day["close"])


def blocked_reason(db: Session, resource_id: str, date_str: str) -> str | None:
    b = db.query(BlockedDate).filter(
        BlockedDate.resource_id == resource_id,
        BlockedDate.start_date <= date_str,
        BlockedDate.end_date >= date_str,
    ).first()
    if not b:
        return None
    return f"Venue is closed on this date ({b.reason})" if b.reason else "Venue is closed on this date"


def total_capacity(db: Session, resource: Resource, date_str: str, time_str: str) -> int:
    sc = db.query(SlotCapacity).filter_by(resource_id=resource.id, date_str=date_str, time_str=time_str).first()
    return int(sc.total_capacity) if sc else int(resource.capacity)


def consumed_units(db: Session, resource_id: str, date_str: str, time_str: str, now: datetime | None = None) -> int:
    now = now or utcnow()
    total = db.query(func.coalesce(func.sum(BookingSlot.units), 0)).join(
        Booking, Booking.id == BookingSlot.booking_id
    ).filter(
        BookingSlot.resource_id == resource_id,
        BookingSlot.date_str == date_str,
        BookingSlot.time_str == time_str,
        Booking.status.in_(CAPACITY_STATUSES),
        or_(Booking.status.notin_(UNPAID_STATUSES), and_(Booking.expires_at.isnot(None), Booking.expires_at > now)),
    ).scalar()
    return int(total or 0)


def check_availability(
    db: Session,
    resource_id: str,
    date_str: str,
    time_str: str,
    party_size: int,
    now: datetime | None = None,
) -> Availability:
    now = now or utcnow()
    resource = get_resource(db, resource_id)

    if time_str == NIGHT_KEY:
        if parse_date(date_str) < now.date():
            return Availability(False, "Requested date is in the past")
    elif slot_start(date_str, time_str) < now:
        return Availability(False, "Requested time is in the past")

    reason = blocked_reason(db, resource.id, date_str)
    if reason:
        return Availability(False, reason)

    hours = operating_range(resource, date_str)
    if hours is not None and time_str != NIGHT_KEY:
        start = to_minutes(time_str)
        if not (hours[0] <= start < hours[1]):
            return Availability(False, "Outside operating hours")

    capacity = total_capacity(db, resource, date_str, time_str)
    used = consumed_units(db, resource.id, date_str, time_str, now=now)
    remaining = max(capacity - used, 0)
    if party_size > remaining:
        return Availability(
            False,
            f"Insufficient capacity: {remaining} of {capacity} remaining, {party_size} requested",
            remaining=remaining,
        )
    return Availability(True, remaining=remaining)


def check_keys(
    db: Session,
    resource_id: str,
    keys: list[tuple[str, str]],
    party_size: int,
    now: datetime | None = None,
) -> Availability:
    """All-or-nothing check over several capacity keys (e.g. each night of a hotel stay)."""
    tightest = None
    for date_str, time_str in keys:
        result = check_availability(db, resource_id, date_str, time_str, party_size, now=now)
        if not result.available:
            return result
        if tightest is None or (result.remaining or 0) < tightest:
            tightest = result.remaining
    return Availability(True, remaining=tightest)
