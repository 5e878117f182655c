import json

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tripc.api.deps import STAFF_ROLES, require_roles
from tripc.core.errors import NotFoundError, ValidationError
from tripc.core.timeutils import ensure_utc
from tripc.db.session import commit_or_raise, get_db
from tripc.models.booking import Booking
from tripc.models.booking_event import BookingEvent
from tripc.models.user import User
from tripc.schemas.vouchers import ExchangeRateUpdate, LedgerCreditRequest
from tripc.services import ledger_service
from tripc.services.hold_service import expire_stale_holds
from tripc.services.settings_service import get_usd_to_vnd_rate, set_usd_to_vnd_rate

router = APIRouter(tags=["ops"])


@router.post("/ops/holds/expire")
def expire_holds_now(db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    expired = expire_stale_holds(db)
    commit_or_raise(db, "hold expiry")
    return {"expired": expired}


@router.get("/ops/bookings/{booking_id}/events")
def booking_events(booking_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    if not db.get(Booking, booking_id):
        raise NotFoundError("Booking not found")
    rows = db.query(BookingEvent).filter(BookingEvent.booking_id == booking_id).order_by(BookingEvent.created_at.asc()).all()
    return [
        {
            "eventType": e.event_type,
            "actor": e.actor,
            "details": json.loads(e.details_json or "{}"),
            "createdAt": ensure_utc(e.created_at).isoformat() if e.created_at else None,
        }
        for e in rows
    ]


@router.get("/ops/ledger/{user_id}/reconcile")
def reconcile_ledger(user_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    return ledger_service.reconcile(db, user_id)


@router.post("/ops/ledger/credit")
def credit_points(body: LedgerCreditRequest, db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    if body.amount <= 0:
        raise ValidationError("Invalid fields", fields=["amount"])
    entry = ledger_service.post_entry(
        db, body.userId, body.amount, body.reason,
        description=body.description or f"Granted by {user.email or user.id}",
        reference_type="ops", reference_id=user.id,
    )
    commit_or_raise(db, "ledger credit")
    return {"userId": body.userId, "delta": entry.delta, "balance": entry.balance_after}


@router.get("/ops/settings/fx-rate")
def get_fx_rate(db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    return {"usdToVnd": get_usd_to_vnd_rate(db)}


@router.post("/ops/settings/fx-rate")
def set_fx_rate(body: ExchangeRateUpdate, db: Session = Depends(get_db), user: User = Depends(require_roles(*STAFF_ROLES))):
    try:
        rate = set_usd_to_vnd_rate(db, body.usdToVnd)
    except ValueError as e:
        raise ValidationError(str(e))
    return {"usdToVnd": rate}
