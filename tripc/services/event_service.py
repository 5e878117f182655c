import uuid, json
from sqlalchemy.orm import Session
from tripc.models.booking_event import BookingEvent

def log_booking_event(db: Session, booking_id: str, event_type: str, details: dict | None = None, actor: str = "system"):
    """Append an audit event. Joins the caller's transaction; the caller commits."""
    db.add(BookingEvent(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        event_type=event_type,
        actor=actor,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def has_event(db: Session, booking_id: str, event_type: str) -> bool:
    return db.query(BookingEvent.id).filter(
        BookingEvent.booking_id == booking_id,
        BookingEvent.event_type == event_type,
    ).first() is not None
