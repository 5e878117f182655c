from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tripc.api.deps import STAFF_ROLES, get_current_user, get_optional_user
from tripc.core.security import AuthenticatedIdentity, GuestContact, GuestIdentity, Identity
from tripc.db.session import get_db
from tripc.models.user import User
from tripc.services.booking_service import booking_to_dict, cancel_booking, check_access, get_booking, list_user_bookings

router = APIRouter(tags=["bookings"])


def _identity(user: User | None, email: str) -> Identity:
    """Guests identify themselves with the e-mail used at checkout."""
    if user:
        return AuthenticatedIdentity(user.id)
    return GuestIdentity(GuestContact(email=email))


def _is_staff(user: User | None) -> bool:
    return bool(user and user.role in STAFF_ROLES)


@router.get("/bookings")
def my_bookings(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"bookings": [booking_to_dict(b) for b in list_user_bookings(db, user.id)]}


@router.get("/bookings/{booking_id}")
def read_booking(
    booking_id: str,
    email: str = "",
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    b = get_booking(db, booking_id)
    check_access(b, _identity(user, email), _is_staff(user), action="view")
    return booking_to_dict(b)


@router.delete("/bookings/{booking_id}")
def delete_booking(
    booking_id: str,
    reason: str = "",
    email: str = "",
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    b = cancel_booking(db, booking_id, _identity(user, email), reason=reason, is_staff=_is_staff(user))
    return {"success": True, "booking": booking_to_dict(b)}
