from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tripc.api.deps import STAFF_ROLES, get_optional_user
from tripc.core.errors import ValidationError
from tripc.core.security import AuthenticatedIdentity
from tripc.db.session import get_db
from tripc.models.user import User
from tripc.schemas.checkout import CheckoutOut, CheckoutRequest
from tripc.services.availability_service import NIGHT_KEY, check_availability
from tripc.services.checkout_service import create_booking

router = APIRouter(tags=["checkout"])


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
def checkout(body: CheckoutRequest, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    identity = AuthenticatedIdentity(user.id) if user else None
    return create_booking(db, body, identity, is_staff=bool(user and user.role in STAFF_ROLES))


@router.get("/availability")
def availability(
    resourceId: str,
    date: str,
    time: str = NIGHT_KEY,
    partySize: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
):
    try:
        result = check_availability(db, resourceId, date, time, partySize)
    except ValueError:
        raise ValidationError("Invalid fields", fields=["date", "time"])
    return result.as_dict()
