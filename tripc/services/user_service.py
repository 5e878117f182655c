import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tripc.core.errors import AuthenticationError
from tripc.models.user import User

logger = logging.getLogger(__name__)


def get_user_by_subject(db: Session, subject: str) -> User | None:
    """A token subject may be our own user id or the identity provider's id."""
    user = db.get(User, subject)
    if user:
        return user
    return db.query(User).filter(User.external_id == subject).first()


def resolve_user(db: Session, subject: str, email: str = "", full_name: str = "") -> User:
    """Find the user for a subject, creating one the first time an external id is seen."""
    if not subject:
        raise AuthenticationError("Missing identity")
    user = get_user_by_subject(db, subject)
    if user:
        if not user.is_active:
            raise AuthenticationError("User not found or inactive")
        return user

    user = User(
        id=str(uuid.uuid4()),
        external_id=subject,
        email=(email or "").strip().lower(),
        full_name=full_name or "",
        role="customer",
        balance=0,
        is_active=True,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.rollback()
        user = db.query(User).filter(User.external_id == subject).one()
    else:
        logger.info("User created for external id=%s", subject)
    db.refresh(user)
    return user
