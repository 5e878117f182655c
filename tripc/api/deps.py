from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from tripc.core.errors import AuthenticationError, ForbiddenError
from tripc.core.security import decode_token
from tripc.db.session import get_db
from tripc.models.user import User
from tripc.services.user_service import resolve_user

bearer = HTTPBearer(auto_error=False)

STAFF_ROLES = ("ops", "admin")


def _user_from_credentials(creds: HTTPAuthorizationCredentials, db: Session) -> User:
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise AuthenticationError("Invalid token")
    return resolve_user(db, payload.get("sub") or "", email=payload.get("email") or "", full_name=payload.get("name") or "")


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise AuthenticationError("Not authenticated")
    return _user_from_credentials(creds, db)


def get_optional_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User | None:
    """Guest checkout is allowed; a bearer token, when sent, must still be valid."""
    if not creds:
        return None
    return _user_from_credentials(creds, db)


def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError("Forbidden")
        return user
    return _guard
