from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from jose import jwt

from tripc.core.config import settings

ALGO = "HS256"


@dataclass(frozen=True)
class GuestContact:
    name: str = ""
    email: str = ""
    phone: str = ""


@dataclass(frozen=True)
class AuthenticatedIdentity:
    user_id: str


@dataclass(frozen=True)
class GuestIdentity:
    contact: GuestContact = field(default_factory=GuestContact)


Identity = AuthenticatedIdentity | GuestIdentity


def _algorithms() -> list[str]:
    return [a.strip() for a in settings.AUTH_JWT_ALGORITHMS.split(",") if a.strip()] or [ALGO]


def create_access_token(subject: str, expires_minutes: int | None = None, extra: dict | None = None) -> str:
    """Issue an HS256 token. The identity provider issues real tokens; this serves local dev and tests."""
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "type": "access", "exp": exp, **(extra or {})}
    if settings.AUTH_JWT_AUDIENCE:
        payload["aud"] = settings.AUTH_JWT_AUDIENCE
    if settings.AUTH_JWT_ISSUER:
        payload["iss"] = settings.AUTH_JWT_ISSUER
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_token(token: str) -> dict:
    kwargs = {}
    if settings.AUTH_JWT_AUDIENCE:
        kwargs["audience"] = settings.AUTH_JWT_AUDIENCE
    else:
        kwargs["options"] = {"verify_aud": False}
    if settings.AUTH_JWT_ISSUER:
        kwargs["issuer"] = settings.AUTH_JWT_ISSUER
    return jwt.decode(token, settings.SECRET_KEY, algorithms=_algorithms(), **kwargs)
