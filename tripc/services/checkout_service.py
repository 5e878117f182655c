"""Checkout Orchestrator: validate a checkout payload, price it, apply a voucher and take the hold.

Returns as soon as the held booking exists; payment is a separate step.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from tripc.core.errors import AuthenticationError, AvailabilityError, ForbiddenError, ValidationError
from tripc.core.security import AuthenticatedIdentity, GuestContact, GuestIdentity, Identity
from tripc.core.timeutils import ensure_utc, parse_date, parse_hhmm, utcnow
from tripc.models.booking import CATEGORIES
from tripc.schemas.checkout import CheckoutRequest
from tripc.services.availability_service import NIGHT_KEY, get_resource
from tripc.services.hold_service import HoldRequest, create_held_booking
from tripc.services.settings_service import convert_amount
from tripc.services.user_service import get_user_by_subject
from tripc.services.voucher_service import evaluate_voucher

logger = logging.getLogger(__name__)

RESOURCE_CATEGORIES = ("hotel", "dining", "activity", "event", "wellness", "beauty", "transport")
SUPPORTED_CURRENCIES = ("USD", "VND")
MAX_NIGHTS = 30

# (tax, service fee) in basis points
FEES_BPS = {
    "hotel": (1000, 500),
    "transport": (1000, 0),
    "event": (0, 750),
}


def _missing_fields(p: CheckoutRequest) -> list[str]:
    missing = []
    if p.category in RESOURCE_CATEGORIES:
        if not p.resourceId:
            missing.append("resourceId")
        if p.category == "hotel":
            missing += [f for f in ("checkIn", "checkOut") if not getattr(p, f)]
        else:
            missing += [f for f in ("date", "time") if not getattr(p, f)]
    elif p.category == "flight":
        missing += [f for f in ("offerId", "amount") if getattr(p, f) in (None, "")]
    elif p.category == "shop":
        if not p.items:
            missing.append("items")
    return missing


def _validate(p: CheckoutRequest, identity: Identity) -> None:
    if not p.category:
        raise ValidationError("Missing required fields", fields=["category"])
    if p.category not in CATEGORIES:
        raise ValidationError(f"Invalid category {p.category}")
    missing = _missing_fields(p)
    if isinstance(identity, GuestIdentity):
        missing += [f"contact.{f}" for f in ("name", "email") if not getattr(identity.contact, f).strip()]
    if missing:
        raise ValidationError("Missing required fields", fields=missing)

    invalid = []
    if p.partySize < 1:
        invalid.append("partySize")
    if p.currency and p.currency.upper() not in SUPPORTED_CURRENCIES:
        invalid.append("currency")
    if p.category == "flight" and (p.amount or 0) <= 0:
        invalid.append("amount")
    if p.category == "shop" and any(i.quantity < 1 or i.price < 0 for i in p.items):
        invalid.append("items")
    for field, parse in (("date", parse_date), ("time", parse_hhmm), ("checkIn", parse_date), ("checkOut", parse_date)):
        value = getattr(p, field)
        if not value:
            continue
        try:
            parse(value)
        except ValueError:
            invalid.append(field)
    if p.checkIn and p.checkOut and not {"checkIn", "checkOut"} & set(invalid):
        if not 0 < (parse_date(p.checkOut) - parse_date(p.checkIn)).days <= MAX_NIGHTS:
            invalid.append("checkOut")
    if invalid:
        raise ValidationError("Invalid fields", fields=invalid)


def resolve_identity(db: Session, identity: Identity | None, p: CheckoutRequest, is_staff: bool = False) -> Identity:
    """Bearer identity wins; a body userId is honoured for its own owner or for staff; otherwise a guest."""
    if p.userId:
        if not isinstance(identity, AuthenticatedIdentity):
            raise AuthenticationError("Sign in to book for a user account")
        user = get_user_by_subject(db, p.userId)
        if is_staff:
            if not user or not user.is_active:
                raise ValidationError("Unknown user", fields=["userId"])
            return AuthenticatedIdentity(user.id)
        if not user or user.id != identity.user_id:
            raise ForbiddenError("Cannot book for another user")
        return identity
    if isinstance(identity, AuthenticatedIdentity):
        return identity
    return GuestIdentity(GuestContact(
        name=p.contact.name.strip(),
        email=p.contact.email.strip().lower(),
        phone=p.contact.phone.strip(),
    ))


def _nights(check_in: str, check_out: str) -> list[str]:
    start = parse_date(check_in)
    return [(start + timedelta(days=i)).isoformat() for i in range((parse_date(check_out) - start).days)]


def _apply_fees(category: str, base: int) -> dict:
    tax_bps, fee_bps = FEES_BPS.get(category, (0, 0))
    tax = base * tax_bps // 10000
    service_fee = base * fee_bps // 10000
    return {"base": base, "tax": tax, "serviceFee": service_fee, "subtotal": base + tax + service_fee}


def _price(db: Session, p: CheckoutRequest) -> tuple[dict, str, str, list[tuple[str, str]], dict]:
    """Server-side pricing. Returns (breakdown, currency, title, capacity keys, metadata)."""
    meta: dict = {"partySize": p.partySize}
    if p.category in RESOURCE_CATEGORIES:
        r = get_resource(db, p.resourceId)
        if r.category != p.category:
            raise ValidationError(f"Resource is not a {p.category} resource", fields=["resourceId"])
        currency = (p.currency or r.currency).upper()
        if p.category == "hotel":
            nights = _nights(p.checkIn, p.checkOut)
            keys = [(d, NIGHT_KEY) for d in nights]
            base = r.unit_price * p.partySize * len(nights)
            meta.update({"checkIn": p.checkIn, "checkOut": p.checkOut, "nights": len(nights), "rooms": p.partySize})
        else:
            keys = [(p.date, p.time)]
            base = r.unit_price * p.partySize
            meta.update({"date": p.date, "time": p.time})
        meta.update({"resourceId": r.id, "resourceName": r.name, "unitPrice": r.unit_price})
        breakdown = _apply_fees(p.category, convert_amount(db, base, r.currency, currency))
        return breakdown, currency, p.title or r.name, keys, meta

    currency = (p.currency or "USD").upper()
    if p.category == "shop":
        base = sum(i.price * i.quantity for i in p.items)
        meta["items"] = [i.model_dump() for i in p.items]
        return _apply_fees("shop", base), currency, p.title or "Shop order", [], meta

    # flight: inventory and fare live with the airline; the offer amount is taken as quoted
    meta["offerId"] = p.offerId
    return _apply_fees(p.category, int(p.amount)), currency, p.title or f"Flight {p.offerId}", [], meta


def create_booking(
    db: Session, p: CheckoutRequest, identity: Identity | None = None, now: datetime | None = None, is_staff: bool = False,
) -> dict:
    now = now or utcnow()
    try:
        identity = resolve_identity(db, identity, p, is_staff=is_staff)
        _validate(p, identity)
        breakdown, currency, title, keys, meta = _price(db, p)

        user_id = identity.user_id if isinstance(identity, AuthenticatedIdentity) else None
        subtotal = breakdown["subtotal"]
        discount, voucher, user_voucher = 0, None, None
        if p.voucherCode and p.voucherCode.strip():
            quote = evaluate_voucher(db, p.voucherCode, p.category, subtotal, currency, user_id, now=now)
            discount, voucher, user_voucher = quote.discount, quote.voucher, quote.user_voucher
            meta["voucherCode"] = voucher.code

        contact = identity.contact if isinstance(identity, GuestIdentity) else GuestContact(
            name=p.contact.name, email=p.contact.email, phone=p.contact.phone,
        )
        meta["priceBreakdown"] = breakdown
        if p.notes:
            meta["notes"] = p.notes
        if isinstance(identity, GuestIdentity):
            meta["guest"] = {"name": contact.name, "email": contact.email, "phone": contact.phone}

        booking = create_held_booking(db, HoldRequest(
            category=p.category,
            title=title,
            currency=currency,
            subtotal_amount=subtotal,
            discount_amount=discount,
            total_amount=subtotal - discount,
            party_size=p.partySize,
            resource_id=p.resourceId if p.category in RESOURCE_CATEGORIES else None,
            keys=keys,
            user_id=user_id,
            guest_name=contact.name,
            guest_email=contact.email,
            guest_phone=contact.phone,
            voucher_id=voucher.id if voucher else None,
            user_voucher_id=user_voucher.id if user_voucher else None,
            metadata=meta,
        ), now=now)
    except (ValidationError, AvailabilityError) as e:
        logger.info("Checkout rejected category=%s resource=%s: %s", p.category, p.resourceId, e.message)
        raise

    logger.info(
        "Checkout accepted booking=%s code=%s total=%s %s discount=%s",
        booking.id, booking.booking_code, booking.total_amount, booking.currency, discount,
    )
    return {
        "bookingId": booking.id,
        "bookingCode": booking.booking_code,
        "status": booking.status,
        "subtotalAmount": booking.subtotal_amount,
        "discountAmount": booking.discount_amount,
        "totalAmount": booking.total_amount,
        "currency": booking.currency,
        "expiresAt": ensure_utc(booking.expires_at).isoformat() if booking.expires_at else None,
    }
