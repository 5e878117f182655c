import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tripc.core.errors import NotAvailableError, NotFoundError, ValidationError
from tripc.core.timeutils import ensure_utc, utcnow
from tripc.db.session import commit_or_raise
from tripc.models.booking import Booking, CONFIRMED, SEATED, COMPLETED, UNPAID_STATUSES
from tripc.models.voucher import Voucher, UserVoucher
from tripc.services import ledger_service
from tripc.services.settings_service import convert_amount

logger = logging.getLogger(__name__)


@dataclass
class VoucherQuote:
    voucher: Voucher
    user_voucher: UserVoucher | None
    discount: int  # in the booking currency


def compute_discount(db: Session, voucher: Voucher, subtotal: int, currency: str) -> int:
    if voucher.discount_type == "percentage":
        discount = subtotal * int(voucher.discount_value) // 100
        if voucher.max_discount:
            discount = min(discount, convert_amount(db, voucher.max_discount, voucher.currency, currency))
    else:
        discount = convert_amount(db, voucher.discount_value, voucher.currency, currency)
    return max(0, min(discount, subtotal))


# A discount counts against its limits from the moment a live booking carries it
USED_STATUSES = (CONFIRMED, SEATED, COMPLETED)


def _live(now: datetime):
    return or_(
        Booking.status.in_(USED_STATUSES),
        and_(Booking.status.in_(UNPAID_STATUSES), Booking.expires_at.isnot(None), Booking.expires_at > now),
    )


def _user_usage_count(db: Session, voucher_id: str, user_id: str, now: datetime) -> int:
    return int(db.query(func.count(Booking.id)).filter(
        Booking.user_id == user_id,
        Booking.voucher_id == voucher_id,
        _live(now),
    ).scalar() or 0)


def _unsettled_count(db: Session, voucher_id: str, now: datetime) -> int:
    """Live bookings carrying the voucher that have not consumed stock yet."""
    return int(db.query(func.count(Booking.id)).filter(
        Booking.voucher_id == voucher_id,
        _live(now),
        Booking.status.notin_(USED_STATUSES),
    ).scalar() or 0)


def evaluate_voucher(
    db: Session,
    code: str,
    category: str,
    subtotal: int,
    currency: str,
    user_id: str | None,
    now: datetime | None = None,
) -> VoucherQuote:
    """Validate a checkout voucher code and price its discount. Read-only: nothing is reserved."""
    now = now or utcnow()
    v = db.query(Voucher).filter(func.upper(Voucher.code) == code.strip().upper()).first()
    if not v:
        raise ValidationError("Voucher not found")
    if not v.is_active:
        raise ValidationError("Voucher is not active")
    expires_at = ensure_utc(v.expires_at)
    if expires_at and expires_at <= now:
        raise ValidationError("Voucher has expired")
    if v.category and v.category != category:
        raise ValidationError(f"Voucher is only valid for {v.category} bookings")
    min_spend = convert_amount(db, v.min_spend, v.currency, currency) if v.min_spend else 0
    if subtotal < min_spend:
        raise ValidationError("Order total does not meet the voucher minimum spend")
    if (
        not v.is_purchasable
        and v.total_usage_limit is not None
        and v.current_usage_count + _unsettled_count(db, v.id, now) >= v.total_usage_limit
    ):
        raise ValidationError("Voucher is fully redeemed")

    user_voucher = None
    if v.is_purchasable:
        # Wallet vouchers are only usable by their owner, one live booking at a time
        if not user_id:
            raise ValidationError("Sign in to use this voucher")
        pinned = select(Booking.user_voucher_id).where(Booking.user_voucher_id.isnot(None), _live(now))
        user_voucher = db.query(UserVoucher).filter(
            UserVoucher.user_id == user_id,
            UserVoucher.voucher_id == v.id,
            UserVoucher.status == "available",
            UserVoucher.id.notin_(pinned),
        ).order_by(UserVoucher.acquired_at.asc()).first()
        if not user_voucher:
            raise ValidationError("Voucher is not in your wallet")
    if user_id and v.per_user_limit and _user_usage_count(db, v.id, user_id, now) >= v.per_user_limit:
        raise ValidationError("Voucher usage limit reached for this account")

    return VoucherQuote(voucher=v, user_voucher=user_voucher, discount=compute_discount(db, v, subtotal, currency))


def consume_for_booking(db: Session, booking: Booking, now: datetime | None = None) -> bool:
    """Mark the booking's voucher used. Does not commit. False when the voucher was no longer available.

    Runs after the booking is confirmed, so the booking itself is excluded from the per-user count.
    Wallet vouchers took their stock when bought; only public codes consume stock here.
    """
    now = now or utcnow()
    v = db.get(Voucher, booking.voucher_id) if booking.voucher_id else None
    if v is not None and booking.user_id and v.per_user_limit:
        used = db.query(func.count(Booking.id)).filter(
            Booking.user_id == booking.user_id,
            Booking.voucher_id == v.id,
            Booking.id != booking.id,
            Booking.status.in_(USED_STATUSES),
        ).scalar() or 0
        if used >= v.per_user_limit:
            return False
    if booking.user_voucher_id:
        result = db.execute(
            update(UserVoucher)
            .where(UserVoucher.id == booking.user_voucher_id, UserVoucher.status == "available")
            .values(status="used", used_at=now, booking_id=booking.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
    if v is not None and not v.is_purchasable:
        stmt = update(Voucher).where(Voucher.id == v.id)
        if v.total_usage_limit is not None:
            stmt = stmt.where(Voucher.current_usage_count < Voucher.total_usage_limit)
        result = db.execute(
            stmt.values(current_usage_count=Voucher.current_usage_count + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
    return True


def redeem_voucher(db: Session, user_id: str, voucher_id: str, now: datetime | None = None) -> UserVoucher:
    """Buy a voucher template with wallet points.

    The debit, the stock increment and the UserVoucher row commit together or not at all.
    """
    now = now or utcnow()
    v = db.get(Voucher, voucher_id)
    if not v:
        raise NotFoundError("Voucher not found")
    if not v.is_purchasable or not v.is_active:
        raise NotAvailableError("This voucher is not available for purchase")
    expires_at = ensure_utc(v.expires_at)
    if expires_at and expires_at <= now:
        raise NotAvailableError("This voucher has expired")
    already = db.query(UserVoucher.id).filter(UserVoucher.user_id == user_id, UserVoucher.voucher_id == v.id).first()
    if already:
        raise NotAvailableError("You have already redeemed this voucher")

    try:
        uv = UserVoucher(
            id=str(uuid.uuid4()),
            user_id=user_id,
            voucher_id=v.id,
            status="available",
            acquired_at=now,
        )
        db.add(uv)
        try:
            db.flush()
        except IntegrityError:
            # Lost a race with a concurrent redeem of the same template
            raise NotAvailableError("You have already redeemed this voucher")

        if v.total_usage_limit is not None:
            result = db.execute(
                update(Voucher)
                .where(Voucher.id == v.id, Voucher.current_usage_count < Voucher.total_usage_limit)
                .values(current_usage_count=Voucher.current_usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotAvailableError("Voucher is out of stock")
        else:
            db.execute(
                update(Voucher)
                .where(Voucher.id == v.id)
                .values(current_usage_count=Voucher.current_usage_count + 1)
                .execution_options(synchronize_session=False)
            )

        ledger_service.post_entry(
            db, user_id, -int(v.tcent_price), "voucher_purchase",
            description=f"Redeemed: {v.code}",
            reference_type="voucher", reference_id=v.id,
        )
        commit_or_raise(db, "voucher redemption")
    except Exception:
        db.rollback()
        raise
    db.refresh(uv)
    logger.info("Voucher redeemed user=%s voucher=%s price=%s", user_id, v.code, v.tcent_price)
    return uv


def wallet_vouchers(db: Session, user_id: str) -> list[tuple[UserVoucher, Voucher]]:
    return (
        db.query(UserVoucher, Voucher)
        .join(Voucher, Voucher.id == UserVoucher.voucher_id)
        .filter(UserVoucher.user_id == user_id)
        .order_by(UserVoucher.acquired_at.desc())
        .all()
    )
