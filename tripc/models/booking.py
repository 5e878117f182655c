from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripc.db.session import Base

CATEGORIES = ("hotel", "flight", "dining", "activity", "event", "wellness", "beauty", "transport", "shop")

HELD = "held"
PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
SEATED = "seated"
CANCELLED = "cancelled"
COMPLETED = "completed"
EXPIRED = "expired"

TERMINAL_STATUSES = (CANCELLED, COMPLETED, EXPIRED)
# Unpaid statuses stop counting once expires_at passes
UNPAID_STATUSES = (HELD, PENDING_PAYMENT)
# Statuses whose slots count toward consumed capacity (unpaid ones only while unexpired)
CAPACITY_STATUSES = (HELD, PENDING_PAYMENT, CONFIRMED, SEATED)

TRANSITIONS = {
    HELD: {PENDING_PAYMENT, CONFIRMED, CANCELLED, EXPIRED},
    PENDING_PAYMENT: {HELD, CONFIRMED, CANCELLED, EXPIRED},
    CONFIRMED: {SEATED, COMPLETED, CANCELLED},
    SEATED: {COMPLETED},
    CANCELLED: set(),
    COMPLETED: set(),
    EXPIRED: set(),
}


def sources_for(target: str) -> tuple[str, ...]:
    """Statuses from which `target` may be reached; used as the WHERE clause of status CAS updates."""
    return tuple(s for s, allowed in TRANSITIONS.items() if target in allowed)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    category: Mapped[str] = mapped_column(String(20), index=True)
    title: Mapped[str] = mapped_column(String(300), default="Booking")

    user_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)  # NULL = guest
    guest_name: Mapped[str] = mapped_column(String(200), default="")
    guest_email: Mapped[str] = mapped_column(String(320), default="", index=True)
    guest_phone: Mapped[str] = mapped_column(String(40), default="")

    status: Mapped[str] = mapped_column(String(30), default=HELD, index=True)
    payment_status: Mapped[str] = mapped_column(String(30), default="unpaid")  # unpaid, pending, paid

    resource_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    slot_date: Mapped[str | None] = mapped_column(String(10), nullable=True)  # first capacity key (YYYY-MM-DD)
    slot_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    party_size: Mapped[int] = mapped_column(Integer, default=1)

    subtotal_amount: Mapped[int] = mapped_column(Integer, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Intended voucher consumption; finalized at settlement only
    voucher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_voucher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(String(500), default="")

    metadata_json: Mapped[str] = mapped_column(Text, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class BookingSlot(Base):
    """Capacity units a booking occupies at one capacity key."""
    __tablename__ = "booking_slots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    slot_capacity_id: Mapped[str] = mapped_column(String(36), index=True)
    resource_id: Mapped[str] = mapped_column(String(36), index=True)
    date_str: Mapped[str] = mapped_column(String(10))
    time_str: Mapped[str] = mapped_column(String(5))
    units: Mapped[int] = mapped_column(Integer)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
