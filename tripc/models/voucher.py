from sqlalchemy import String, Integer, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripc.db.session import Base

class Voucher(Base):
    __tablename__ = "vouchers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200), default="")

    discount_type: Mapped[str] = mapped_column(String(12), default="fixed")  # fixed|percentage
    discount_value: Mapped[int] = mapped_column(Integer)  # fixed: smallest unit of `currency`; percentage: 1-100
    max_discount: Mapped[int | None] = mapped_column(Integer, nullable=True)  # cap for percentage vouchers
    min_spend: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    category: Mapped[str | None] = mapped_column(String(20), nullable=True)  # NULL = any category

    is_purchasable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    tcent_price: Mapped[int] = mapped_column(Integer, default=0)  # wallet price in points

    total_usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # stock
    current_usage_count: Mapped[int] = mapped_column(Integer, default=0)
    per_user_limit: Mapped[int] = mapped_column(Integer, default=1)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class UserVoucher(Base):
    __tablename__ = "user_vouchers"
    # A template can be bought once per user
    __table_args__ = (UniqueConstraint("user_id", "voucher_id", name="uq_user_voucher_owner"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    voucher_id: Mapped[str] = mapped_column(String(36), index=True)
    status: Mapped[str] = mapped_column(String(20), default="available")  # available, used, expired
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
