from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripc.db.session import Base

class LedgerEntry(Base):
    """Append-only; never updated or deleted."""
    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    delta: Mapped[int] = mapped_column(Integer)  # signed, points
    balance_after: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(60), index=True)  # loyalty_accrual, voucher_purchase, ...
    description: Mapped[str] = mapped_column(String(300), default="")
    related_booking_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    reference_type: Mapped[str] = mapped_column(String(40), default="")
    reference_id: Mapped[str] = mapped_column(String(36), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
