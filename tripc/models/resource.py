from sqlalchemy import String, Integer, DateTime, Boolean, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripc.db.session import Base

class Resource(Base):
    """A bookable venue / room type / vehicle / ticket type with finite capacity per slot."""
    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    category: Mapped[str] = mapped_column(String(20), index=True)  # hotel|flight|dining|activity|event|wellness|beauty|transport
    name: Mapped[str] = mapped_column(String(200))
    capacity: Mapped[int] = mapped_column(Integer)  # venue-level default per capacity key
    unit_price: Mapped[int] = mapped_column(Integer, default=0)  # smallest currency unit
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    # {"monday": {"open": "08:00", "close": "20:00"}, ...}; NULL = open all day
    operating_hours_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(300), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class SlotCapacity(Base):
    """Capacity counter for one (resource, date, time) key.

    consumed is only changed by conditional UPDATEs (consumed + n <= total_capacity).
    """
    __tablename__ = "slot_capacities"
    __table_args__ = (
        UniqueConstraint("resource_id", "date_str", "time_str", name="uq_slot_capacity_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(36), index=True)
    date_str: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    time_str: Mapped[str] = mapped_column(String(5))  # HH:MM
    total_capacity: Mapped[int] = mapped_column(Integer)
    consumed: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class BlockedDate(Base):
    __tablename__ = "blocked_dates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(36), index=True)
    start_date: Mapped[str] = mapped_column(String(10))  # inclusive
    end_date: Mapped[str] = mapped_column(String(10))    # inclusive
    reason: Mapped[str] = mapped_column(String(200), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
