from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripc.db.session import Base

class ShopOrder(Base):
    """Fulfilment record created when a shop booking settles; one per booking."""
    __tablename__ = "shop_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(30), unique=True, index=True)  # ORD-XXXXXXXXXX
    booking_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    subtotal: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(20), default="placed")  # placed, shipped, delivered, cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class ShopOrderItem(Base):
    __tablename__ = "shop_order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), index=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title_snapshot: Mapped[str] = mapped_column(String(300), default="")
    qty: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[int] = mapped_column(Integer, default=0)
    line_total: Mapped[int] = mapped_column(Integer, default=0)
