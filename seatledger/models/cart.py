"""Cart model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from seatledger.models.base import Base, BigIntPK


class CartItem(Base):
    """A customer's provisional hold on seats of one type for one day."""

    __tablename__ = "cart_items"

    cart_item_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    shop_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("shops.shop_id"), nullable=False
    )
    seat_type_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("seat_types.seat_type_id"), nullable=False
    )
    event_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("event_days.event_day_id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_seat: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )

    @property
    def line_key(self) -> tuple[int, int, int]:
        """(shop, seat type, day) key shared with bookings."""
        return (self.shop_id, self.seat_type_id, self.event_day_id)

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "shop_id", "seat_type_id", "event_day_id",
            name="uk_cart_line",
        ),
        Index("idx_cart_type_day", "seat_type_id", "event_day_id"),
    )
