"""Booking model."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from seatledger.models.base import Base, BigIntPK


class BookingStatus(str, enum.Enum):
    """Booking status enum."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Statuses whose quantity is held against capacity.
HOLDING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(Base):
    """A committed claim on ledger capacity, finalised by payment outcome."""

    __tablename__ = "bookings"

    booking_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
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
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)
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
        return (self.shop_id, self.seat_type_id, self.event_day_id)

    __table_args__ = (
        Index("idx_bookings_customer_status", "customer_id", "status"),
        Index("idx_bookings_type_day_status", "seat_type_id", "event_day_id", "status"),
        Index("idx_bookings_expires_at", "expires_at"),
    )
