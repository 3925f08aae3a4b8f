"""Catalog reference rows and the per-day seat inventory ledger."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
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


class Shop(Base):
    """A venue selling seats."""

    __tablename__ = "shops"

    shop_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500))
    seller_id: Mapped[str | None] = mapped_column(String(50))

    __table_args__ = (Index("idx_shops_seller", "seller_id"),)


class SeatType(Base):
    """A class of seats within a shop."""

    __tablename__ = "seat_types"

    seat_type_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    shop_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("shops.shop_id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (Index("idx_seat_types_shop", "shop_id"),)


class EventDay(Base):
    """A calendar day on which seats are sold."""

    __tablename__ = "event_days"

    event_day_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    event_name: Mapped[str | None] = mapped_column(String(200))


class SeatTypeAvailability(Base):
    """
    Inventory ledger row.

    ``quantity`` is the remaining capacity for a seat type on a day. It is
    decremented when bookings are created and credited back when pending
    bookings are cancelled.
    """

    __tablename__ = "seat_type_availability"

    availability_id: Mapped[int] = mapped_column(
        BigIntPK, primary_key=True, autoincrement=True
    )
    seat_type_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("seat_types.seat_type_id"), nullable=False
    )
    event_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("event_days.event_day_id"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )

    __table_args__ = (
        UniqueConstraint("seat_type_id", "event_day_id", name="uk_availability_type_day"),
        CheckConstraint("quantity >= 0", name="ck_availability_quantity"),
    )
