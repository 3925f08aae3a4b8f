"""Issued ticket model."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from seatledger.models.base import Base, BigIntPK


class CustomerTicket(Base):
    """
    One row per confirmed booking.

    Bookings for the same shop and day within an order share ``ticket_no``,
    ``document_ref`` and ``code_ref``.
    """

    __tablename__ = "customer_tickets"

    ticket_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_owner_id: Mapped[str] = mapped_column(String(50), nullable=False)
    checkout_customer_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("checkout_customers.checkout_customer_id")
    )
    booking_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("bookings.booking_id"), nullable=False, unique=True
    )
    shop_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("shops.shop_id"), nullable=False
    )
    event_day_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("event_days.event_day_id"), nullable=False
    )
    gateway_order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100))
    ticket_no: Mapped[str] = mapped_column(String(40), nullable=False)
    document_ref: Mapped[str | None] = mapped_column(String(500))
    code_ref: Mapped[str | None] = mapped_column(String(500))
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )

    __table_args__ = (
        Index("idx_tickets_ticket_no", "ticket_no"),
        Index("idx_tickets_order", "gateway_order_id"),
        Index("idx_tickets_owner", "account_owner_id"),
    )
