"""Checkout and booking schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from seatledger.schemas.common import BaseSchema


class BookingStatus(str, Enum):
    """Booking status enum."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingResponse(BaseSchema):
    """Schema for booking response."""

    booking_id: int
    customer_id: str
    shop_id: int
    seat_type_id: int
    event_day_id: int
    quantity: int
    total_price: Decimal
    status: BookingStatus
    expires_at: datetime | None = None
    created_at: datetime | None = None


class CheckoutResponse(BaseSchema):
    """Bookings created or refreshed by a checkout."""

    booking_ids: list[int]
    total_amount: Decimal
    bookings: list[BookingResponse]
