"""SQLAlchemy models."""

from seatledger.models.base import Base
from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.cart import CartItem
from seatledger.models.catalog import EventDay, SeatType, SeatTypeAvailability, Shop
from seatledger.models.payment import (
    CheckoutCustomer,
    Payment,
    PaymentNotification,
    PaymentStatus,
    ProcessingStatus,
)
from seatledger.models.ticket import CustomerTicket

__all__ = [
    "Base",
    "Shop",
    "SeatType",
    "EventDay",
    "SeatTypeAvailability",
    "CartItem",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentStatus",
    "PaymentNotification",
    "ProcessingStatus",
    "CheckoutCustomer",
    "CustomerTicket",
]
