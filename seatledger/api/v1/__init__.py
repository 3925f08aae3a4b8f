"""API v1 routers package."""

from seatledger.api.v1.bookings import router as bookings_router
from seatledger.api.v1.cart import router as cart_router
from seatledger.api.v1.payments import router as payments_router
from seatledger.api.v1.tickets import router as tickets_router

__all__ = [
    "cart_router",
    "bookings_router",
    "payments_router",
    "tickets_router",
]
