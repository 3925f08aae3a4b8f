"""API v1 main router."""

from fastapi import APIRouter

from seatledger.api.v1.bookings import router as bookings_router
from seatledger.api.v1.cart import router as cart_router
from seatledger.api.v1.payments import router as payments_router
from seatledger.api.v1.tickets import router as tickets_router

router = APIRouter(prefix="/v1")

router.include_router(cart_router, prefix="/cart", tags=["Cart"])
router.include_router(bookings_router, tags=["Checkout"])
router.include_router(payments_router, prefix="/payments", tags=["Payments"])
router.include_router(tickets_router, prefix="/tickets", tags=["Tickets"])
