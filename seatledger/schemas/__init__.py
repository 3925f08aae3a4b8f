"""Pydantic schemas for API request/response."""

from seatledger.schemas.booking import BookingResponse, BookingStatus, CheckoutResponse
from seatledger.schemas.cart import (
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
)
from seatledger.schemas.payment import (
    CheckoutCustomerCreate,
    CheckoutCustomerResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
)
from seatledger.schemas.ticket import (
    IssuanceSummaryResponse,
    TicketResponse,
    TicketUseRequest,
)

__all__ = [
    "CartItemCreate",
    "CartItemUpdate",
    "CartItemResponse",
    "CartResponse",
    "BookingResponse",
    "BookingStatus",
    "CheckoutResponse",
    "PaymentIntentCreate",
    "PaymentIntentResponse",
    "CheckoutCustomerCreate",
    "CheckoutCustomerResponse",
    "TicketResponse",
    "TicketUseRequest",
    "IssuanceSummaryResponse",
]
