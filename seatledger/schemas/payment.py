"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import EmailStr, Field

from seatledger.schemas.common import BaseSchema


class PaymentStatus(str, Enum):
    """Payment status enum."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentIntentCreate(BaseSchema):
    """Schema for creating payments for checked-out bookings."""

    booking_ids: list[int] = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1, max_length=50)
    gateway_order_id: str | None = Field(None, max_length=100)


class PaymentResponse(BaseSchema):
    payment_id: int
    booking_id: int
    amount: Decimal
    payment_method: str
    status: PaymentStatus
    gateway_order_id: str
    gateway_payment_id: str | None = None
    expires_at: datetime | None = None


class PaymentIntentResponse(BaseSchema):
    gateway_order_id: str
    amount: Decimal
    payments: list[PaymentResponse]


class CheckoutCustomerCreate(BaseSchema):
    """Contact details for the ticket recipient."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(None, max_length=30)
    country: str | None = Field(None, max_length=60)


class CheckoutCustomerResponse(CheckoutCustomerCreate):
    checkout_customer_id: int
    gateway_order_id: str
    status: str
