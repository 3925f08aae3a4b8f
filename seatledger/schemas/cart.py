"""Cart schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from seatledger.schemas.common import BaseSchema


class CartItemCreate(BaseSchema):
    """Schema for adding seats to the cart."""

    shop_id: int
    seat_type_id: int
    event_day_id: int
    quantity: int = Field(..., gt=0)


class CartItemUpdate(BaseSchema):
    quantity: int = Field(..., gt=0)


class CartItemResponse(BaseSchema):
    """Schema for cart item response."""

    cart_item_id: int
    customer_id: str
    shop_id: int
    seat_type_id: int
    event_day_id: int
    quantity: int
    price_per_seat: Decimal
    total_price: Decimal
    created_at: datetime | None = None


class CartLineResponse(CartItemResponse):
    """Cart item with names and the customer's current availability."""

    shop_name: str | None = None
    seat_type_name: str | None = None
    event_date: date | None = None
    available_quantity: int
    is_available: bool


class CartResponse(BaseSchema):
    items: list[CartLineResponse]
    item_count: int
    total_quantity: int
    total_amount: Decimal
    all_available: bool
