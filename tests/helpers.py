"""Builders for multi-step flows used by several test modules."""

from decimal import Decimal

from sqlalchemy import select, update

from seatledger.authorization import Principal
from seatledger.config import get_settings
from seatledger.gateway import GatewaySigner, InboundNotification, format_amount
from seatledger.models import Booking, BookingStatus, SeatTypeAvailability
from seatledger.services.cart_service import CartService
from seatledger.services.checkout_service import CheckoutService
from seatledger.services.payment_service import PaymentIntent, PaymentService


def signed_notification(
    order_id: str,
    status_code: int | str,
    amount: Decimal | str,
    payment_id: str | None = "320025071278",
    method: str = "VISA",
) -> dict[str, str]:
    """Callback form fields with a valid ``md5sig``."""
    settings = get_settings()
    data = {
        "merchant_id": settings.GATEWAY_MERCHANT_ID,
        "order_id": order_id,
        "payhere_amount": format_amount(amount),
        "payhere_currency": settings.GATEWAY_CURRENCY,
        "status_code": str(status_code),
        "status_message": "Gateway callback",
        "method": method,
    }
    if payment_id is not None:
        data["payment_id"] = payment_id
    data["md5sig"] = GatewaySigner().notification_signature(
        InboundNotification.from_form(data)
    )
    return data


async def place_order(
    db,
    redis_client,
    principal: Principal,
    lines: list[tuple[int, int, int, int]],
) -> PaymentIntent:
    """Fill the cart with (shop, seat type, day, quantity) lines, check out and open a payment."""
    carts = CartService(db)
    for shop_id, seat_type_id, event_day_id, quantity in lines:
        await carts.add_item(principal, shop_id, seat_type_id, event_day_id, quantity)

    result = await CheckoutService(db, redis_client).checkout(principal)
    return await PaymentService(db).create_payment_intent(
        principal, result.booking_ids, "card"
    )


async def confirm_bookings(db, booking_ids: list[int]) -> None:
    await db.execute(
        update(Booking)
        .where(Booking.booking_id.in_(booking_ids))
        .values(status=BookingStatus.CONFIRMED)
    )
    await db.commit()


async def ledger_quantity(db, seat_type_id: int, event_day_id: int) -> int:
    return await db.scalar(
        select(SeatTypeAvailability.quantity)
        .where(
            SeatTypeAvailability.seat_type_id == seat_type_id,
            SeatTypeAvailability.event_day_id == event_day_id,
        )
        .execution_options(populate_existing=True)
    )


async def set_ledger(db, seat_type_id: int, event_day_id: int, **values) -> None:
    await db.execute(
        update(SeatTypeAvailability)
        .where(
            SeatTypeAvailability.seat_type_id == seat_type_id,
            SeatTypeAvailability.event_day_id == event_day_id,
        )
        .values(**values)
    )
    await db.commit()


async def load_booking(db, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
