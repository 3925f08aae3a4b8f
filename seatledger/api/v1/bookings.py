"""Checkout and bookings API endpoints."""

from fastapi import APIRouter, HTTPException, Request, status

from seatledger.api.v1.dependencies import CheckoutServiceDep, CurrentPrincipal
from seatledger.query import parse_filters
from seatledger.schemas.booking import BookingResponse, CheckoutResponse

router = APIRouter()


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Check out cart",
)
async def checkout(
    principal: CurrentPrincipal,
    checkout_service: CheckoutServiceDep,
) -> CheckoutResponse:
    """
    Convert every cart line into a pending booking.

    All-or-nothing: when any line lacks seats nothing is booked and the 409
    response lists each failing line with its available quantity.
    Uses distributed locking so repeated submissions update, not duplicate.
    """
    result = await checkout_service.checkout(principal)
    return CheckoutResponse(
        booking_ids=result.booking_ids,
        total_amount=result.total_amount,
        bookings=[BookingResponse.model_validate(b) for b in result.bookings],
    )


@router.get(
    "/bookings",
    response_model=list[BookingResponse],
    summary="List bookings",
)
async def list_bookings(
    request: Request,
    principal: CurrentPrincipal,
    checkout_service: CheckoutServiceDep,
) -> list[BookingResponse]:
    """
    Bookings of the current customer; staff and sellers see all.

    Query parameters filter the list, e.g. ``?status=pending&quantity__gte=2``.
    """
    filters = parse_filters(dict(request.query_params))
    bookings = await checkout_service.list_bookings(principal, filters)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking",
)
async def get_booking(
    booking_id: int,
    principal: CurrentPrincipal,
    checkout_service: CheckoutServiceDep,
) -> BookingResponse:
    booking = await checkout_service.get_booking(principal, booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found",
        )
    return BookingResponse.model_validate(booking)
