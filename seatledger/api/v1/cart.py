"""Cart API endpoints."""

from fastapi import APIRouter, status

from seatledger.api.v1.dependencies import CartServiceDep, CurrentPrincipal
from seatledger.schemas.cart import (
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartLineResponse,
    CartResponse,
)
from seatledger.schemas.common import SuccessResponse
from seatledger.services.cart_service import CartView

router = APIRouter()


def _cart_response(view: CartView) -> CartResponse:
    return CartResponse(
        items=[
            CartLineResponse(
                **CartItemResponse.model_validate(line.item).model_dump(),
                shop_name=line.shop_name,
                seat_type_name=line.seat_type_name,
                event_date=line.event_date,
                available_quantity=line.available_quantity,
                is_available=line.is_available,
            )
            for line in view.lines
        ],
        item_count=len(view.lines),
        total_quantity=view.total_quantity,
        total_amount=view.total_amount,
        all_available=view.all_available,
    )


@router.get("", response_model=CartResponse, summary="Get my cart")
async def get_cart(
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> CartResponse:
    """Cart lines with the seats each line could still hold right now."""
    return _cart_response(await cart_service.get_cart(principal))


@router.get(
    "/availability",
    response_model=CartResponse,
    summary="Check cart availability",
)
async def check_cart_availability(
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> CartResponse:
    return _cart_response(await cart_service.check_availability(principal))


@router.post(
    "/items",
    response_model=CartItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add seats to cart",
)
async def add_cart_item(
    item_data: CartItemCreate,
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> CartItemResponse:
    """
    Add seats to the cart.

    Adding the same seat type and day again increases the existing line.
    Responds 409 with ``available_quantity`` when not enough seats remain.
    """
    item = await cart_service.add_item(
        principal,
        shop_id=item_data.shop_id,
        seat_type_id=item_data.seat_type_id,
        event_day_id=item_data.event_day_id,
        quantity=item_data.quantity,
    )
    return CartItemResponse.model_validate(item)


@router.patch(
    "/items/{cart_item_id}",
    response_model=CartItemResponse,
    summary="Change cart line quantity",
)
async def update_cart_item(
    cart_item_id: int,
    update_data: CartItemUpdate,
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> CartItemResponse:
    item = await cart_service.update_item(principal, cart_item_id, update_data.quantity)
    return CartItemResponse.model_validate(item)


@router.delete(
    "/items/{cart_item_id}",
    response_model=SuccessResponse,
    summary="Remove cart line",
)
async def remove_cart_item(
    cart_item_id: int,
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> SuccessResponse:
    await cart_service.remove_item(principal, cart_item_id)
    return SuccessResponse(message="Cart item removed")


@router.delete("", response_model=SuccessResponse, summary="Clear cart")
async def clear_cart(
    principal: CurrentPrincipal,
    cart_service: CartServiceDep,
) -> SuccessResponse:
    removed = await cart_service.clear_cart(principal)
    return SuccessResponse(message=f"Removed {removed} cart items")
