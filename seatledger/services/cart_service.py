"""Cart holds: soft, customer-owned claims on seats prior to checkout."""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.authorization import Action, Principal, Resource, authorize
from seatledger.config import get_settings
from seatledger.exceptions import ConflictError, NotFoundError, ValidationError
from seatledger.models.booking import HOLDING_STATUSES, Booking, BookingStatus
from seatledger.models.cart import CartItem
from seatledger.models.catalog import EventDay, SeatType, Shop
from seatledger.services.ledger_service import LedgerService

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    """Cart item with display names and the customer's current availability."""

    item: CartItem
    shop_name: str | None
    seat_type_name: str | None
    event_date: date | None
    available_quantity: int

    @property
    def is_available(self) -> bool:
        return self.item.quantity <= self.available_quantity


@dataclass
class CartView:
    lines: list[CartLine] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(line.item.quantity for line in self.lines)

    @property
    def total_amount(self) -> Decimal:
        return sum((line.item.total_price for line in self.lines), Decimal("0"))

    @property
    def all_available(self) -> bool:
        return all(line.is_available for line in self.lines)


class CartService:
    """Service for cart operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def available_quantity(
        self,
        seat_type_id: int,
        event_day_id: int,
        customer_id: str,
    ) -> int:
        """
        Seats this customer may still hold for a seat type on a day.

        available = ledger quantity
                    - seats in pending or confirmed bookings
                    - seats in other customers' carts
                    + seats in this customer's own pending bookings

        An availability row switched off by the seller yields 0.
        """
        availability = await self.ledger.get_availability(seat_type_id, event_day_id)
        if not availability.available:
            return 0

        same_line = and_(
            Booking.seat_type_id == seat_type_id,
            Booking.event_day_id == event_day_id,
        )
        booked = await self.db.scalar(
            select(func.coalesce(func.sum(Booking.quantity), 0)).where(
                same_line, Booking.status.in_(HOLDING_STATUSES)
            )
        )
        own_pending = await self.db.scalar(
            select(func.coalesce(func.sum(Booking.quantity), 0)).where(
                same_line,
                Booking.status == BookingStatus.PENDING,
                Booking.customer_id == customer_id,
            )
        )
        other_carts = await self.db.scalar(
            select(func.coalesce(func.sum(CartItem.quantity), 0)).where(
                CartItem.seat_type_id == seat_type_id,
                CartItem.event_day_id == event_day_id,
                CartItem.customer_id != customer_id,
            )
        )

        available = availability.quantity - booked - other_carts + own_pending
        return max(int(available), 0)

    def _check_quantity(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if quantity > settings.MAX_SEATS_PER_LINE:
            raise ValidationError(
                f"Cannot hold more than {settings.MAX_SEATS_PER_LINE} seats per line"
            )

    async def _ensure_available(
        self,
        seat_type_id: int,
        event_day_id: int,
        customer_id: str,
        quantity: int,
    ) -> None:
        available = await self.available_quantity(seat_type_id, event_day_id, customer_id)
        if quantity > available:
            raise ConflictError(
                f"Only {available} seats available",
                available_quantity=available,
            )

    async def _get_line(
        self,
        customer_id: str,
        shop_id: int,
        seat_type_id: int,
        event_day_id: int,
    ) -> CartItem | None:
        result = await self.db.execute(
            select(CartItem).where(
                CartItem.customer_id == customer_id,
                CartItem.shop_id == shop_id,
                CartItem.seat_type_id == seat_type_id,
                CartItem.event_day_id == event_day_id,
            )
        )
        return result.scalar_one_or_none()

    async def add_item(
        self,
        principal: Principal,
        shop_id: int,
        seat_type_id: int,
        event_day_id: int,
        quantity: int,
    ) -> CartItem:
        """
        Add seats to the cart, merging into an existing line for the same key.

        The price per seat is read from the ledger only when the line is
        first created; later additions reuse the captured price.

        Raises:
            ValidationError: If quantity is not positive
            NotFoundError: If the seat type is not sold on that day
            ConflictError: If the resulting quantity exceeds availability
        """
        authorize(principal, Resource("cart_items", principal.principal_id), Action.CREATE)
        self._check_quantity(quantity)

        customer_id = principal.principal_id
        existing = await self._get_line(customer_id, shop_id, seat_type_id, event_day_id)
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._check_quantity(new_quantity)

        await self._ensure_available(seat_type_id, event_day_id, customer_id, new_quantity)

        if existing:
            existing.quantity = new_quantity
            existing.total_price = existing.price_per_seat * new_quantity
            item = existing
        else:
            availability = await self.ledger.get_availability(seat_type_id, event_day_id)
            item = CartItem(
                customer_id=customer_id,
                shop_id=shop_id,
                seat_type_id=seat_type_id,
                event_day_id=event_day_id,
                quantity=quantity,
                price_per_seat=availability.price,
                total_price=availability.price * quantity,
            )
            self.db.add(item)

        await self.db.commit()
        await self.db.refresh(item)
        logger.info(
            f"Customer {customer_id} holds {item.quantity} of seat type {seat_type_id} "
            f"on day {event_day_id}"
        )
        return item

    async def get_item(self, principal: Principal, cart_item_id: int, action: Action) -> CartItem:
        item = await self.db.get(CartItem, cart_item_id)
        if item is None:
            raise NotFoundError("Cart item not found")
        authorize(principal, Resource("cart_items", item.customer_id), action)
        return item

    async def update_item(
        self,
        principal: Principal,
        cart_item_id: int,
        quantity: int,
    ) -> CartItem:
        """Set a line's quantity, keeping the captured price."""
        item = await self.get_item(principal, cart_item_id, Action.UPDATE)
        self._check_quantity(quantity)
        await self._ensure_available(
            item.seat_type_id, item.event_day_id, item.customer_id, quantity
        )

        item.quantity = quantity
        item.total_price = item.price_per_seat * quantity
        await self.db.commit()
        await self.db.refresh(item)
        return item

    async def remove_item(self, principal: Principal, cart_item_id: int) -> None:
        item = await self.get_item(principal, cart_item_id, Action.DELETE)
        await self.db.delete(item)
        await self.db.commit()

    async def list_items(self, customer_id: str) -> list[CartItem]:
        result = await self.db.execute(
            select(CartItem)
            .where(CartItem.customer_id == customer_id)
            .order_by(CartItem.cart_item_id)
        )
        return list(result.scalars().all())

    async def get_cart(self, principal: Principal) -> CartView:
        """The customer's cart with names and per-line availability."""
        authorize(principal, Resource("cart_items", principal.principal_id), Action.VIEW)
        result = await self.db.execute(
            select(CartItem, Shop.name, SeatType.name, EventDay.event_date)
            .join(Shop, Shop.shop_id == CartItem.shop_id)
            .join(SeatType, SeatType.seat_type_id == CartItem.seat_type_id)
            .join(EventDay, EventDay.event_day_id == CartItem.event_day_id)
            .where(CartItem.customer_id == principal.principal_id)
            .order_by(CartItem.cart_item_id)
        )

        view = CartView()
        for item, shop_name, seat_type_name, event_date in result.all():
            try:
                available = await self.available_quantity(
                    item.seat_type_id, item.event_day_id, item.customer_id
                )
            except NotFoundError:
                available = 0
            view.lines.append(
                CartLine(
                    item=item,
                    shop_name=shop_name,
                    seat_type_name=seat_type_name,
                    event_date=event_date,
                    available_quantity=available,
                )
            )
        return view

    async def check_availability(self, principal: Principal) -> CartView:
        """Same as :meth:`get_cart`; callers inspect ``all_available``."""
        return await self.get_cart(principal)

    async def clear_cart(self, principal: Principal) -> int:
        authorize(principal, Resource("cart_items", principal.principal_id), Action.DELETE)
        result = await self.db.execute(
            delete(CartItem).where(CartItem.customer_id == principal.principal_id)
        )
        await self.db.commit()
        return result.rowcount

    async def clear_lines(
        self,
        customer_id: str,
        lines: Iterable[tuple[int, int, int]],
    ) -> int:
        """
        Remove the cart lines matching purchased (shop, seat type, day) keys.

        Called by reconciliation once tickets are dispatched; lines added for
        other seat types in the meantime are kept.
        """
        keys = set(lines)
        if not keys:
            return 0
        result = await self.db.execute(
            delete(CartItem).where(
                CartItem.customer_id == customer_id,
                or_(
                    *[
                        and_(
                            CartItem.shop_id == shop_id,
                            CartItem.seat_type_id == seat_type_id,
                            CartItem.event_day_id == event_day_id,
                        )
                        for shop_id, seat_type_id, event_day_id in keys
                    ]
                ),
            )
        )
        await self.db.commit()
        logger.info(f"Cleared {result.rowcount} cart lines for customer {customer_id}")
        return result.rowcount
