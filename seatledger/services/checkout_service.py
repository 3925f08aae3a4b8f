"""Checkout: turn a customer's cart holds into pending bookings."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import redis.asyncio as redis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.authorization import Action, Principal, Resource, Role, authorize
from seatledger.config import get_settings
from seatledger.distributed_lock import (
    DistributedLockError,
    checkout_lock_key,
    distributed_lock,
)
from seatledger.exceptions import ConflictError, ValidationError
from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.cart import CartItem
from seatledger.models.catalog import SeatType, Shop
from seatledger.models.payment import Payment, PaymentStatus
from seatledger.query import Filter, apply_filters
from seatledger.services.cart_service import CartService
from seatledger.services.ledger_service import LedgerService

settings = get_settings()
logger = logging.getLogger(__name__)

BOOKING_FILTER_FIELDS = (
    "status",
    "shop_id",
    "seat_type_id",
    "event_day_id",
    "quantity",
    "created_at",
)


@dataclass
class _PlannedLine:
    item: CartItem
    booking: Booking | None
    delta: int
    held: int

    def key(self) -> dict[str, int]:
        return _line_key(self.item)


def _line_key(item: CartItem) -> dict[str, int]:
    return {
        "shop_id": item.shop_id,
        "seat_type_id": item.seat_type_id,
        "event_day_id": item.event_day_id,
        "requested_quantity": item.quantity,
    }


@dataclass
class CheckoutResult:
    bookings: list[Booking] = field(default_factory=list)

    @property
    def booking_ids(self) -> list[int]:
        return [b.booking_id for b in self.bookings]

    @property
    def total_amount(self) -> Decimal:
        return sum((b.total_price for b in self.bookings), Decimal("0"))


class CheckoutService:
    """
    All-or-nothing conversion of cart items into bookings.

    Checkout runs in two passes. The validate pass reads the ledger and
    existing pending bookings without writing anything. The commit pass
    upserts bookings and moves the ledger by each line's delta inside one
    transaction; seats are taken with the ledger's conditional decrement so a
    concurrent checkout that drained the row in between makes this one roll
    back instead of overselling.
    """

    def __init__(self, db: AsyncSession, redis_client: redis.Redis):
        self.db = db
        self.redis = redis_client
        self.ledger = LedgerService(db)
        self.carts = CartService(db)

    async def checkout(self, principal: Principal) -> CheckoutResult:
        """
        Check out the principal's whole cart.

        Args:
            principal: Customer whose cart is checked out

        Returns:
            CheckoutResult with one pending booking per cart line

        Raises:
            ValidationError: If the cart is empty
            ConflictError: If any line lacks capacity; ``items`` lists every
                failing line with its current available quantity
        """
        authorize(principal, Resource("bookings", principal.principal_id), Action.CREATE)

        try:
            async with distributed_lock(
                self.redis, checkout_lock_key(principal.principal_id), blocking=True
            ):
                return await self._do_checkout(principal.principal_id)
        except DistributedLockError:
            raise ConflictError("Checkout already in progress. Please try again.")

    async def _do_checkout(self, customer_id: str) -> CheckoutResult:
        """Should be called within the customer's checkout lock."""
        items = await self.carts.list_items(customer_id)
        if not items:
            raise ValidationError("Cart is empty")

        plan, failures = await self._validate(customer_id, items)
        if failures:
            raise ConflictError("Insufficient seats for some items", items=failures)

        return await self._commit(customer_id, plan)

    async def _pending_booking(self, customer_id: str, item: CartItem) -> Booking | None:
        result = await self.db.execute(
            select(Booking).where(
                Booking.customer_id == customer_id,
                Booking.shop_id == item.shop_id,
                Booking.seat_type_id == item.seat_type_id,
                Booking.event_day_id == item.event_day_id,
                Booking.status == BookingStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def _validate(
        self,
        customer_id: str,
        items: list[CartItem],
    ) -> tuple[list[_PlannedLine], list[dict[str, Any]]]:
        plan: list[_PlannedLine] = []
        failures: list[dict[str, Any]] = []

        for item in items:
            booking = await self._pending_booking(customer_id, item)
            already_held = booking.quantity if booking else 0
            delta = item.quantity - already_held

            availability = await self.ledger.find_availability(
                item.seat_type_id, item.event_day_id
            )
            if availability is None or not availability.available:
                failures.append(await self._failure(_line_key(item), 0))
                continue
            if availability.quantity - delta < 0:
                failures.append(
                    await self._failure(
                        _line_key(item), availability.quantity + already_held
                    )
                )
                continue

            plan.append(
                _PlannedLine(item=item, booking=booking, delta=delta, held=already_held)
            )

        return plan, failures

    async def _commit(self, customer_id: str, plan: list[_PlannedLine]) -> CheckoutResult:
        expires_at = datetime.now() + timedelta(minutes=settings.BOOKING_HOLD_MINUTES)
        result = CheckoutResult()
        lost_race: list[_PlannedLine] = []

        for line in plan:
            item = line.item
            total_price = item.price_per_seat * item.quantity
            if line.booking and not await self._update_pending(
                line.booking.booking_id, item.quantity, total_price, expires_at
            ):
                # Reconciled between the two passes; its seats are no longer ours
                booking_id = line.booking.booking_id
                await self.db.rollback()
                logger.warning(
                    f"Checkout for {customer_id} aborted: booking {booking_id} "
                    f"left pending during checkout"
                )
                raise ConflictError("Bookings changed during checkout. Please try again.")

            if line.delta > 0:
                if not await self.ledger.reserve(
                    item.seat_type_id, item.event_day_id, line.delta
                ):
                    lost_race.append(line)
                    continue
            elif line.delta < 0:
                await self.ledger.release(item.seat_type_id, item.event_day_id, -line.delta)

            if line.booking:
                booking = line.booking
            else:
                booking = Booking(
                    customer_id=customer_id,
                    shop_id=item.shop_id,
                    seat_type_id=item.seat_type_id,
                    event_day_id=item.event_day_id,
                    quantity=item.quantity,
                    total_price=total_price,
                    status=BookingStatus.PENDING,
                    expires_at=expires_at,
                )
                self.db.add(booking)
            result.bookings.append(booking)

        if lost_race:
            # Rollback expires every loaded row, so snapshot the keys first
            snapshots = [(line.key(), line.held) for line in lost_race]
            await self.db.rollback()
            failures = []
            for key, held in snapshots:
                availability = await self.ledger.find_availability(
                    key["seat_type_id"], key["event_day_id"]
                )
                available = (availability.quantity if availability else 0) + held
                failures.append(await self._failure(key, available))
            logger.warning(
                f"Checkout for {customer_id} lost a capacity race on {len(lost_race)} lines"
            )
            raise ConflictError("Insufficient seats for some items", items=failures)

        await self.db.commit()
        for booking in result.bookings:
            await self.db.refresh(booking)

        logger.info(
            f"Checkout committed for {customer_id}: bookings {result.booking_ids}, "
            f"total {result.total_amount}"
        )
        return result

    async def _update_pending(
        self,
        booking_id: int,
        quantity: int,
        total_price: Decimal,
        expires_at: datetime,
    ) -> bool:
        """
        Resize a booking that must still be pending.

        An open payment for the booking follows the new total, so the signed
        checkout payload always charges what is being booked.
        """
        updated = await self.db.execute(
            update(Booking)
            .where(
                Booking.booking_id == booking_id,
                Booking.status == BookingStatus.PENDING,
            )
            .values(quantity=quantity, total_price=total_price, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            return False

        await self.db.execute(
            update(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .values(amount=total_price)
            .execution_options(synchronize_session=False)
        )
        return True

    async def _failure(self, key: dict[str, int], available: int) -> dict[str, Any]:
        shop_name = await self.db.scalar(
            select(Shop.name).where(Shop.shop_id == key["shop_id"])
        )
        seat_type_name = await self.db.scalar(
            select(SeatType.name).where(SeatType.seat_type_id == key["seat_type_id"])
        )
        return {
            **key,
            "shop_name": shop_name,
            "seat_type_name": seat_type_name,
            "available_quantity": max(available, 0),
            "message": f"Only {max(available, 0)} seats available",
        }

    async def get_booking(self, principal: Principal, booking_id: int) -> Booking | None:
        """Get booking by ID."""
        booking = await self.db.get(Booking, booking_id)
        if booking is not None:
            seller_id = await self.db.scalar(
                select(Shop.seller_id).where(Shop.shop_id == booking.shop_id)
            )
            authorize(
                principal,
                Resource("bookings", booking.customer_id, seller_id),
                Action.VIEW,
            )
        return booking

    async def list_bookings(
        self,
        principal: Principal,
        filters: list[Filter] | None = None,
    ) -> list[Booking]:
        """Bookings visible to the principal, narrowed by filters."""
        authorize(principal, Resource("bookings"), Action.VIEW)
        query = select(Booking)
        if principal.role is Role.SELLER:
            query = query.join(Shop, Shop.shop_id == Booking.shop_id).where(
                Shop.seller_id == principal.principal_id
            )
        elif not principal.is_staff:
            query = query.where(Booking.customer_id == principal.principal_id)
        query = apply_filters(query, Booking, filters or [], BOOKING_FILTER_FIELDS)
        query = query.order_by(Booking.created_at.desc(), Booking.booking_id.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())
