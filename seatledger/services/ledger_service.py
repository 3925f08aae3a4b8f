"""Inventory ledger: remaining capacity per seat type and event day."""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.exceptions import ConflictError, NotFoundError
from seatledger.models.catalog import SeatTypeAvailability

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Reads and adjusts ``seat_type_availability`` rows.

    The ledger never commits; every change joins the caller's transaction so
    a checkout or a compensation is applied atomically with its bookings.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_availability(
        self,
        seat_type_id: int,
        event_day_id: int,
    ) -> SeatTypeAvailability | None:
        result = await self.db.execute(
            select(SeatTypeAvailability)
            .where(
                SeatTypeAvailability.seat_type_id == seat_type_id,
                SeatTypeAvailability.event_day_id == event_day_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_availability(
        self,
        seat_type_id: int,
        event_day_id: int,
    ) -> SeatTypeAvailability:
        """
        Get the ledger row (quantity, price, available flag).

        Raises:
            NotFoundError: If no row exists for the pair
        """
        availability = await self.find_availability(seat_type_id, event_day_id)
        if availability is None:
            raise NotFoundError(
                f"No availability for seat type {seat_type_id} on day {event_day_id}"
            )
        return availability

    async def reserve(self, seat_type_id: int, event_day_id: int, quantity: int) -> bool:
        """
        Atomically take ``quantity`` seats if at least that many remain.

        The check and the decrement are one conditional UPDATE, so two
        concurrent checkouts can never both take the last seats.

        Returns:
            False if capacity was insufficient or the row does not exist
        """
        result = await self.db.execute(
            update(SeatTypeAvailability)
            .where(
                SeatTypeAvailability.seat_type_id == seat_type_id,
                SeatTypeAvailability.event_day_id == event_day_id,
                SeatTypeAvailability.quantity >= quantity,
            )
            .values(quantity=SeatTypeAvailability.quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, seat_type_id: int, event_day_id: int, quantity: int) -> None:
        """Give ``quantity`` seats back to the ledger."""
        result = await self.db.execute(
            update(SeatTypeAvailability)
            .where(
                SeatTypeAvailability.seat_type_id == seat_type_id,
                SeatTypeAvailability.event_day_id == event_day_id,
            )
            .values(quantity=SeatTypeAvailability.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(
                f"No availability for seat type {seat_type_id} on day {event_day_id}"
            )
        logger.info(
            f"Released {quantity} seats for seat type {seat_type_id} day {event_day_id}"
        )

    async def adjust(self, seat_type_id: int, event_day_id: int, delta: int) -> None:
        """
        Apply a signed quantity change.

        Raises:
            NotFoundError: If no row exists for the pair
            ConflictError: If a negative delta exceeds the remaining quantity
        """
        if delta == 0:
            await self.get_availability(seat_type_id, event_day_id)
            return
        if delta > 0:
            await self.release(seat_type_id, event_day_id, delta)
            return

        if not await self.reserve(seat_type_id, event_day_id, -delta):
            availability = await self.get_availability(seat_type_id, event_day_id)
            raise ConflictError(
                f"Only {availability.quantity} seats remain",
                available_quantity=availability.quantity,
            )
