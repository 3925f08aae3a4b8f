"""Expiry sweep for pending bookings whose hold has lapsed."""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.payment import Payment, PaymentStatus
from seatledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class ExpirationService:
    """Service releasing seats held by abandoned checkouts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def expire_stale_bookings(self, now: datetime | None = None) -> int:
        """
        Cancel pending bookings past ``expires_at`` and release their seats.

        A booking is left alone while its payment is still inside the payment
        hold window, since the gateway may yet report success. A pending
        payment for a booking that is cancelled here is marked failed.

        Returns:
            Number of bookings cancelled
        """
        now = now or datetime.now()

        result = await self.db.execute(
            select(Booking, Payment)
            .outerjoin(Payment, Payment.booking_id == Booking.booking_id)
            .where(
                Booking.status == BookingStatus.PENDING,
                Booking.expires_at.is_not(None),
                Booking.expires_at < now,
            )
            .order_by(Booking.booking_id)
        )
        rows = result.all()

        count = 0
        for booking, payment in rows:
            if payment is not None:
                if payment.status == PaymentStatus.SUCCESS:
                    continue
                if (
                    payment.status == PaymentStatus.PENDING
                    and payment.expires_at is not None
                    and payment.expires_at >= now
                ):
                    continue

            cancelled = await self.db.execute(
                update(Booking)
                .where(
                    Booking.booking_id == booking.booking_id,
                    Booking.status == BookingStatus.PENDING,
                )
                .values(status=BookingStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            if cancelled.rowcount != 1:
                continue

            await self.ledger.release(
                booking.seat_type_id, booking.event_day_id, booking.quantity
            )
            if payment is not None and payment.status == PaymentStatus.PENDING:
                await self.db.execute(
                    update(Payment)
                    .where(
                        Payment.payment_id == payment.payment_id,
                        Payment.status == PaymentStatus.PENDING,
                    )
                    .values(status=PaymentStatus.FAILED)
                    .execution_options(synchronize_session=False)
                )
            count += 1

        if count > 0:
            await self.db.commit()
            logger.info(f"Expired {count} stale pending bookings")

        return count
