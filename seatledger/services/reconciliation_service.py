"""Applies stored gateway notifications to payments, bookings and the ledger."""

import logging
from collections import defaultdict
from datetime import datetime

import redis.asyncio as redis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.config import get_settings
from seatledger.distributed_lock import (
    DistributedLockError,
    distributed_lock,
    order_lock_key,
)
from seatledger.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from seatledger.gateway import GatewayOutcome, format_amount, map_status
from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.payment import (
    Payment,
    PaymentNotification,
    PaymentStatus,
    ProcessingStatus,
)
from seatledger.services.cart_service import CartService
from seatledger.services.ledger_service import LedgerService
from seatledger.services.ticket_service import IssuanceSummary, TicketService

settings = get_settings()
logger = logging.getLogger(__name__)

# A FAILED notification is retried by the worker; anything else is final.
_OPEN_STATUSES = (ProcessingStatus.RECEIVED, ProcessingStatus.FAILED)


class ReconciliationService:
    """
    Asynchronous half of webhook handling.

    Runs once per stored notification under a per-order lock, so two
    notifications for the same order are applied one after the other while
    different orders reconcile concurrently. Every status change is a
    guarded UPDATE from ``pending``; replaying a notification can therefore
    neither confirm a booking twice nor release its seats twice.
    """

    def __init__(
        self,
        db: AsyncSession,
        redis_client: redis.Redis,
        ticket_service: TicketService | None = None,
    ):
        self.db = db
        self.redis = redis_client
        self.ledger = LedgerService(db)
        self.carts = CartService(db)
        self.tickets = ticket_service or TicketService(db)

    async def reconcile(self, notification_id: int) -> ProcessingStatus:
        """
        Apply one stored notification.

        Returns:
            The notification's final processing status

        Raises:
            NotFoundError: If the notification does not exist
            ConflictError: If the order lock could not be acquired
        """
        notification = await self.db.get(PaymentNotification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        try:
            async with distributed_lock(
                self.redis, order_lock_key(notification.gateway_order_id), blocking=True
            ):
                return await self._do_reconcile(notification)
        except DistributedLockError:
            raise ConflictError(
                f"Order {notification.gateway_order_id} is being reconciled elsewhere"
            )

    async def _do_reconcile(self, notification: PaymentNotification) -> ProcessingStatus:
        # Re-read under the lock; another worker may have finished it
        await self.db.refresh(notification)
        if notification.processing_status not in _OPEN_STATUSES:
            logger.info(
                f"Notification {notification.notification_id} already "
                f"{notification.processing_status.value}"
            )
            return notification.processing_status

        if not notification.signature_valid and not settings.GATEWAY_ACCEPT_UNVERIFIED:
            logger.warning(
                f"Rejecting notification {notification.notification_id}: invalid signature"
            )
            return await self._finish(
                notification, ProcessingStatus.REJECTED, "Invalid signature"
            )

        if await self._is_duplicate(notification):
            logger.info(
                f"Notification {notification.notification_id} duplicates an applied one "
                f"for order {notification.gateway_order_id}"
            )
            return await self._finish(notification, ProcessingStatus.DUPLICATE)

        outcome = map_status(notification.status_code)
        notification_id = notification.notification_id
        try:
            if outcome is GatewayOutcome.SUCCESS:
                await self._apply_success(notification)
            elif outcome.is_failure:
                await self._apply_failure(notification, outcome)
            else:
                logger.info(
                    f"Order {notification.gateway_order_id} still pending "
                    f"(status {notification.status_code})"
                )
        except ServiceError as e:
            # Not worth an immediate retry; the re-queue task tries again later
            await self.db.rollback()
            notification = await self.db.get(PaymentNotification, notification_id)
            logger.error(f"Notification {notification_id} failed: {e.message}")
            return await self._finish(notification, ProcessingStatus.FAILED, e.message)
        except Exception as e:
            await self.db.rollback()
            notification = await self.db.get(PaymentNotification, notification_id)
            await self._finish(notification, ProcessingStatus.FAILED, str(e))
            raise

        return await self._finish(notification, ProcessingStatus.PROCESSED)

    async def _finish(
        self,
        notification: PaymentNotification,
        status: ProcessingStatus,
        error: str | None = None,
    ) -> ProcessingStatus:
        notification.processing_status = status
        notification.error_message = error
        notification.attempts = (notification.attempts or 0) + 1
        notification.processed_at = datetime.now()
        await self.db.commit()
        return status

    async def _is_duplicate(self, notification: PaymentNotification) -> bool:
        """Same order, status code and gateway payment id already applied."""
        query = select(PaymentNotification.notification_id).where(
            PaymentNotification.notification_id != notification.notification_id,
            PaymentNotification.gateway_order_id == notification.gateway_order_id,
            PaymentNotification.status_code == notification.status_code,
            PaymentNotification.processing_status == ProcessingStatus.PROCESSED,
        )
        if notification.gateway_payment_id is None:
            query = query.where(PaymentNotification.gateway_payment_id.is_(None))
        else:
            query = query.where(
                PaymentNotification.gateway_payment_id == notification.gateway_payment_id
            )
        return await self.db.scalar(query.limit(1)) is not None

    async def _order_booking_ids(self, gateway_order_id: str) -> list[int]:
        result = await self.db.execute(
            select(Payment.booking_id).where(Payment.gateway_order_id == gateway_order_id)
        )
        booking_ids = list(result.scalars().all())
        if not booking_ids:
            raise NotFoundError(f"No payments for order {gateway_order_id}")
        return booking_ids

    async def _load_bookings(self, booking_ids: list[int]) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.booking_id.in_(booking_ids))
            .order_by(Booking.booking_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    def _payment_values(
        self,
        notification: PaymentNotification,
        status: PaymentStatus,
    ) -> dict:
        values = {"status": status}
        if notification.gateway_payment_id:
            values["gateway_payment_id"] = notification.gateway_payment_id
        if notification.payment_method:
            values["payment_method"] = notification.payment_method
        return values

    async def _check_amount(self, notification: PaymentNotification) -> None:
        """
        The paid amount must equal the order total.

        Raises:
            ValidationError: If the gateway reports a different amount
        """
        order_id = notification.gateway_order_id
        total = await self.db.scalar(
            select(func.sum(Payment.amount)).where(Payment.gateway_order_id == order_id)
        )
        try:
            paid = format_amount(notification.amount)
        except ArithmeticError:
            paid = None
        if paid != format_amount(total or 0):
            raise ValidationError(
                f"Order {order_id} paid {notification.amount} but totals {total}"
            )

    async def _apply_success(self, notification: PaymentNotification) -> IssuanceSummary:
        order_id = notification.gateway_order_id
        gateway_payment_id = notification.gateway_payment_id
        booking_ids = await self._order_booking_ids(order_id)
        await self._check_amount(notification)

        await self.db.execute(
            update(Payment)
            .where(
                Payment.gateway_order_id == order_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .values(**self._payment_values(notification, PaymentStatus.SUCCESS))
            .execution_options(synchronize_session=False)
        )
        confirmed = await self.db.execute(
            update(Booking)
            .where(
                Booking.booking_id.in_(booking_ids),
                Booking.status == BookingStatus.PENDING,
            )
            .values(status=BookingStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Order {order_id} paid: {confirmed.rowcount} bookings confirmed")

        bookings = await self._load_bookings(booking_ids)
        for booking in bookings:
            if booking.status is BookingStatus.CANCELLED:
                # Seats were already released; needs a manual refund
                logger.warning(
                    f"Order {order_id} paid but booking {booking.booking_id} was cancelled"
                )

        summary = await self.tickets.issue_for_order(order_id, gateway_payment_id)
        if not summary.success:
            logger.warning(
                f"Order {order_id}: documents failed for "
                f"{[g.ticket_no for g in summary.groups if not g.success]}"
            )

        # Dispatch has completed; the purchased lines leave the cart
        purchased: dict[str, set[tuple[int, int, int]]] = defaultdict(set)
        for booking in await self._load_bookings(booking_ids):
            if booking.status is BookingStatus.CONFIRMED:
                purchased[booking.customer_id].add(booking.line_key)
        for customer_id, lines in purchased.items():
            await self.carts.clear_lines(customer_id, lines)

        return summary

    async def _apply_failure(
        self,
        notification: PaymentNotification,
        outcome: GatewayOutcome,
    ) -> None:
        order_id = notification.gateway_order_id
        booking_ids = await self._order_booking_ids(order_id)

        await self.db.execute(
            update(Payment)
            .where(
                Payment.gateway_order_id == order_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .values(**self._payment_values(notification, PaymentStatus.FAILED))
            .execution_options(synchronize_session=False)
        )

        released = 0
        for booking in await self._load_bookings(booking_ids):
            cancelled = await self.db.execute(
                update(Booking)
                .where(
                    Booking.booking_id == booking.booking_id,
                    Booking.status == BookingStatus.PENDING,
                )
                .values(status=BookingStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            # Only bookings this run actually cancelled give their seats back
            if cancelled.rowcount == 1:
                await self.ledger.release(
                    booking.seat_type_id, booking.event_day_id, booking.quantity
                )
                released += booking.quantity
            elif booking.status is BookingStatus.CONFIRMED:
                logger.warning(
                    f"Order {order_id} reported {outcome.value} for confirmed "
                    f"booking {booking.booking_id}; left unchanged"
                )

        await self.db.commit()
        logger.info(f"Order {order_id} {outcome.value}: released {released} seats")
