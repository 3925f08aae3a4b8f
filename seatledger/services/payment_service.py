"""Payment intents, checkout contact details and gateway notification intake."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from seatledger.authorization import Action, Principal, Resource, authorize
from seatledger.config import get_settings
from seatledger.exceptions import ConflictError, NotFoundError, ValidationError
from seatledger.gateway import GatewaySigner, InboundNotification
from seatledger.models.booking import Booking, BookingStatus
from seatledger.models.catalog import SeatType, Shop
from seatledger.models.payment import (
    CheckoutCustomer,
    Payment,
    PaymentNotification,
    PaymentStatus,
    ProcessingStatus,
)

settings = get_settings()
logger = logging.getLogger(__name__)


def new_gateway_order_id() -> str:
    """Generate a unique gateway order id using ULID."""
    return f"PG-{str(ULID())}"


@dataclass
class PaymentIntent:
    gateway_order_id: str
    payments: list[Payment] = field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))


class PaymentService:
    """Service for the synchronous side of payments."""

    def __init__(self, db: AsyncSession, signer: GatewaySigner | None = None):
        self.db = db
        self.signer = signer or GatewaySigner()

    async def create_payment_intent(
        self,
        principal: Principal,
        booking_ids: list[int],
        payment_method: str,
        gateway_order_id: str | None = None,
    ) -> PaymentIntent:
        """
        Create or refresh the payments for a set of bookings.

        Idempotent per booking: an existing payment row is updated in place.
        All bookings share one gateway order id, reusing the id of a pending
        payment among them when the caller does not supply one.

        Args:
            principal: Caller paying for the bookings
            booking_ids: Bookings to pay for
            payment_method: Method label, e.g. "card"
            gateway_order_id: Explicit order id to attach the payments to

        Returns:
            PaymentIntent with the shared order id and payment rows

        Raises:
            ValidationError: If no bookings or no method were given
            NotFoundError: If any booking does not exist
            ConflictError: If any booking is no longer pending
        """
        if not booking_ids:
            raise ValidationError("At least one booking is required")
        if not payment_method:
            raise ValidationError("Payment method is required")

        ids = sorted(set(booking_ids))
        result = await self.db.execute(
            select(Booking).where(Booking.booking_id.in_(ids)).order_by(Booking.booking_id)
        )
        bookings = list(result.scalars().all())

        missing = set(ids) - {b.booking_id for b in bookings}
        if missing:
            raise NotFoundError(f"Bookings not found: {sorted(missing)}")

        for booking in bookings:
            authorize(principal, Resource("payments", booking.customer_id), Action.CREATE)
            if booking.status != BookingStatus.PENDING:
                raise ConflictError(
                    f"Booking {booking.booking_id} is {booking.status.value}"
                )

        result = await self.db.execute(select(Payment).where(Payment.booking_id.in_(ids)))
        existing = {p.booking_id: p for p in result.scalars().all()}

        if gateway_order_id is None:
            gateway_order_id = next(
                (
                    p.gateway_order_id
                    for p in existing.values()
                    if p.status == PaymentStatus.PENDING
                ),
                None,
            ) or new_gateway_order_id()

        expires_at = datetime.now() + timedelta(minutes=settings.PAYMENT_HOLD_MINUTES)
        intent = PaymentIntent(gateway_order_id=gateway_order_id)

        for booking in bookings:
            payment = existing.get(booking.booking_id)
            if payment:
                if payment.status == PaymentStatus.SUCCESS:
                    raise ConflictError(f"Booking {booking.booking_id} is already paid")
                payment.amount = booking.total_price
                payment.payment_method = payment_method
                payment.gateway_order_id = gateway_order_id
                payment.status = PaymentStatus.PENDING
                payment.expires_at = expires_at
            else:
                payment = Payment(
                    booking_id=booking.booking_id,
                    amount=booking.total_price,
                    payment_method=payment_method,
                    status=PaymentStatus.PENDING,
                    gateway_order_id=gateway_order_id,
                    expires_at=expires_at,
                )
                self.db.add(payment)
            intent.payments.append(payment)

        await self.db.commit()
        for payment in intent.payments:
            await self.db.refresh(payment)

        logger.info(
            f"Payment intent {gateway_order_id} for bookings {ids}, amount {intent.amount}"
        )
        return intent

    async def get_order_payments(self, gateway_order_id: str) -> list[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.gateway_order_id == gateway_order_id)
            .order_by(Payment.payment_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _order_owner(self, gateway_order_id: str) -> str:
        """Customer who owns the order's bookings."""
        owner = await self.db.scalar(
            select(Booking.customer_id)
            .join(Payment, Payment.booking_id == Booking.booking_id)
            .where(Payment.gateway_order_id == gateway_order_id)
            .limit(1)
        )
        if owner is None:
            raise NotFoundError(f"Order {gateway_order_id} not found")
        return owner

    async def store_checkout_customer(
        self,
        principal: Principal,
        gateway_order_id: str,
        contact: Mapping[str, Any],
    ) -> CheckoutCustomer:
        """Create or update the contact details used as the ticket recipient."""
        owner = await self._order_owner(gateway_order_id)
        authorize(principal, Resource("checkout_customers", owner), Action.CREATE)

        result = await self.db.execute(
            select(CheckoutCustomer).where(
                CheckoutCustomer.gateway_order_id == gateway_order_id
            )
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            customer = CheckoutCustomer(gateway_order_id=gateway_order_id, customer_id=owner)
            self.db.add(customer)

        for name in ("first_name", "last_name", "email", "phone", "country"):
            if name in contact:
                setattr(customer, name, contact[name])
        customer.status = "active"

        await self.db.commit()
        await self.db.refresh(customer)
        return customer

    async def get_checkout_customer(self, gateway_order_id: str) -> CheckoutCustomer | None:
        result = await self.db.execute(
            select(CheckoutCustomer).where(
                CheckoutCustomer.gateway_order_id == gateway_order_id
            )
        )
        return result.scalar_one_or_none()

    async def build_checkout_payload(
        self,
        principal: Principal,
        gateway_order_id: str,
    ) -> dict[str, Any]:
        """
        Signed payload the client posts to the hosted checkout page.

        Raises:
            NotFoundError: If the order has no payments
            ConflictError: If the order has already been paid
        """
        payments = await self.get_order_payments(gateway_order_id)
        if not payments:
            raise NotFoundError(f"Order {gateway_order_id} not found")
        owner = await self._order_owner(gateway_order_id)
        authorize(principal, Resource("payments", owner), Action.VIEW)

        if any(p.status == PaymentStatus.SUCCESS for p in payments):
            raise ConflictError(f"Order {gateway_order_id} has already been paid")

        result = await self.db.execute(
            select(Booking.quantity, Shop.name, SeatType.name)
            .join(Payment, Payment.booking_id == Booking.booking_id)
            .join(Shop, Shop.shop_id == Booking.shop_id)
            .join(SeatType, SeatType.seat_type_id == Booking.seat_type_id)
            .where(Payment.gateway_order_id == gateway_order_id)
            .order_by(Booking.booking_id)
        )
        items = ", ".join(
            f"{shop_name} {seat_type_name} x{quantity}"
            for quantity, shop_name, seat_type_name in result.all()
        )

        customer = await self.get_checkout_customer(gateway_order_id)
        contact = None
        if customer is not None:
            contact = {
                "first_name": customer.first_name,
                "last_name": customer.last_name,
                "email": customer.email,
                "phone": customer.phone,
                "country": customer.country,
            }

        amount = sum((p.amount for p in payments), Decimal("0"))
        return self.signer.sign_checkout(gateway_order_id, amount, items, contact)

    async def record_notification(self, data: Mapping[str, Any]) -> PaymentNotification:
        """
        Persist a gateway callback exactly as received.

        This is the synchronous half of webhook handling and must stay cheap:
        it verifies the signature, stores the row and returns. Applying the
        outcome happens later in the reconciliation worker.

        Raises:
            ValidationError: If the callback carries no order id or status
        """
        inbound = InboundNotification.from_form(data)
        if not inbound.order_id or not inbound.status_code:
            raise ValidationError("Notification is missing order_id or status_code")

        signature_valid = self.signer.verify_notification(inbound)
        notification = PaymentNotification(
            gateway_order_id=inbound.order_id,
            gateway_payment_id=inbound.payment_id,
            merchant_id=inbound.merchant_id,
            amount=inbound.amount,
            currency=inbound.currency,
            status_code=inbound.status_code,
            status_message=inbound.status_message,
            payment_method=inbound.method,
            signature=inbound.md5sig,
            signature_valid=signature_valid,
            raw_payload={k: str(v) for k, v in data.items()},
            processing_status=ProcessingStatus.RECEIVED,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        if signature_valid:
            logger.info(
                f"Notification {notification.notification_id} received for order "
                f"{inbound.order_id} with status {inbound.status_code}"
            )
        else:
            logger.warning(
                f"Notification {notification.notification_id} for order "
                f"{inbound.order_id} failed signature verification"
            )
        return notification
