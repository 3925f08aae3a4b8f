"""Tests for applying gateway notifications."""

from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from seatledger.exceptions import NotFoundError
from seatledger.models import (
    BookingStatus,
    CustomerTicket,
    PaymentNotification,
    PaymentStatus,
    ProcessingStatus,
)
from seatledger.services import reconciliation_service
from seatledger.services.cart_service import CartService
from seatledger.services.payment_service import PaymentService
from seatledger.services.reconciliation_service import ReconciliationService
from tests.helpers import ledger_quantity, load_booking, place_order, signed_notification


@pytest.fixture
def reconciler(db, mock_redis, ticket_service):
    return ReconciliationService(db, mock_redis, ticket_service=ticket_service)


@pytest_asyncio.fixture
async def order(db, catalog, alice, mock_redis):
    intent = await place_order(
        db,
        mock_redis,
        alice,
        [
            (catalog.shop_a, catalog.vip_a, catalog.day_1, 2),
            (catalog.shop_b, catalog.vip_b, catalog.day_2, 3),
        ],
    )
    await PaymentService(db).store_checkout_customer(
        alice,
        intent.gateway_order_id,
        {"first_name": "Alice", "last_name": "Perera", "email": "alice@example.com"},
    )
    return intent


async def _notify(db, intent, status_code, payment_id="320025071278") -> int:
    notification = await PaymentService(db).record_notification(
        signed_notification(intent.gateway_order_id, status_code, intent.amount, payment_id)
    )
    return notification.notification_id


async def _ticket_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(CustomerTicket))


async def _payment_statuses(db, intent) -> set[PaymentStatus]:
    payments = await PaymentService(db).get_order_payments(intent.gateway_order_id)
    return {p.status for p in payments}


async def _booking_statuses(db, intent) -> set[BookingStatus]:
    return {
        (await load_booking(db, p.booking_id)).status for p in intent.payments
    }


class TestSuccess:
    @pytest.mark.asyncio
    async def test_confirms_issues_and_clears_cart(
        self, db, catalog, order, reconciler, notifier
    ):
        status = await reconciler.reconcile(await _notify(db, order, 2))

        assert status == ProcessingStatus.PROCESSED
        assert await _payment_statuses(db, order) == {PaymentStatus.SUCCESS}
        assert await _booking_statuses(db, order) == {BookingStatus.CONFIRMED}
        assert await _ticket_count(db) == 2
        assert len(notifier.sent) == 1
        assert await CartService(db).list_items("alice") == []
        # Seats stay deducted
        assert await ledger_quantity(db, catalog.vip_a, catalog.day_1) == 8

    @pytest.mark.asyncio
    async def test_gateway_payment_id_is_stored(self, db, order, reconciler):
        await reconciler.reconcile(await _notify(db, order, 2, payment_id="PAY-77"))

        payments = await PaymentService(db).get_order_payments(order.gateway_order_id)
        assert {p.gateway_payment_id for p in payments} == {"PAY-77"}
        assert {p.payment_method for p in payments} == {"VISA"}

    @pytest.mark.asyncio
    async def test_replayed_notification_is_a_duplicate(
        self, db, catalog, order, reconciler, notifier
    ):
        await reconciler.reconcile(await _notify(db, order, 2))

        status = await reconciler.reconcile(await _notify(db, order, 2))

        assert status == ProcessingStatus.DUPLICATE
        assert await _ticket_count(db) == 2
        assert len(notifier.sent) == 1
        assert await ledger_quantity(db, catalog.vip_a, catalog.day_1) == 8

    @pytest.mark.asyncio
    async def test_same_row_twice_is_not_reapplied(self, db, order, reconciler, notifier):
        notification_id = await _notify(db, order, 2)

        await reconciler.reconcile(notification_id)
        status = await reconciler.reconcile(notification_id)

        assert status == ProcessingStatus.PROCESSED
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_failure_after_success_keeps_booking(self, db, catalog, order, reconciler):
        await reconciler.reconcile(await _notify(db, order, 2))

        status = await reconciler.reconcile(await _notify(db, order, -3))

        assert status == ProcessingStatus.PROCESSED
        assert await _booking_statuses(db, order) == {BookingStatus.CONFIRMED}
        assert await ledger_quantity(db, catalog.vip_a, catalog.day_1) == 8


class TestFailure:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [-1, -2, -3])
    async def test_releases_seats(self, db, catalog, order, reconciler, status_code):
        status = await reconciler.reconcile(await _notify(db, order, status_code))

        assert status == ProcessingStatus.PROCESSED
        assert await _payment_statuses(db, order) == {PaymentStatus.FAILED}
        assert await _booking_statuses(db, order) == {BookingStatus.CANCELLED}
        assert await ledger_quantity(db, catalog.vip_a, catalog.day_1) == 10
        assert await ledger_quantity(db, catalog.vip_b, catalog.day_2) == 10
        assert await _ticket_count(db) == 0

    @pytest.mark.asyncio
    async def test_second_failure_does_not_release_twice(self, db, catalog, order, reconciler):
        await reconciler.reconcile(await _notify(db, order, -2))

        # Different payment id, so not a duplicate; the guarded update stops it
        status = await reconciler.reconcile(await _notify(db, order, -1, payment_id="OTHER"))

        assert status == ProcessingStatus.PROCESSED
        assert await ledger_quantity(db, catalog.vip_a, catalog.day_1) == 10
        assert await ledger_quantity(db, catalog.vip_b, catalog.day_2) == 10


class TestOtherOutcomes:
    @pytest.mark.asyncio
    async def test_pending_status_changes_nothing(self, db, catalog, order, reconciler):
        status = await reconciler.reconcile(await _notify(db, order, 0))

        assert status == ProcessingStatus.PROCESSED
        assert await _payment_statuses(db, order) == {PaymentStatus.PENDING}
        assert await _booking_statuses(db, order) == {BookingStatus.PENDING}

    @pytest.mark.asyncio
    async def test_invalid_signature_is_rejected(self, db, catalog, order, reconciler):
        data = signed_notification(order.gateway_order_id, 2, order.amount)
        data["md5sig"] = "0" * 32
        notification = await PaymentService(db).record_notification(data)

        status = await reconciler.reconcile(notification.notification_id)

        assert status == ProcessingStatus.REJECTED
        assert await _booking_statuses(db, order) == {BookingStatus.PENDING}
        assert await _ticket_count(db) == 0

    @pytest.mark.asyncio
    async def test_unverified_accepted_when_configured(self, db, order, reconciler):
        data = signed_notification(order.gateway_order_id, 2, order.amount)
        data["md5sig"] = "0" * 32
        notification = await PaymentService(db).record_notification(data)

        with patch.object(
            reconciliation_service.settings, "GATEWAY_ACCEPT_UNVERIFIED", True
        ):
            status = await reconciler.reconcile(notification.notification_id)

        assert status == ProcessingStatus.PROCESSED
        assert await _booking_statuses(db, order) == {BookingStatus.CONFIRMED}

    @pytest.mark.asyncio
    async def test_unknown_order_is_marked_failed(self, db, catalog, reconciler):
        notification = await PaymentService(db).record_notification(
            signed_notification("PG-NOPE", 2, "100.00")
        )

        status = await reconciler.reconcile(notification.notification_id)

        stored = await db.get(PaymentNotification, notification.notification_id)
        assert status == ProcessingStatus.FAILED
        assert "PG-NOPE" in stored.error_message
        assert stored.processed_at is not None

    @pytest.mark.asyncio
    async def test_underpaid_order_is_not_confirmed(
        self, db, catalog, order, reconciler, notifier
    ):
        notification = await PaymentService(db).record_notification(
            signed_notification(order.gateway_order_id, 2, "1.00")
        )

        status = await reconciler.reconcile(notification.notification_id)

        stored = await db.get(PaymentNotification, notification.notification_id)
        assert status == ProcessingStatus.FAILED
        assert "paid 1.00" in stored.error_message
        assert stored.attempts == 1
        assert await _payment_statuses(db, order) == {PaymentStatus.PENDING}
        assert await _booking_statuses(db, order) == {BookingStatus.PENDING}
        assert await _ticket_count(db) == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_missing_notification(self, db, catalog, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.reconcile(12345)
