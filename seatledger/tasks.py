"""Background tasks: reconciliation worker, notification re-queue and expiry sweep."""

import asyncio
import logging
import socket
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.config import get_settings
from seatledger.database import get_db_context
from seatledger.models.payment import PaymentNotification, ProcessingStatus
from seatledger.queue import QueueWorker, ReconciliationJob, ReconciliationQueue
from seatledger.redis_client import get_redis
from seatledger.services.expiration_service import ExpirationService
from seatledger.services.reconciliation_service import ReconciliationService

settings = get_settings()
logger = logging.getLogger(__name__)


async def process_reconciliation_job(job: ReconciliationJob) -> None:
    """Worker callback: apply one stored notification in its own session."""
    async with get_db_context() as db:
        redis_client = await get_redis()
        service = ReconciliationService(db, redis_client)
        status = await service.reconcile(job.notification_id)
        logger.info(f"Notification {job.notification_id} -> {status.value}")


async def requeue_stale_once(
    db: AsyncSession,
    queue: ReconciliationQueue,
    now: datetime | None = None,
) -> int:
    """
    Re-enqueue notifications that nobody is working on.

    Picks up rows stored but never enqueued (a crash or Redis outage right
    after the callback) and FAILED rows with attempts left whose retry was
    lost. Reconciliation is idempotent so double delivery is safe.

    Returns:
        Number of notifications enqueued
    """
    now = now or datetime.now()
    cutoff = now - timedelta(seconds=settings.NOTIFICATION_REQUEUE_AFTER_SECONDS)
    result = await db.execute(
        select(PaymentNotification)
        .where(
            or_(
                and_(
                    PaymentNotification.processing_status == ProcessingStatus.RECEIVED,
                    PaymentNotification.received_at < cutoff,
                ),
                and_(
                    PaymentNotification.processing_status == ProcessingStatus.FAILED,
                    PaymentNotification.attempts < settings.RECONCILE_MAX_ATTEMPTS,
                    PaymentNotification.processed_at < cutoff,
                ),
            )
        )
        .order_by(PaymentNotification.notification_id)
    )
    stale = list(result.scalars().all())

    for notification in stale:
        await queue.enqueue(
            ReconciliationJob(
                notification_id=notification.notification_id,
                gateway_order_id=notification.gateway_order_id,
                attempt=notification.attempts + 1,
                enqueued_at=now,
            )
        )
    if stale:
        logger.info(f"Re-queued {len(stale)} stale notifications")
    return len(stale)


async def requeue_stale_notifications(queue: ReconciliationQueue) -> None:
    """Periodic loop around :func:`requeue_stale_once`."""
    logger.info("Starting stale notification re-queue task")

    while True:
        try:
            async with get_db_context() as db:
                await requeue_stale_once(db, queue)
        except Exception as e:
            logger.error(f"Error in re-queue task: {e}")

        await asyncio.sleep(settings.NOTIFICATION_REQUEUE_AFTER_SECONDS)


async def expire_stale_bookings() -> None:
    """Periodic expiry sweep; only scheduled when EXPIRY_SWEEP_ENABLED is set."""
    logger.info("Starting booking expiry sweep task")

    while True:
        try:
            async with get_db_context() as db:
                await ExpirationService(db).expire_stale_bookings()
        except Exception as e:
            logger.error(f"Error in expiry sweep: {e}")

        await asyncio.sleep(settings.EXPIRY_SWEEP_INTERVAL_SECONDS)


class BackgroundTaskManager:
    """Manager for background tasks."""

    def __init__(self):
        self.tasks: list[asyncio.Task] = []
        self.worker: QueueWorker | None = None

    async def start(self) -> None:
        """Start all background tasks."""
        queue = ReconciliationQueue(await get_redis())
        await queue.ensure_consumer_group()

        self.worker = QueueWorker(
            queue=queue,
            consumer_name=f"worker-{socket.gethostname()}",
            process_callback=process_reconciliation_job,
        )
        await self.worker.start()

        self.tasks.append(asyncio.create_task(requeue_stale_notifications(queue)))
        if settings.EXPIRY_SWEEP_ENABLED:
            self.tasks.append(asyncio.create_task(expire_stale_bookings()))
        logger.info("Background tasks started")

    async def stop(self) -> None:
        """Stop all background tasks."""
        if self.worker:
            await self.worker.stop()
            self.worker = None
        for task in self.tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        logger.info("Background tasks stopped")


# Global instance
background_tasks = BackgroundTaskManager()
