"""
Reconciliation queue.

Gateway notifications are acknowledged as soon as they are stored; the id
of the stored row is pushed onto a Redis Stream and applied by a worker:
- FIFO ordering per stream
- Consumer groups so several app instances can share the work
- Retries with exponential backoff, parked in a sorted set until due
- Entries left unacknowledged by a dead worker are reclaimed
- Dead letter stream for notifications that keep failing
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from pydantic import BaseModel

from seatledger.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class ReconciliationJob(BaseModel):
    """Queued reference to a stored gateway notification."""

    notification_id: int
    gateway_order_id: str
    attempt: int = 1
    enqueued_at: datetime

    def to_message(self) -> dict[str, str]:
        return {
            "notification_id": str(self.notification_id),
            "gateway_order_id": self.gateway_order_id,
            "attempt": str(self.attempt),
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_message(cls, data: dict[str, str]) -> "ReconciliationJob":
        return cls(
            notification_id=int(data["notification_id"]),
            gateway_order_id=data["gateway_order_id"],
            attempt=int(data.get("attempt", "1")),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
        )


class ReconciliationQueue:
    """Redis Streams queue of notifications awaiting reconciliation."""

    STREAM = "seatledger:reconcile"
    DLQ_STREAM = "seatledger:reconcile:dlq"
    DELAYED_KEY = "seatledger:reconcile:delayed"
    CONSUMER_GROUP = "reconcile-workers"

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self._group_ready = False

    async def ensure_consumer_group(self) -> None:
        """Ensure consumer group exists for the stream."""
        if self._group_ready:
            return
        try:
            await self.redis.xgroup_create(
                self.STREAM,
                self.CONSUMER_GROUP,
                id="0",
                mkstream=True,
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._group_ready = True

    async def enqueue(self, job: ReconciliationJob) -> str:
        """
        Add a job to the stream.

        Returns:
            Message ID from Redis Stream
        """
        await self.ensure_consumer_group()
        message_id = await self.redis.xadd(self.STREAM, job.to_message())
        logger.info(
            f"Enqueued notification {job.notification_id} "
            f"(order {job.gateway_order_id}, attempt {job.attempt})"
        )
        return message_id

    async def dequeue(
        self,
        consumer_name: str,
        count: int = 1,
        block_ms: int = 5000,
    ) -> list[tuple[str, ReconciliationJob]]:
        """
        Read new jobs for this consumer.

        Returns:
            List of (message_id, job) tuples
        """
        await self.ensure_consumer_group()
        messages = await self.redis.xreadgroup(
            self.CONSUMER_GROUP,
            consumer_name,
            {self.STREAM: ">"},
            count=count,
            block=block_ms,
        )

        jobs = []
        for _stream, stream_messages in messages or []:
            jobs.extend(await self._parse(stream_messages))
        return jobs

    async def reclaim_idle(
        self,
        consumer_name: str,
        min_idle_ms: int,
        count: int = 10,
    ) -> list[tuple[str, ReconciliationJob]]:
        """
        Take over entries another consumer read but never acknowledged.

        A worker that dies mid-job leaves its entry in the group's pending
        list; once it has been idle for ``min_idle_ms`` it is handed to
        ``consumer_name``.
        """
        await self.ensure_consumer_group()
        reply = await self.redis.xautoclaim(
            self.STREAM,
            self.CONSUMER_GROUP,
            consumer_name,
            min_idle_time=min_idle_ms,
            start_id="0-0",
            count=count,
        )
        # (next start id, claimed entries, deleted ids)
        claimed = reply[1] if reply else []
        jobs = await self._parse(claimed)
        if jobs:
            logger.warning(
                f"Reclaimed {len(jobs)} idle reconciliation jobs for {consumer_name}"
            )
        return jobs

    async def _parse(self, entries) -> list[tuple[str, ReconciliationJob]]:
        jobs = []
        for message_id, data in entries:
            try:
                jobs.append((message_id, ReconciliationJob.from_message(data)))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Dropping malformed message {message_id}: {e}")
                await self.acknowledge(message_id)
        return jobs

    async def acknowledge(self, message_id: str) -> None:
        """Acknowledge message processing completion."""
        await self.redis.xack(self.STREAM, self.CONSUMER_GROUP, message_id)

    async def schedule_retry(self, job: ReconciliationJob, delay_seconds: float) -> None:
        """Park a job until ``delay_seconds`` from now."""
        due = datetime.now().timestamp() + delay_seconds
        await self.redis.zadd(self.DELAYED_KEY, {job.model_dump_json(): due})
        logger.info(
            f"Retry of notification {job.notification_id} (attempt {job.attempt}) "
            f"scheduled in {delay_seconds}s"
        )

    async def promote_due_retries(self, now: datetime | None = None) -> int:
        """
        Move parked jobs whose time has come onto the stream.

        Returns:
            Number of jobs enqueued
        """
        now = now or datetime.now()
        members = await self.redis.zrangebyscore(self.DELAYED_KEY, 0, now.timestamp())
        promoted = 0
        for member in members:
            # Whoever removes the entry enqueues it
            if await self.redis.zrem(self.DELAYED_KEY, member):
                await self.enqueue(ReconciliationJob.model_validate_json(member))
                promoted += 1
        return promoted

    async def move_to_dlq(self, job: ReconciliationJob, error: str) -> None:
        """Move a job that exhausted its retries to the dead letter stream."""
        message = {
            **job.to_message(),
            "error": error,
            "failed_at": datetime.now().isoformat(),
        }
        await self.redis.xadd(self.DLQ_STREAM, message)
        logger.error(
            f"Notification {job.notification_id} moved to dead letter queue: {error}"
        )

    async def get_queue_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        stats = {}
        for name in (self.STREAM, self.DLQ_STREAM):
            try:
                info = await self.redis.xinfo_stream(name)
                stats[name] = {"length": info.get("length", 0)}
            except redis.ResponseError:
                stats[name] = {"length": 0}
        stats[self.DELAYED_KEY] = {"length": await self.redis.zcard(self.DELAYED_KEY)}
        return stats


class QueueWorker:
    """
    Background worker applying queued notifications.

    A failing job is parked for an exponentially growing delay and then
    re-enqueued, until ``max_attempts`` is reached and it goes to the dead
    letter stream. The loop never sleeps on a retry, so other orders keep
    flowing while one is backing off.
    """

    def __init__(
        self,
        queue: ReconciliationQueue,
        consumer_name: str,
        process_callback: Callable[[ReconciliationJob], Awaitable[Any]],
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        claim_idle_ms: int | None = None,
    ):
        self.queue = queue
        self.consumer_name = consumer_name
        self.process_callback = process_callback
        self.max_attempts = max_attempts or settings.RECONCILE_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.RECONCILE_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.claim_idle_ms = claim_idle_ms or settings.RECONCILE_CLAIM_IDLE_MS
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Reconciliation worker {self.consumer_name} started")

    async def stop(self) -> None:
        """Stop the worker."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(f"Reconciliation worker {self.consumer_name} stopped")

    async def handle(self, message_id: str, job: ReconciliationJob) -> None:
        """Process one job, scheduling a retry or dead-lettering on failure."""
        try:
            await self.process_callback(job)
        except Exception as e:
            logger.error(
                f"Error reconciling notification {job.notification_id} "
                f"(attempt {job.attempt}): {e}",
                exc_info=True,
            )
            if job.attempt >= self.max_attempts:
                await self.queue.move_to_dlq(job, str(e))
            else:
                delay = self.backoff_seconds * (2 ** (job.attempt - 1))
                await self.queue.schedule_retry(
                    job.model_copy(
                        update={"attempt": job.attempt + 1, "enqueued_at": datetime.now()}
                    ),
                    delay,
                )
        finally:
            await self.queue.acknowledge(message_id)

    async def _run(self) -> None:
        """Main worker loop."""
        while self._running:
            try:
                await self.queue.promote_due_retries()
                jobs = await self.queue.reclaim_idle(self.consumer_name, self.claim_idle_ms)
                jobs += await self.queue.dequeue(self.consumer_name, count=1, block_ms=1000)
                for message_id, job in jobs:
                    await self.handle(message_id, job)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Worker error: {e}")
                await asyncio.sleep(1)
