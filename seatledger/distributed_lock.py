"""Redis distributed locks serialising checkouts and order reconciliation."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import redis.asyncio as redis

from seatledger.config import get_settings

settings = get_settings()


class DistributedLockError(Exception):
    """Exception raised when lock acquisition fails."""

    pass


def checkout_lock_key(customer_id: str) -> str:
    return f"checkout:{customer_id}"


def order_lock_key(gateway_order_id: str) -> str:
    return f"order:{gateway_order_id}"


class DistributedLock:
    """
    Redis-based lock.

    Acquired with ``SET NX EX`` and released through a Lua script that only
    deletes the key while it still holds our token, so a lock that expired
    and was taken by another worker is never released by us.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key: str,
        timeout_seconds: int | None = None,
        retry_delay_ms: int | None = None,
        max_retries: int | None = None,
    ):
        self.redis = redis_client
        self.key = f"lock:{key}"
        self.timeout_seconds = timeout_seconds or settings.LOCK_TIMEOUT_SECONDS
        self.retry_delay_ms = retry_delay_ms or settings.LOCK_RETRY_DELAY_MS
        self.max_retries = max_retries or settings.LOCK_MAX_RETRIES
        self.token: str | None = None
        self._release_script = self.redis.register_script(self.RELEASE_SCRIPT)
        self._extend_script = self.redis.register_script(self.EXTEND_SCRIPT)

    async def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock.

        Args:
            blocking: Retry up to ``max_retries`` times instead of giving up
                after the first attempt.

        Returns:
            True if the lock was acquired.
        """
        self.token = str(uuid.uuid4())
        retries = 0

        while True:
            acquired = await self.redis.set(
                self.key,
                self.token,
                nx=True,
                ex=self.timeout_seconds,
            )
            if acquired:
                return True

            if not blocking or retries >= self.max_retries:
                self.token = None
                return False

            retries += 1
            await asyncio.sleep(self.retry_delay_ms / 1000)

    async def release(self) -> bool:
        """Release the lock if we still own it."""
        if self.token is None:
            return False

        result = await self._release_script(keys=[self.key], args=[self.token])
        self.token = None
        return bool(result)

    async def extend(self, additional_seconds: int | None = None) -> bool:
        """Push the expiry out, e.g. while a long ticket issuance runs."""
        if self.token is None:
            return False

        timeout = additional_seconds or self.timeout_seconds
        result = await self._extend_script(
            keys=[self.key],
            args=[self.token, timeout * 1000],
        )
        return bool(result)


@asynccontextmanager
async def distributed_lock(
    redis_client: redis.Redis,
    key: str,
    timeout_seconds: int | None = None,
    blocking: bool = True,
) -> AsyncGenerator[DistributedLock, None]:
    """
    Hold a distributed lock for the duration of the block.

    Usage:
        async with distributed_lock(redis, checkout_lock_key(customer_id)):
            ...

    Raises:
        DistributedLockError: If the lock cannot be acquired
    """
    lock = DistributedLock(redis_client, key, timeout_seconds)
    acquired = await lock.acquire(blocking=blocking)

    if not acquired:
        raise DistributedLockError(f"Failed to acquire lock for key: {key}")

    try:
        yield lock
    finally:
        await lock.release()
