"""
Duplicate suppression for consumers.

Delivery is not exactly-once, so a consumer may see the same message twice.
Before dispatching, a consumer asks the dedup filter whether it has already
seen these exact bytes for this event.

A fingerprint is `dedup:<event>:<sha256 of the raw body>`. The filter performs
one atomic "set if absent, with expiry" against a shared store:
- the key was newly set  -> first sighting, not a duplicate
- the key already existed -> duplicate

Design decisions:
- Hash the raw bytes, not the parsed envelope; two envelopes with the same
  data but different timestamps are different messages
- Records expire after the retention window and are never deleted explicitly
- Fail open: if the store is unreachable the message is treated as unique and
  the failure is logged. Availability wins over strict dedup.
- The store is injected; there is no module-level client
"""

import asyncio
import hashlib
import logging
from typing import Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from backbone.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_DEDUP_TTL_SECONDS,
    DEFAULT_SOCKET_TIMEOUT,
)

logger = logging.getLogger("dedup")


class DedupStoreError(Exception):
    """Raised by a dedup store when the shared cache cannot be reached."""


def fingerprint(event: str, body: bytes) -> str:
    """Build the dedup key for an event's raw message body."""
    return f"dedup:{event}:{hashlib.sha256(body).hexdigest()}"


class DedupStore(Protocol):
    """The one atomic operation the filter needs from a shared cache."""

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        """Set key with an expiry if it does not exist. True if it was newly set."""
        ...


class RedisDedupStore:
    """Dedup store backed by Redis `SET key 1 NX EX ttl`."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout: Optional[float] = DEFAULT_SOCKET_TIMEOUT,
        socket_connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
    ) -> "RedisDedupStore":
        """
        Build a store from a redis:// URL.

        Both timeouts are bounded so a cache that accepts connections but never
        answers surfaces as an error instead of stalling the worker.
        """
        return cls(redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
        ))

    async def ping(self) -> None:
        """Check the connection. Raises DedupStoreError if Redis is unreachable."""
        try:
            await self.client.ping()
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise DedupStoreError(f"failed to connect to Redis: {e}") from e

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        try:
            # SET NX returns None when the key already exists
            return bool(await self.client.set(key, "1", nx=True, ex=ttl_seconds))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise DedupStoreError(str(e) or type(e).__name__) from e

    async def close(self) -> None:
        await self.client.aclose()


class DedupFilter:
    """
    Decides whether a delivery has already been dispatched.

    Example:
        dedup = DedupFilter(RedisDedupStore.from_url("redis://localhost:6379/0"))
        if await dedup.is_duplicate("order.created", message.body):
            return  # already handled
    """

    def __init__(self, store: DedupStore, ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def is_duplicate(self, event: str, body: bytes) -> bool:
        """
        Record this delivery and report whether it was seen before.

        Never raises for store failures: an unreachable store means "not a
        duplicate".
        """
        key = fingerprint(event, body)
        try:
            newly_set = await self.store.set_if_absent(key, self.ttl_seconds)
        except DedupStoreError as e:
            logger.error(f"Dedup check failed for {event}, treating as unique: {e}")
            return False
        return not newly_set
