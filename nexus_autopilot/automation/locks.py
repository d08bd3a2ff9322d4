"""
EventNexus Autopilot - Campaign Locks
Per-campaign advisory locks so overlapping cycles never act on the same campaign.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


# =============================================================================
# LOCK BACKENDS
# =============================================================================

class LockBackend(ABC):
    """Abstract lock storage."""

    @abstractmethod
    async def acquire(self, key: str, token: str, ttl_seconds: int) -> bool:
        """Take the lock without waiting. False when someone else holds it."""

    @abstractmethod
    async def release(self, key: str, token: str) -> bool:
        """Release the lock if `token` still owns it."""


class MemoryLockBackend(LockBackend):
    """In-process locks (single instance or fallback)."""

    def __init__(self):
        self._owners: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, token: str, ttl_seconds: int) -> bool:
        async with self._lock:
            if key in self._owners:
                return False
            self._owners[key] = token
            return True

    async def release(self, key: str, token: str) -> bool:
        async with self._lock:
            if self._owners.get(key) != token:
                return False
            del self._owners[key]
            return True


class RedisLockBackend(LockBackend):
    """Redis locks shared by every worker pointed at the same instance."""

    RELEASE_LUA = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_client: "aioredis.Redis"):
        self.redis = redis_client
        self._release_script = self.redis.register_script(self.RELEASE_LUA)

    async def acquire(self, key: str, token: str, ttl_seconds: int) -> bool:
        # SET NX EX: the TTL frees the lock if the holder dies mid-cycle
        return bool(await self.redis.set(key, token, nx=True, ex=ttl_seconds))

    async def release(self, key: str, token: str) -> bool:
        return bool(await self._release_script(keys=[key], args=[token]))


# =============================================================================
# IN-PROCESS KEYED LOCKS
# =============================================================================

class KeyedLocks:
    """
    Blocking asyncio locks keyed by id, for serializing work inside one process.

    An entry lives only while some task holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


# =============================================================================
# LOCK MANAGER
# =============================================================================

class CampaignLockManager:
    """
    Hands out non-blocking per-campaign locks.

    Usage:
        locks = CampaignLockManager(redis_url=settings.redis_url)
        await locks.initialize()

        async with locks.hold(campaign.id) as acquired:
            if not acquired:
                return  # another run owns this campaign
            ...
    """

    def __init__(
        self,
        redis_client: Optional["aioredis.Redis"] = None,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 900,
        key_prefix: str = "nexus:autopilot"
    ):
        self._redis_client = redis_client
        self._redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

        self._memory_backend = MemoryLockBackend()
        self._backend: LockBackend = self._memory_backend
        self._initialized = False

    @property
    def backend_name(self) -> str:
        return "redis" if isinstance(self._backend, RedisLockBackend) else "memory"

    async def initialize(self):
        """Connect to Redis when configured; fall back to process-local locks."""
        if self._initialized:
            return

        if self._redis_client is not None:
            self._backend = RedisLockBackend(self._redis_client)
            logger.info("Campaign locks using provided Redis client")
        elif self._redis_url:
            try:
                self._redis_client = aioredis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self._redis_client.ping()
                self._backend = RedisLockBackend(self._redis_client)
                logger.info(f"Campaign locks connected to Redis: {self._redis_url}")
            except (aioredis.RedisError, OSError) as e:
                logger.warning(f"Failed to connect to Redis: {e}. Using in-process locks.")
                self._backend = self._memory_backend
        else:
            logger.info("No Redis configured. Using in-process campaign locks.")

        self._initialized = True

    async def close(self):
        if self._redis_client is not None:
            await self._redis_client.aclose()

    def _key(self, campaign_id: str) -> str:
        return f"{self.key_prefix}:lock:campaign:{campaign_id}"

    async def try_acquire(self, campaign_id: str) -> Optional[str]:
        """Returns an ownership token, or None when the campaign is busy."""
        if not self._initialized:
            await self.initialize()

        token = uuid.uuid4().hex
        if await self._backend.acquire(self._key(campaign_id), token, self.ttl_seconds):
            return token
        return None

    async def release(self, campaign_id: str, token: str) -> bool:
        released = await self._backend.release(self._key(campaign_id), token)
        if not released:
            logger.warning(f"Lock for campaign {campaign_id} expired before release")
        return released

    @asynccontextmanager
    async def hold(self, campaign_id: str) -> AsyncIterator[bool]:
        token = await self.try_acquire(campaign_id)
        try:
            yield token is not None
        finally:
            if token is not None:
                await self.release(campaign_id, token)
