"""
EventNexus Autopilot - Campaign Lock Tests
"""

import asyncio
import pytest
import redis.asyncio as aioredis
from unittest.mock import AsyncMock, MagicMock, patch

from nexus_autopilot.automation.locks import CampaignLockManager, KeyedLocks, MemoryLockBackend


class TestMemoryLocks:

    @pytest.mark.asyncio
    async def test_exclusive(self):
        locks = CampaignLockManager()

        first = await locks.try_acquire("c1")
        second = await locks.try_acquire("c1")
        other = await locks.try_acquire("c2")

        assert first is not None
        assert second is None
        assert other is not None
        assert locks.backend_name == "memory"

    @pytest.mark.asyncio
    async def test_release_requires_owner(self):
        backend = MemoryLockBackend()
        await backend.acquire("k", "owner", 60)

        assert await backend.release("k", "intruder") is False
        assert await backend.release("k", "owner") is True

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self):
        locks = CampaignLockManager()

        with pytest.raises(RuntimeError):
            async with locks.hold("c1") as acquired:
                assert acquired is True
                raise RuntimeError("boom")

        async with locks.hold("c1") as acquired:
            assert acquired is True

    @pytest.mark.asyncio
    async def test_hold_reports_busy(self):
        locks = CampaignLockManager()
        await locks.try_acquire("c1")

        async with locks.hold("c1") as acquired:
            assert acquired is False


class TestKeyedLocks:

    @pytest.mark.asyncio
    async def test_serializes_same_key(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("c1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a:in", "a:out", "b:in", "b:out"]

    @pytest.mark.asyncio
    async def test_entry_dropped_after_last_holder(self):
        locks = KeyedLocks()

        async with locks.hold("c1"):
            assert len(locks) == 1
        async with locks.hold("c2"):
            pass

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_kept_while_waiters_remain(self):
        locks = KeyedLocks()
        release = asyncio.Event()

        async def first():
            async with locks.hold("c1"):
                await release.wait()

        async def second():
            async with locks.hold("c1"):
                pass

        tasks = [asyncio.ensure_future(first()), asyncio.ensure_future(second())]
        await asyncio.sleep(0)
        assert len(locks) == 1

        release.set()
        await asyncio.gather(*tasks)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_dropped_after_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("c1"):
                raise RuntimeError("boom")

        assert len(locks) == 0


class TestRedisLocks:

    @pytest.mark.asyncio
    async def test_uses_set_nx(self, mock_redis_client):
        mock_redis_client.register_script = MagicMock(return_value=AsyncMock(return_value=1))
        locks = CampaignLockManager(redis_client=mock_redis_client, ttl_seconds=120)
        await locks.initialize()

        token = await locks.try_acquire("c1")

        assert locks.backend_name == "redis"
        mock_redis_client.set.assert_awaited_once_with(
            "nexus:autopilot:lock:campaign:c1", token, nx=True, ex=120
        )
        assert await locks.release("c1", token) is True

    @pytest.mark.asyncio
    async def test_busy_key(self, mock_redis_client):
        mock_redis_client.register_script = MagicMock(return_value=AsyncMock(return_value=0))
        mock_redis_client.set = AsyncMock(return_value=None)
        locks = CampaignLockManager(redis_client=mock_redis_client)

        assert await locks.try_acquire("c1") is None

    @pytest.mark.asyncio
    async def test_falls_back_when_unreachable(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=aioredis.ConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch("nexus_autopilot.automation.locks.aioredis.from_url", return_value=client):
            locks = CampaignLockManager(redis_url="redis://localhost:6379/0")
            await locks.initialize()

        assert locks.backend_name == "memory"
        assert await locks.try_acquire("c1") is not None
