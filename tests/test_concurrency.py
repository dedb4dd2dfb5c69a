"""
Concurrency safety tests.

Demonstrates:
1. The distributed lock is SET NX EX with a token-checked release.
2. The cross-process relay forwards foreign changes and drops its own echoes.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from schoolbus.domain.enums import ChangeKind
from schoolbus.infrastructure.locks import DistributedLock, LockNotAcquired, trip_start_key
from schoolbus.infrastructure.relay import RedisChangeRelay
from schoolbus.realtime.hub import TRIPS, ChangeEvent, SubscriptionFilter, SubscriptionHub


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, trip_start_key("driver1"), ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:trip-start:driver1", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False
        assert not lock.held

    @pytest.mark.asyncio
    async def test_release_calls_eval_only_when_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.release()
        mock_redis.eval.assert_not_called()

        await lock.acquire()
        await lock.release()
        mock_redis.eval.assert_awaited_once()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass

    @pytest.mark.asyncio
    async def test_context_manager_release_error_is_logged(self, caplog):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(side_effect=RedisConnectionError("down"))

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        async with lock:
            assert lock.held
        assert "Could not release lock:test-key" in caplog.text

    @pytest.mark.asyncio
    async def test_only_one_concurrent_holder(self, redis):
        locks = [DistributedLock(redis, trip_start_key("driver1")) for _ in range(5)]
        results = await asyncio.gather(*(lock.acquire() for lock in locks))
        assert sum(results) == 1

        holder = locks[results.index(True)]
        await holder.release()
        assert await locks[0].acquire() is True


def _event(origin=None) -> ChangeEvent:
    return ChangeEvent(
        TRIPS,
        "t1",
        ChangeKind.UPDATED,
        4,
        {"id": "t1", "driver_id": "driver1", "status": "IN_PROGRESS", "version": 4},
        origin,
    )


class TestChangeRelay:
    @pytest.mark.asyncio
    async def test_publish_stamps_origin(self):
        mock_redis = AsyncMock()
        relay = RedisChangeRelay(mock_redis, SubscriptionHub(), channel="changes", origin="proc-a")

        relay.publish(_event())
        await relay.stop()

        channel, payload = mock_redis.publish.await_args.args
        assert channel == "changes"
        assert json.loads(payload)["origin"] == "proc-a"

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_not_raised(self):
        mock_redis = AsyncMock()
        mock_redis.publish = AsyncMock(side_effect=ConnectionError("down"))
        relay = RedisChangeRelay(mock_redis, SubscriptionHub(), origin="proc-a")

        relay.publish(_event())
        await relay.stop()

    @pytest.mark.asyncio
    async def test_foreign_change_reaches_local_subscribers(self):
        hub = SubscriptionHub()
        relay = RedisChangeRelay(AsyncMock(), hub, origin="proc-a")
        sub = hub.subscribe(SubscriptionFilter.by_trip_id("t1"))

        assert relay.handle_message(_event(origin="proc-b").to_json()) is True
        assert (await sub.next(timeout=1)).version == 4

    @pytest.mark.asyncio
    async def test_own_echo_and_garbage_are_dropped(self):
        hub = SubscriptionHub()
        relay = RedisChangeRelay(AsyncMock(), hub, origin="proc-a")
        sub = hub.subscribe(SubscriptionFilter.by_trip_id("t1"))

        assert relay.handle_message(_event(origin="proc-a").to_json()) is False
        assert relay.handle_message(b"not json") is False
        assert relay.handle_message(json.dumps({"collection": "trips"})) is False
        with pytest.raises(asyncio.TimeoutError):
            await sub.next(timeout=0.05)
