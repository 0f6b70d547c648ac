"""
Tests for services/townintel/realtime/throttle.py

Covers:
- Key format per owner scope
- allow(): SET NX EX acquired / suppressed, degrades open without redis or on error
- reset(): DELETE, failures swallowed
- create_redis_client(): None for an empty URL
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from services.townintel.realtime.throttle import RecomputeThrottle, _throttle_key, create_redis_client


def _redis(set_result=True) -> AsyncMock:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=set_result)
    redis.delete = AsyncMock(return_value=1)
    return redis


class TestKeys:
    def test_shared_scope(self):
        assert _throttle_key("town-1") == "townintel:recompute:shared:town-1"

    def test_owner_scope(self):
        assert _throttle_key("town-1", "owner-9") == "townintel:recompute:owner-9:town-1"

    def test_empty_url_means_no_client(self):
        assert create_redis_client("") is None


@pytest.mark.asyncio
class TestAllow:
    async def test_no_redis_always_allows(self):
        throttle = RecomputeThrottle(None)
        assert await throttle.allow("town-1") is True
        assert await throttle.allow("town-1") is True

    async def test_acquired(self):
        redis = _redis(True)
        throttle = RecomputeThrottle(redis, ttl_s=120)

        assert await throttle.allow("town-1", "owner-1") is True
        redis.set.assert_awaited_once_with(
            "townintel:recompute:owner-1:town-1", "1", nx=True, ex=120
        )

    async def test_suppressed_when_key_exists(self):
        throttle = RecomputeThrottle(_redis(None))
        assert await throttle.allow("town-1") is False

    async def test_redis_error_allows(self):
        redis = AsyncMock()
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        throttle = RecomputeThrottle(redis)
        assert await throttle.allow("town-1") is True


@pytest.mark.asyncio
class TestReset:
    async def test_deletes_key(self):
        redis = _redis()
        await RecomputeThrottle(redis).reset("town-1")
        redis.delete.assert_awaited_once_with("townintel:recompute:shared:town-1")

    async def test_delete_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.delete = AsyncMock(side_effect=ConnectionError("redis down"))
        await RecomputeThrottle(redis).reset("town-1")

    async def test_no_redis_is_noop(self):
        await RecomputeThrottle(None).reset("town-1")
