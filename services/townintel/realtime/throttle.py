"""
Keyed last-seen throttle for on-demand route recomputation.

Key format:  townintel:recompute:{scope}:{town_id}
TTL:         settings.recompute_throttle_s (default 300s)

allow() is a single SET NX EX, so at most one process per TTL window wins
the right to recompute a given town from a request path. Scheduled jobs do
not consult the throttle.

Degrades open: with no redis client, or when redis errors, allow() is True.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from services.townintel.config import settings

logger = logging.getLogger(__name__)

_KEY_PREFIX = "townintel:recompute"


def _throttle_key(town_id: str, owner_id: str | None = None) -> str:
    return f"{_KEY_PREFIX}:{owner_id or 'shared'}:{town_id}"


def create_redis_client(url: str | None = None):
    """Return an async redis client, or None when no URL is configured."""
    redis_url = url if url is not None else settings.redis_url
    if not redis_url:
        return None
    return aioredis.from_url(redis_url, decode_responses=True, socket_connect_timeout=5)


class RecomputeThrottle:
    """
    Usage:
        throttle = RecomputeThrottle(redis_client)
        if await throttle.allow(town_id, owner_id):
            await service.recompute_town_routes(town_id, owner_id)
    """

    def __init__(self, redis, ttl_s: int | None = None) -> None:
        """
        Args:
            redis: An async Redis client (redis.asyncio compatible).
                   May be None, in which case every call is allowed.
        """
        self._redis = redis
        self._ttl_s = int(ttl_s if ttl_s is not None else settings.recompute_throttle_s)

    async def allow(self, town_id: str, owner_id: str | None = None) -> bool:
        if self._redis is None:
            return True

        key = _throttle_key(town_id, owner_id)
        try:
            acquired = await self._redis.set(key, "1", nx=True, ex=self._ttl_s)
        except Exception:
            logger.warning("throttle: SET NX failed for key=%s, allowing", key, exc_info=True)
            return True
        if not acquired:
            logger.debug("throttle: recompute suppressed for key=%s", key)
        return bool(acquired)

    async def reset(self, town_id: str, owner_id: str | None = None) -> None:
        """Clear the last-seen marker, e.g. after an operator edits the graph."""
        if self._redis is None:
            return

        key = _throttle_key(town_id, owner_id)
        try:
            await self._redis.delete(key)
        except Exception:
            logger.warning("throttle: DELETE failed for key=%s", key, exc_info=True)
