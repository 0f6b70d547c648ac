"""
Request-path guards backed by Redis.

RecomputeThrottle
    Keyed last-seen marker (SET NX EX). Limits on-demand route recomputes
    to one per town per TTL window across every process. Degrades open.

Usage:
    from services.townintel.realtime import RecomputeThrottle
"""

from __future__ import annotations

from services.townintel.realtime.throttle import RecomputeThrottle, create_redis_client

__all__ = ["RecomputeThrottle", "create_redis_client"]
