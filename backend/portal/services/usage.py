from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

import redis

from portal.core.config import settings
from portal.core.redis_client import get_redis

log = logging.getLogger(__name__)


class UsageSink(Protocol):
    def record_synthesis(self) -> None: ...


def _day_key(now: datetime) -> str:
    return f"usage:ai:{now.strftime('%Y-%m-%d')}"


class RedisUsageTracker:
    """Counts successful question syntheses for quota bookkeeping.

    Never raises: a Redis outage must not affect the exam flow.
    """

    total_key = "usage:ai:total"

    def __init__(self, redis_factory: Callable[[], redis.Redis] | None = None, ttl_seconds: int | None = None):
        self._redis_factory = redis_factory or get_redis
        self._ttl_seconds = int(ttl_seconds if ttl_seconds is not None else settings.usage_key_ttl_seconds)

    def record_synthesis(self) -> None:
        key = _day_key(datetime.now(timezone.utc))
        try:
            r = self._redis_factory()
            current = r.incr(key)
            if int(current) == 1:
                r.expire(key, self._ttl_seconds)
            r.incr(self.total_key)
        except Exception as e:
            log.warning("usage tracking failed key=%s err=%s", key, type(e).__name__)
