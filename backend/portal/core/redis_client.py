from __future__ import annotations

import redis

from portal.core.config import settings

_pool: redis.ConnectionPool | None = None


def get_redis() -> redis.Redis:
    # Usage counters are fire-and-forget, so a slow Redis must fail fast instead of stalling the exam flow.
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=float(settings.redis_socket_timeout_seconds),
            socket_timeout=float(settings.redis_socket_timeout_seconds),
        )
    return redis.Redis(connection_pool=_pool)
