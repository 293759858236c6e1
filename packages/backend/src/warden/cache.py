"""Redis connection — shared by the rate limiter and the health check.

Learn: Redis is optional. The auth flows never touch it (all credential
state lives in the database); it only backs per-IP rate limiting. If
init_redis() fails at startup the app runs without rate limits and
get_redis() keeps raising, which the middleware treats as "skip".
"""

from typing import Optional

import redis.asyncio as aioredis

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Connect and ping. Raises if Redis is unreachable."""
    global _redis
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
