"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from salesdojo.redis_client import get_optional_redis as _get_optional_redis


async def get_optional_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client, or None when Redis is not configured (publishing is best-effort)."""
    yield _get_optional_redis()
