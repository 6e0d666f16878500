"""Redis connection for the analysis job queue."""

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import settings

# Shared by the API process and RQ workers (lazy initialized)
_redis_client: Redis | None = None


def get_redis() -> Redis:
    """Get or create the Redis connection used by RQ.

    RQ stores pickled job payloads, so responses are not decoded.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url)
    return _redis_client


def close_redis() -> None:
    """Close the Redis connection on application shutdown."""
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


def ping_redis() -> bool:
    """Check if Redis is reachable (used by the readiness check)."""
    try:
        return bool(get_redis().ping())
    except RedisError:
        return False
