"""Redis client for real-time notification pub/sub."""

from redis.asyncio import ConnectionPool, Redis

from cuehall.config import get_settings

redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def init_redis() -> Redis | None:
    """Initialize the Redis connection pool.

    Returns None when no Redis URL is configured.
    """
    global redis_pool, redis_client

    settings = get_settings()
    if not settings.redis_url:
        return None

    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
        encoding="utf-8",
        decode_responses=True,
    )
    redis_client = Redis(connection_pool=redis_pool)

    await redis_client.ping()
    return redis_client


async def close_redis() -> None:
    """Close Redis connection and pool."""
    global redis_pool, redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None


def get_redis() -> Redis | None:
    """Current Redis client, if initialized."""
    return redis_client
