from functools import lru_cache

from redis import Redis

from app.core.config import settings
from app.infrastructure.cache.publish_coordinator import PublishCoordinator


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    # One client per process; its connection pool is shared by every request.
    return Redis.from_url(
        settings.cache_redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


def get_publish_coordinator(redis_client: Redis | None = None) -> PublishCoordinator:
    return PublishCoordinator(
        redis_client or get_redis_client(),
        key_prefix=settings.publish_key_prefix,
        fail_open=settings.publish_lock_fail_open,
    )
