from app.core.config import settings
from app.infrastructure.cache.redis_client import get_publish_coordinator, get_redis_client


def test_redis_client_is_shared_across_calls() -> None:
    get_redis_client.cache_clear()
    try:
        client = get_redis_client()

        assert get_redis_client() is client
        assert get_publish_coordinator().redis is client
        pool_kwargs = client.connection_pool.connection_kwargs
        assert pool_kwargs["socket_timeout"] == settings.redis_socket_timeout_seconds
        assert pool_kwargs["socket_connect_timeout"] == settings.redis_socket_timeout_seconds
    finally:
        get_redis_client.cache_clear()
