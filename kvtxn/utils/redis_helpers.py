from typing import Any, Optional

from kvtxn.exceptions import ConfigurationError
from kvtxn.store.base import BaseStoreAdapter
from kvtxn.store.stores.redis import RedisStoreAdapter


def create_redis_store_adapter(
    redis_client: Optional[Any] = None,
    url: Optional[str] = None,
    key_prefix: str = "",
    **client_kwargs: Any
) -> BaseStoreAdapter:
    """
    Helper to create a RedisStoreAdapter from a redis client or a URL.
    Args:
        redis_client: An instance of redis.asyncio.Redis or compatible.
        url: Connection string, used when no client is given.
        key_prefix: Prefix for store keys.
        **client_kwargs: Extra arguments for Redis.from_url.
    Returns:
        An instance of RedisStoreAdapter implementing BaseStoreAdapter.
    """
    if redis_client is not None and url is not None:
        raise ConfigurationError("Pass either redis_client or url, not both")
    if redis_client is not None:
        return RedisStoreAdapter(redis_client=redis_client, key_prefix=key_prefix)
    if url is None:
        raise ConfigurationError("A redis_client or url is required")
    return RedisStoreAdapter.from_url(url, key_prefix=key_prefix, **client_kwargs)
