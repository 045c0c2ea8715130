"""
Redis store adapter for kvtxn.

Implements optimistic transactions with WATCH / MULTI / EXEC on a
transactional pipeline from ``redis.asyncio``.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kvtxn.exceptions import (
    ConflictError,
    StoreConnectionError,
    StoreError,
    StoreOperationError,
)
from kvtxn.store.base import BaseStoreAdapter, BaseWatchSession
from kvtxn.utils.logging import get_logger

# Configure logging
logger = get_logger(__name__)

FLUSH_BATCH_SIZE = 500


def _translate_error(action: str, key: Optional[str], error: RedisError) -> StoreError:
    """Map a redis-py exception onto the kvtxn store error hierarchy."""
    logger.error("Redis error during %s", action, extra={
        "cache_key": key,
        "cache_type": "redis",
        "error_type": type(error).__name__,
        "error_message": str(error)
    })
    target = f" for key {key}" if key is not None else ""
    if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
        return StoreConnectionError(f"Redis unreachable during {action}{target}", original_exception=error)
    return StoreOperationError(f"Redis {action} failed{target}", original_exception=error)


class RedisWatchSession(BaseWatchSession):
    """
    Watch session bound to one transactional pipeline.

    After the first ``watch`` the pipeline runs commands immediately, so
    ``get`` returns live values; ``commit`` switches it to buffered MULTI mode.
    """

    def __init__(self, pipeline: Any, key_prefix: str = ""):
        self._pipe = pipeline
        self.key_prefix = key_prefix
        self._watched: List[str] = []

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def watch(self, key: str) -> None:
        try:
            await self._pipe.watch(self._key(key))
        except RedisError as e:
            raise _translate_error("watch", key, e) from e
        self._watched.append(key)

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value = await self._pipe.get(self._key(key))
        except RedisError as e:
            raise _translate_error("get", key, e) from e
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    async def commit(self, writes: Mapping[str, bytes]) -> None:
        try:
            self._pipe.multi()
            for key, value in writes.items():
                self._pipe.set(self._key(key), value)
            await self._pipe.execute()
        except WatchError as e:
            logger.debug("Watched key modified, EXEC aborted", extra={
                "cache_type": "redis",
                "watched_keys": list(self._watched)
            })
            raise ConflictError(keys=self._watched, original_exception=e) from e
        except RedisError as e:
            raise _translate_error("commit", None, e) from e


class RedisStoreAdapter(BaseStoreAdapter):
    """
    Redis-backed store adapter.

    Args:
        redis_client: An instance of ``redis.asyncio.Redis`` or a compatible
            client. Responses must not be decoded to ``str``.
        key_prefix: Prefix applied to every key (default: no prefix).
    """

    def __init__(self, redis_client: Any, key_prefix: str = ""):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._closed = False

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "", **client_kwargs: Any) -> "RedisStoreAdapter":
        """
        Build an adapter from a connection string such as ``redis://host:6379/0``.

        Args:
            url: Redis connection URL.
            key_prefix: Prefix applied to every key.
            **client_kwargs: Extra keyword arguments for ``Redis.from_url``.
        """
        client_kwargs.pop("decode_responses", None)
        return cls(Redis.from_url(url, **client_kwargs), key_prefix=key_prefix)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self):
        if self._closed:
            raise StoreConnectionError("Redis store adapter is closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RedisWatchSession]:
        self._ensure_open()
        async with self.redis.pipeline(transaction=True) as pipe:
            yield RedisWatchSession(pipe, self.key_prefix)

    async def ping(self) -> bool:
        self._ensure_open()
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            raise _translate_error("ping", None, e) from e

    async def flush(self) -> None:
        """
        Delete stored data.

        Without a key prefix this flushes the whole logical database
        (FLUSHDB); with a prefix only the prefixed keys are removed.
        """
        self._ensure_open()
        try:
            if not self.key_prefix:
                result = await self.redis.flushdb()
                logger.info("Flushed Redis database", extra={"cache_type": "redis", "result": str(result)})
                return

            batch = []
            deleted = 0
            async for key in self.redis.scan_iter(match=f"{self.key_prefix}*"):
                batch.append(key)
                if len(batch) >= FLUSH_BATCH_SIZE:
                    deleted += await self.redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.redis.delete(*batch)
            logger.info("Flushed Redis keys", extra={
                "cache_type": "redis",
                "key_prefix": self.key_prefix,
                "deleted": deleted
            })
        except RedisError as e:
            raise _translate_error("flush", None, e) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.redis.aclose()
        except RedisError as e:
            raise _translate_error("close", None, e) from e
