"""
kvtxn Client
------------
User-facing entry point for connecting to a store and running transactions.

Example:
    from kvtxn import connect

    async with await connect() as client:   # reads KVTXN_STORE_URL / REDIS_URL
        async def deposit(tx):
            balance = await tx.get("balance", int, default=0)
            tx.write("balance", balance + 10)
            return balance + 10

        print(await client.execute(deposit))
"""
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from typing_extensions import Concatenate, ParamSpec

from .codec.base import BaseCodec
from .core.context import TransactionContext
from .core.coordinator import TransactionCoordinator, TransactionFunc
from .exceptions import StoreError, StoreInitializationError
from .store.base import BaseStoreAdapter
from .utils.config import TransactionConfig, get_store_url
from .utils.logging import get_logger
from .utils.redis_helpers import create_redis_store_adapter

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class KVTxnClient:
    def __init__(
        self,
        store: BaseStoreAdapter,
        codec: Optional[BaseCodec] = None,
        config: Optional[TransactionConfig] = None
    ):
        """
        Bind a store adapter to a transaction coordinator.

        Args:
            store (BaseStoreAdapter): Store adapter owned by this client.
            codec (BaseCodec, optional): Value codec (defaults to JSONCodec).
            config (TransactionConfig, optional): Attempt budget and retry policy.
        """
        self.store = store
        self.coordinator = TransactionCoordinator(store, codec=codec, config=config)
        self._closed = False

    async def start(self) -> "KVTxnClient":
        """
        Check that the store answers.

        Raises:
            StoreInitializationError: If the store cannot be reached. No
                transaction can run without it, so callers should abort.
        """
        try:
            reachable = await self.store.ping()
        except StoreError as e:
            logger.critical("Store unreachable at startup: %s", e)
            raise StoreInitializationError("Cannot reach the store at startup", original_exception=e) from e
        if not reachable:
            raise StoreInitializationError("Store did not answer the startup ping")
        logger.info("Store connection initialised")
        return self

    async def execute(self, fn: TransactionFunc) -> Any:
        """Run ``fn`` as an optimistic transaction; see ``TransactionCoordinator.execute``."""
        return await self.coordinator.execute(fn)

    def transactional(
        self, func: Callable[Concatenate[TransactionContext, P], Union[Awaitable[R], R]]
    ) -> Callable[P, Awaitable[R]]:
        """Decorator form of ``execute``."""
        return self.coordinator.transactional(func)

    async def flush(self) -> None:
        """Delete all data owned by the store adapter."""
        logger.warning("Flushing store")
        await self.store.flush()

    async def close(self) -> None:
        """Release the store connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.store.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


async def connect(
    url: Optional[str] = None,
    key_prefix: str = "",
    config: Optional[TransactionConfig] = None,
    codec: Optional[BaseCodec] = None,
    **client_kwargs: Any
) -> KVTxnClient:
    """
    Connect to a Redis store and verify it answers.

    Args:
        url: Connection string; read from KVTXN_STORE_URL or REDIS_URL when omitted.
        key_prefix: Prefix for every key written through this client.
        config: Transaction settings (defaults to ``TransactionConfig.from_environment()``).
        codec: Value codec.
        **client_kwargs: Extra arguments for ``redis.asyncio.Redis.from_url``.

    Raises:
        ConfigurationError: If no URL is given or configured.
        StoreInitializationError: If the store does not answer.
    """
    url = url or get_store_url()
    logger.info("Initialising store connection")
    store = create_redis_store_adapter(url=url, key_prefix=key_prefix, **client_kwargs)
    client = KVTxnClient(store, codec=codec, config=config or TransactionConfig.from_environment())
    try:
        await client.start()
    except StoreInitializationError:
        await client.close()
        raise
    return client
