"""
kvtxn - Optimistic Transactions for Key-Value Stores
=====================================================

Atomic multi-key read-modify-write transactions over Redis (or any store
adapter) using optimistic concurrency control.
"""

__version__ = "0.1.0"

from .client import KVTxnClient, connect
from .core.coordinator import TransactionCoordinator
from .core.context import TransactionContext
from .codec import BaseCodec, JSONCodec, TypeRegistry, register_type
from .store import BaseStoreAdapter, BaseWatchSession, InMemoryStoreAdapter, RedisStoreAdapter
from .utils.config import TransactionConfig
from .utils.redis_helpers import create_redis_store_adapter
from .exceptions import (
    KVTxnError,
    ConfigurationError,
    ValidationError,
    KeyNotFoundError,
    ConflictError,
    SerializationError,
    TransactionClosedError,
    StoreError,
    StoreInitializationError,
    StoreConnectionError,
    StoreOperationError
)

__all__ = [
    "KVTxnClient",
    "connect",
    "TransactionCoordinator",
    "TransactionContext",
    "TransactionConfig",
    "BaseCodec",
    "JSONCodec",
    "TypeRegistry",
    "register_type",
    "BaseStoreAdapter",
    "BaseWatchSession",
    "InMemoryStoreAdapter",
    "RedisStoreAdapter",
    "create_redis_store_adapter",
    "KVTxnError",
    "ConfigurationError",
    "ValidationError",
    "KeyNotFoundError",
    "ConflictError",
    "SerializationError",
    "TransactionClosedError",
    "StoreError",
    "StoreInitializationError",
    "StoreConnectionError",
    "StoreOperationError"
]
