"""
Store package for kvtxn.

This package contains the store adapter interface and its implementations.
"""

# Base classes
from .base import BaseStoreAdapter, BaseWatchSession

# Store Implementations (from stores subpackage)
from .stores import InMemoryStoreAdapter, RedisStoreAdapter

__all__ = [
    # Base classes
    "BaseStoreAdapter",
    "BaseWatchSession",
    # Stores
    "InMemoryStoreAdapter",
    "RedisStoreAdapter"
]
