"""
Store implementations for the kvtxn store module.

This subpackage contains the store backends (Redis and in-memory).
"""

from .in_memory import InMemoryStoreAdapter, InMemoryWatchSession
from .redis import RedisStoreAdapter, RedisWatchSession

__all__ = [
    "InMemoryStoreAdapter",
    "InMemoryWatchSession",
    "RedisStoreAdapter",
    "RedisWatchSession"
]
