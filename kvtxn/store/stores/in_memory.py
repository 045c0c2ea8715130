"""
In-memory store adapter for kvtxn.

A process-local key-value store with per-key version counters. Watching a key
records its version; a commit succeeds only if every watched key still has the
version it had when it was watched, which mirrors Redis WATCH semantics
(any write, even of an identical value, invalidates the watch).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping, Optional

from kvtxn.exceptions import ConflictError, StoreConnectionError
from kvtxn.store.base import BaseStoreAdapter, BaseWatchSession
from kvtxn.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryWatchSession(BaseWatchSession):
    """Watch session recording the version of each watched key."""

    def __init__(self, store: "InMemoryStoreAdapter"):
        self._store = store
        self._watched: Dict[str, int] = {}

    async def watch(self, key: str) -> None:
        self._store._ensure_open()
        self._watched.setdefault(key, self._store._version(key))

    async def get(self, key: str) -> Optional[bytes]:
        self._store._ensure_open()
        return self._store._data.get(key)

    async def commit(self, writes: Mapping[str, bytes]) -> None:
        store = self._store
        store._ensure_open()
        async with store._lock:
            changed = [key for key, version in self._watched.items() if store._version(key) != version]
            if changed:
                logger.debug("Watched keys modified, commit aborted", extra={
                    "cache_type": "memory",
                    "changed_keys": changed
                })
                raise ConflictError(keys=changed)
            for key, value in writes.items():
                store._apply(key, bytes(value))
            store.commit_count += 1


class InMemoryStoreAdapter(BaseStoreAdapter):
    """
    In-memory store adapter.

    Safe for concurrent transactions running as tasks on one event loop.
    """

    def __init__(self, initial_data: Optional[Mapping[str, bytes]] = None):
        self._data: Dict[str, bytes] = {}
        self._versions: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        self.commit_count = 0
        self.sessions_opened = 0
        for key, value in (initial_data or {}).items():
            self._apply(key, bytes(value))

    def _ensure_open(self):
        if self._closed:
            raise StoreConnectionError("In-memory store adapter is closed")

    def _version(self, key: str) -> int:
        return self._versions.get(key, 0)

    def _apply(self, key: str, value: Optional[bytes]) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        # versions survive deletion so a watch on a deleted key still conflicts
        self._versions[key] = self._version(key) + 1

    @asynccontextmanager
    async def session(self) -> AsyncIterator[InMemoryWatchSession]:
        self._ensure_open()
        self.sessions_opened += 1
        yield InMemoryWatchSession(self)

    async def ping(self) -> bool:
        self._ensure_open()
        return True

    async def flush(self) -> None:
        self._ensure_open()
        async with self._lock:
            for key in list(self._data):
                self._apply(key, None)
        logger.info("Flushed in-memory store", extra={"cache_type": "memory"})

    async def close(self) -> None:
        self._closed = True

    # Non-transactional access, for seeding and inspection

    def get_raw(self, key: str) -> Optional[bytes]:
        """Return the bytes stored at ``key`` outside any transaction."""
        return self._data.get(key)

    def set_raw(self, key: str, value: Optional[bytes]) -> None:
        """Write (or delete, with None) a key outside any transaction, as another client would."""
        self._apply(key, value)

    def keys(self):
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)
