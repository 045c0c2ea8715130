"""
Base classes for store adapters and their watch sessions.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Mapping, Optional


class BaseWatchSession(ABC):
    """
    One optimistic-locking session against the store.

    Keys registered with ``watch`` are checked at ``commit``: if any of them
    was modified by another client since registration, the commit fails with
    ``ConflictError`` and nothing is written.
    """

    @abstractmethod
    async def watch(self, key: str) -> None:
        """
        Register a key for conflict detection.

        Args:
            key: The key to watch.

        Raises:
            StoreConnectionError: If the store is unreachable.
            StoreOperationError: If the store rejects the command.
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """
        Fetch the raw bytes stored at a key.

        Args:
            key: The key to fetch.

        Returns:
            The stored bytes, or None if the key is absent.
        """
        pass

    @abstractmethod
    async def commit(self, writes: Mapping[str, bytes]) -> None:
        """
        Atomically write every key in ``writes``.

        Args:
            writes: Mapping of key to encoded value.

        Raises:
            ConflictError: If a watched key changed since it was registered.
            StoreConnectionError: If the store is unreachable.
            StoreOperationError: For any other store failure.
        """
        pass


class BaseStoreAdapter(ABC):
    """Abstract base class for the key-value store behind transactions."""

    @abstractmethod
    def session(self) -> AsyncContextManager[BaseWatchSession]:
        """
        Open a watch session.

        Returns:
            An async context manager yielding a ``BaseWatchSession``. Leaving
            the context releases every watch registered in the session.
        """
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the store is reachable."""
        pass

    @abstractmethod
    async def flush(self) -> None:
        """Delete every key owned by this adapter."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
