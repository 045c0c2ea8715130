"""
Per-attempt transaction context.

A ``TransactionContext`` is handed to the user's transaction function. It
caches every key it touches, so each key is fetched from the store at most
once per attempt and reads observe earlier writes of the same attempt. Writes
stay in memory until the coordinator commits them.
"""

from typing import Any, Dict, FrozenSet, Optional, Union

from kvtxn.codec.base import BaseCodec
from kvtxn.exceptions import KeyNotFoundError, TransactionClosedError
from kvtxn.store.base import BaseWatchSession
from kvtxn.utils.logging import get_logger, get_metrics_logger
from kvtxn.utils.validation import validate_key

logger = get_logger(__name__)


class _Absent:
    """Cache marker for a key fetched and found missing."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class TransactionContext:
    """
    Reads and writes for one attempt of a transaction.

    Args:
        session: Watch session the attempt runs under.
        codec: Codec used to encode written values and decode read ones.
        attempt: 1-based number of the attempt, for logging.
    """

    def __init__(self, session: BaseWatchSession, codec: BaseCodec, attempt: int = 1):
        self._session = session
        self._codec = codec
        self.attempt = attempt
        self._cache: Dict[str, Union[bytes, _Absent]] = {}
        self._dirty: Dict[str, None] = {}
        self._closed = False
        self._metrics = get_metrics_logger()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dirty_keys(self) -> FrozenSet[str]:
        """Keys written during this attempt."""
        return frozenset(self._dirty)

    def close(self) -> None:
        """End the attempt; later calls on this context raise ``TransactionClosedError``."""
        self._closed = True

    def _ensure_open(self):
        if self._closed:
            raise TransactionClosedError(
                f"Transaction context for attempt {self.attempt} is closed; "
                "it cannot be used outside the transaction function"
            )

    async def _load(self, key: str) -> Union[bytes, _Absent]:
        if key in self._cache:
            self._metrics.log_cache_hit("attempt", key, attempt=self.attempt)
            return self._cache[key]

        self._metrics.log_cache_miss("attempt", key, attempt=self.attempt)
        await self._session.watch(key)
        raw = await self._session.get(key)
        entry = ABSENT if raw is None else raw
        self._cache[key] = entry
        return entry

    async def exists(self, key: str) -> bool:
        """
        Check whether a key holds a value.

        The first access watches and fetches the key; a failure to do so is
        raised rather than reported as absence.

        Args:
            key: The key to check.

        Returns:
            True if the key has a value, including one written earlier in
            this attempt.

        Raises:
            StoreConnectionError: If the store is unreachable.
            StoreOperationError: If the store rejects the watch or fetch.
        """
        self._ensure_open()
        validate_key(key)
        return await self._load(key) is not ABSENT

    async def read(self, key: str, type_: Any = Any) -> Any:
        """
        Read and decode the value stored at a key.

        Args:
            key: The key to read.
            type_: Destination type the stored value is decoded into.

        Returns:
            The decoded value.

        Raises:
            KeyNotFoundError: If the key is absent.
            SerializationError: If the stored bytes are corrupt or do not
                match ``type_``.
        """
        self._ensure_open()
        validate_key(key)
        entry = await self._load(key)
        if entry is ABSENT:
            raise KeyNotFoundError(key)
        return self._codec.decode(entry, type_)

    async def get(self, key: str, type_: Any = Any, default: Optional[Any] = None) -> Any:
        """Like ``read`` but returns ``default`` for an absent key."""
        try:
            return await self.read(key, type_)
        except KeyNotFoundError:
            return default

    def write(self, key: str, value: Any) -> None:
        """
        Stage a value for ``key``.

        The value is encoded immediately and becomes visible to later reads
        in this attempt; it reaches the store only when the attempt commits.

        Raises:
            SerializationError: If the value cannot be encoded.
        """
        self._ensure_open()
        validate_key(key)
        self._cache[key] = self._codec.encode(value)
        self._dirty[key] = None

    def pending_writes(self) -> Dict[str, bytes]:
        """Encoded values of every dirty key, in first-write order."""
        return {key: self._cache[key] for key in self._dirty}

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (f"TransactionContext(attempt={self.attempt}, cached={len(self._cache)}, "
                f"dirty={len(self._dirty)}, {state})")
