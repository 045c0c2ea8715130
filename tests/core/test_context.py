"""Tests for the per-attempt transaction context."""
from dataclasses import dataclass

import pytest

from kvtxn.codec import JSONCodec
from kvtxn.core.context import TransactionContext
from kvtxn.exceptions import (
    KeyNotFoundError,
    SerializationError,
    StoreConnectionError,
    StoreOperationError,
    TransactionClosedError,
    ValidationError,
)
from kvtxn.store import InMemoryStoreAdapter
from tests.mocks.mock_stores import MockFailingStoreAdapter, SpyStoreAdapter


@dataclass
class Item:
    sku: str
    quantity: int


@pytest.fixture
def codec():
    return JSONCodec()


@pytest.fixture
def spy_store(codec):
    return SpyStoreAdapter(initial_data={"item": codec.encode(Item("A-1", 3))})


@pytest.mark.asyncio
async def test_read_decodes_into_destination(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        assert await ctx.read("item", Item) == Item("A-1", 3)
        assert await ctx.read("item") == {"sku": "A-1", "quantity": 3}


@pytest.mark.asyncio
async def test_key_fetched_at_most_once(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        assert await ctx.exists("item")
        await ctx.read("item", Item)
        await ctx.read("item", Item)

        assert spy_store.count("watch", "item") == 1
        assert spy_store.count("get", "item") == 1


@pytest.mark.asyncio
async def test_absent_key_is_cached(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        assert not await ctx.exists("missing")
        with pytest.raises(KeyNotFoundError):
            await ctx.read("missing")

        assert spy_store.count("get", "missing") == 1


@pytest.mark.asyncio
async def test_own_write_visibility(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        await ctx.read("item", Item)
        ctx.write("item", Item("A-1", 10))

        assert await ctx.read("item", Item) == Item("A-1", 10)
        # staged only; the store still holds the old value
        assert codec.decode(spy_store.get_raw("item"), Item) == Item("A-1", 3)


@pytest.mark.asyncio
async def test_write_before_read_is_not_fetched(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        ctx.write("new", 1)

        assert await ctx.exists("new")
        assert await ctx.read("new", int) == 1
        assert spy_store.count("get", "new") == 0
        assert spy_store.count("watch", "new") == 0


@pytest.mark.asyncio
async def test_get_returns_default_for_absent_key(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        assert await ctx.get("missing", int, default=0) == 0
        assert await ctx.get("item", Item) == Item("A-1", 3)


@pytest.mark.asyncio
async def test_dirty_set_tracks_writes_only(spy_store, codec):
    async with spy_store.session() as session:
        ctx = TransactionContext(session, codec)
        await ctx.read("item")
        ctx.write("b", 2)
        ctx.write("a", 1)
        ctx.write("b", 3)

        assert ctx.dirty_keys == frozenset({"a", "b"})
        assert ctx.pending_writes() == {"b": b"3", "a": b"1"}
        assert list(ctx.pending_writes()) == ["b", "a"]


@pytest.mark.asyncio
async def test_write_encodes_eagerly(codec):
    store = InMemoryStoreAdapter()
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        with pytest.raises(SerializationError):
            ctx.write("bad", object())
        assert ctx.dirty_keys == frozenset()


@pytest.mark.asyncio
async def test_non_finite_float_write_is_refused(codec):
    store = InMemoryStoreAdapter()
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        with pytest.raises(SerializationError, match="non-finite"):
            ctx.write("ratio", float("nan"))
        assert ctx.dirty_keys == frozenset()


@pytest.mark.asyncio
async def test_bytes_value_reads_back_from_own_write(codec):
    store = InMemoryStoreAdapter()
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        ctx.write("blob", b"\x00raw")
        assert await ctx.read("blob", bytes) == b"\x00raw"
        assert await ctx.read("blob") == b"\x00raw"


@pytest.mark.asyncio
async def test_corrupt_stored_value_raises_serialization_error(codec):
    store = InMemoryStoreAdapter(initial_data={"k": b"{broken"})
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        assert await ctx.exists("k")
        with pytest.raises(SerializationError):
            await ctx.read("k")


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["watch", "get"])
async def test_exists_raises_when_store_fails(codec, operation):
    store = MockFailingStoreAdapter(fail_on_operation=operation)
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        with pytest.raises(StoreConnectionError):
            await ctx.exists("k")


@pytest.mark.asyncio
async def test_exists_propagates_operation_errors(codec):
    store = MockFailingStoreAdapter(fail_on_operation="watch", error=StoreOperationError("denied"))
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        with pytest.raises(StoreOperationError):
            await ctx.exists("k")


@pytest.mark.asyncio
async def test_closed_context_refuses_use(codec):
    store = InMemoryStoreAdapter()
    async with store.session() as session:
        ctx = TransactionContext(session, codec, attempt=2)
        ctx.close()

        assert ctx.closed
        with pytest.raises(TransactionClosedError, match="attempt 2"):
            ctx.write("k", 1)
        with pytest.raises(TransactionClosedError):
            await ctx.read("k")
        with pytest.raises(TransactionClosedError):
            await ctx.exists("k")


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", None, 42])
async def test_invalid_keys_rejected(codec, key):
    store = InMemoryStoreAdapter()
    async with store.session() as session:
        ctx = TransactionContext(session, codec)
        with pytest.raises(ValidationError):
            ctx.write(key, 1)
        with pytest.raises(ValidationError):
            await ctx.read(key)
