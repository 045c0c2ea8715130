"""Tests for the transaction coordinator retry loop and commit protocol."""
import asyncio
import logging

import pytest

from kvtxn.codec import JSONCodec
from kvtxn.core.coordinator import CONFLICT_RETRY_ON, DEFAULT_RETRY_ON, TransactionCoordinator
from kvtxn.exceptions import (
    ConflictError,
    KeyNotFoundError,
    SerializationError,
    StoreConnectionError,
    TransactionClosedError,
    ValidationError,
)
from kvtxn.store import InMemoryStoreAdapter
from kvtxn.utils.config import TransactionConfig
from tests.mocks.mock_stores import AlwaysConflictStoreAdapter, MockFailingStoreAdapter


class InsufficientFunds(Exception):
    pass


@pytest.fixture
def store():
    return InMemoryStoreAdapter()


@pytest.fixture
def coordinator(store):
    return TransactionCoordinator(store)


def stored(store, key, type_=int):
    raw = store.get_raw(key)
    return None if raw is None else JSONCodec().decode(raw, type_)


# --- Commit ---

@pytest.mark.asyncio
async def test_commit_writes_all_dirty_keys(store, coordinator):
    async def fn(tx):
        tx.write("a", 1)
        tx.write("b", {"nested": [1, 2]})
        return "done"

    assert await coordinator.execute(fn) == "done"
    assert stored(store, "a") == 1
    assert stored(store, "b", dict) == {"nested": [1, 2]}
    assert store.commit_count == 1


@pytest.mark.asyncio
async def test_plain_function_is_accepted(store, coordinator):
    def fn(tx):
        tx.write("k", "v")
        return 5

    assert await coordinator.execute(fn) == 5
    assert stored(store, "k", str) == "v"


@pytest.mark.asyncio
async def test_read_only_transaction_commits_nothing(store, coordinator):
    store.set_raw("k", b"1")

    async def fn(tx):
        return await tx.read("k", int)

    assert await coordinator.execute(fn) == 1
    assert store.get_raw("k") == b"1"


# --- Atomicity on business failure ---
@pytest.mark.asyncio
async def test_business_error_is_retried_then_raised_without_writing(store, coordinator):
    store.set_raw("balance", b"10")
    calls = 0

    async def fn(tx):
        nonlocal calls
        calls += 1
        balance = await tx.read("balance", int)
        tx.write("balance", balance - 50)
        tx.write("audit", "withdrawal")
        raise InsufficientFunds(f"balance too low (attempt {calls})")

    with pytest.raises(InsufficientFunds, match="attempt 3"):
        await coordinator.execute(fn)

    assert calls == 3
    assert store.get_raw("balance") == b"10"
    assert store.get_raw("audit") is None
    assert store.commit_count == 0


@pytest.mark.asyncio
async def test_conflict_only_policy_aborts_on_business_error(store):
    coordinator = TransactionCoordinator(store, config=TransactionConfig(retry_business_errors=False))
    calls = 0

    async def fn(tx):
        nonlocal calls
        calls += 1
        tx.write("k", calls)
        raise InsufficientFunds("balance too low")

    with pytest.raises(InsufficientFunds, match="balance too low"):
        await coordinator.execute(fn)

    assert calls == 1
    assert store.get_raw("k") is None
    assert store.commit_count == 0


@pytest.mark.asyncio
async def test_business_error_retry_can_succeed(store, coordinator):
    calls = 0

    async def fn(tx):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise InsufficientFunds("transient")
        tx.write("k", calls)

    await coordinator.execute(fn)
    assert stored(store, "k") == 2


@pytest.mark.asyncio
async def test_explicit_retry_on_limits_retried_errors(store):
    coordinator = TransactionCoordinator(store, retry_on=(InsufficientFunds,))
    calls = 0

    async def fn(tx):
        nonlocal calls
        calls += 1
        raise ValueError("not retried")

    with pytest.raises(ValueError):
        await coordinator.execute(fn)
    assert calls == 1


@pytest.mark.asyncio
async def test_serialization_and_not_found_errors_use_full_budget(store, coordinator):
    calls = 0

    async def missing(tx):
        nonlocal calls
        calls += 1
        return await tx.read("nope")

    with pytest.raises(KeyNotFoundError):
        await coordinator.execute(missing)
    assert calls == 3

    with pytest.raises(SerializationError):
        await coordinator.execute(lambda tx: tx.write("k", object()))
    assert store.sessions_opened == 6


@pytest.mark.asyncio
async def test_conflict_only_policy_does_not_retry_serialization_or_not_found(store):
    coordinator = TransactionCoordinator(store, config=TransactionConfig(retry_business_errors=False))
    calls = 0

    async def missing(tx):
        nonlocal calls
        calls += 1
        return await tx.read("nope")

    with pytest.raises(KeyNotFoundError):
        await coordinator.execute(missing)
    assert calls == 1

    with pytest.raises(SerializationError):
        await coordinator.execute(lambda tx: tx.write("k", object()))
    assert store.sessions_opened == 2


# --- Conflicts ---

@pytest.mark.asyncio
async def test_conflict_triggers_retry_with_fresh_context(store, coordinator):
    store.set_raw("counter", b"0")
    contexts = []

    async def increment(tx):
        contexts.append(tx)
        value = await tx.read("counter", int)
        if tx.attempt == 1:
            # another client commits between our read and our commit
            await coordinator.execute(lambda other: other.write("counter", 100))
        tx.write("counter", value + 1)
        return value

    assert await coordinator.execute(increment) == 100
    assert stored(store, "counter") == 101
    assert [tx.attempt for tx in contexts] == [1, 2]
    assert contexts[0] is not contexts[1]
    assert all(tx.closed for tx in contexts)


@pytest.mark.asyncio
async def test_outside_write_to_watched_key_conflicts(store, coordinator):
    store.set_raw("k", b"1")
    attempts = 0

    async def fn(tx):
        nonlocal attempts
        attempts += 1
        await tx.exists("k")
        if attempts == 1:
            store.set_raw("k", b"1")  # same value still invalidates the watch
        tx.write("other", attempts)

    await coordinator.execute(fn)
    assert attempts == 2
    assert stored(store, "other") == 2


@pytest.mark.asyncio
async def test_concurrent_transactions_exactly_one_conflicts(store, coordinator):
    store.set_raw("k", b'"initial"')
    t1_read = asyncio.Event()
    t2_committed = asyncio.Event()
    attempts = {"t1": 0, "t2": 0}

    async def t1(tx):
        attempts["t1"] += 1
        await tx.read("k", str)
        t1_read.set()
        await t2_committed.wait()
        tx.write("k", "from-t1")

    async def t2(tx):
        attempts["t2"] += 1
        await t1_read.wait()
        await tx.read("k", str)
        tx.write("k", "from-t2")

    async def run_t2():
        await coordinator.execute(t2)
        t2_committed.set()

    await asyncio.gather(coordinator.execute(t1), run_t2())

    assert attempts == {"t1": 2, "t2": 1}
    assert stored(store, "k", str) == "from-t1"
    assert store.commit_count == 2


@pytest.mark.asyncio
async def test_retry_budget_exhaustion(caplog):
    store = AlwaysConflictStoreAdapter()
    coordinator = TransactionCoordinator(store)
    calls = 0

    async def fn(tx):
        nonlocal calls
        calls += 1
        tx.write("k", calls)

    caplog.set_level(logging.ERROR, logger="kvtxn.core.coordinator")
    with pytest.raises(ConflictError) as exc_info:
        await coordinator.execute(fn)

    assert calls == 3
    assert store.sessions_opened == 3
    assert store.commit_attempts == 3
    assert exc_info.value.keys == ("k",)
    assert store.get_raw("k") is None
    assert "Max retries reached" in caplog.text


@pytest.mark.asyncio
async def test_custom_attempt_budget():
    store = AlwaysConflictStoreAdapter()
    coordinator = TransactionCoordinator(store, max_attempts=5)

    with pytest.raises(ConflictError):
        await coordinator.execute(lambda tx: tx.write("k", 1))
    assert store.commit_attempts == 5


@pytest.mark.asyncio
async def test_last_error_is_returned_verbatim():
    store = AlwaysConflictStoreAdapter()
    coordinator = TransactionCoordinator(store, config=TransactionConfig(retry_business_errors=True))
    errors = [InsufficientFunds("first"), None, None]
    calls = 0

    async def fn(tx):
        nonlocal calls
        error = errors[calls]
        calls += 1
        if error is not None:
            raise error
        tx.write("k", 1)

    # attempt 1 business error, attempts 2 and 3 conflict: the conflict surfaces
    with pytest.raises(ConflictError):
        await coordinator.execute(fn)
    assert calls == 3


@pytest.mark.asyncio
async def test_connection_errors_are_retried():
    store = MockFailingStoreAdapter(fail_on_operation="commit", fail_times=2)
    coordinator = TransactionCoordinator(store)

    await coordinator.execute(lambda tx: tx.write("k", 1))
    assert store.failures == 2
    assert store.sessions_opened == 3
    assert store.get_raw("k") == b"1"


@pytest.mark.asyncio
async def test_connection_errors_exhaust_budget():
    store = MockFailingStoreAdapter(fail_on_operation="watch")
    coordinator = TransactionCoordinator(store)

    with pytest.raises(StoreConnectionError):
        await coordinator.execute(lambda tx: tx.exists("k"))
    assert store.failures == 3


# --- Context lifetime ---

@pytest.mark.asyncio
async def test_context_is_discarded_after_attempt(coordinator):
    captured = []

    async def fn(tx):
        captured.append(tx)

    await coordinator.execute(fn)
    with pytest.raises(TransactionClosedError):
        captured[0].write("late", 1)


# --- Configuration ---

def test_default_retry_policy(store):
    coordinator = TransactionCoordinator(store)
    assert coordinator.retry_on == DEFAULT_RETRY_ON == (Exception,)
    assert coordinator.max_attempts == 3


def test_conflict_only_retry_policy(store):
    coordinator = TransactionCoordinator(store, config=TransactionConfig(retry_business_errors=False))
    assert coordinator.retry_on == CONFLICT_RETRY_ON == (ConflictError, StoreConnectionError)


def test_invalid_attempt_budget(store):
    with pytest.raises(ValidationError):
        TransactionCoordinator(store, max_attempts=0)


@pytest.mark.asyncio
async def test_transactional_decorator(store, coordinator):
    store.set_raw("a", b"10")
    store.set_raw("b", b"0")

    @coordinator.transactional
    async def transfer(tx, src, dst, amount):
        src_balance = await tx.read(src, int)
        dst_balance = await tx.read(dst, int)
        tx.write(src, src_balance - amount)
        tx.write(dst, dst_balance + amount)
        return src_balance - amount

    assert transfer.__name__ == "transfer"
    assert await transfer("a", "b", amount=4) == 6
    assert stored(store, "a") == 6
    assert stored(store, "b") == 4


@pytest.mark.asyncio
async def test_absence_semantics(coordinator):
    assert await coordinator.execute(lambda tx: tx.exists("fresh")) is False
    await coordinator.execute(lambda tx: tx.write("fresh", {"v": 1}))
    assert await coordinator.execute(lambda tx: tx.exists("fresh")) is True
