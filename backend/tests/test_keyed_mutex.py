"""
Tests for the keyed reentrant mutex.
"""

import asyncio

import pytest

from storefront.exceptions import InsufficientStockError, LockOperationFailedError
from storefront.services.keyed_mutex import KeyedMutex


@pytest.mark.asyncio
async def test_same_key_operations_are_serialized():
    """200 read-yield-write increments under one key must not lose updates."""
    mutex = KeyedMutex()
    counter = {"value": 0}

    async def increment():
        current = counter["value"]
        await asyncio.sleep(0)
        counter["value"] = current + 1

    await asyncio.gather(*(mutex.run_exclusive("counter", increment) for _ in range(200)))

    assert counter["value"] == 200


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    mutex = KeyedMutex()
    inside = set()
    overlap = asyncio.Event()

    async def work(name):
        inside.add(name)
        if len(inside) == 2:
            overlap.set()
        await asyncio.wait_for(overlap.wait(), timeout=1)
        inside.discard(name)

    await asyncio.gather(
        mutex.run_exclusive("cart:a", lambda: work("a")),
        mutex.run_exclusive("cart:b", lambda: work("b")),
    )
    assert overlap.is_set()


@pytest.mark.asyncio
async def test_reentrant_acquisition_returns_inner_value():
    mutex = KeyedMutex()

    async def inner():
        return "X"

    async def outer():
        return await mutex.run_exclusive("order:1", inner)

    assert await mutex.run_exclusive("order:1", outer) == "X"
    assert not mutex.is_locked("order:1")


@pytest.mark.asyncio
async def test_failure_is_wrapped_with_cause_and_lock_released():
    mutex = KeyedMutex()
    error = InsufficientStockError("p1", "v1", requested=5, available=2)

    async def fail():
        raise error

    with pytest.raises(LockOperationFailedError) as exc_info:
        await mutex.run_exclusive("stock:p1:v1", fail)

    assert exc_info.value.lock_key == "stock:p1:v1"
    assert exc_info.value.cause is error
    assert exc_info.value.__cause__ is error
    assert exc_info.value.status_code == 409
    assert not mutex.is_locked("stock:p1:v1")

    # Lock is usable again
    async def ok():
        return 1

    assert await mutex.run_exclusive("stock:p1:v1", ok) == 1


@pytest.mark.asyncio
async def test_nested_failure_is_wrapped_once():
    mutex = KeyedMutex()

    async def fail():
        raise ValueError("boom")

    async def outer():
        return await mutex.run_exclusive("stock:p:default", fail)

    with pytest.raises(LockOperationFailedError) as exc_info:
        await mutex.run_exclusive("cart:c1", outer)

    assert isinstance(exc_info.value.cause, ValueError)
    assert exc_info.value.lock_key == "stock:p:default"
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_sweep_keeps_held_locks():
    mutex = KeyedMutex()
    release = asyncio.Event()
    acquired = asyncio.Event()

    async def hold():
        acquired.set()
        await release.wait()

    async def noop():
        return None

    await mutex.run_exclusive("cart:idle", noop)
    holder = asyncio.create_task(mutex.run_exclusive("cart:busy", hold))
    await acquired.wait()

    assert mutex.statistics().total_locks == 2
    assert mutex.statistics().active_locks == 1

    removed = mutex.sweep()

    assert removed == 1
    assert mutex.is_locked("cart:busy")
    assert mutex.statistics().total_locks == 1

    release.set()
    await holder
    assert mutex.sweep() == 1
    assert mutex.statistics().total_locks == 0


@pytest.mark.asyncio
async def test_run_exclusive_many_holds_every_key():
    mutex = KeyedMutex()
    seen = {}

    async def check():
        seen["a"] = mutex.is_locked("stock:a:default")
        seen["b"] = mutex.is_locked("stock:b:default")
        return "done"

    result = await mutex.run_exclusive_many(
        ["stock:b:default", "stock:a:default", "stock:a:default"], check
    )

    assert result == "done"
    assert seen == {"a": True, "b": True}


def test_stock_key_scheme():
    assert KeyedMutex.stock_key("p1", "v1") == "stock:p1:v1"
    assert KeyedMutex.stock_key("p1", None) == "stock:p1:default"
