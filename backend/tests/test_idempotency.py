"""
Tests for idempotent checkout requests.
"""

import asyncio
import json

import pytest

from storefront.middleware.idempotency import IdempotencyMiddleware

ORDERS_ENDPOINT = "/public/orders"


@pytest.fixture
def idempotency(mock_redis):
    """Idempotency cache on the mocked Redis."""
    return IdempotencyMiddleware(redis_client=mock_redis)


@pytest.mark.asyncio
async def test_first_request_executes_handler(idempotency, mock_redis):
    """First request should execute handler and cache result."""
    async def place_order():
        return {"order_number": "0042-20240309-1234", "status": "PENDING_PAYMENT"}

    result = await idempotency.ensure_idempotent("order-key-1", "tenant-1", ORDERS_ENDPOINT, place_order)

    assert result["order_number"] == "0042-20240309-1234"
    mock_redis.setex.assert_called_once()
    cache_key, ttl, payload = mock_redis.setex.call_args.args
    assert cache_key.startswith("idempotency:tenant-1:")
    assert ttl == 24 * 3600
    assert json.loads(payload) == result


@pytest.mark.asyncio
async def test_duplicate_request_returns_cached_result(idempotency, mock_redis):
    """A replayed key returns the first result without placing a second order."""
    cached = {"order_number": "0042-20240309-1234", "status": "PENDING_PAYMENT"}
    mock_redis.get.return_value = json.dumps(cached)

    handler_called = False

    async def place_order():
        nonlocal handler_called
        handler_called = True
        return {"order_number": "should-not-be-returned"}

    result = await idempotency.ensure_idempotent("order-key-1", "tenant-1", ORDERS_ENDPOINT, place_order)

    assert result == cached
    assert not handler_called


@pytest.mark.asyncio
async def test_request_without_key_always_runs(idempotency, mock_redis):
    calls = []

    async def place_order(quantity):
        calls.append(quantity)
        return {"quantity": quantity}

    await idempotency.ensure_idempotent(None, "tenant-1", ORDERS_ENDPOINT, place_order, 1)
    await idempotency.ensure_idempotent("", "tenant-1", ORDERS_ENDPOINT, place_order, quantity=2)

    assert calls == [1, 2]
    mock_redis.get.assert_not_called()
    mock_redis.setex.assert_not_called()


@pytest.mark.asyncio
async def test_handler_error_not_cached(idempotency, mock_redis):
    """Errors should NOT be cached to allow retry."""
    async def failing_handler():
        raise ValueError("Something went wrong")

    with pytest.raises(ValueError):
        await idempotency.ensure_idempotent("order-key-1", "tenant-1", ORDERS_ENDPOINT, failing_handler)

    mock_redis.setex.assert_not_called()


def test_cache_key_includes_tenant_and_endpoint(idempotency):
    """Cache key should be unique per tenant AND endpoint."""
    key1 = idempotency._build_cache_key("same-key", "tenant-1", "/public/orders")
    key2 = idempotency._build_cache_key("same-key", "tenant-2", "/public/orders")
    key3 = idempotency._build_cache_key("same-key", "tenant-1", "/public/orders/buy-now")

    assert key1 != key2
    assert key1 != key3


def test_invalidate_key(idempotency, mock_redis):
    """invalidate_key should delete from Redis."""
    assert idempotency.invalidate_key("order-key-1", "tenant-1", ORDERS_ENDPOINT) is True
    mock_redis.delete.assert_called_once()

    mock_redis.delete.return_value = 0
    assert idempotency.invalidate_key("order-key-1", "tenant-1", ORDERS_ENDPOINT) is False


@pytest.mark.asyncio
async def test_concurrent_duplicates_run_handler_once(idempotency, mock_redis):
    """Two submits racing on one key place a single order."""
    store = {}
    mock_redis.get.side_effect = store.get
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    calls = []

    async def place_order():
        calls.append(1)
        await asyncio.sleep(0.01)
        return {"order_number": f"0042-20240309-{1000 + len(calls)}"}

    first, second = await asyncio.gather(
        idempotency.ensure_idempotent("order-key-1", "tenant-1", ORDERS_ENDPOINT, place_order),
        idempotency.ensure_idempotent("order-key-1", "tenant-1", ORDERS_ENDPOINT, place_order),
    )

    assert len(calls) == 1
    assert first == second
    mock_redis.setex.assert_called_once()
