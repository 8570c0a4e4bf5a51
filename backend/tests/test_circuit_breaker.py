"""
Tests for the payment provider circuit breaker.
"""

import pytest
from unittest.mock import MagicMock
from datetime import datetime

import httpx

from storefront.exceptions import CircuitBreakerOpenError, PaymentProcessingError
from storefront.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    get_paypal_circuit_breaker,
)


@pytest.fixture
def circuit_breaker(mock_redis):
    """Create a circuit breaker on the mocked Redis."""
    return CircuitBreaker(
        service_name="paypal_test",
        failure_threshold=3,
        timeout_seconds=60,
        redis_client=mock_redis,
    )


def http_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api-m.sandbox.paypal.com/v2/checkout/orders")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(status, request=request))


def test_circuit_starts_closed(circuit_breaker, mock_redis):
    """Circuit should start in CLOSED state."""
    assert circuit_breaker._get_state() == CircuitState.CLOSED


def test_circuit_opens_after_threshold_failures(circuit_breaker, mock_redis):
    """Third provider 5xx opens the circuit."""
    mock_redis.incr.return_value = 3

    circuit_breaker._record_failure(http_error(503))

    mock_redis.set.assert_any_call("circuit_breaker:paypal_test:state", CircuitState.OPEN.value)


def test_below_threshold_stays_closed(circuit_breaker, mock_redis):
    mock_redis.incr.return_value = 2

    circuit_breaker._record_failure(httpx.ConnectTimeout("timed out"))

    assert mock_redis.incr.called
    assert not any(
        call.args == ("circuit_breaker:paypal_test:state", CircuitState.OPEN.value)
        for call in mock_redis.set.call_args_list
    )


@pytest.mark.asyncio
async def test_open_circuit_rejects_calls(circuit_breaker, mock_redis):
    """Open circuit should reject calls immediately."""
    mock_redis.get.side_effect = lambda key: {
        "circuit_breaker:paypal_test:state": CircuitState.OPEN.value,
        "circuit_breaker:paypal_test:last_failure": datetime.utcnow().isoformat(),
    }.get(key)
    func = MagicMock()

    async def capture():
        func()

    with pytest.raises(CircuitBreakerOpenError) as exc_info:
        await circuit_breaker.call(capture)

    assert "paypal_test" in str(exc_info.value)
    assert exc_info.value.status_code == 503
    assert 0 < exc_info.value.retry_after <= 60
    func.assert_not_called()


@pytest.mark.asyncio
async def test_open_circuit_moves_to_half_open_after_timeout(circuit_breaker, mock_redis):
    mock_redis.get.side_effect = lambda key: {
        "circuit_breaker:paypal_test:state": CircuitState.OPEN.value,
        "circuit_breaker:paypal_test:last_failure": "2000-01-01T00:00:00",
    }.get(key)

    async def capture():
        return "captured"

    assert await circuit_breaker.call(capture) == "captured"
    mock_redis.set.assert_any_call("circuit_breaker:paypal_test:state", CircuitState.HALF_OPEN.value)


@pytest.mark.asyncio
async def test_circuit_resets_on_success(circuit_breaker, mock_redis):
    """Successful call should reset failure count."""
    async def successful_func():
        return "success"

    result = await circuit_breaker.call(successful_func)

    assert result == "success"
    mock_redis.delete.assert_any_call("circuit_breaker:paypal_test:failures")


@pytest.mark.asyncio
async def test_failures_propagate_and_are_counted(circuit_breaker, mock_redis):
    async def failing():
        raise http_error(500)

    with pytest.raises(httpx.HTTPStatusError):
        await circuit_breaker.call(failing)

    mock_redis.incr.assert_called_with("circuit_breaker:paypal_test:failures")


@pytest.mark.asyncio
async def test_half_open_allows_test_calls(circuit_breaker, mock_redis):
    """Half-open circuit should allow limited test calls."""
    mock_redis.get.side_effect = lambda key: {
        "circuit_breaker:paypal_test:state": CircuitState.HALF_OPEN.value,
        "circuit_breaker:paypal_test:half_open_calls": "1",
    }.get(key)

    async def test_func():
        return "recovered"

    result = await circuit_breaker.call(test_func)

    assert result == "recovered"
    mock_redis.set.assert_any_call("circuit_breaker:paypal_test:state", CircuitState.CLOSED.value)


@pytest.mark.asyncio
async def test_half_open_call_budget_exhausted(circuit_breaker, mock_redis):
    mock_redis.get.side_effect = lambda key: {
        "circuit_breaker:paypal_test:state": CircuitState.HALF_OPEN.value,
        "circuit_breaker:paypal_test:half_open_calls": "3",
    }.get(key)

    async def test_func():
        return "recovered"

    with pytest.raises(CircuitBreakerOpenError):
        await circuit_breaker.call(test_func)


def test_get_status_returns_info(circuit_breaker, mock_redis):
    """get_status should return circuit breaker info."""
    mock_redis.get.side_effect = lambda key: {
        "circuit_breaker:paypal_test:state": CircuitState.CLOSED.value,
        "circuit_breaker:paypal_test:failures": "2",
    }.get(key)

    status = circuit_breaker.get_status()

    assert status["service"] == "paypal_test"
    assert status["state"] == CircuitState.CLOSED.value
    assert status["failure_count"] == 2
    assert status["failure_threshold"] == 3


@pytest.mark.parametrize("error", [
    http_error(400),
    http_error(422),
    PaymentProcessingError("declined", provider_status=402),
    ValueError("bad payload"),
])
def test_client_errors_dont_trigger_circuit(circuit_breaker, mock_redis, error):
    """4xx and validation errors should not count toward the circuit breaker."""
    circuit_breaker._record_failure(error)

    mock_redis.incr.assert_not_called()


@pytest.mark.parametrize("error", [
    http_error(429),
    http_error(502),
    httpx.ConnectError("refused"),
    PaymentProcessingError("upstream", provider_status=503),
])
def test_server_errors_trigger_circuit(circuit_breaker, mock_redis, error):
    circuit_breaker._record_failure(error)

    mock_redis.incr.assert_any_call("circuit_breaker:paypal_test:failures")


def test_paypal_breaker_defaults(mock_redis):
    breaker = get_paypal_circuit_breaker(mock_redis)
    assert breaker.service_name == "paypal"
    assert breaker.failure_threshold == 5
    assert breaker.redis is mock_redis
