# storefront/integrations/circuit_breaker.py
"""
Circuit breaker for the payment provider.

State lives in Redis so every worker sees the same circuit:

- closed: calls go through and provider outages are counted
- open: calls fail fast with CircuitBreakerOpenError until the backoff
  window has passed since the last counted failure
- half_open: a small number of probe calls decide between closed and open

Each reopening doubles the backoff window, capped at one day. Only outages
count: transport failures, 5xx and 429. Declines and other 4xx do not.
"""

from enum import Enum
from datetime import datetime
import logging
import math
from typing import Any, Callable, Optional

import httpx

from storefront.exceptions import CircuitBreakerOpenError
from storefront.redis import get_redis_client

logger = logging.getLogger(__name__)

MAX_TIMEOUT_SECONDS = 86400


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def _is_outage_status(status: Any) -> bool:
    return isinstance(status, int) and (status == 429 or 500 <= status < 600)


def counts_as_outage(error: BaseException) -> bool:
    """True for failures that say the provider is unavailable."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return _is_outage_status(error.response.status_code)
    provider_status = getattr(error, "provider_status", None)
    if provider_status is not None:
        return _is_outage_status(provider_status)
    return _is_outage_status(getattr(error, "status_code", None))


class CircuitBreaker:
    """
    Usage:
        breaker = get_paypal_circuit_breaker(redis_client)
        order = await breaker.call(client.post, url, json=payload)
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        timeout_seconds: int = 60,
        half_open_max_calls: int = 3,
        redis_client: Optional[Any] = None,
    ):
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.timeout = timeout_seconds
        self.half_open_max_calls = half_open_max_calls

    def _key(self, name: str) -> str:
        return f"circuit_breaker:{self.service_name}:{name}"

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Run ``func`` unless the circuit refuses it.

        Raises:
            CircuitBreakerOpenError: open circuit, or half-open probes used up
        """
        state = self._get_state()
        if state == CircuitState.OPEN:
            retry_after = self._seconds_until_retry()
            if retry_after > 0:
                logger.warning(f"Circuit for {self.service_name} is open, rejecting call")
                raise CircuitBreakerOpenError(self.service_name, retry_after)
            self._half_open()
            state = CircuitState.HALF_OPEN

        if state == CircuitState.HALF_OPEN and not self._take_probe():
            raise CircuitBreakerOpenError(self.service_name, self.timeout)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._record_failure(e)
            raise
        self._record_success(state)
        return result

    def _get_state(self) -> CircuitState:
        raw = self.redis.get(self._key("state"))
        return CircuitState(raw) if raw else CircuitState.CLOSED

    def _backoff_seconds(self) -> int:
        raw = self.redis.get(self._key("timeout_multiplier"))
        openings = int(raw) if raw else 1
        return min(self.timeout * 2 ** (openings - 1), MAX_TIMEOUT_SECONDS)

    def _seconds_until_retry(self) -> int:
        raw = self.redis.get(self._key("last_failure"))
        if not raw:
            return 0
        elapsed = (datetime.utcnow() - datetime.fromisoformat(raw)).total_seconds()
        remaining = self._backoff_seconds() - elapsed
        return math.ceil(remaining) if remaining > 0 else 0

    def _record_success(self, state: Optional[CircuitState] = None) -> None:
        state = state or self._get_state()
        for name in ("failures", "last_failure", "half_open_calls"):
            self.redis.delete(self._key(name))
        if state == CircuitState.HALF_OPEN:
            self.redis.delete(self._key("timeout_multiplier"))
            self.redis.set(self._key("state"), CircuitState.CLOSED.value)
            logger.info(f"Circuit for {self.service_name} closed, provider recovered")

    def _record_failure(self, error: Exception) -> None:
        if not counts_as_outage(error):
            return

        failures = self.redis.incr(self._key("failures"))
        self.redis.set(self._key("last_failure"), datetime.utcnow().isoformat())
        logger.warning(
            f"{self.service_name} failure {failures}/{self.failure_threshold}: {error}"
        )
        if failures >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self.redis.set(self._key("state"), CircuitState.OPEN.value)
        self.redis.incr(self._key("timeout_multiplier"))
        backoff = self._backoff_seconds()
        self.redis.expire(self._key("state"), backoff * 2)
        logger.error(f"Circuit for {self.service_name} opened for {backoff}s")

    def _half_open(self) -> None:
        self.redis.set(self._key("state"), CircuitState.HALF_OPEN.value)
        self.redis.set(self._key("half_open_calls"), 0)
        logger.info(f"Circuit for {self.service_name} half-open, probing provider")

    def _take_probe(self) -> bool:
        raw = self.redis.get(self._key("half_open_calls"))
        if (int(raw) if raw else 0) >= self.half_open_max_calls:
            self._open()
            return False
        self.redis.incr(self._key("half_open_calls"))
        return True

    def get_status(self) -> dict:
        """Snapshot for the admin monitoring endpoint."""
        failures = self.redis.get(self._key("failures"))
        return {
            "service": self.service_name,
            "state": self._get_state().value,
            "failure_count": int(failures) if failures else 0,
            "failure_threshold": self.failure_threshold,
            "last_failure": self.redis.get(self._key("last_failure")),
            "timeout_seconds": self.timeout,
        }


def get_paypal_circuit_breaker(redis_client: Optional[Any] = None) -> CircuitBreaker:
    return CircuitBreaker(
        service_name="paypal",
        failure_threshold=5,
        timeout_seconds=60,
        redis_client=redis_client,
    )
