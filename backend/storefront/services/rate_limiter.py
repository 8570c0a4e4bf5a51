"""
Rate Limiter - per-client token buckets for storefront operations.

Each (operation, client key) pair gets a fixed-window bucket: ``capacity``
tokens that all come back at once when the window ends. A client that spends
its whole budget at the end of one window and again at the start of the next
can get up to twice the capacity through in a short burst; that is accepted
in exchange for constant memory per key. A window is closed on both ends:
tokens come back only once the clock is strictly past its end.

Limits per operation come from settings. Unknown operations, or limiting
switched off with RATE_LIMIT_ENABLED=false, are never limited.
"""

import logging
import math
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from storefront.config import Settings, get_settings
from storefront.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

UNLIMITED = sys.maxsize
UNLIMITED_RESET_SECONDS = 3600


class RateLimitOperation(str, Enum):
    CART = "cart"
    ORDER = "order"
    PAYMENT = "payment"
    PRODUCT = "product"
    SEARCH = "search"
    ADMIN = "admin"


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int
    reset_time: float

    @property
    def reset_epoch_seconds(self) -> int:
        return int(self.reset_time)


class TokenBucket:
    """Fixed-window bucket. Refill and consume happen under one lock."""

    def __init__(self, capacity: int, window_seconds: int, now: float):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.tokens = capacity
        self.window_start = now
        self._lock = threading.Lock()

    @property
    def reset_time(self) -> float:
        return self.window_start + self.window_seconds

    def _refill(self, now: float) -> None:
        if now > self.reset_time:
            self.tokens = self.capacity
            self.window_start = now

    def try_consume(self, now: float) -> bool:
        with self._lock:
            self._refill(now)
            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def remaining(self, now: float) -> int:
        with self._lock:
            self._refill(now)
            return self.tokens

    def is_expired(self, now: float) -> bool:
        """A bucket idle for a full window after its reset can be dropped."""
        return now > self.reset_time + self.window_seconds


class RateLimiter:
    """
    Registry of token buckets keyed by ``<operation>:<client key>``.

    The clock is injectable so window behaviour can be tested without sleeping.
    """

    def __init__(self, settings: Optional[Settings] = None, clock: Callable[[], float] = time.time):
        self.settings = settings or get_settings()
        self.clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._registry_lock = threading.Lock()

    @property
    def window_seconds(self) -> int:
        return self.settings.RATE_LIMIT_WINDOW_SIZE_SECONDS

    def limit_for(self, operation: str) -> int:
        """Requests allowed per window for ``operation``; 0 means not limited."""
        try:
            op = RateLimitOperation(operation.lower())
        except ValueError:
            return 0

        limits = {
            RateLimitOperation.CART: self.settings.RATE_LIMIT_CART_OPERATIONS_PER_MINUTE,
            RateLimitOperation.ORDER: self.settings.RATE_LIMIT_ORDER_CREATION_PER_MINUTE,
            RateLimitOperation.PAYMENT: self.settings.RATE_LIMIT_PAYMENT_OPERATIONS_PER_MINUTE,
            RateLimitOperation.PRODUCT: self.settings.RATE_LIMIT_PRODUCT_BROWSING_PER_MINUTE,
            RateLimitOperation.SEARCH: self.settings.RATE_LIMIT_SEARCH_OPERATIONS_PER_MINUTE,
            RateLimitOperation.ADMIN: self.settings.RATE_LIMIT_ADMIN_OPERATIONS_PER_MINUTE,
        }
        return limits[op]

    @staticmethod
    def _bucket_key(operation: str, key: str) -> str:
        return f"{operation.lower()}:{key}"

    def _bucket(self, operation: str, key: str, capacity: int, now: float) -> TokenBucket:
        bucket_key = self._bucket_key(operation, key)
        with self._registry_lock:
            bucket = self._buckets.get(bucket_key)
            if bucket is None:
                bucket = TokenBucket(capacity, self.window_seconds, now)
                self._buckets[bucket_key] = bucket
            return bucket

    def check_limit(self, operation: str, key: str) -> None:
        """Consume one token or raise RateLimitExceededError."""
        if not self.settings.RATE_LIMIT_ENABLED:
            return

        limit = self.limit_for(operation)
        if limit <= 0:
            return

        now = self.clock()
        bucket = self._bucket(operation, key, limit, now)

        if not bucket.try_consume(now):
            reset_time = bucket.reset_time
            retry_after_seconds = max(1, math.ceil(reset_time - now))
            logger.warning(f"Rate limit exceeded for {operation} by {key}, retry in {retry_after_seconds}s")
            raise RateLimitExceededError(
                operation=operation,
                limit=limit,
                window_seconds=self.window_seconds,
                retry_after=reset_time,
                retry_after_seconds=retry_after_seconds,
            )

        logger.debug(f"Rate limit check passed for {operation} by {key}")

    def get_status(self, operation: str, key: str) -> RateLimitStatus:
        """Current allowance for a client, without consuming a token."""
        now = self.clock()
        limit = self.limit_for(operation) if self.settings.RATE_LIMIT_ENABLED else 0

        if limit <= 0:
            return RateLimitStatus(UNLIMITED, UNLIMITED, now + UNLIMITED_RESET_SECONDS)

        bucket = self._buckets.get(self._bucket_key(operation, key))
        if bucket is None:
            return RateLimitStatus(limit, limit, now + self.window_seconds)

        return RateLimitStatus(limit, bucket.remaining(now), bucket.reset_time)

    def clear(self, operation: str, key: str) -> None:
        with self._registry_lock:
            self._buckets.pop(self._bucket_key(operation, key), None)

    def sweep(self) -> int:
        """Drop buckets whose window ended more than a window ago."""
        now = self.clock()
        with self._registry_lock:
            expired = [k for k, bucket in self._buckets.items() if bucket.is_expired(now)]
            for bucket_key in expired:
                del self._buckets[bucket_key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit buckets")
        return len(expired)

    def __len__(self) -> int:
        return len(self._buckets)
