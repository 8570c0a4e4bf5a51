# storefront/middleware/idempotency.py
"""
Idempotency for checkout operations.

Prevents duplicate orders and captures from browsers that double-submit
requests. Uses Redis to store operation results with 24-hour TTL. Requests
sharing a key are serialized on the keyed mutex, so a concurrent duplicate
waits for the first one and then reads its cached result. Handlers should
commit before returning so that only stored results are cached.

Usage:
    @router.post("")
    async def create_order(
        body: CreateOrderRequest,
        idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
        ...
    ):
        return await idempotency.ensure_idempotent(
            idempotency_key, tenant.id, "/public/orders", place_order
        )
"""

import json
import hashlib
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from storefront.exceptions import LockOperationFailedError
from storefront.redis import get_redis_client
from storefront.services.keyed_mutex import KeyedMutex

logger = logging.getLogger(__name__)


class IdempotencyMiddleware:
    """
    Redis-backed idempotency for critical API operations.

    Features:
    - Caches JSON-serializable results by idempotency key
    - 24-hour TTL for cached results
    - Per-tenant + endpoint scoping
    - Requests without a key run the handler directly
    - Concurrent requests with the same key run the handler once
    """

    TTL_HOURS = 24

    def __init__(self, redis_client: Optional[Any] = None, mutex: Optional[KeyedMutex] = None):
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self.mutex = mutex or KeyedMutex()

    async def ensure_idempotent(
        self,
        key: Optional[str],
        tenant_id: str,
        endpoint: str,
        handler: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Execute handler with idempotency protection.

        Args:
            key: Client-provided idempotency key (UUID recommended)
            tenant_id: Tenant the request belongs to
            endpoint: API endpoint being called
            handler: Async function to execute
            *args, **kwargs: Arguments for handler

        Returns:
            Result from handler (or cached result if duplicate)
        """
        if not key:
            return await handler(*args, **kwargs)

        cache_key = self._build_cache_key(key, tenant_id, endpoint)
        lock_key = f"idempotency:{cache_key}"

        async def run_once() -> Any:
            cached_result = self.redis.get(cache_key)
            if cached_result:
                logger.info(f"Idempotency cache hit for key {key[:8]}... - returning cached result")
                return json.loads(cached_result)

            result = await handler(*args, **kwargs)

            self.redis.setex(
                cache_key,
                int(timedelta(hours=self.TTL_HOURS).total_seconds()),
                json.dumps(result, default=str)
            )
            logger.debug(f"Idempotency cached result for key {key[:8]}...")
            return result

        try:
            return await self.mutex.run_exclusive(lock_key, run_once)
        except LockOperationFailedError as e:
            # Don't cache errors - allow retry
            logger.warning(f"Idempotent handler failed for key {key[:8]}...: {e.cause}")
            if e.lock_key == lock_key:
                raise e.cause
            raise

    def _build_cache_key(self, key: str, tenant_id: str, endpoint: str) -> str:
        """
        Build unique Redis key for this operation.

        Format: idempotency:{tenant_id}:{endpoint_hash}:{key}
        """
        endpoint_hash = hashlib.sha256(endpoint.encode()).hexdigest()[:8]
        return f"idempotency:{tenant_id}:{endpoint_hash}:{key}"

    def invalidate_key(self, key: str, tenant_id: str, endpoint: str) -> bool:
        """Invalidate a cached idempotency key (for rollbacks)."""
        deleted = self.redis.delete(self._build_cache_key(key, tenant_id, endpoint))
        if deleted:
            logger.info(f"Invalidated idempotency key {key[:8]}...")
        return deleted > 0
