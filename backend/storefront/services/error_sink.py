"""
Error Sink - categorized error logging with in-memory counters.

Every typed helper logs with structured ``extra=`` context and bumps a counter
for its category (``"<kind>.<operation>"``). Counters back two checks:

- ``is_rate_concerning``: the category fired within the last minute and its
  cumulative count is above a threshold.
- security escalation: more than 5 security events for the same operation
  with the latest inside five minutes logs a CRITICAL SECURITY ALERT.
"""

import logging
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("SECURITY")
business_logger = logging.getLogger("BUSINESS")

CONCERNING_WINDOW_SECONDS = 60
SECURITY_ESCALATION_COUNT = 5
SECURITY_ESCALATION_WINDOW_SECONDS = 5 * 60


@dataclass(frozen=True)
class ErrorCounter:
    count: int
    last_seen: float


class ErrorSink:
    """Thread-safe error counters plus the typed logging helpers."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._counts: Dict[str, int] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    # Counters --------------------------------------------------------------

    def record(self, category: str) -> int:
        """Count one event for ``category`` and return the new total."""
        with self._lock:
            count = self._counts.get(category, 0) + 1
            self._counts[category] = count
            self._last_seen[category] = self.clock()
            return count

    def count(self, category: str) -> int:
        with self._lock:
            return self._counts.get(category, 0)

    def is_rate_concerning(self, category: str, threshold_per_minute: int) -> bool:
        with self._lock:
            last_seen = self._last_seen.get(category)
            if last_seen is None:
                return False
            recent = self.clock() - last_seen < CONCERNING_WINDOW_SECONDS
            return recent and self._counts.get(category, 0) > threshold_per_minute

    def snapshot(self) -> Mapping[str, ErrorCounter]:
        """Read-only copy of every counter."""
        with self._lock:
            return MappingProxyType({
                category: ErrorCounter(count, self._last_seen[category])
                for category, count in self._counts.items()
            })

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._last_seen.clear()

    # Typed helpers ---------------------------------------------------------

    @staticmethod
    def _extra(error_type: str, operation: str, tenant_id: Optional[str], context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        extra = {"error_type": error_type, "operation": operation, "tenant_id": tenant_id}
        for key, value in (context or {}).items():
            extra[f"ctx_{key}"] = value
        return extra

    def log_validation_error(self, operation: str, details: str, tenant_id: Optional[str] = None,
                             context: Optional[Dict[str, Any]] = None) -> None:
        logger.warning(
            f"Validation error in {operation}: {details}",
            extra=self._extra("VALIDATION", operation, tenant_id, context),
        )
        self.record(f"validation.{operation}")

    def log_business_error(self, operation: str, error: Exception, tenant_id: Optional[str] = None,
                           context: Optional[Dict[str, Any]] = None) -> None:
        business_logger.warning(
            f"Business rule violation in {operation}: {error}",
            extra=self._extra("BUSINESS", operation, tenant_id, context),
        )
        self.record(f"business.{operation}")

    def log_security_error(self, operation: str, details: str, tenant_id: Optional[str] = None,
                           client_ip: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> None:
        extra = self._extra("SECURITY", operation, tenant_id, context)
        extra["client_ip"] = client_ip
        security_logger.error(f"Security event in {operation}: {details}", extra=extra)

        category = f"security.{operation}"
        self.record(category)
        if self._should_escalate(category):
            security_logger.critical(
                f"CRITICAL SECURITY ALERT: repeated security events for {operation} "
                f"({self.count(category)} so far, latest from {client_ip or 'unknown'})",
                extra=extra,
            )

    def _should_escalate(self, category: str) -> bool:
        with self._lock:
            count = self._counts.get(category, 0)
            last_seen = self._last_seen.get(category)
        if last_seen is None:
            return False
        return count > SECURITY_ESCALATION_COUNT and self.clock() - last_seen < SECURITY_ESCALATION_WINDOW_SECONDS

    def log_system_error(self, operation: str, error: Exception, tenant_id: Optional[str] = None,
                         context: Optional[Dict[str, Any]] = None) -> None:
        logger.error(
            f"System error in {operation}: {error}",
            extra=self._extra("SYSTEM", operation, tenant_id, context),
            exc_info=error,
        )
        self.record(f"system.{operation}")

    def log_payment_error(self, operation: str, error: Exception, tenant_id: Optional[str] = None,
                          order_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> None:
        extra = self._extra("PAYMENT", operation, tenant_id, context)
        extra["order_id"] = order_id
        business_logger.error(f"Payment error in {operation} for order {order_id}: {error}", extra=extra)
        self.record(f"payment.{operation}")

    def log_rate_limit_event(self, operation: str, client_key: str, limit: int,
                             tenant_id: Optional[str] = None) -> None:
        extra = self._extra("RATE_LIMIT", operation, tenant_id, {"limit": limit})
        extra["client_ip"] = client_key
        security_logger.warning(f"Rate limit hit for {operation} by {client_key} (limit {limit})", extra=extra)

        category = f"rate_limit.{operation}"
        self.record(category)
        if self.is_rate_concerning(category, limit):
            security_logger.error(f"Sustained rate limit violations for {operation}", extra=extra)

    def log_feature_access_denied(self, tenant_id: str, operation: str,
                                  client_ip: Optional[str] = None) -> None:
        extra = self._extra("FEATURE_DISABLED", operation, tenant_id, None)
        extra["client_ip"] = client_ip
        security_logger.warning(
            f"E-commerce access denied for tenant {tenant_id} in {operation}", extra=extra,
        )
        self.record(f"feature_denied.{operation}")
