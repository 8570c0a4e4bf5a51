"""
Domain exceptions for the storefront.

Every error a caller can act on derives from EcommerceError and knows its
HTTP status, so the API layer renders them with a single exception handler.
"""

from typing import Any, Dict, List, Optional


class EcommerceError(Exception):
    """Base class for storefront domain errors."""

    status_code = 500
    error_code = "ECOMMERCE_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class ValidationError(EcommerceError):
    """Raised when input fails domain validation. Carries per-field messages."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, field_errors: List[Dict[str, str]], message: Optional[str] = None):
        self.field_errors = field_errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in field_errors)
        super().__init__(message or f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class NotFoundError(EcommerceError):
    """
    Raised when an entity does not exist for the requesting tenant.

    Cross-tenant lookups raise this same error so that callers cannot
    probe for the existence of another tenant's data.
    """

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(EcommerceError):
    """Raised on duplicate slugs/SKUs or an already completed payment."""

    status_code = 409
    error_code = "CONFLICT"


class InsufficientStockError(EcommerceError):
    """Raised when a stock decrement would take availability below zero."""

    status_code = 409
    error_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: Optional[str],
        variant_id: Optional[str],
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        target = f"variant {variant_id}" if variant_id else f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {target}: requested {requested}, available {available}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "requested": self.requested,
            "available": self.available,
        })
        return data


class InvalidCartStateError(EcommerceError):
    """Raised when an operation is illegal for the current cart or order state."""

    status_code = 400
    error_code = "INVALID_STATE"

    def __init__(self, cart_id: Optional[str], operation: str, message: str):
        self.cart_id = cart_id
        self.operation = operation
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        return data


class FeatureDisabledError(EcommerceError):
    """Raised when the tenant has the e-commerce feature turned off."""

    status_code = 403
    error_code = "FEATURE_DISABLED"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"E-commerce is not enabled for tenant {tenant_id}")


class RateLimitExceededError(EcommerceError):
    """Raised when a client exhausts the token bucket for an operation."""

    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        operation: str,
        limit: int,
        window_seconds: int,
        retry_after: float,
        retry_after_seconds: int,
    ):
        self.operation = operation
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded for {operation}: {limit} requests per "
            f"{window_seconds}s. Retry in {retry_after_seconds}s"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "operation": self.operation,
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "retry_after_seconds": self.retry_after_seconds,
        })
        return data


class LockOperationFailedError(EcommerceError):
    """
    Raised when an operation guarded by the keyed mutex fails.

    The original exception is kept both as ``cause`` and ``__cause__``; the
    HTTP status follows the cause when it is itself a domain error.
    """

    error_code = "LOCK_OPERATION_FAILED"

    def __init__(self, lock_key: str, cause: BaseException):
        self.lock_key = lock_key
        self.cause = cause
        super().__init__(f"Operation failed under lock {lock_key}: {cause}")

    @property
    def domain_error(self) -> Optional[EcommerceError]:
        return self.cause if isinstance(self.cause, EcommerceError) else None

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.domain_error is not None:
            return self.domain_error.status_code
        return 500

    def to_dict(self) -> Dict[str, Any]:
        if self.domain_error is not None:
            return self.domain_error.to_dict()
        return {"error": self.error_code, "message": "Internal error while processing the request"}


class PaymentProcessingError(EcommerceError):
    """Raised when the payment provider rejects or fails a request."""

    status_code = 502
    error_code = "PAYMENT_PROCESSING_ERROR"

    def __init__(self, message: str, provider_status: Optional[int] = None):
        self.provider_status = provider_status
        super().__init__(message)


class CircuitBreakerOpenError(EcommerceError):
    """Raised when circuit breaker is open and rejecting calls."""

    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"

    def __init__(self, service_name: str, retry_after: int = 60):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"{service_name} circuit breaker is OPEN. "
            f"Service experiencing issues. Try again in {retry_after}s"
        )
