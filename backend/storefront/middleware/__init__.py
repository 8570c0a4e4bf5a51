# storefront/middleware/__init__.py
"""Middleware package for FastAPI."""

from .idempotency import IdempotencyMiddleware

__all__ = ["IdempotencyMiddleware"]
