"""
Storefront - FastAPI Application Entry Point.

Multi-tenant storefront backend: public catalog, carts, checkout and PayPal
payments, plus the tenant admin API.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import get_settings
from storefront.container import build_container
from storefront.database import Base, async_session_maker, engine, get_db
from storefront.exceptions import EcommerceError, RateLimitExceededError
from storefront.routers import admin, carousels, cart, categories, orders, payments, products
from storefront.services.maintenance import maintenance_loop

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup: Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    container = app.state.container
    maintenance = asyncio.create_task(
        maintenance_loop(container, async_session_maker, settings.MAINTENANCE_INTERVAL_SECONDS)
    )

    yield

    # Shutdown: Cleanup
    maintenance.cancel()
    try:
        await maintenance
    except asyncio.CancelledError:
        pass
    await container.aclose()
    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-tenant storefront: catalog, carts, orders and PayPal checkout",
    version="1.0.0",
    lifespan=lifespan,
)

# Shared in-process services (locks, rate limiter, error counters)
app.state.container = build_container(settings)


@app.exception_handler(EcommerceError)
async def ecommerce_error_handler(request: Request, exc: EcommerceError):
    if exc.status_code >= 500:
        app.state.container.error_sink.log_system_error(request.url.path, exc)
    headers = {}
    cause = getattr(exc, "domain_error", None) or exc
    if isinstance(cause, RateLimitExceededError):
        headers["Retry-After"] = str(cause.retry_after_seconds)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# CORS Middleware (for the storefront frontend)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.FRONTEND_URL,  # Use configured frontend URL
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Force HTTPS in production
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


app.add_middleware(SecurityHeadersMiddleware)

# Include Routers
app.include_router(products.router, prefix="/public/products", tags=["Catalog"])
app.include_router(categories.router, prefix="/public/categories", tags=["Catalog"])
app.include_router(carousels.router, prefix="/public/carousels", tags=["Catalog"])
app.include_router(cart.router, prefix="/public/cart", tags=["Cart"])
app.include_router(orders.router, prefix="/public/orders", tags=["Orders"])
app.include_router(payments.router, prefix="/public/payments", tags=["Payments"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        # Return 503 so load balancers know to stop sending traffic
        raise HTTPException(status_code=503, detail="Database disconnected")
    return {"status": "healthy", "database": "connected"}


@app.get("/")
async def root():
    """Root endpoint with system info."""
    return {"name": settings.APP_NAME, "status": "operational"}
