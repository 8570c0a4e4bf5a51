"""
Router Dependencies
====================

Shared FastAPI dependencies: the service container, tenant resolution for
public and admin routes, and per-operation rate limiting.
"""

from fastapi import Depends, Header, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_current_tenant
from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.exceptions import RateLimitExceededError
from storefront.models import Tenant


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def client_key(request: Request, trusted_proxies: str = "") -> str:
    """
    Address used as the rate-limit key.

    X-Forwarded-For is only read when the connecting peer is one of the
    configured trusted proxies.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = {p.strip() for p in trusted_proxies.split(",") if p.strip()}
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and peer in trusted:
        return forwarded.split(",")[0].strip() or peer
    return peer


async def get_public_tenant(
    x_tenant_slug: str = Header(..., alias="X-Tenant-Slug"),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> Tenant:
    """
    Resolve the storefront tenant from its slug and require the e-commerce feature.

    Raises:
        NotFoundError: Unknown slug.
        FeatureDisabledError: Tenant inactive or e-commerce switched off.
    """
    features = container.features(db)
    tenant = await features.resolve_tenant(x_tenant_slug)
    return await features.validate_enabled(tenant.id, "public_api")


def get_session_id(x_session_id: str = Header(..., alias="X-Session-Id", min_length=8, max_length=255)) -> str:
    return x_session_id


async def require_admin_tenant(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """
    Dependency that validates JWT and returns the full Tenant object.

    Raises:
        HTTPException(401): If JWT is invalid.
        HTTPException(404): If tenant not found in database.
        HTTPException(403): If the tenant is inactive.
    """
    tenant = await db.get(Tenant, tenant_id)

    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")

    if not tenant.is_active:
        raise HTTPException(status_code=403, detail="Tenant account is inactive")

    return tenant


def rate_limited(operation: str):
    """
    Dependency factory limiting ``operation`` per client address.

    Admitted requests get X-RateLimit-Limit/Remaining/Reset headers; rejected
    ones surface as RateLimitExceededError (429 with Retry-After).
    """
    async def check(
        request: Request,
        response: Response,
        container: ServiceContainer = Depends(get_container),
    ) -> None:
        key = client_key(request, container.settings.TRUSTED_PROXIES)
        limiter = container.rate_limiter
        try:
            limiter.check_limit(operation, key)
        except RateLimitExceededError as e:
            container.error_sink.log_rate_limit_event(operation, key, e.limit)
            raise

        status = limiter.get_status(operation, key)
        response.headers["X-RateLimit-Limit"] = str(status.limit)
        response.headers["X-RateLimit-Remaining"] = str(status.remaining)
        response.headers["X-RateLimit-Reset"] = str(status.reset_epoch_seconds)

    return check
