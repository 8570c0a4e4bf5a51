"""
JWT Authentication Middleware.

Provides tenant isolation for the admin API by validating signed JWTs
that encode the tenant_id.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# JWT Configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


def _get_secret_key() -> str:
    """Lazy-load the secret key to support testing."""
    from storefront.config import get_settings
    return get_settings().SECRET_KEY


def create_access_token(tenant_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT for a tenant administrator.

    Args:
        tenant_id: The tenant's UUID.
        expires_delta: Optional custom expiration time.

    Returns:
        A signed JWT string.
    """
    to_encode = {"sub": tenant_id}

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode["exp"] = expire

    return jwt.encode(to_encode, _get_secret_key(), algorithm=ALGORITHM)


async def get_current_tenant(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> str:
    """
    FastAPI dependency that extracts and validates the tenant_id from a JWT.
    Supports both 'Authorization: Bearer' header and 'auth_token' cookie.

    Returns:
        The validated tenant_id.
    """
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = None

    # 1. Try Authorization Header
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    # 2. Try HttpOnly Cookie (Fallback)
    if not token:
        token = request.cookies.get("auth_token")

    if not token:
        raise credentials_exception

    try:
        payload = jwt.decode(token, _get_secret_key(), algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    tenant_id: Optional[str] = payload.get("sub")
    if tenant_id is None:
        raise credentials_exception

    logger.debug(f"🔑 Authenticated tenant: {tenant_id}")
    return tenant_id
