"""
Public Catalog Router.

Product browsing for storefront visitors. Only ACTIVE products are visible.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, rate_limited
from storefront.schemas import ProductListResponse, ProductResponse

router = APIRouter()


@router.get("", response_model=ProductListResponse, dependencies=[Depends(rate_limited("product"))])
async def list_products(
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """List the tenant's active products, newest first."""
    products, total = await container.products(db).list_products(
        tenant.id, active_only=True, search=search, limit=limit, offset=offset
    )
    return ProductListResponse(
        products=[ProductResponse.model_validate(p) for p in products],
        total=total,
    )


@router.get("/{product_id}", response_model=ProductResponse, dependencies=[Depends(rate_limited("product"))])
async def get_product(
    product_id: str,
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    product = await container.products(db).get_active_product(tenant.id, product_id)
    return ProductResponse.model_validate(product)
