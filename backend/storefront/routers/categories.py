"""
Public Categories Router.

The tenant's active category tree and the active products filed under each
category.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, rate_limited
from storefront.schemas import (
    CategoryDetailResponse,
    CategoryListResponse,
    CategoryResponse,
    ProductListResponse,
    ProductResponse,
)

router = APIRouter(dependencies=[Depends(rate_limited("product"))])


@router.get("", response_model=CategoryListResponse)
async def list_categories(
    parent_id: Optional[str] = Query(None),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Active root categories, or the active children of ``parent_id``."""
    categories = await container.categories(db).children(tenant.id, parent_id, active_only=True)
    return CategoryListResponse(
        categories=[CategoryResponse.model_validate(c) for c in categories],
        total=len(categories),
    )


@router.get("/{slug}", response_model=CategoryDetailResponse)
async def get_category(
    slug: str,
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    service = container.categories(db)
    category = await service.get_by_slug(tenant.id, slug, active_only=True)
    children = await service.children(tenant.id, category.id, active_only=True)
    return CategoryDetailResponse(
        **CategoryResponse.model_validate(category).model_dump(),
        path=await service.full_path(category),
        children=[CategoryResponse.model_validate(c) for c in children],
    )


@router.get("/{slug}/products", response_model=ProductListResponse)
async def list_category_products(
    slug: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    service = container.categories(db)
    category = await service.get_by_slug(tenant.id, slug, active_only=True)
    products, total = await service.list_products(
        tenant.id, category.id, active_only=True, limit=limit, offset=offset
    )
    return ProductListResponse(products=[ProductResponse.model_validate(p) for p in products], total=total)
