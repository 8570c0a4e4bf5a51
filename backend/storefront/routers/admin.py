"""
Admin API Router.

Order management, catalog management and runtime monitoring for the tenant
named in the JWT.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import CarouselPlacement, CarouselType, OrderStatus, Platform, ProductStatus, Tenant
from storefront.routers.dependencies import get_container, rate_limited, require_admin_tenant
from storefront.schemas import (
    CarouselItemResponse,
    CarouselResponse,
    CategoryListResponse,
    CategoryResponse,
    ImageResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatisticsResponse,
    ProductResponse,
    VariantResponse,
)
from storefront.services.carousels import CarouselItemData
from storefront.services.orders import OrderUpdate

router = APIRouter(dependencies=[Depends(rate_limited("admin"))])


class StatusRequest(BaseModel):
    status: OrderStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CreateProductRequest(BaseModel):
    name: str
    slug: str
    price: Decimal
    sku: Optional[str] = None
    description: Optional[str] = None
    stock_quantity: int = Field(0, ge=0)
    status: ProductStatus = ProductStatus.DRAFT


class CreateVariantRequest(BaseModel):
    sku: str
    name: str
    price: Decimal
    stock_quantity: int = Field(0, ge=0)
    compare_at_price: Optional[Decimal] = None


class ImageRequest(BaseModel):
    url: str = Field(..., max_length=1024)
    alt_text: Optional[str] = Field(None, max_length=255)
    sort_order: Optional[int] = None


class StockRequest(BaseModel):
    quantity: int = Field(..., ge=0)


class CreateCategoryRequest(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: bool = True


class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class MoveCategoryRequest(BaseModel):
    parent_id: Optional[str] = None


class SortOrderRequest(BaseModel):
    sort_order: int


class CreateCarouselRequest(BaseModel):
    name: str
    slug: str
    type: CarouselType
    placement: CarouselPlacement
    platform: Platform = Platform.BOTH
    max_items: int = 10
    is_active: bool = True


class UpdateCarouselRequest(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    type: Optional[CarouselType] = None
    placement: Optional[CarouselPlacement] = None
    platform: Optional[Platform] = None
    is_active: Optional[bool] = None
    max_items: Optional[int] = None


class ReorderRequest(BaseModel):
    item_ids: List[str]


# Orders --------------------------------------------------------------------

@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    email: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    orders, total = await container.orders(db).list_orders(
        tenant.id, status=status, customer_email=email, search=search, limit=limit, offset=offset
    )
    return OrderListResponse(orders=[OrderResponse.model_validate(o) for o in orders], total=total)


@router.get("/orders/statistics", response_model=OrderStatisticsResponse)
async def order_statistics(
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    stats = await container.orders(db).statistics(tenant.id)
    return OrderStatisticsResponse(**stats.__dict__)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    return OrderResponse.model_validate(await container.orders(db).get_order(tenant.id, order_id))


@router.patch("/orders/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: str,
    body: OrderUpdate,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.orders(db).update_order(tenant.id, order_id, body)
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    body: StatusRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.orders(db).update_order_status(tenant.id, order_id, body.status)
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    body: CancelRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.orders(db).cancel_order(tenant.id, order_id, body.reason)
    return OrderResponse.model_validate(order)


# Catalog -------------------------------------------------------------------

@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    body: CreateProductRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    product = await container.products(db).create_product(tenant.id, **body.model_dump())
    return ProductResponse.model_validate(product)


@router.post("/products/{product_id}/variants", response_model=VariantResponse, status_code=201)
async def create_variant(
    product_id: str,
    body: CreateVariantRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    variant = await container.products(db).create_variant(tenant.id, product_id, **body.model_dump())
    return VariantResponse.model_validate(variant)


@router.post("/products/{product_id}/images", response_model=ImageResponse, status_code=201)
async def add_image(
    product_id: str,
    body: ImageRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    image = await container.products(db).add_image(tenant.id, product_id, **body.model_dump())
    return ImageResponse.model_validate(image)


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(
    product_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    await container.products(db).delete_product(tenant.id, product_id)


@router.put("/variants/{variant_id}/stock", response_model=VariantResponse)
async def set_variant_stock(
    variant_id: str,
    body: StockRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    variant = await container.stock(db).set_stock(tenant.id, variant_id, body.quantity)
    return VariantResponse.model_validate(variant)


# Categories ----------------------------------------------------------------

@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(
    parent_id: Optional[str] = Query(None),
    roots_only: bool = Query(False),
    active_only: bool = Query(False),
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    categories, total = await container.categories(db).list_categories(
        tenant.id, parent_id=parent_id, roots_only=roots_only, active_only=active_only,
        search=search, limit=limit, offset=offset,
    )
    return CategoryListResponse(categories=[CategoryResponse.model_validate(c) for c in categories], total=total)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(
    body: CreateCategoryRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    category = await container.categories(db).create_category(tenant.id, **body.model_dump())
    return CategoryResponse.model_validate(category)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    body: UpdateCategoryRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    category = await container.categories(db).update_category(tenant.id, category_id, **body.model_dump())
    return CategoryResponse.model_validate(category)


@router.put("/categories/{category_id}/parent", response_model=CategoryResponse)
async def move_category(
    category_id: str,
    body: MoveCategoryRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    category = await container.categories(db).move_category(tenant.id, category_id, body.parent_id)
    return CategoryResponse.model_validate(category)


@router.put("/categories/{category_id}/sort-order", response_model=CategoryResponse)
async def set_category_sort_order(
    category_id: str,
    body: SortOrderRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    category = await container.categories(db).update_sort_order(tenant.id, category_id, body.sort_order)
    return CategoryResponse.model_validate(category)


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    await container.categories(db).delete_category(tenant.id, category_id)


@router.put("/categories/{category_id}/products/{product_id}")
async def assign_product_to_category(
    category_id: str,
    product_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    added = await container.categories(db).assign_product(tenant.id, category_id, product_id)
    return {"category_id": category_id, "product_id": product_id, "added": added}


@router.delete("/categories/{category_id}/products/{product_id}", status_code=204)
async def remove_product_from_category(
    category_id: str,
    product_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    await container.categories(db).remove_product(tenant.id, category_id, product_id)


# Carousels -----------------------------------------------------------------

@router.get("/carousels", response_model=List[CarouselResponse])
async def list_carousels(
    placement: Optional[CarouselPlacement] = Query(None),
    active_only: bool = Query(False),
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    carousels = await container.carousels(db).list_carousels(tenant.id, placement, active_only)
    return [CarouselResponse.model_validate(c) for c in carousels]


@router.post("/carousels", response_model=CarouselResponse, status_code=201)
async def create_carousel(
    body: CreateCarouselRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    carousel = await container.carousels(db).create_carousel(tenant.id, **body.model_dump())
    return CarouselResponse.model_validate(carousel)


@router.get("/carousels/{carousel_id}", response_model=CarouselResponse)
async def get_carousel(
    carousel_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    return CarouselResponse.model_validate(await container.carousels(db).get_carousel(tenant.id, carousel_id))


@router.patch("/carousels/{carousel_id}", response_model=CarouselResponse)
async def update_carousel(
    carousel_id: str,
    body: UpdateCarouselRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    carousel = await container.carousels(db).update_carousel(tenant.id, carousel_id, **body.model_dump())
    return CarouselResponse.model_validate(carousel)


@router.delete("/carousels/{carousel_id}", status_code=204)
async def delete_carousel(
    carousel_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    await container.carousels(db).delete_carousel(tenant.id, carousel_id)


@router.post("/carousels/{carousel_id}/items", response_model=CarouselItemResponse, status_code=201)
async def add_carousel_item(
    carousel_id: str,
    body: CarouselItemData,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    item = await container.carousels(db).add_item(tenant.id, carousel_id, body)
    return CarouselItemResponse.model_validate(item)


@router.patch("/carousels/{carousel_id}/items/{item_id}", response_model=CarouselItemResponse)
async def update_carousel_item(
    carousel_id: str,
    item_id: str,
    body: CarouselItemData,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    item = await container.carousels(db).update_item(tenant.id, carousel_id, item_id, body)
    return CarouselItemResponse.model_validate(item)


@router.delete("/carousels/{carousel_id}/items/{item_id}", status_code=204)
async def delete_carousel_item(
    carousel_id: str,
    item_id: str,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    await container.carousels(db).delete_item(tenant.id, carousel_id, item_id)


@router.put("/carousels/{carousel_id}/items/order", response_model=CarouselResponse)
async def reorder_carousel_items(
    carousel_id: str,
    body: ReorderRequest,
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    carousel = await container.carousels(db).reorder_items(tenant.id, carousel_id, body.item_ids)
    return CarouselResponse.model_validate(carousel)


# Monitoring ----------------------------------------------------------------

@router.get("/monitoring")
async def monitoring(
    tenant: Tenant = Depends(require_admin_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Lock registry, rate limiter and error counters of this process, plus cart stats."""
    locks = container.mutex.statistics()
    carts = await container.carts(db).statistics(tenant.id)
    low_stock = await container.stock(db).low_stock_variants(tenant.id)
    return {
        "locks": {"total": locks.total_locks, "active": locks.active_locks},
        "rate_limit_buckets": len(container.rate_limiter),
        "errors": {
            category: {"count": counter.count, "last_seen": counter.last_seen}
            for category, counter in container.error_sink.snapshot().items()
        },
        "carts": {
            "total": carts.total_carts,
            "active": carts.active_carts,
            "total_value": str(carts.total_value),
        },
        "low_stock_variants": [{"id": v.id, "sku": v.sku, "stock": v.stock_quantity} for v in low_stock],
        "payment_circuit": container.paypal.breaker.get_status(),
    }
