"""
Public Carousels Router.

Carousels for a storefront page, filtered by placement and platform.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import CarouselContentType, CarouselPlacement, Platform, Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, rate_limited
from storefront.schemas import (
    CarouselItemResponse,
    ProductResponse,
    StorefrontCarouselResponse,
    StorefrontSlideResponse,
)
from storefront.services.carousels import Slide, StorefrontCarousel

router = APIRouter()


def _slide_response(slide: Slide) -> StorefrontSlideResponse:
    product = ProductResponse.model_validate(slide.product) if slide.product else None
    if slide.item is None:
        return StorefrontSlideResponse(content_type=CarouselContentType.PRODUCT.value, product=product)
    item = CarouselItemResponse.model_validate(slide.item).model_dump(
        exclude={"product_id", "sort_order", "is_active"}
    )
    return StorefrontSlideResponse(**item, product=product)


def _carousel_response(view: StorefrontCarousel) -> StorefrontCarouselResponse:
    carousel = view.carousel
    return StorefrontCarouselResponse(
        id=carousel.id,
        name=carousel.name,
        slug=carousel.slug,
        type=carousel.type,
        placement=carousel.placement,
        platform=carousel.platform,
        items=[_slide_response(slide) for slide in view.slides],
    )


@router.get("", response_model=List[StorefrontCarouselResponse], dependencies=[Depends(rate_limited("product"))])
async def list_carousels(
    placement: Optional[CarouselPlacement] = Query(None),
    platform: Optional[Platform] = Query(None),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    views = await container.carousels(db).storefront_carousels(tenant.id, placement, platform)
    return [_carousel_response(view) for view in views]
