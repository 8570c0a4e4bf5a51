"""
Carousel Service - merchandising rails for storefront pages.

Admins build carousels per placement (home page, product page, ...) and fill
them with items. Product and category references on items must belong to the
same tenant. The storefront sees active carousels and their active items only.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import ConflictError, NotFoundError, ValidationError
from storefront.models import (
    CallToActionType,
    Carousel,
    CarouselContentType,
    CarouselItem,
    CarouselPlacement,
    CarouselType,
    Category,
    Platform,
    Product,
    ProductStatus,
)
from storefront.services.validation import ensure_valid, validate_carousel_data

logger = logging.getLogger(__name__)

E = TypeVar("E")


class CarouselItemData(BaseModel):
    """Editable item fields. Unset fields are left alone on update."""
    content_type: Optional[CarouselContentType] = None
    title: Optional[str] = Field(None, max_length=255)
    subtitle: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, max_length=1024)
    link_url: Optional[str] = Field(None, max_length=1024)
    cta_type: Optional[CallToActionType] = None
    cta_text: Optional[str] = Field(None, max_length=100)
    product_id: Optional[str] = None
    category_id: Optional[str] = None
    is_active: Optional[bool] = None


@dataclass
class Slide:
    item: Optional[CarouselItem] = None
    product: Optional[Product] = None


@dataclass
class StorefrontCarousel:
    carousel: Carousel
    slides: List[Slide] = field(default_factory=list)


def _coerce(enum_cls: Type[E], value, field_name: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError.single(field_name, f"Must be one of: {allowed}") from None


def check_item_content(item: CarouselItem) -> None:
    """
    Each content type needs its payload, and each call to action its target.

    Raises:
        ValidationError: on the first missing field.
    """
    content_type = CarouselContentType(item.content_type)
    if content_type == CarouselContentType.IMAGE and not item.image_url:
        raise ValidationError.single("image_url", "Image URL is required for IMAGE items")
    if content_type == CarouselContentType.PRODUCT and not item.product_id:
        raise ValidationError.single("product_id", "Product is required for PRODUCT items")
    if content_type == CarouselContentType.CATEGORY and not item.category_id:
        raise ValidationError.single("category_id", "Category is required for CATEGORY items")
    if content_type in (CarouselContentType.BRAND, CarouselContentType.OFFER,
                        CarouselContentType.TESTIMONIAL, CarouselContentType.BLOG) and not item.title:
        raise ValidationError.single("title", f"Title is required for {content_type.value} items")

    cta_type = CallToActionType(item.cta_type)
    if cta_type == CallToActionType.ADD_TO_CART and not item.product_id:
        raise ValidationError.single("product_id", "ADD_TO_CART needs a product")
    if cta_type == CallToActionType.LINK and not item.link_url:
        raise ValidationError.single("link_url", "LINK needs a link URL")


class CarouselService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # Carousels -------------------------------------------------------------

    async def create_carousel(
        self,
        tenant_id: str,
        name: str,
        slug: str,
        type: CarouselType,
        placement: CarouselPlacement,
        platform: Platform = Platform.BOTH,
        max_items: int = 10,
        is_active: bool = True,
    ) -> Carousel:
        ensure_valid(validate_carousel_data(name, slug, max_items))
        type = _coerce(CarouselType, type, "type")
        placement = _coerce(CarouselPlacement, placement, "placement")
        platform = _coerce(Platform, platform, "platform")

        if await self._slug_taken(tenant_id, slug):
            raise ConflictError(f"A carousel with slug '{slug}' already exists")

        carousel = Carousel(
            tenant_id=tenant_id,
            name=name.strip(),
            slug=slug,
            type=type.value,
            placement=placement.value,
            platform=platform.value,
            max_items=max_items,
            is_active=is_active,
            items=[],
        )
        self.session.add(carousel)
        await self.session.flush()

        logger.info(f"Created carousel {carousel.id} ({slug}) at {placement.value} for tenant {tenant_id}")
        return carousel

    async def _slug_taken(self, tenant_id: str, slug: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Carousel).where(Carousel.tenant_id == tenant_id, Carousel.slug == slug)
        )
        return result.scalar_one() > 0

    async def get_carousel(self, tenant_id: str, carousel_id: str) -> Carousel:
        result = await self.session.execute(
            select(Carousel).where(Carousel.id == carousel_id, Carousel.tenant_id == tenant_id)
        )
        carousel = result.scalar_one_or_none()
        if carousel is None:
            raise NotFoundError("Carousel", carousel_id)
        return carousel

    async def get_by_slug(self, tenant_id: str, slug: str) -> Carousel:
        result = await self.session.execute(
            select(Carousel).where(Carousel.slug == slug, Carousel.tenant_id == tenant_id)
        )
        carousel = result.scalar_one_or_none()
        if carousel is None:
            raise NotFoundError("Carousel", slug)
        return carousel

    async def list_carousels(
        self,
        tenant_id: str,
        placement: Optional[CarouselPlacement] = None,
        active_only: bool = False,
    ) -> List[Carousel]:
        filters = [Carousel.tenant_id == tenant_id]
        if placement is not None:
            filters.append(Carousel.placement == _coerce(CarouselPlacement, placement, "placement").value)
        if active_only:
            filters.append(Carousel.is_active.is_(True))
        result = await self.session.execute(select(Carousel).where(*filters).order_by(Carousel.name))
        return list(result.scalars().all())

    async def update_carousel(
        self,
        tenant_id: str,
        carousel_id: str,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        type: Optional[CarouselType] = None,
        placement: Optional[CarouselPlacement] = None,
        platform: Optional[Platform] = None,
        is_active: Optional[bool] = None,
        max_items: Optional[int] = None,
    ) -> Carousel:
        carousel = await self.get_carousel(tenant_id, carousel_id)
        ensure_valid(validate_carousel_data(
            name if name is not None else carousel.name,
            slug if slug is not None else carousel.slug,
            max_items,
        ))

        if slug is not None and slug != carousel.slug:
            if await self._slug_taken(tenant_id, slug):
                raise ConflictError(f"A carousel with slug '{slug}' already exists")
            carousel.slug = slug
        if name is not None:
            carousel.name = name.strip()
        if type is not None:
            carousel.type = _coerce(CarouselType, type, "type").value
        if placement is not None:
            carousel.placement = _coerce(CarouselPlacement, placement, "placement").value
        if platform is not None:
            carousel.platform = _coerce(Platform, platform, "platform").value
        if is_active is not None:
            carousel.is_active = is_active
        if max_items is not None:
            carousel.max_items = max_items

        await self.session.flush()
        return carousel

    async def delete_carousel(self, tenant_id: str, carousel_id: str) -> None:
        carousel = await self.get_carousel(tenant_id, carousel_id)
        await self.session.delete(carousel)
        await self.session.flush()
        logger.info(f"Deleted carousel {carousel_id} for tenant {tenant_id}")

    # Items -----------------------------------------------------------------

    async def _check_references(self, tenant_id: str, product_id: Optional[str], category_id: Optional[str]) -> None:
        if product_id is not None:
            found = await self.session.scalar(
                select(func.count()).select_from(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
            )
            if not found:
                raise NotFoundError("Product", product_id)
        if category_id is not None:
            found = await self.session.scalar(
                select(func.count()).select_from(Category).where(
                    Category.id == category_id, Category.tenant_id == tenant_id
                )
            )
            if not found:
                raise NotFoundError("Category", category_id)

    async def add_item(self, tenant_id: str, carousel_id: str, data: CarouselItemData) -> CarouselItem:
        """
        Append an item to a carousel.

        Raises:
            ValidationError: Missing content type, or content that does not
                match it (see check_item_content).
            NotFoundError: Unknown carousel, or a product/category reference
                outside the tenant.
        """
        if data.content_type is None:
            raise ValidationError.single("content_type", "Content type is required")

        carousel = await self.get_carousel(tenant_id, carousel_id)
        await self._check_references(tenant_id, data.product_id, data.category_id)

        fields = data.model_dump(exclude_none=True)
        fields["content_type"] = data.content_type.value
        fields["cta_type"] = (data.cta_type or CallToActionType.NONE).value
        fields.setdefault("is_active", True)

        item = CarouselItem(
            tenant_id=tenant_id,
            carousel_id=carousel.id,
            sort_order=max((i.sort_order for i in carousel.items), default=-1) + 1,
            **fields,
        )
        check_item_content(item)

        carousel.items.append(item)
        await self.session.flush()
        return item

    def _find_item(self, carousel: Carousel, item_id: str) -> CarouselItem:
        item = next((i for i in carousel.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Carousel item", item_id)
        return item

    async def update_item(self, tenant_id: str, carousel_id: str, item_id: str,
                          changes: CarouselItemData) -> CarouselItem:
        carousel = await self.get_carousel(tenant_id, carousel_id)
        item = self._find_item(carousel, item_id)

        fields = changes.model_dump(exclude_unset=True)
        for enum_field in ("content_type", "cta_type"):
            if fields.get(enum_field, "") is None:
                del fields[enum_field]
        await self._check_references(tenant_id, fields.get("product_id"), fields.get("category_id"))
        for name, value in fields.items():
            if isinstance(value, (CarouselContentType, CallToActionType)):
                value = value.value
            setattr(item, name, value)
        check_item_content(item)

        await self.session.flush()
        return item

    async def delete_item(self, tenant_id: str, carousel_id: str, item_id: str) -> None:
        carousel = await self.get_carousel(tenant_id, carousel_id)
        carousel.items.remove(self._find_item(carousel, item_id))
        await self.session.flush()

    async def reorder_items(self, tenant_id: str, carousel_id: str, item_ids: List[str]) -> Carousel:
        """Set the item order. ``item_ids`` must list every item of the carousel once."""
        carousel = await self.get_carousel(tenant_id, carousel_id)
        by_id: Dict[str, CarouselItem] = {item.id: item for item in carousel.items}
        if len(item_ids) != len(by_id) or set(item_ids) != set(by_id):
            raise ValidationError.single("item_ids", "Item ids must list every item of the carousel exactly once")

        for position, item_id in enumerate(item_ids):
            by_id[item_id].sort_order = position
        carousel.items.sort(key=lambda item: item.sort_order)
        await self.session.flush()
        return carousel

    # Storefront ------------------------------------------------------------

    async def storefront_carousels(
        self,
        tenant_id: str,
        placement: Optional[CarouselPlacement] = None,
        platform: Optional[Platform] = None,
    ) -> List[StorefrontCarousel]:
        """
        Active carousels for a page, with what each one should show.

        VIEW_ALL_PRODUCTS carousels show the newest active products. Others
        show their active items; items pointing at a product that is no
        longer active are left out.
        """
        platform_value = _coerce(Platform, platform, "platform").value if platform is not None else None
        carousels = [
            c for c in await self.list_carousels(tenant_id, placement, active_only=True)
            if c.shows_on(platform_value)
        ]

        views = []
        for carousel in carousels:
            if carousel.type == CarouselType.VIEW_ALL_PRODUCTS.value:
                slides = [Slide(product=p) for p in await self._newest_products(tenant_id, carousel.max_items)]
            else:
                slides = await self._item_slides(tenant_id, carousel)
            views.append(StorefrontCarousel(carousel, slides))
        return views

    async def _newest_products(self, tenant_id: str, limit: int) -> List[Product]:
        result = await self.session.execute(
            select(Product)
            .where(Product.tenant_id == tenant_id, Product.status == ProductStatus.ACTIVE.value)
            .order_by(Product.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _item_slides(self, tenant_id: str, carousel: Carousel) -> List[Slide]:
        items = [item for item in carousel.items if item.is_active]
        product_ids = {item.product_id for item in items if item.product_id}
        products: Dict[str, Product] = {}
        if product_ids:
            result = await self.session.execute(
                select(Product).where(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
            )
            products = {p.id: p for p in result.scalars().all()}

        slides = []
        for item in items:
            product = products.get(item.product_id) if item.product_id else None
            if item.product_id and (product is None or not product.is_active):
                continue
            slides.append(Slide(item=item, product=product))
        return slides[:carousel.max_items]
