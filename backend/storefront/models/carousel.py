"""
Carousel models - merchandising rails shown on storefront pages.
"""

from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin


class CarouselType(str, Enum):
    HERO = "HERO"
    PRODUCT = "PRODUCT"
    CATEGORY = "CATEGORY"
    # Items are the newest active products, not stored rows
    VIEW_ALL_PRODUCTS = "VIEW_ALL_PRODUCTS"


class CarouselPlacement(str, Enum):
    HEADER = "HEADER"
    HERO = "HERO"
    SIDEBAR = "SIDEBAR"
    FOOTER = "FOOTER"
    CATEGORY_PAGE = "CATEGORY_PAGE"
    PRODUCT_PAGE = "PRODUCT_PAGE"
    HOME_PAGE = "HOME_PAGE"


class Platform(str, Enum):
    WEB = "WEB"
    MOBILE = "MOBILE"
    BOTH = "BOTH"


class CarouselContentType(str, Enum):
    IMAGE = "IMAGE"
    PRODUCT = "PRODUCT"
    CATEGORY = "CATEGORY"
    BRAND = "BRAND"
    OFFER = "OFFER"
    TESTIMONIAL = "TESTIMONIAL"
    BLOG = "BLOG"


class CallToActionType(str, Enum):
    NONE = "NONE"
    LINK = "LINK"
    ADD_TO_CART = "ADD_TO_CART"


class Carousel(Base, UUIDMixin, TenantMixin, TimestampMixin):
    __tablename__ = "carousels"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    placement: Mapped[str] = mapped_column(String(30), nullable=False)
    platform: Mapped[str] = mapped_column(String(10), default=Platform.BOTH.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    max_items: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    items: Mapped[List["CarouselItem"]] = relationship(
        "CarouselItem", back_populates="carousel", cascade="all, delete-orphan", lazy="selectin",
        order_by="CarouselItem.sort_order",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_carousel_tenant_slug"),
        Index("idx_carousel_tenant_placement", "tenant_id", "placement"),
    )

    def shows_on(self, platform: Optional[str]) -> bool:
        return platform is None or self.platform in (Platform.BOTH.value, platform)


class CarouselItem(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """One slide of a carousel. Product and category references are optional."""
    __tablename__ = "carousel_items"

    carousel_id: Mapped[str] = mapped_column(ForeignKey("carousels.id", ondelete="CASCADE"), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    subtitle: Mapped[Optional[str]] = mapped_column(String(500))
    image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    link_url: Mapped[Optional[str]] = mapped_column(String(1024))
    cta_type: Mapped[str] = mapped_column(String(20), default=CallToActionType.NONE.value)
    cta_text: Mapped[Optional[str]] = mapped_column(String(100))
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    category_id: Mapped[Optional[str]] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    carousel: Mapped["Carousel"] = relationship("Carousel", back_populates="items")
