"""
Category models - the tenant's browsable category tree and product membership.
"""

from typing import Optional

from sqlalchemy import Column, String, Text, Boolean, Integer, ForeignKey, Index, Table, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin

# Membership is many-to-many; a product may sit in several categories
product_categories = Table(
    "product_categories",
    Base.metadata,
    Column("category_id", ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """
    A node of the category tree. Roots have no parent.

    Ancestry is walked through parent_id by CategoryService.
    """
    __tablename__ = "categories"

    parent_id: Mapped[Optional[str]] = mapped_column(ForeignKey("categories.id", ondelete="RESTRICT"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_category_tenant_slug"),
        Index("idx_category_tenant_parent", "tenant_id", "parent_id"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
