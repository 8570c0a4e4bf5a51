"""
Product models - catalog entries, variants, images and their stock ledger.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.exceptions import InsufficientStockError, ValidationError
from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin


class ProductStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class StockLedgerMixin:
    """
    Stock arithmetic shared by products (when sold without variants) and variants.

    The methods check and mutate in memory only; callers hold the stock lock
    for the row and flush inside it (see services.stock).
    """

    def _ledger_ids(self):
        raise NotImplementedError

    @property
    def available_quantity(self) -> int:
        return self.stock_quantity or 0

    @property
    def is_in_stock(self) -> bool:
        return self.available_quantity > 0

    def can_fulfill_quantity(self, quantity: int) -> bool:
        return self.available_quantity >= quantity

    def decrease_stock(self, quantity: int) -> None:
        if quantity <= 0 or quantity > self.available_quantity:
            product_id, variant_id = self._ledger_ids()
            raise InsufficientStockError(product_id, variant_id, quantity, self.available_quantity)
        self.stock_quantity = self.available_quantity - quantity

    def increase_stock(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError.single("quantity", "Quantity to add must be positive")
        self.stock_quantity = self.available_quantity + quantity


class Product(Base, UUIDMixin, TenantMixin, TimestampMixin, StockLedgerMixin):
    """A sellable catalog entry. Stock lives here only for products without variants."""
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(50))
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(20), default=ProductStatus.DRAFT.value)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Optimistic lock: a stale stock write fails at flush
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    variants: Mapped[List["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan", lazy="selectin",
    )
    images: Mapped[List["ProductImage"]] = relationship(
        "ProductImage", back_populates="product", cascade="all, delete-orphan", lazy="selectin",
        order_by="ProductImage.sort_order",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_product_tenant_slug"),
        Index("idx_product_tenant_status", "tenant_id", "status"),
    )

    def _ledger_ids(self):
        return self.id, None

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    @property
    def main_image(self) -> Optional["ProductImage"]:
        return next((image for image in self.images if image.is_main), None)


class ProductVariant(Base, UUIDMixin, TenantMixin, TimestampMixin, StockLedgerMixin):
    """A purchasable option of a product (size, color, ...) with its own stock."""
    __tablename__ = "product_variants"

    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_variant_tenant_sku"),
        Index("idx_variant_product", "product_id"),
    )

    def _ledger_ids(self):
        return self.product_id, self.id


class ProductImage(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """An image of a product. At most one per product is the main image."""
    __tablename__ = "product_images"

    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    alt_text: Mapped[Optional[str]] = mapped_column(String(255))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_main: Mapped[bool] = mapped_column(Boolean, default=False)

    product: Mapped["Product"] = relationship("Product", back_populates="images")
