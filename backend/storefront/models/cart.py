"""
Cart models - session carts and their line items.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List

from sqlalchemy import String, Integer, DateTime, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin
from storefront.models.product import Product, ProductVariant

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_TAX_RATE = Decimal("0.08")


def to_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


class Cart(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """
    A shopping cart bound to a browser session within one tenant.

    Totals are stored and recomputed from the items after every mutation.
    """
    __tablename__ = "carts"

    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    items: Mapped[List["CartItem"]] = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "session_id", name="uq_cart_tenant_session"),
        Index("idx_cart_expires", "expires_at"),
    )

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total_item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.expires_at is not None and self.expires_at < now

    def expires_within(self, delta: timedelta, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.expires_at is None or self.expires_at < now + delta

    def extend_expiration(self, days: int, now: Optional[datetime] = None) -> None:
        self.expires_at = (now or datetime.utcnow()) + timedelta(days=days)

    def find_item(self, product_id: str, variant_id: Optional[str]) -> Optional["CartItem"]:
        for item in self.items:
            if item.product_id == product_id and item.variant_id == variant_id:
                return item
        return None

    def get_item(self, item_id: str) -> Optional["CartItem"]:
        return next((item for item in self.items if item.id == item_id), None)

    def recalculate_totals(self, tax_rate: Decimal = DEFAULT_TAX_RATE) -> None:
        subtotal = sum((item.total_price for item in self.items), ZERO)
        self.subtotal = to_money(subtotal)
        self.tax_amount = to_money(self.subtotal * tax_rate)
        self.total_amount = to_money(self.subtotal + self.tax_amount)
        self.updated_at = datetime.utcnow()


class CartItem(Base, UUIDMixin, TimestampMixin):
    """A line in a cart. unit_price is captured when the line is added."""
    __tablename__ = "cart_items"

    cart_id: Mapped[str] = mapped_column(ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(ForeignKey("product_variants.id", ondelete="CASCADE"))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    cart: Mapped["Cart"] = relationship("Cart", back_populates="items")
    product: Mapped[Product] = relationship(Product, lazy="selectin")
    variant: Mapped[Optional[ProductVariant]] = relationship(ProductVariant, lazy="selectin")

    __table_args__ = (
        Index("idx_cartitem_cart", "cart_id"),
    )

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity

    @property
    def display_name(self) -> str:
        if self.variant is not None:
            return f"{self.product.name} - {self.variant.name}"
        return self.product.name

    def is_available(self) -> bool:
        """Product is on sale and the current stock covers this line."""
        if self.product is None or not self.product.is_active:
            return False
        if self.variant is not None:
            return bool(self.variant.is_active) and self.variant.can_fulfill_quantity(self.quantity)
        return self.product.can_fulfill_quantity(self.quantity)

    def update_quantity(self, quantity: int) -> None:
        self.quantity = quantity
