"""
Order models - placed orders and their immutable line snapshots.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Text, Numeric, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin
from storefront.models.cart import CartItem, ZERO, to_money


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT.value, OrderStatus.PAID.value})
PAID_STATUSES = frozenset({
    OrderStatus.PAID.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
})


class Order(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """
    A customer order. Monetary fields hold total = subtotal + tax + shipping.
    """
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.PENDING_PAYMENT.value)

    # Customer
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20))

    # Billing address
    billing_address: Mapped[Optional[str]] = mapped_column(String(500))
    billing_city: Mapped[Optional[str]] = mapped_column(String(100))
    billing_postal_code: Mapped[Optional[str]] = mapped_column(String(20))
    billing_country: Mapped[Optional[str]] = mapped_column(String(100))

    # Totals
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    shipping_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=ZERO)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    notes: Mapped[Optional[str]] = mapped_column(Text)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_order_tenant_number"),
        Index("idx_order_tenant_status", "tenant_id", "status"),
        Index("idx_order_tenant_date", "tenant_id", "created_at"),
    )

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    def can_be_refunded(self) -> bool:
        return self.status in PAID_STATUSES

    def add_item(self, item: "OrderItem") -> None:
        self.items.append(item)

    def calculate_totals(self) -> None:
        """Recompute subtotal from the line snapshots; tax and shipping are kept."""
        self.subtotal = to_money(sum((item.total_price for item in self.items), ZERO))
        self.total_amount = to_money(
            self.subtotal + (self.tax_amount or ZERO) + (self.shipping_amount or ZERO)
        )

    def add_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    @property
    def full_billing_address(self) -> str:
        parts = [self.billing_address, self.billing_city, self.billing_postal_code, self.billing_country]
        return ", ".join(part for part in parts if part)


class OrderItem(Base, UUIDMixin, TimestampMixin):
    """
    A line in an order. Name, SKU and price are copied at purchase time so
    later catalog edits don't rewrite order history.
    """
    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    variant_id: Mapped[Optional[str]] = mapped_column(ForeignKey("product_variants.id", ondelete="SET NULL"))

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[Optional[str]] = mapped_column(String(100))
    variant_name: Mapped[Optional[str]] = mapped_column(String(255))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("idx_orderitem_order", "order_id"),
        Index("idx_orderitem_product", "product_id"),
    )

    @classmethod
    def snapshot(cls, product, variant, quantity: int, unit_price: Decimal) -> "OrderItem":
        return cls(
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            product_name=product.name,
            product_sku=variant.sku if variant is not None else product.sku,
            variant_name=variant.name if variant is not None else None,
            quantity=quantity,
            unit_price=to_money(unit_price),
            total_price=to_money(Decimal(unit_price) * quantity),
        )

    @classmethod
    def from_cart_item(cls, item: CartItem) -> "OrderItem":
        return cls.snapshot(item.product, item.variant, item.quantity, item.unit_price)
