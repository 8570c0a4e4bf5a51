"""
SQLAlchemy Models for the Storefront backend.

This package is organized by domain:
- base.py: Base class and mixins
- tenant.py: Tenant (store) model
- product.py: Product, variant, image models and the stock ledger
- cart.py: Cart and cart line models
- order.py: Order and order line models
- payment.py: Payment model
- category.py: Category tree and product membership
- carousel.py: Carousel and carousel item models

All models are re-exported from this module.
"""

# Base
from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin

# Domain models
from storefront.models.tenant import Tenant
from storefront.models.product import Product, ProductVariant, ProductImage, ProductStatus
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import Payment, PaymentStatus
from storefront.models.category import Category, product_categories
from storefront.models.carousel import (
    Carousel,
    CarouselItem,
    CarouselType,
    CarouselPlacement,
    CarouselContentType,
    CallToActionType,
    Platform,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TenantMixin",
    "TimestampMixin",
    "Tenant",
    "Product",
    "ProductVariant",
    "ProductImage",
    "ProductStatus",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Category",
    "product_categories",
    "Carousel",
    "CarouselItem",
    "CarouselType",
    "CarouselPlacement",
    "CarouselContentType",
    "CallToActionType",
    "Platform",
]
