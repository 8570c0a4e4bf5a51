"""
API response models shared by the public and admin routers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel


class VariantResponse(BaseModel):
    id: str
    sku: str
    name: str
    price: Decimal
    compare_at_price: Optional[Decimal]
    stock_quantity: int
    is_in_stock: bool
    is_active: bool

    class Config:
        from_attributes = True


class ImageResponse(BaseModel):
    id: str
    url: str
    alt_text: Optional[str]
    sort_order: int
    is_main: bool

    class Config:
        from_attributes = True


class ProductResponse(BaseModel):
    id: str
    name: str
    slug: str
    sku: Optional[str]
    description: Optional[str]
    price: Decimal
    currency: str
    status: str
    stock_quantity: int
    is_in_stock: bool
    variants: List[VariantResponse] = []
    images: List[ImageResponse] = []

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int


class CartItemResponse(BaseModel):
    id: str
    product_id: str
    variant_id: Optional[str]
    display_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    id: str
    session_id: str
    customer_email: Optional[str]
    items: List[CartItemResponse]
    total_item_count: int
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    expires_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: str
    product_id: Optional[str]
    variant_id: Optional[str]
    product_name: str
    product_sku: Optional[str]
    variant_name: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    order_number: str
    status: str
    customer_email: str
    customer_name: str
    customer_phone: Optional[str]
    full_billing_address: str
    items: List[OrderItemResponse]
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    currency: str
    notes: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int


class OrderStatisticsResponse(BaseModel):
    total_orders: int
    paid_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    status_breakdown: Dict[str, int]


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    provider_order_id: Optional[str]
    status: str
    amount: Decimal
    currency: str
    approval_url: Optional[str] = None

    class Config:
        from_attributes = True


class CategoryResponse(BaseModel):
    id: str
    parent_id: Optional[str]
    name: str
    slug: str
    description: Optional[str]
    sort_order: int
    is_active: bool

    class Config:
        from_attributes = True


class CategoryListResponse(BaseModel):
    categories: List[CategoryResponse]
    total: int


class CategoryDetailResponse(CategoryResponse):
    path: str
    children: List[CategoryResponse] = []


class CarouselItemResponse(BaseModel):
    id: str
    content_type: str
    title: Optional[str]
    subtitle: Optional[str]
    image_url: Optional[str]
    link_url: Optional[str]
    cta_type: str
    cta_text: Optional[str]
    product_id: Optional[str]
    category_id: Optional[str]
    sort_order: int
    is_active: bool

    class Config:
        from_attributes = True


class CarouselResponse(BaseModel):
    id: str
    name: str
    slug: str
    type: str
    placement: str
    platform: str
    is_active: bool
    max_items: int
    items: List[CarouselItemResponse] = []

    class Config:
        from_attributes = True


class StorefrontSlideResponse(BaseModel):
    """A carousel item as shown to visitors. Dynamic product rails have no item id."""
    id: Optional[str] = None
    content_type: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    link_url: Optional[str] = None
    cta_type: str = "NONE"
    cta_text: Optional[str] = None
    category_id: Optional[str] = None
    product: Optional[ProductResponse] = None


class StorefrontCarouselResponse(BaseModel):
    id: str
    name: str
    slug: str
    type: str
    placement: str
    platform: str
    items: List[StorefrontSlideResponse]
