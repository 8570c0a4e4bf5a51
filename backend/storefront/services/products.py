"""
Product Service - catalog management for a tenant.

All lookups are scoped by tenant_id; another tenant's product is reported as
not found.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import ConflictError, NotFoundError
from storefront.models import Product, ProductImage, ProductStatus, ProductVariant
from storefront.services.validation import (
    ensure_valid,
    validate_product_data,
    validate_variant_data,
)

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, session: AsyncSession, default_currency: str = "USD"):
        self.session = session
        self.default_currency = default_currency

    # Products --------------------------------------------------------------

    async def create_product(
        self,
        tenant_id: str,
        name: str,
        slug: str,
        price: Decimal,
        sku: Optional[str] = None,
        description: Optional[str] = None,
        stock_quantity: int = 0,
        status: ProductStatus = ProductStatus.DRAFT,
    ) -> Product:
        ensure_valid(validate_product_data(name, slug, price, sku, description, stock_quantity))

        if await self._exists(Product, tenant_id, Product.slug == slug):
            raise ConflictError(f"A product with slug '{slug}' already exists")
        if sku and await self._exists(Product, tenant_id, Product.sku == sku):
            raise ConflictError(f"A product with SKU '{sku}' already exists")

        product = Product(
            tenant_id=tenant_id,
            name=name.strip(),
            slug=slug,
            sku=sku,
            description=description,
            price=price,
            currency=self.default_currency,
            status=ProductStatus(status).value,
            stock_quantity=stock_quantity,
            variants=[],
            images=[],
        )
        self.session.add(product)
        await self.session.flush()

        logger.info(f"Created product {product.id} ({slug}) for tenant {tenant_id}")
        return product

    async def _exists(self, model, tenant_id: str, *criteria) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(model).where(model.tenant_id == tenant_id, *criteria)
        )
        return result.scalar_one() > 0

    async def get_product(self, tenant_id: str, product_id: str) -> Product:
        result = await self.session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def get_active_product(self, tenant_id: str, product_id: str) -> Product:
        product = await self.get_product(tenant_id, product_id)
        if not product.is_active:
            raise NotFoundError("Product", product_id)
        return product

    async def list_products(
        self,
        tenant_id: str,
        active_only: bool = False,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Product], int]:
        filters = [Product.tenant_id == tenant_id]
        if active_only:
            filters.append(Product.status == ProductStatus.ACTIVE.value)
        if search:
            filters.append(Product.name.ilike(f"%{search}%"))

        total = (await self.session.execute(
            select(func.count()).select_from(Product).where(*filters)
        )).scalar_one()

        result = await self.session.execute(
            select(Product).where(*filters).order_by(Product.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total

    async def update_status(self, tenant_id: str, product_id: str, status: ProductStatus) -> Product:
        product = await self.get_product(tenant_id, product_id)
        product.status = ProductStatus(status).value
        await self.session.flush()
        logger.info(f"Product {product_id} status -> {product.status}")
        return product

    async def delete_product(self, tenant_id: str, product_id: str) -> None:
        product = await self.get_product(tenant_id, product_id)
        await self.session.delete(product)
        await self.session.flush()
        logger.info(f"Deleted product {product_id} for tenant {tenant_id}")

    # Variants --------------------------------------------------------------

    async def create_variant(
        self,
        tenant_id: str,
        product_id: str,
        sku: str,
        name: str,
        price: Decimal,
        stock_quantity: int = 0,
        compare_at_price: Optional[Decimal] = None,
    ) -> ProductVariant:
        ensure_valid(validate_variant_data(sku, name, price, stock_quantity))
        product = await self.get_product(tenant_id, product_id)

        if await self._exists(ProductVariant, tenant_id, ProductVariant.sku == sku):
            raise ConflictError(f"A variant with SKU '{sku}' already exists")

        variant = ProductVariant(
            tenant_id=tenant_id,
            product_id=product.id,
            sku=sku,
            name=name,
            price=price,
            compare_at_price=compare_at_price,
            stock_quantity=stock_quantity,
            is_active=True,
        )
        product.variants.append(variant)
        await self.session.flush()

        logger.info(f"Created variant {variant.id} ({sku}) for product {product_id}")
        return variant

    async def get_variant(self, tenant_id: str, product_id: str, variant_id: str) -> ProductVariant:
        product = await self.get_product(tenant_id, product_id)
        variant = next((v for v in product.variants if v.id == variant_id), None)
        if variant is None:
            raise NotFoundError("Product variant", variant_id)
        return variant

    # Images ----------------------------------------------------------------

    async def add_image(
        self,
        tenant_id: str,
        product_id: str,
        url: str,
        alt_text: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> ProductImage:
        product = await self.get_product(tenant_id, product_id)

        if sort_order is None:
            sort_order = max((image.sort_order for image in product.images), default=-1) + 1

        image = ProductImage(
            tenant_id=tenant_id,
            product_id=product.id,
            url=url,
            alt_text=alt_text,
            sort_order=sort_order,
            is_main=not product.images,
        )
        product.images.append(image)
        await self.session.flush()
        return image

    async def _get_image(self, tenant_id: str, image_id: str) -> ProductImage:
        result = await self.session.execute(
            select(ProductImage).where(ProductImage.id == image_id, ProductImage.tenant_id == tenant_id)
        )
        image = result.scalar_one_or_none()
        if image is None:
            raise NotFoundError("Product image", image_id)
        return image

    async def set_main_image(self, tenant_id: str, image_id: str) -> ProductImage:
        image = await self._get_image(tenant_id, image_id)
        product = await self.get_product(tenant_id, image.product_id)
        for other in product.images:
            other.is_main = other.id == image.id
        await self.session.flush()
        return image

    async def ensure_main_image(self, tenant_id: str, product_id: str) -> Optional[ProductImage]:
        """
        Make sure a product with images has exactly one main image.

        Promotes the lowest sort order image when none is main. Running it
        again changes nothing.
        """
        product = await self.get_product(tenant_id, product_id)
        if not product.images:
            return None

        current = product.main_image
        if current is None:
            current = min(product.images, key=lambda image: image.sort_order)
        for image in product.images:
            image.is_main = image is current
        await self.session.flush()
        return current

    async def delete_image(self, tenant_id: str, image_id: str) -> None:
        image = await self._get_image(tenant_id, image_id)
        product = await self.get_product(tenant_id, image.product_id)
        was_main = image.is_main

        product.images.remove(image)
        await self.session.flush()

        if was_main:
            await self.ensure_main_image(tenant_id, product.id)
