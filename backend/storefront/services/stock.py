"""
Stock service - lock-guarded mutations of the stock ledger.

Every check-then-write on a stock row runs inside the keyed mutex under
``stock:<product>:<variant|default>``. Inside the lock the row is re-read,
the ledger method applied and the change flushed; the version column turns a
write racing another process into a ConflictError instead of an oversell.
"""

import logging
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storefront.exceptions import ConflictError, NotFoundError, ValidationError
from storefront.models import Product, ProductVariant
from storefront.services.keyed_mutex import KeyedMutex

logger = logging.getLogger(__name__)

T = TypeVar("T")
StockRow = Union[Product, ProductVariant]


class StockService:
    def __init__(self, session: AsyncSession, mutex: KeyedMutex):
        self.session = session
        self.mutex = mutex

    async def get_variant(self, tenant_id: str, variant_id: str) -> ProductVariant:
        result = await self.session.execute(
            select(ProductVariant).where(
                ProductVariant.id == variant_id,
                ProductVariant.tenant_id == tenant_id,
            )
        )
        variant = result.scalar_one_or_none()
        if variant is None:
            raise NotFoundError("Product variant", variant_id)
        return variant

    async def with_stock_lock(
        self,
        product_id: str,
        variant_id: Optional[str],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        return await self.mutex.stock_operation(product_id, variant_id, operation)

    async def reload(self, row: StockRow) -> None:
        """Re-read the stock columns; call with the row's stock lock held."""
        await self.session.refresh(row, attribute_names=["stock_quantity", "version"])

    async def _flush(self, row: StockRow) -> None:
        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.warning(f"Concurrent stock update detected for {row.id}: {e}")
            raise ConflictError("Stock was modified concurrently, please retry") from e

    @staticmethod
    def _row(product: Product, variant: Optional[ProductVariant]) -> StockRow:
        return variant if variant is not None else product

    async def reserve(self, product: Product, variant: Optional[ProductVariant], quantity: int) -> StockRow:
        """Decrement stock for a sale. Safe to call while already holding the same lock."""
        row = self._row(product, variant)

        async def decrement():
            await self.reload(row)
            row.decrease_stock(quantity)
            await self._flush(row)
            return row

        row = await self.with_stock_lock(product.id, variant.id if variant else None, decrement)
        logger.info(f"Reserved {quantity} of {row.id}, {row.stock_quantity} left")
        return row

    async def restock(self, product_id: Optional[str], variant_id: Optional[str], quantity: int) -> Optional[StockRow]:
        """Put units back, e.g. for a cancelled order. Rows deleted since are skipped."""
        if product_id is None:
            return None

        row: Optional[StockRow]
        if variant_id is not None:
            row = await self.session.get(ProductVariant, variant_id)
        else:
            row = await self.session.get(Product, product_id)
        if row is None:
            logger.warning(f"Skipping restock of {quantity}: product {product_id} / variant {variant_id} no longer exists")
            return None

        async def increment():
            await self.reload(row)
            row.increase_stock(quantity)
            await self._flush(row)
            return row

        return await self.with_stock_lock(product_id, variant_id, increment)

    # Admin operations ------------------------------------------------------

    async def decrease_stock(self, tenant_id: str, variant_id: str, quantity: int) -> ProductVariant:
        variant = await self.get_variant(tenant_id, variant_id)

        async def decrement():
            await self.reload(variant)
            variant.decrease_stock(quantity)
            await self._flush(variant)
            return variant

        return await self.with_stock_lock(variant.product_id, variant.id, decrement)

    async def increase_stock(self, tenant_id: str, variant_id: str, quantity: int) -> ProductVariant:
        variant = await self.get_variant(tenant_id, variant_id)

        async def increment():
            await self.reload(variant)
            variant.increase_stock(quantity)
            await self._flush(variant)
            return variant

        return await self.with_stock_lock(variant.product_id, variant.id, increment)

    async def set_stock(self, tenant_id: str, variant_id: str, quantity: int) -> ProductVariant:
        if quantity < 0:
            raise ValidationError.single("quantity", "Stock quantity cannot be negative")
        variant = await self.get_variant(tenant_id, variant_id)

        async def overwrite():
            await self.reload(variant)
            previous = variant.stock_quantity
            variant.stock_quantity = quantity
            await self._flush(variant)
            logger.info(f"Stock for variant {variant.id} set {previous} -> {quantity}")
            return variant

        return await self.with_stock_lock(variant.product_id, variant.id, overwrite)

    async def can_fulfill_quantity(self, tenant_id: str, variant_id: str, quantity: int) -> bool:
        variant = await self.get_variant(tenant_id, variant_id)
        return bool(variant.is_active) and variant.can_fulfill_quantity(quantity)

    async def low_stock_variants(self, tenant_id: str, threshold: int = 5) -> List[ProductVariant]:
        result = await self.session.execute(
            select(ProductVariant)
            .where(
                ProductVariant.tenant_id == tenant_id,
                ProductVariant.is_active.is_(True),
                ProductVariant.stock_quantity <= threshold,
            )
            .order_by(ProductVariant.stock_quantity)
        )
        return list(result.scalars().all())
