"""
Cart Service - session carts with lock-guarded mutations.

Lock order is cart -> stock -> tenant. Adding or updating a line holds the
cart lock for the whole mutation and the stock lock of the line's product or
variant around the availability check and the write, so two sessions cannot
both pass the check on the last unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import Settings, get_settings
from storefront.exceptions import InsufficientStockError, InvalidCartStateError, NotFoundError, ValidationError
from storefront.models import Cart, CartItem, Product, ProductVariant
from storefront.models.cart import ZERO
from storefront.services.keyed_mutex import KeyedMutex
from storefront.services.stock import StockService
from storefront.services.tenant_gate import EcommerceFeatureService
from storefront.services.validation import ensure_valid, validate_contact, validate_quantity

logger = logging.getLogger(__name__)

EXTEND_WHEN_EXPIRING_WITHIN = timedelta(days=1)


@dataclass(frozen=True)
class CartStatistics:
    total_carts: int
    active_carts: int
    total_value: Decimal


class CartService:
    def __init__(
        self,
        session: AsyncSession,
        mutex: KeyedMutex,
        features: EcommerceFeatureService,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.mutex = mutex
        self.features = features
        self.settings = settings or get_settings()
        self.stock = StockService(session, mutex)

    @property
    def tax_rate(self) -> Decimal:
        return Decimal(self.settings.CART_TAX_RATE)

    # Lookup ----------------------------------------------------------------

    async def _find_cart(self, tenant_id: str, session_id: str) -> Optional[Cart]:
        result = await self.session.execute(
            select(Cart).where(Cart.tenant_id == tenant_id, Cart.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_cart(self, tenant_id: str, session_id: str) -> Optional[Cart]:
        await self.features.validate_enabled(tenant_id, "get_cart")
        return await self._find_cart(tenant_id, session_id)

    async def get_or_create_cart(self, tenant_id: str, session_id: str) -> Cart:
        await self.features.validate_enabled(tenant_id, "get_or_create_cart")

        async def load_or_create() -> Cart:
            cart = await self._find_cart(tenant_id, session_id)
            if cart is not None:
                if cart.expires_within(EXTEND_WHEN_EXPIRING_WITHIN):
                    cart.extend_expiration(self.settings.CART_EXPIRATION_DAYS)
                    await self.session.flush()
                    logger.debug(f"Extended expiration of cart {cart.id}")
                return cart

            cart = Cart(
                tenant_id=tenant_id,
                session_id=session_id,
                currency=self.settings.DEFAULT_CURRENCY,
                subtotal=ZERO,
                tax_amount=ZERO,
                total_amount=ZERO,
                items=[],
            )
            cart.extend_expiration(self.settings.CART_EXPIRATION_DAYS)
            self.session.add(cart)
            await self.session.flush()
            logger.info(f"Created cart {cart.id} for session {session_id[:8]}... (tenant {tenant_id})")
            return cart

        return await self.mutex.tenant_operation(tenant_id, f"cart-session:{session_id}", load_or_create)

    async def _get_purchasable(
        self, tenant_id: str, cart: Cart, product_id: str, variant_id: Optional[str]
    ) -> tuple[Product, Optional[ProductVariant]]:
        result = await self.session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise InvalidCartStateError(cart.id, "ADD_ITEM", f"Product is not available for purchase: {product_id}")

        if variant_id is None:
            if product.variants:
                raise ValidationError.single("variant_id", "This product requires a variant selection")
            return product, None

        variant = next((v for v in product.variants if v.id == variant_id), None)
        if variant is None:
            raise NotFoundError("Product variant", variant_id)
        if not variant.is_active:
            raise InvalidCartStateError(cart.id, "ADD_ITEM", f"Variant is not available: {variant_id}")
        return product, variant

    @staticmethod
    def _ensure_stock(product: Product, variant: Optional[ProductVariant], quantity: int) -> None:
        row = variant if variant is not None else product
        if not row.can_fulfill_quantity(quantity):
            raise InsufficientStockError(
                product.id, variant.id if variant else None, quantity, row.available_quantity
            )

    # Mutations -------------------------------------------------------------

    async def add_item(
        self,
        tenant_id: str,
        session_id: str,
        product_id: str,
        variant_id: Optional[str],
        quantity: int,
    ) -> Cart:
        ensure_valid(validate_quantity(quantity))
        cart = await self.get_or_create_cart(tenant_id, session_id)
        product, variant = await self._get_purchasable(tenant_id, cart, product_id, variant_id)

        async def check_and_write() -> Cart:
            await self.stock.reload(variant if variant is not None else product)

            existing = cart.find_item(product.id, variant.id if variant else None)
            new_quantity = quantity + (existing.quantity if existing else 0)
            ensure_valid(validate_quantity(new_quantity))
            self._ensure_stock(product, variant, new_quantity)

            if existing is not None:
                existing.update_quantity(new_quantity)
            else:
                cart.items.append(CartItem(
                    product_id=product.id,
                    variant_id=variant.id if variant else None,
                    product=product,
                    variant=variant,
                    quantity=quantity,
                    unit_price=variant.price if variant is not None else product.price,
                ))

            cart.recalculate_totals(self.tax_rate)
            await self.session.flush()
            return cart

        async def guarded() -> Cart:
            return await self.stock.with_stock_lock(product.id, variant.id if variant else None, check_and_write)

        cart = await self.mutex.cart_operation(cart.id, guarded)
        logger.info(f"Added {quantity} x {product_id} to cart {cart.id}")
        return cart

    async def update_item_quantity(self, tenant_id: str, session_id: str, item_id: str, quantity: int) -> Cart:
        ensure_valid(validate_quantity(quantity))
        cart = await self._require_cart(tenant_id, session_id, "update_item_quantity")
        item = self._require_item(cart, item_id)

        async def check_and_write() -> Cart:
            await self.stock.reload(item.variant if item.variant is not None else item.product)
            self._ensure_stock(item.product, item.variant, quantity)
            item.update_quantity(quantity)
            cart.recalculate_totals(self.tax_rate)
            await self.session.flush()
            return cart

        async def guarded() -> Cart:
            return await self.stock.with_stock_lock(item.product_id, item.variant_id, check_and_write)

        return await self.mutex.cart_operation(cart.id, guarded)

    async def remove_item(self, tenant_id: str, session_id: str, item_id: str) -> Cart:
        cart = await self._require_cart(tenant_id, session_id, "remove_item")
        item = self._require_item(cart, item_id)

        async def remove() -> Cart:
            cart.items.remove(item)
            cart.recalculate_totals(self.tax_rate)
            await self.session.flush()
            return cart

        cart = await self.mutex.cart_operation(cart.id, remove)
        logger.info(f"Removed item {item_id} from cart {cart.id}")
        return cart

    async def clear_cart(self, tenant_id: str, session_id: str) -> Cart:
        cart = await self._require_cart(tenant_id, session_id, "clear_cart")

        async def clear() -> Cart:
            cart.items.clear()
            cart.recalculate_totals(self.tax_rate)
            await self.session.flush()
            return cart

        return await self.mutex.cart_operation(cart.id, clear)

    async def update_customer_email(self, tenant_id: str, session_id: str, email: str) -> Cart:
        ensure_valid(validate_contact(email))
        cart = await self._require_cart(tenant_id, session_id, "update_customer_email")

        async def update() -> Cart:
            cart.customer_email = email
            await self.session.flush()
            return cart

        return await self.mutex.cart_operation(cart.id, update)

    async def _require_cart(self, tenant_id: str, session_id: str, operation: str) -> Cart:
        await self.features.validate_enabled(tenant_id, operation)
        cart = await self._find_cart(tenant_id, session_id)
        if cart is None:
            raise NotFoundError("Cart", session_id)
        return cart

    @staticmethod
    def _require_item(cart: Cart, item_id: str) -> CartItem:
        # Lines of other carts (and other tenants) are indistinguishable from missing ones
        item = cart.get_item(item_id)
        if item is None:
            raise NotFoundError("Cart item", item_id)
        return item

    # Queries ---------------------------------------------------------------

    async def validate_availability(self, tenant_id: str, session_id: str) -> List[CartItem]:
        """Lines that can no longer be fulfilled as they stand."""
        cart = await self.get_cart(tenant_id, session_id)
        if cart is None:
            return []
        return [item for item in cart.items if not item.is_available()]

    async def statistics(self, tenant_id: str) -> CartStatistics:
        now = datetime.utcnow()
        total = (await self.session.execute(
            select(func.count()).select_from(Cart).where(Cart.tenant_id == tenant_id)
        )).scalar_one()
        active, value = (await self.session.execute(
            select(func.count(), func.coalesce(func.sum(Cart.total_amount), 0))
            .where(Cart.tenant_id == tenant_id, Cart.expires_at > now)
        )).one()
        return CartStatistics(total_carts=total, active_carts=active, total_value=Decimal(str(value)))

    async def cleanup_expired_carts(self, tenant_id: Optional[str] = None) -> int:
        """Delete expired carts (all tenants when tenant_id is None)."""
        expired = select(Cart.id).where(Cart.expires_at < datetime.utcnow())
        if tenant_id is not None:
            expired = expired.where(Cart.tenant_id == tenant_id)

        cart_ids = list((await self.session.execute(expired)).scalars().all())
        if not cart_ids:
            return 0

        await self.session.execute(delete(CartItem).where(CartItem.cart_id.in_(cart_ids)))
        await self.session.execute(delete(Cart).where(Cart.id.in_(cart_ids)))
        logger.info(f"Cleaned up {len(cart_ids)} expired carts")
        return len(cart_ids)
