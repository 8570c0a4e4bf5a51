"""
Order Service - turns carts (or a single product) into orders.

Order creation holds the cart lock, then the stock lock of every line (in
sorted key order), decrements stock, and writes the order header and lines.
The confirmation email and the cart clean-up afterwards are best effort:
their failures are logged and never undo the order.
"""

import hashlib
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import Settings, get_settings
from storefront.exceptions import InvalidCartStateError, NotFoundError, ValidationError
from storefront.models import Order, OrderItem, OrderStatus, Product
from storefront.models.cart import ZERO, to_money
from storefront.models.order import PAID_STATUSES
from storefront.services.cart import CartService
from storefront.services.keyed_mutex import KeyedMutex
from storefront.services.notifications import OrderNotificationService
from storefront.services.validation import ensure_valid, validate_contact, validate_quantity

logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 10


class CustomerInfo(BaseModel):
    """Who is buying and where to bill them."""
    email: str = Field(..., max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    billing_address: Optional[str] = Field(None, max_length=500)
    billing_city: Optional[str] = Field(None, max_length=100)
    billing_postal_code: Optional[str] = Field(None, max_length=20)
    billing_country: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class OrderUpdate(BaseModel):
    """Admin-editable order fields. Unset fields are left alone."""
    status: Optional[OrderStatus] = None
    customer_email: Optional[str] = Field(None, max_length=255)
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)
    billing_address: Optional[str] = Field(None, max_length=500)
    billing_city: Optional[str] = Field(None, max_length=100)
    billing_postal_code: Optional[str] = Field(None, max_length=20)
    billing_country: Optional[str] = Field(None, max_length=100)
    shipping_amount: Optional[Decimal] = Field(None, ge=0)
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


@dataclass(frozen=True)
class OrderStatistics:
    total_orders: int
    paid_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    status_breakdown: Dict[str, int] = field(default_factory=dict)


def tenant_prefix(tenant_id: str) -> str:
    """Four-digit tenant code used as the order number prefix."""
    if tenant_id.isdigit():
        return f"{int(tenant_id) % 10000:04d}"
    digest = hashlib.sha256(tenant_id.encode()).hexdigest()
    return f"{int(digest, 16) % 10000:04d}"


async def generate_order_number(
    tenant_id: str,
    exists: Callable[[str], Awaitable[bool]],
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Build ``<tenant>-<yyyymmdd>-<nnnn>``, retrying random suffixes that
    ``exists`` reports as taken. After 10 collisions the suffix falls back
    to the epoch milliseconds modulo 100000.
    """
    now = now or datetime.utcnow()
    rng = rng or random.SystemRandom()
    prefix = f"{tenant_prefix(tenant_id)}-{now.strftime('%Y%m%d')}"

    for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
        candidate = f"{prefix}-{rng.randint(1000, 9998)}"
        if not await exists(candidate):
            return candidate
        logger.debug(f"Order number {candidate} taken (attempt {attempt})")

    fallback = f"{prefix}-{int(time.time() * 1000) % 100000}"
    logger.warning(f"Order number space congested for tenant {tenant_id}, using {fallback}")
    return fallback


class OrderService:
    def __init__(
        self,
        session: AsyncSession,
        mutex: KeyedMutex,
        cart_service: CartService,
        notifier: Optional[OrderNotificationService] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.mutex = mutex
        self.carts = cart_service
        self.features = cart_service.features
        self.stock = cart_service.stock
        self.notifier = notifier
        self.settings = settings or get_settings()

    # Creation --------------------------------------------------------------

    async def _order_number_exists(self, tenant_id: str, order_number: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Order).where(
                Order.tenant_id == tenant_id, Order.order_number == order_number
            )
        )
        return result.scalar_one() > 0

    async def _insert_order(self, order: Order) -> Order:
        """Assign a unique order number and write the header."""
        async def number_and_insert() -> Order:
            order.order_number = await generate_order_number(
                order.tenant_id,
                lambda candidate: self._order_number_exists(order.tenant_id, candidate),
            )
            self.session.add(order)
            await self.session.flush()
            return order

        return await self.mutex.tenant_operation(order.tenant_id, "order-number", number_and_insert)

    @staticmethod
    def _new_order(tenant_id: str, customer: CustomerInfo, currency: str) -> Order:
        return Order(
            tenant_id=tenant_id,
            status=OrderStatus.PENDING_PAYMENT.value,
            customer_email=customer.email,
            customer_name=customer.name,
            customer_phone=customer.phone,
            billing_address=customer.billing_address,
            billing_city=customer.billing_city,
            billing_postal_code=customer.billing_postal_code,
            billing_country=customer.billing_country,
            notes=customer.notes,
            currency=currency,
            subtotal=ZERO,
            tax_amount=ZERO,
            shipping_amount=ZERO,
            total_amount=ZERO,
            items=[],
        )

    async def create_from_cart(
        self,
        tenant_id: str,
        customer: CustomerInfo,
        session_id: str,
        send_confirmation: bool = True,
    ) -> Order:
        """
        Place an order for the session cart.

        Pass ``send_confirmation=False`` when the caller commits first and
        sends the confirmation itself afterwards.
        """
        await self.features.validate_enabled(tenant_id, "create_order")
        ensure_valid(validate_contact(customer.email, customer.phone))
        cart = await self.carts.get_cart(tenant_id, session_id)
        if cart is None:
            raise InvalidCartStateError(None, "CREATE_ORDER", f"Cart not found for session: {session_id}")

        async def build() -> Order:
            if cart.is_empty:
                raise InvalidCartStateError(cart.id, "CREATE_ORDER", "Cannot create order from empty cart")

            unavailable = [item.display_name for item in cart.items if not item.is_available()]
            if unavailable:
                raise InvalidCartStateError(
                    cart.id, "CREATE_ORDER", f"Some items are no longer available: {', '.join(unavailable)}"
                )

            async def reserve_and_write() -> Order:
                for item in cart.items:
                    await self.stock.reserve(item.product, item.variant, item.quantity)

                order = self._new_order(tenant_id, customer, cart.currency)
                order.subtotal = cart.subtotal
                order.tax_amount = cart.tax_amount
                order.total_amount = cart.total_amount
                await self._insert_order(order)

                for item in cart.items:
                    order.add_item(OrderItem.from_cart_item(item))
                order.calculate_totals()
                await self.session.flush()
                return order

            stock_keys = [self.mutex.stock_key(item.product_id, item.variant_id) for item in cart.items]
            return await self.mutex.run_exclusive_many(stock_keys, reserve_and_write)

        order = await self.mutex.cart_operation(cart.id, build)
        logger.info(f"Created order {order.order_number} from cart {cart.id} (total {order.total_amount})")

        if send_confirmation:
            await self.send_order_confirmation(order)
        await self.clear_cart_after_order(tenant_id, session_id)
        return order

    async def create_direct(
        self,
        tenant_id: str,
        product_id: str,
        variant_id: Optional[str],
        quantity: int,
        customer: CustomerInfo,
        send_confirmation: bool = True,
    ) -> Order:
        """Buy-now: a single-line order that bypasses the cart."""
        await self.features.validate_enabled(tenant_id, "create_direct_order")
        ensure_valid(validate_quantity(quantity))
        ensure_valid(validate_contact(customer.email, customer.phone))

        result = await self.session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        product = result.scalar_one_or_none()
        if product is None or not product.is_active:
            raise NotFoundError("Product", product_id)

        variant = None
        if variant_id is not None:
            variant = next((v for v in product.variants if v.id == variant_id), None)
            if variant is None or not variant.is_active:
                raise NotFoundError("Product variant", variant_id)
        elif product.variants:
            raise ValidationError.single("variant_id", "This product requires a variant selection")

        unit_price = variant.price if variant is not None else product.price

        async def reserve_and_write() -> Order:
            await self.stock.reserve(product, variant, quantity)

            order = self._new_order(tenant_id, customer, product.currency or self.settings.DEFAULT_CURRENCY)
            line = OrderItem.snapshot(product, variant, quantity, unit_price)
            order.tax_amount = to_money(line.total_price * Decimal(self.settings.CART_TAX_RATE))
            await self._insert_order(order)

            order.add_item(line)
            order.calculate_totals()
            await self.session.flush()
            return order

        order = await self.stock.with_stock_lock(product.id, variant_id, reserve_and_write)
        logger.info(f"Created direct order {order.order_number} for product {product_id}")

        if send_confirmation:
            await self.send_order_confirmation(order)
        return order

    async def send_order_confirmation(self, order: Order) -> None:
        if self.notifier is None:
            logger.debug(f"No notifier configured, skipping confirmation for {order.order_number}")
            return
        await self.notifier.send_order_confirmation(order)

    async def clear_cart_after_order(self, tenant_id: str, session_id: str) -> None:
        """Best effort: a cart that fails to clear must not fail the placed order."""
        try:
            await self.carts.clear_cart(tenant_id, session_id)
        except Exception as e:
            logger.warning(f"Failed to clear cart for session {session_id[:8]}... after order: {e}")

    # Queries ---------------------------------------------------------------

    async def get_order(self, tenant_id: str, order_id: str) -> Order:
        result = await self.session.execute(
            select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def get_order_by_number(self, tenant_id: str, order_number: str) -> Order:
        result = await self.session.execute(
            select(Order).where(Order.order_number == order_number, Order.tenant_id == tenant_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_number)
        return order

    async def list_orders(
        self,
        tenant_id: str,
        status: Optional[OrderStatus] = None,
        customer_email: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Order], int]:
        filters = [Order.tenant_id == tenant_id]
        if status is not None:
            filters.append(Order.status == OrderStatus(status).value)
        if customer_email:
            filters.append(Order.customer_email == customer_email)
        if search:
            pattern = f"%{search}%"
            filters.append(or_(
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
                Order.customer_email.ilike(pattern),
            ))

        total = (await self.session.execute(
            select(func.count()).select_from(Order).where(*filters)
        )).scalar_one()
        result = await self.session.execute(
            select(Order).where(*filters).order_by(Order.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all()), total

    async def recent_orders(self, tenant_id: str, limit: int = 10) -> List[Order]:
        orders, _ = await self.list_orders(tenant_id, limit=limit)
        return orders

    async def statistics(self, tenant_id: str) -> OrderStatistics:
        rows = (await self.session.execute(
            select(Order.status, func.count(), func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.tenant_id == tenant_id)
            .group_by(Order.status)
        )).all()

        breakdown = {status: count for status, count, _ in rows}
        paid = [(count, Decimal(str(amount))) for status, count, amount in rows if status in PAID_STATUSES]
        paid_orders = sum(count for count, _ in paid)
        revenue = to_money(sum((amount for _, amount in paid), ZERO))
        average = to_money(revenue / paid_orders) if paid_orders else ZERO

        return OrderStatistics(
            total_orders=sum(breakdown.values()),
            paid_orders=paid_orders,
            total_revenue=revenue,
            average_order_value=average,
            status_breakdown=breakdown,
        )

    # Status changes --------------------------------------------------------

    async def update_order_status(self, tenant_id: str, order_id: str, new_status: OrderStatus) -> Order:
        new_status = OrderStatus(new_status)
        order = await self.get_order(tenant_id, order_id)

        async def transition() -> Order:
            if new_status == OrderStatus.CANCELLED:
                return await self.cancel_order(tenant_id, order_id)

            old_status = order.status
            order.status = new_status.value
            await self.session.flush()
            logger.info(f"Order {order.order_number} status {old_status} -> {new_status.value}")
            return order

        return await self.mutex.order_operation(order.id, transition)

    async def cancel_order(self, tenant_id: str, order_id: str, reason: Optional[str] = None) -> Order:
        """Cancel an unshipped order and put its units back in stock."""
        order = await self.get_order(tenant_id, order_id)

        async def cancel() -> Order:
            if not order.can_be_cancelled():
                raise InvalidCartStateError(
                    None, "CANCEL_ORDER", f"Order {order.order_number} cannot be cancelled in status {order.status}"
                )

            order.status = OrderStatus.CANCELLED.value
            if reason:
                order.add_note(f"Cancelled: {reason}")
            for item in order.items:
                await self.stock.restock(item.product_id, item.variant_id, item.quantity)
            await self.session.flush()
            logger.info(f"Cancelled order {order.order_number}")
            return order

        return await self.mutex.order_operation(order.id, cancel)

    async def mark_paid(self, tenant_id: str, order_id: str) -> Order:
        order = await self.get_order(tenant_id, order_id)

        async def pay() -> Order:
            if order.status == OrderStatus.PENDING_PAYMENT:
                order.status = OrderStatus.PAID.value
                await self.session.flush()
                logger.info(f"Order {order.order_number} marked as PAID")
            return order

        return await self.mutex.order_operation(order.id, pay)

    async def update_order(self, tenant_id: str, order_id: str, changes: OrderUpdate) -> Order:
        fields = changes.model_dump(exclude_unset=True)
        new_status = fields.pop("status", None)
        if "customer_email" in fields:
            ensure_valid(validate_contact(fields["customer_email"], fields.get("customer_phone")))

        order = await self.get_order(tenant_id, order_id)

        async def apply() -> Order:
            for name, value in fields.items():
                setattr(order, name, value)
            if "tax_amount" in fields or "shipping_amount" in fields:
                order.calculate_totals()
            if new_status is not None and new_status != order.status:
                await self.update_order_status(tenant_id, order_id, new_status)
            await self.session.flush()
            return order

        return await self.mutex.order_operation(order.id, apply)
