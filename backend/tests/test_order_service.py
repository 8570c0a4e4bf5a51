"""
Tests for OrderService: order numbers, checkout, cancellation and stats.
"""

import random
import re
from datetime import datetime
from decimal import Decimal

import pytest

from storefront.exceptions import (
    InsufficientStockError,
    InvalidCartStateError,
    LockOperationFailedError,
    NotFoundError,
    ValidationError,
)
from storefront.models import Order, OrderStatus
from storefront.services.orders import CustomerInfo, OrderUpdate, generate_order_number, tenant_prefix

from conftest import make_product

SESSION = "session-0001"
NUMBER_PATTERN = re.compile(r"^\d{4}-\d{8}-\d{4,5}$")


class TestOrderNumbers:
    def test_tenant_prefix(self):
        assert tenant_prefix("42") == "0042"
        assert tenant_prefix("123456") == "3456"
        uuid_prefix = tenant_prefix("7f9c2ba4-e88f-4d2b-9c1e-0a1b2c3d4e5f")
        assert len(uuid_prefix) == 4 and uuid_prefix.isdigit()
        assert uuid_prefix == tenant_prefix("7f9c2ba4-e88f-4d2b-9c1e-0a1b2c3d4e5f")

    @pytest.mark.asyncio
    async def test_format(self):
        async def never_taken(candidate):
            return False

        number = await generate_order_number("42", never_taken, now=datetime(2024, 3, 9))

        assert number.startswith("0042-20240309-")
        assert 1000 <= int(number.rsplit("-", 1)[1]) <= 9998

    @pytest.mark.asyncio
    async def test_retries_until_free(self):
        calls = []

        async def taken_nine_times(candidate):
            calls.append(candidate)
            return len(calls) < 10

        number = await generate_order_number("42", taken_nine_times, rng=random.Random(7))

        assert len(calls) == 10
        assert number == calls[-1]

    @pytest.mark.asyncio
    async def test_falls_back_after_ten_collisions(self):
        calls = []

        async def always_taken(candidate):
            calls.append(candidate)
            return True

        number = await generate_order_number("42", always_taken, now=datetime(2024, 3, 9))

        assert len(calls) == 10
        assert number.startswith("0042-20240309-")
        assert number not in calls
        assert number.rsplit("-", 1)[1].isdigit()

    @pytest.mark.asyncio
    async def test_numbers_are_unique_within_a_day(self):
        issued = set()

        async def exists(candidate):
            return candidate in issued

        for _ in range(100):
            issued.add(await generate_order_number("42", exists))

        assert len(issued) == 100


@pytest.mark.asyncio
class TestCreateFromCart:
    async def test_checkout_decrements_stock_and_clears_cart(
        self, order_service, cart_service, tenant, product, variant, customer
    ):
        await cart_service.add_item(tenant.id, SESSION, product.id, variant.id, 3)

        order = await order_service.create_from_cart(tenant.id, customer, SESSION)

        assert NUMBER_PATTERN.match(order.order_number)
        assert order.status == OrderStatus.PENDING_PAYMENT.value
        assert order.subtotal == Decimal("37.50")
        assert order.tax_amount == Decimal("3.00")
        assert order.total_amount == Decimal("40.50")
        assert order.customer_email == "jane@example.com"

        line = order.items[0]
        assert line.product_name == "Classic Tee"
        assert line.product_sku == "TEE-M"
        assert line.quantity == 3
        assert line.total_price == Decimal("37.50")

        assert variant.stock_quantity == 7
        cart = await cart_service.get_cart(tenant.id, SESSION)
        assert cart.is_empty

    async def test_empty_cart_is_rejected(self, order_service, cart_service, tenant, customer):
        await cart_service.get_or_create_cart(tenant.id, SESSION)

        with pytest.raises(LockOperationFailedError) as exc_info:
            await order_service.create_from_cart(tenant.id, customer, SESSION)

        assert isinstance(exc_info.value.cause, InvalidCartStateError)
        assert exc_info.value.status_code == 400

    async def test_missing_cart_is_rejected(self, order_service, tenant, customer):
        with pytest.raises(InvalidCartStateError):
            await order_service.create_from_cart(tenant.id, customer, "no-such-session")

    async def test_line_no_longer_in_stock(
        self, db_session, order_service, cart_service, tenant, product, variant, customer
    ):
        await cart_service.add_item(tenant.id, SESSION, product.id, variant.id, 5)
        variant.stock_quantity = 4
        await db_session.flush()

        with pytest.raises(LockOperationFailedError) as exc_info:
            await order_service.create_from_cart(tenant.id, customer, SESSION)

        assert isinstance(exc_info.value.cause, InvalidCartStateError)
        assert variant.stock_quantity == 4

    async def test_invalid_email_is_rejected(self, order_service, cart_service, tenant, product, variant):
        await cart_service.add_item(tenant.id, SESSION, product.id, variant.id, 1)
        bad = CustomerInfo(email="nope", name="Jane")

        with pytest.raises(ValidationError):
            await order_service.create_from_cart(tenant.id, bad, SESSION)

        assert variant.stock_quantity == 10


@pytest.mark.asyncio
class TestCreateDirect:
    async def test_buy_now_applies_tax(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 2, customer)

        assert order.subtotal == Decimal("25.00")
        assert order.tax_amount == Decimal("2.00")
        assert order.total_amount == Decimal("27.00")
        assert len(order.items) == 1
        assert variant.stock_quantity == 8

    async def test_buy_now_beyond_stock(self, order_service, tenant, product, variant, customer):
        with pytest.raises(LockOperationFailedError) as exc_info:
            await order_service.create_direct(tenant.id, product.id, variant.id, 11, customer)

        assert isinstance(exc_info.value.cause, InsufficientStockError)
        assert variant.stock_quantity == 10

    async def test_buy_now_requires_variant(self, order_service, tenant, product, customer):
        with pytest.raises(ValidationError):
            await order_service.create_direct(tenant.id, product.id, None, 1, customer)

    async def test_buy_now_product_without_variants(self, db_session, order_service, tenant, customer):
        mug = await make_product(db_session, tenant, "mug", price="8.00", stock=2)

        order = await order_service.create_direct(tenant.id, mug.id, None, 2, customer)

        assert order.items[0].variant_id is None
        assert order.items[0].product_sku == "MUG"
        assert mug.stock_quantity == 0


@pytest.mark.asyncio
class TestOrderLifecycle:
    async def test_cancel_restocks(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 4, customer)
        assert variant.stock_quantity == 6

        cancelled = await order_service.cancel_order(tenant.id, order.id, reason="changed mind")

        assert cancelled.status == OrderStatus.CANCELLED.value
        assert "changed mind" in cancelled.notes
        assert variant.stock_quantity == 10

    async def test_shipped_order_cannot_be_cancelled(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)
        await order_service.update_order_status(tenant.id, order.id, OrderStatus.SHIPPED)

        with pytest.raises(LockOperationFailedError) as exc_info:
            await order_service.cancel_order(tenant.id, order.id)

        assert isinstance(exc_info.value.cause, InvalidCartStateError)
        assert variant.stock_quantity == 9

    async def test_status_to_cancelled_goes_through_cancel(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 2, customer)

        await order_service.update_order_status(tenant.id, order.id, OrderStatus.CANCELLED)

        assert order.status == OrderStatus.CANCELLED.value
        assert variant.stock_quantity == 10

    async def test_mark_paid_only_from_pending(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)

        await order_service.mark_paid(tenant.id, order.id)
        assert order.status == OrderStatus.PAID.value
        assert order.is_paid()
        assert order.can_be_refunded()

        await order_service.update_order_status(tenant.id, order.id, OrderStatus.SHIPPED)
        await order_service.mark_paid(tenant.id, order.id)
        assert order.status == OrderStatus.SHIPPED.value

    async def test_update_order_recomputes_total(self, order_service, tenant, product, variant, customer):
        order = await order_service.create_direct(tenant.id, product.id, variant.id, 2, customer)

        updated = await order_service.update_order(
            tenant.id, order.id, OrderUpdate(shipping_amount=Decimal("5.00"), customer_name="J. Buyer")
        )

        assert updated.customer_name == "J. Buyer"
        assert updated.total_amount == Decimal("32.00")


@pytest.mark.asyncio
class TestOrderQueries:
    async def test_lookup_and_listing(self, order_service, tenant, product, variant, customer):
        first = await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)
        other = CustomerInfo(email="sam@example.com", name="Sam Shopper")
        await order_service.create_direct(tenant.id, product.id, variant.id, 1, other)

        assert (await order_service.get_order_by_number(tenant.id, first.order_number)).id == first.id

        orders, total = await order_service.list_orders(tenant.id)
        assert total == 2 and len(orders) == 2

        orders, total = await order_service.list_orders(tenant.id, customer_email="sam@example.com")
        assert total == 1
        assert orders[0].customer_name == "Sam Shopper"

        orders, total = await order_service.list_orders(tenant.id, search="Sam")
        assert total == 1

        with pytest.raises(NotFoundError):
            await order_service.get_order(tenant.id, "missing")

    async def test_statistics_count_paid_revenue_only(self, order_service, tenant, product, variant, customer):
        paid = await order_service.create_direct(tenant.id, product.id, variant.id, 2, customer)
        await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)
        await order_service.mark_paid(tenant.id, paid.id)

        stats = await order_service.statistics(tenant.id)

        assert stats.total_orders == 2
        assert stats.paid_orders == 1
        assert stats.total_revenue == Decimal("27.00")
        assert stats.average_order_value == Decimal("27.00")
        assert stats.status_breakdown == {"PAID": 1, "PENDING_PAYMENT": 1}


def test_status_predicates():
    order = Order(status=OrderStatus.PENDING_PAYMENT.value, items=[])
    assert order.can_be_cancelled()
    assert not order.is_paid()

    order.status = OrderStatus.DELIVERED.value
    assert not order.can_be_cancelled()
    assert order.is_paid()

    order.status = OrderStatus.REFUNDED.value
    assert not order.is_paid()
