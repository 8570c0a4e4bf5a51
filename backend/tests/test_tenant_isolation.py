"""
Cross-tenant access is reported as not found, never as another tenant's data.
"""

import pytest

from storefront.exceptions import NotFoundError
from storefront.services.products import ProductService

SESSION = "session-0001"


@pytest.mark.asyncio
async def test_products_are_scoped(db_session, other_tenant, product):
    service = ProductService(db_session)

    with pytest.raises(NotFoundError):
        await service.get_product(other_tenant.id, product.id)

    products, total = await service.list_products(other_tenant.id)
    assert products == [] and total == 0


@pytest.mark.asyncio
async def test_cart_cannot_hold_another_tenants_product(cart_service, other_tenant, product, variant):
    with pytest.raises(NotFoundError):
        await cart_service.add_item(other_tenant.id, SESSION, product.id, variant.id, 1)


@pytest.mark.asyncio
async def test_same_session_gets_separate_carts_per_tenant(cart_service, tenant, other_tenant):
    mine = await cart_service.get_or_create_cart(tenant.id, SESSION)
    theirs = await cart_service.get_or_create_cart(other_tenant.id, SESSION)

    assert mine.id != theirs.id


@pytest.mark.asyncio
async def test_cart_lines_of_other_carts_are_not_found(cart_service, tenant, other_tenant, product, variant):
    cart = await cart_service.add_item(tenant.id, SESSION, product.id, variant.id, 1)
    await cart_service.get_or_create_cart(other_tenant.id, SESSION)

    with pytest.raises(NotFoundError):
        await cart_service.remove_item(other_tenant.id, SESSION, cart.items[0].id)


@pytest.mark.asyncio
async def test_orders_are_scoped(order_service, tenant, other_tenant, product, variant, customer):
    order = await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)

    with pytest.raises(NotFoundError):
        await order_service.get_order(other_tenant.id, order.id)
    with pytest.raises(NotFoundError):
        await order_service.get_order_by_number(other_tenant.id, order.order_number)
    with pytest.raises(NotFoundError):
        await order_service.cancel_order(other_tenant.id, order.id)

    orders, total = await order_service.list_orders(other_tenant.id)
    assert total == 0
    assert (await order_service.statistics(other_tenant.id)).total_orders == 0
