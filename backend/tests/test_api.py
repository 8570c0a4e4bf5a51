"""
HTTP tests for the public and admin routers.

The app runs in-process over httpx.ASGITransport against the in-memory
database; Redis is a MagicMock.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from storefront.auth_middleware import create_access_token
from storefront.database import get_db
from storefront.main import app
from storefront.models import Order
from storefront.services.notifications import OrderNotificationService
from storefront.services.rate_limiter import RateLimiter

from conftest import make_product, make_tenant, make_variant

SESSION_HEADERS = {"X-Tenant-Slug": "acme-store", "X-Session-Id": "browser-session-0001"}


@pytest_asyncio.fixture
async def seeded(session_maker):
    """Committed tenants and catalog, visible to request sessions."""
    async with session_maker() as session:
        tenant = await make_tenant(session, "acme-store")
        await make_tenant(session, "closed-store", enabled=False)
        product = await make_product(session, tenant, "classic-tee")
        variant = await make_variant(session, product, "TEE-M", price="12.50", stock=10)
        await session.commit()
        return {"tenant_id": tenant.id, "product_id": product.id, "variant_id": variant.id}


@pytest_asyncio.fixture
async def client(session_maker, container):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    previous = app.state.container
    app.dependency_overrides[get_db] = override_get_db
    app.state.container = container

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.container = previous


@pytest.mark.asyncio
async def test_catalog_lists_active_products(client, seeded):
    response = await client.get("/public/products", headers={"X-Tenant-Slug": "acme-store"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["products"][0]["variants"][0]["sku"] == "TEE-M"
    assert response.headers["X-RateLimit-Limit"] == "100"
    assert response.headers["X-RateLimit-Remaining"] == "99"


@pytest.mark.asyncio
async def test_unknown_tenant_is_404(client, seeded):
    response = await client.get("/public/products", headers={"X-Tenant-Slug": "nobody"})

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_disabled_tenant_is_403(client, seeded):
    response = await client.get("/public/cart", headers={**SESSION_HEADERS, "X-Tenant-Slug": "closed-store"})

    assert response.status_code == 403
    assert response.json()["error"] == "FEATURE_DISABLED"


@pytest.mark.asyncio
async def test_cart_to_order_flow(client, seeded):
    response = await client.post("/public/cart/items", headers=SESSION_HEADERS, json={
        "product_id": seeded["product_id"], "variant_id": seeded["variant_id"], "quantity": 3,
    })
    assert response.status_code == 201
    cart = response.json()
    assert Decimal(cart["total_amount"]) == Decimal("40.50")

    response = await client.post(
        "/public/orders",
        headers={**SESSION_HEADERS, "Idempotency-Key": "checkout-0001"},
        json={"email": "jane@example.com", "name": "Jane Buyer"},
    )
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "PENDING_PAYMENT"
    assert Decimal(order["total_amount"]) == Decimal("40.50")

    response = await client.get("/public/cart", headers=SESSION_HEADERS)
    assert response.json()["items"] == []

    response = await client.get(
        f"/public/orders/{order['order_number']}",
        params={"email": "JANE@example.com"},
        headers={"X-Tenant-Slug": "acme-store"},
    )
    assert response.status_code == 200

    response = await client.get(
        f"/public/orders/{order['order_number']}",
        params={"email": "someone@else.com"},
        headers={"X-Tenant-Slug": "acme-store"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_insufficient_stock_is_409(client, seeded):
    response = await client.post("/public/cart/items", headers=SESSION_HEADERS, json={
        "product_id": seeded["product_id"], "variant_id": seeded["variant_id"], "quantity": 11,
    })

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "INSUFFICIENT_STOCK"
    assert body["available"] == 10


@pytest.mark.asyncio
async def test_short_session_id_is_rejected(client, seeded):
    response = await client.get("/public/cart", headers={"X-Tenant-Slug": "acme-store", "X-Session-Id": "abc"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rate_limit_returns_429_with_retry_after(client, seeded, container, settings):
    strict = settings.model_copy(update={"RATE_LIMIT_CART_OPERATIONS_PER_MINUTE": 2})
    container.rate_limiter = RateLimiter(strict)

    for _ in range(2):
        assert (await client.get("/public/cart", headers=SESSION_HEADERS)).status_code == 200

    response = await client.get("/public/cart", headers=SESSION_HEADERS)

    assert response.status_code == 429
    assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"
    assert 0 < int(response.headers["Retry-After"]) <= 60
    assert container.error_sink.count("rate_limit.cart") == 1


@pytest.mark.asyncio
async def test_forwarded_for_does_not_escape_rate_limit(client, seeded):
    statuses = []
    for i in range(8):
        response = await client.get(
            "/public/orders/NOPE",
            params={"email": "jane@example.com"},
            headers={"X-Tenant-Slug": "acme-store", "X-Forwarded-For": f"10.0.0.{i}"},
        )
        statuses.append(response.status_code)

    assert statuses[:5] == [404] * 5
    assert statuses[5:] == [429] * 3


@pytest.mark.asyncio
async def test_forwarded_for_is_honoured_behind_trusted_proxy(client, seeded, container, settings):
    container.settings = settings.model_copy(update={"TRUSTED_PROXIES": "127.0.0.1"})

    for i in range(8):
        response = await client.get(
            "/public/orders/NOPE",
            params={"email": "jane@example.com"},
            headers={"X-Tenant-Slug": "acme-store", "X-Forwarded-For": f"10.0.0.{i}"},
        )
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_requires_token(client, seeded):
    response = await client.get("/admin/orders")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_manages_orders_and_stock(client, seeded):
    headers = {"Authorization": f"Bearer {create_access_token(seeded['tenant_id'])}"}

    response = await client.post("/public/orders/buy-now", headers={"X-Tenant-Slug": "acme-store"}, json={
        "product_id": seeded["product_id"],
        "variant_id": seeded["variant_id"],
        "quantity": 2,
        "customer": {"email": "jane@example.com", "name": "Jane Buyer"},
    })
    assert response.status_code == 201
    order_id = response.json()["id"]

    response = await client.get("/admin/orders", headers=headers)
    assert response.json()["total"] == 1

    response = await client.post(f"/admin/orders/{order_id}/cancel", headers=headers, json={"reason": "fraud check"})
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    response = await client.put(f"/admin/variants/{seeded['variant_id']}/stock", headers=headers, json={"quantity": 3})
    assert response.status_code == 200
    assert response.json()["stock_quantity"] == 3

    response = await client.get("/admin/monitoring", headers=headers)
    assert response.status_code == 200
    assert response.json()["low_stock_variants"][0]["sku"] == "TEE-M"
    assert response.json()["payment_circuit"]["state"] == "closed"


@pytest.mark.asyncio
async def test_admin_cannot_see_other_tenants_orders(client, seeded, session_maker):
    async with session_maker() as session:
        other = await make_tenant(session, "other-store")
        await session.commit()
    headers = {"Authorization": f"Bearer {create_access_token(other.id)}"}

    response = await client.post("/public/orders/buy-now", headers={"X-Tenant-Slug": "acme-store"}, json={
        "product_id": seeded["product_id"],
        "variant_id": seeded["variant_id"],
        "quantity": 1,
        "customer": {"email": "jane@example.com", "name": "Jane Buyer"},
    })
    order_id = response.json()["id"]

    response = await client.get(f"/admin/orders/{order_id}", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_confirmation_is_sent_after_commit(client, seeded, container, session_maker):
    sender = AsyncMock()
    stored_when_sent = []

    async def send(to, subject, html):
        async with session_maker() as session:
            stored_when_sent.append(await session.scalar(select(func.count()).select_from(Order)))

    sender.send.side_effect = send
    container.notifier = OrderNotificationService(sender)

    response = await client.post("/public/orders/buy-now", headers={"X-Tenant-Slug": "acme-store"}, json={
        "product_id": seeded["product_id"],
        "variant_id": seeded["variant_id"],
        "quantity": 1,
        "customer": {"email": "jane@example.com", "name": "Jane Buyer"},
    })

    assert response.status_code == 201
    sender.send.assert_awaited_once()
    assert stored_when_sent == [1]


@pytest.mark.asyncio
async def test_category_tree_is_browsable(client, seeded):
    headers = {"Authorization": f"Bearer {create_access_token(seeded['tenant_id'])}"}
    public = {"X-Tenant-Slug": "acme-store"}

    response = await client.post("/admin/categories", headers=headers, json={"name": "Clothing", "slug": "clothing"})
    assert response.status_code == 201
    clothing_id = response.json()["id"]
    response = await client.post("/admin/categories", headers=headers, json={
        "name": "Tees", "slug": "tees", "parent_id": clothing_id,
    })
    tees_id = response.json()["id"]

    response = await client.post("/admin/categories", headers=headers, json={"name": "Again", "slug": "clothing"})
    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"

    for _ in range(2):
        response = await client.put(f"/admin/categories/{tees_id}/products/{seeded['product_id']}", headers=headers)
        assert response.status_code == 200
    assert response.json()["added"] is False

    response = await client.get("/public/categories", headers=public)
    assert [c["slug"] for c in response.json()["categories"]] == ["clothing"]

    response = await client.get("/public/categories/tees", headers=public)
    assert response.json()["path"] == "Clothing > Tees"

    response = await client.get("/public/categories/tees/products", headers=public)
    assert response.json()["products"][0]["id"] == seeded["product_id"]

    response = await client.delete(f"/admin/categories/{clothing_id}", headers=headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_storefront_carousels_by_placement(client, seeded):
    headers = {"Authorization": f"Bearer {create_access_token(seeded['tenant_id'])}"}

    response = await client.post("/admin/carousels", headers=headers, json={
        "name": "Hero", "slug": "home-hero", "type": "HERO", "placement": "HOME_PAGE",
    })
    assert response.status_code == 201
    hero_id = response.json()["id"]
    await client.post("/admin/carousels", headers=headers, json={
        "name": "New in", "slug": "new-in", "type": "VIEW_ALL_PRODUCTS", "placement": "HOME_PAGE",
    })

    response = await client.post(f"/admin/carousels/{hero_id}/items", headers=headers, json={"content_type": "IMAGE"})
    assert response.status_code == 400
    assert response.json()["field_errors"][0]["field"] == "image_url"

    response = await client.post(f"/admin/carousels/{hero_id}/items", headers=headers, json={
        "content_type": "IMAGE", "image_url": "https://cdn.example.com/summer.jpg", "title": "Summer",
    })
    assert response.status_code == 201

    response = await client.get(
        "/public/carousels", params={"placement": "HOME_PAGE"}, headers={"X-Tenant-Slug": "acme-store"}
    )
    assert response.status_code == 200
    hero, new_in = response.json()
    assert hero["items"][0]["image_url"] == "https://cdn.example.com/summer.jpg"
    assert new_in["items"][0]["product"]["slug"] == "classic-tee"

    response = await client.get(
        "/public/carousels", params={"placement": "NOWHERE"}, headers={"X-Tenant-Slug": "acme-store"}
    )
    assert response.status_code == 422
