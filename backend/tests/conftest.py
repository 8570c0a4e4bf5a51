"""
Shared fixtures: in-memory database, mocked Redis, seeded tenants and catalog.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-client-id")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-client-secret")

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.config import get_settings
from storefront.container import build_container
from storefront.models import Base, Product, ProductStatus, ProductVariant, Tenant
from storefront.services.cart import CartService
from storefront.services.error_sink import ErrorSink
from storefront.services.keyed_mutex import KeyedMutex
from storefront.services.notifications import OrderNotificationService
from storefront.services.orders import CustomerInfo, OrderService
from storefront.services.tenant_gate import EcommerceFeatureService


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = MagicMock()
    redis.get.return_value = None
    redis.incr.return_value = 1
    redis.setex.return_value = True
    redis.delete.return_value = 1
    return redis


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def mutex():
    return KeyedMutex()


@pytest.fixture
def error_sink():
    return ErrorSink()


@pytest.fixture
def container(settings, mock_redis):
    return build_container(settings, redis_client=mock_redis)


@pytest.fixture
def customer():
    return CustomerInfo(
        email="jane@example.com",
        name="Jane Buyer",
        phone="+15551234567",
        billing_address="1 Main St",
        billing_city="Springfield",
        billing_postal_code="12345",
        billing_country="USA",
    )


async def make_tenant(session, slug: str, enabled: bool = True) -> Tenant:
    tenant = Tenant(slug=slug, name=slug.title(), is_active=True, ecommerce_enabled=enabled)
    session.add(tenant)
    await session.flush()
    return tenant


async def make_product(session, tenant: Tenant, slug: str, price: str = "10.00", stock: int = 0,
                       status: ProductStatus = ProductStatus.ACTIVE) -> Product:
    product = Product(
        tenant_id=tenant.id,
        name=slug.replace("-", " ").title(),
        slug=slug,
        sku=slug.upper(),
        price=Decimal(price),
        currency="USD",
        status=status.value,
        stock_quantity=stock,
        variants=[],
        images=[],
    )
    session.add(product)
    await session.flush()
    return product


async def make_variant(session, product: Product, sku: str, price: str = "12.50", stock: int = 10) -> ProductVariant:
    variant = ProductVariant(
        tenant_id=product.tenant_id,
        product_id=product.id,
        sku=sku,
        name=sku.title(),
        price=Decimal(price),
        stock_quantity=stock,
        is_active=True,
    )
    product.variants.append(variant)
    await session.flush()
    return variant


@pytest_asyncio.fixture
async def tenant(db_session):
    return await make_tenant(db_session, "acme-store")


@pytest_asyncio.fixture
async def other_tenant(db_session):
    return await make_tenant(db_session, "other-store")


@pytest_asyncio.fixture
async def product(db_session, tenant):
    """Active product with one variant in stock (10 units at 12.50)."""
    product = await make_product(db_session, tenant, "classic-tee")
    await make_variant(db_session, product, "TEE-M", price="12.50", stock=10)
    return product


@pytest.fixture
def variant(product):
    return product.variants[0]


@pytest.fixture
def features(db_session, error_sink):
    return EcommerceFeatureService(db_session, error_sink)


@pytest.fixture
def cart_service(db_session, mutex, features, settings):
    return CartService(db_session, mutex, features, settings)


@pytest.fixture
def notifier():
    return OrderNotificationService(None)


@pytest.fixture
def order_service(db_session, mutex, cart_service, notifier, settings):
    return OrderService(db_session, mutex, cart_service, notifier, settings)
