"""
Process-wide services shared by every request.

The keyed mutex, rate limiter and error sink hold in-memory state that must be
shared by all requests in the process, so they are built once and stored on
``app.state.container``. Session-scoped services are built per request from it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import Settings, get_settings
from storefront.integrations.circuit_breaker import get_paypal_circuit_breaker
from storefront.integrations.paypal import PayPalClient
from storefront.middleware.idempotency import IdempotencyMiddleware
from storefront.redis import get_redis_client
from storefront.services.carousels import CarouselService
from storefront.services.cart import CartService
from storefront.services.categories import CategoryService
from storefront.services.error_sink import ErrorSink
from storefront.services.keyed_mutex import KeyedMutex
from storefront.services.notifications import EmailSender, OrderNotificationService
from storefront.services.orders import OrderService
from storefront.services.paypal import PaymentService
from storefront.services.products import ProductService
from storefront.services.rate_limiter import RateLimiter
from storefront.services.stock import StockService
from storefront.services.tenant_gate import EcommerceFeatureService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    mutex: KeyedMutex
    rate_limiter: RateLimiter
    error_sink: ErrorSink
    notifier: OrderNotificationService
    paypal: PayPalClient
    idempotency: IdempotencyMiddleware

    def features(self, session: AsyncSession) -> EcommerceFeatureService:
        return EcommerceFeatureService(session, self.error_sink)

    def products(self, session: AsyncSession) -> ProductService:
        return ProductService(session, self.settings.DEFAULT_CURRENCY)

    def categories(self, session: AsyncSession) -> CategoryService:
        return CategoryService(session)

    def carousels(self, session: AsyncSession) -> CarouselService:
        return CarouselService(session)

    def stock(self, session: AsyncSession) -> StockService:
        return StockService(session, self.mutex)

    def carts(self, session: AsyncSession) -> CartService:
        return CartService(session, self.mutex, self.features(session), self.settings)

    def orders(self, session: AsyncSession) -> OrderService:
        return OrderService(session, self.mutex, self.carts(session), self.notifier, self.settings)

    def payments(self, session: AsyncSession) -> PaymentService:
        return PaymentService(session, self.mutex, self.paypal, self.orders(session), self.error_sink)

    async def aclose(self) -> None:
        await self.paypal.aclose()


def build_container(settings: Optional[Settings] = None, redis_client: Optional[Any] = None) -> ServiceContainer:
    settings = settings or get_settings()
    redis_client = redis_client if redis_client is not None else get_redis_client()

    sender = None
    if settings.EMAIL_API_URL:
        sender = EmailSender(settings.EMAIL_API_URL, settings.EMAIL_API_KEY, settings.EMAIL_FROM)
    else:
        logger.info("EMAIL_API_URL not set, order confirmation emails are disabled")

    paypal = PayPalClient(
        settings.PAYPAL_BASE_URL,
        settings.PAYPAL_CLIENT_ID,
        settings.PAYPAL_CLIENT_SECRET,
        brand_name=settings.PAYPAL_BRAND_NAME,
        breaker=get_paypal_circuit_breaker(redis_client),
    )

    mutex = KeyedMutex()

    return ServiceContainer(
        settings=settings,
        mutex=mutex,
        rate_limiter=RateLimiter(settings),
        error_sink=ErrorSink(),
        notifier=OrderNotificationService(sender),
        paypal=paypal,
        idempotency=IdempotencyMiddleware(redis_client, mutex),
    )
