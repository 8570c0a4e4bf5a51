"""
Tenant gate: resolves tenants and enforces the per-tenant e-commerce flag.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import FeatureDisabledError, NotFoundError
from storefront.models import Tenant
from storefront.services.error_sink import ErrorSink

logger = logging.getLogger(__name__)


class EcommerceFeatureService:
    """Answers whether a tenant may use cart, order and payment operations."""

    def __init__(self, session: AsyncSession, error_sink: Optional[ErrorSink] = None):
        self.session = session
        self.error_sink = error_sink

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return await self.session.get(Tenant, tenant_id)

    async def is_enabled(self, tenant_id: str) -> bool:
        tenant = await self.get_tenant(tenant_id)
        return tenant is not None and tenant.storefront_open

    async def validate_enabled(self, tenant_id: str, operation: str = "ecommerce") -> Tenant:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant", tenant_id)

        if not tenant.storefront_open:
            if self.error_sink is not None:
                self.error_sink.log_feature_access_denied(tenant_id, operation)
            else:
                logger.warning(f"E-commerce access denied for tenant {tenant_id} in {operation}")
            raise FeatureDisabledError(tenant_id)

        return tenant

    async def resolve_tenant(self, slug: str) -> Tenant:
        result = await self.session.execute(select(Tenant).where(Tenant.slug == slug))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant", slug)
        return tenant
