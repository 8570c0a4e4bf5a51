"""
Tenant model - a store hosted on the platform.
"""

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class Tenant(Base, UUIDMixin, TimestampMixin):
    """
    Represents a store. Public requests resolve it from its slug; the
    e-commerce flag gates every cart, order and payment operation.
    """
    __tablename__ = "tenants"

    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    ecommerce_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    @property
    def storefront_open(self) -> bool:
        return bool(self.is_active and self.ecommerce_enabled)
