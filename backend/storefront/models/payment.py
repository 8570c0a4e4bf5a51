"""
Payment model - provider-side payment attempts for an order.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, TenantMixin, TimestampMixin


class PaymentStatus(str, Enum):
    CREATED = "CREATED"
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    CAPTURED = "CAPTURED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


SUCCESSFUL_STATUSES = frozenset({PaymentStatus.CAPTURED.value, PaymentStatus.COMPLETED.value})


class Payment(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """One payment per provider order (PayPal order id)."""
    __tablename__ = "payments"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), default="paypal")
    provider_order_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    provider_capture_id: Mapped[Optional[str]] = mapped_column(String(100))

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.CREATED.value)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    raw_response: Mapped[Optional[str]] = mapped_column(Text)
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_payment_order", "order_id"),
    )

    def is_successful(self) -> bool:
        return self.status in SUCCESSFUL_STATUSES

    def mark_as_captured(self, capture_id: Optional[str], raw_response: Optional[str] = None) -> None:
        self.status = PaymentStatus.CAPTURED.value
        self.provider_capture_id = capture_id
        self.captured_at = datetime.utcnow()
        if raw_response is not None:
            self.raw_response = raw_response

    def mark_as_failed(self, reason: str) -> None:
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason
