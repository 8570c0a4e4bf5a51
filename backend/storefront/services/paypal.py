"""
Payment Service - PayPal checkout for orders.

Payment state changes for an order run under ``payment:<order id>`` so a
capture request and a webhook for the same order cannot interleave.

Webhook signature verification is not implemented: every payload is accepted
and a warning is logged. Do not expose the webhook endpoint publicly until
verify_webhook_signature checks the PayPal transmission signature.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import (
    CircuitBreakerOpenError,
    ConflictError,
    InvalidCartStateError,
    NotFoundError,
    PaymentProcessingError,
    ValidationError,
)
from storefront.integrations.paypal import PayPalClient
from storefront.models import OrderStatus, Payment, PaymentStatus
from storefront.services.error_sink import ErrorSink
from storefront.services.keyed_mutex import KeyedMutex
from storefront.services.orders import OrderService

logger = logging.getLogger(__name__)

ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    approval_url: Optional[str]


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    resource_id: Optional[str]
    related_order_id: Optional[str]
    resource: Dict[str, Any] = field(default_factory=dict)

    @property
    def provider_order_id(self) -> Optional[str]:
        """Order events carry the PayPal order as the resource; capture events link to it."""
        if self.event_type.startswith("CHECKOUT.ORDER."):
            return self.resource_id
        return self.related_order_id


def parse_webhook(payload: Any) -> WebhookEvent:
    if not isinstance(payload, dict) or not payload.get("event_type"):
        raise ValidationError.single("event_type", "Webhook payload must include an event_type")

    resource = payload.get("resource") or {}
    if not isinstance(resource, dict):
        raise ValidationError.single("resource", "Webhook resource must be an object")

    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    return WebhookEvent(
        event_type=payload["event_type"],
        resource_id=resource.get("id"),
        related_order_id=related.get("order_id"),
        resource=resource,
    )


class PaymentService:
    def __init__(
        self,
        session: AsyncSession,
        mutex: KeyedMutex,
        client: PayPalClient,
        order_service: OrderService,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.session = session
        self.mutex = mutex
        self.client = client
        self.orders = order_service
        self.error_sink = error_sink or ErrorSink()

    async def _payments_for_order(self, order_id: str) -> List[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.order_id == order_id))
        return list(result.scalars().all())

    async def find_by_provider_order(self, tenant_id: str, provider_order_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(
                Payment.provider_order_id == provider_order_id,
                Payment.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_payment(self, tenant_id: str, order_id: str, return_url: str, cancel_url: str) -> PaymentResult:
        await self.orders.features.validate_enabled(tenant_id, "create_payment")
        order = await self.orders.get_order(tenant_id, order_id)

        async def create() -> PaymentResult:
            existing = await self._payments_for_order(order.id)
            if order.is_paid() or any(p.is_successful() for p in existing):
                raise ConflictError(f"Payment already completed for order {order.order_number}")
            if order.status != OrderStatus.PENDING_PAYMENT:
                raise InvalidCartStateError(
                    None, "CREATE_PAYMENT", f"Order {order.order_number} is {order.status} and cannot be paid"
                )

            try:
                remote = await self.client.create_remote_order(order, return_url, cancel_url)
            except (PaymentProcessingError, CircuitBreakerOpenError) as e:
                self.error_sink.log_payment_error("create_payment", e, tenant_id, order.id)
                raise

            payment = Payment(
                tenant_id=tenant_id,
                order_id=order.id,
                provider="paypal",
                provider_order_id=remote.provider_order_id,
                amount=order.total_amount,
                currency=order.currency,
                status=PaymentStatus.CREATED.value,
                raw_response=json.dumps(remote.raw, default=str),
            )
            self.session.add(payment)
            await self.session.flush()
            logger.info(f"💳 Payment {payment.id} created for order {order.order_number}")
            return PaymentResult(payment, remote.approval_url)

        return await self.mutex.payment_operation(order.id, create)

    async def capture_payment(self, tenant_id: str, provider_order_id: str) -> Payment:
        payment = await self.find_by_provider_order(tenant_id, provider_order_id)
        if payment is None:
            raise NotFoundError("Payment", provider_order_id)

        async def capture() -> Payment:
            if payment.is_successful():
                return payment

            try:
                result = await self.client.capture(provider_order_id)
            except (PaymentProcessingError, CircuitBreakerOpenError) as e:
                self.error_sink.log_payment_error("capture_payment", e, tenant_id, payment.order_id)
                raise

            if result.completed:
                payment.mark_as_captured(result.capture_id, json.dumps(result.raw, default=str))
                await self.orders.mark_paid(tenant_id, payment.order_id)
            else:
                payment.status = PaymentStatus.PENDING.value
                logger.info(f"PayPal order {provider_order_id} capture pending ({result.status})")
            await self.session.flush()
            return payment

        return await self.mutex.payment_operation(payment.order_id, capture)

    # Webhooks --------------------------------------------------------------

    def verify_webhook_signature(self, payload: Any, headers: Mapping[str, str]) -> bool:
        logger.warning(
            "PayPal webhook signature verification is not implemented; accepting payload "
            f"(transmission id {headers.get('paypal-transmission-id', 'missing')})"
        )
        return True

    async def process_webhook(self, tenant_id: str, payload: Any) -> bool:
        """Apply a webhook event. Returns False when it refers to an unknown payment."""
        event = parse_webhook(payload)
        handlers: Dict[str, Callable[[Payment, WebhookEvent], Awaitable[None]]] = {
            ORDER_APPROVED: self._on_order_approved,
            CAPTURE_COMPLETED: self._on_capture_completed,
            CAPTURE_DENIED: self._on_capture_denied,
            CAPTURE_REFUNDED: self._on_capture_refunded,
        }
        handler = handlers.get(event.event_type)
        if handler is None:
            logger.info(f"Ignoring PayPal webhook event {event.event_type}")
            return True

        provider_order_id = event.provider_order_id
        payment = await self.find_by_provider_order(tenant_id, provider_order_id) if provider_order_id else None
        if payment is None:
            logger.warning(f"Webhook {event.event_type} refers to unknown PayPal order {provider_order_id}")
            return False

        async def apply() -> bool:
            await handler(payment, event)
            await self.session.flush()
            return True

        return await self.mutex.payment_operation(payment.order_id, apply)

    async def _on_order_approved(self, payment: Payment, event: WebhookEvent) -> None:
        if payment.status == PaymentStatus.CREATED:
            payment.status = PaymentStatus.APPROVED.value
            logger.info(f"PayPal order {payment.provider_order_id} approved by buyer")

    async def _on_capture_completed(self, payment: Payment, event: WebhookEvent) -> None:
        if not payment.is_successful():
            payment.mark_as_captured(event.resource_id, json.dumps(event.resource, default=str))
        await self.orders.mark_paid(payment.tenant_id, payment.order_id)

    async def _on_capture_denied(self, payment: Payment, event: WebhookEvent) -> None:
        payment.mark_as_failed(f"Capture denied ({event.resource.get('status', 'DENIED')})")
        self.error_sink.log_payment_error(
            "capture_denied", PaymentProcessingError("Capture denied"), payment.tenant_id, payment.order_id
        )

    async def _on_capture_refunded(self, payment: Payment, event: WebhookEvent) -> None:
        payment.status = PaymentStatus.REFUNDED.value
        order = await self.orders.get_order(payment.tenant_id, payment.order_id)
        if order.can_be_refunded():
            await self.orders.update_order_status(payment.tenant_id, order.id, OrderStatus.REFUNDED)
