"""
Tests for order confirmation emails.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from storefront.models import Order, OrderItem
from storefront.integrations.retry import is_retryable_error
from storefront.services.notifications import EmailSender, OrderNotificationService

API_URL = "https://mail.example.com/v1/send"


def make_order() -> Order:
    order = Order(
        order_number="0042-20240309-1234",
        customer_email="jane@example.com",
        customer_name="Jane <b>Buyer</b>",
        currency="USD",
        subtotal=Decimal("25.00"),
        tax_amount=Decimal("2.00"),
        shipping_amount=Decimal("0.00"),
        total_amount=Decimal("27.00"),
        items=[],
    )
    order.items.append(OrderItem(
        product_name="Classic Tee",
        variant_name="M & L",
        quantity=2,
        unit_price=Decimal("12.50"),
        total_price=Decimal("25.00"),
    ))
    return order


def test_confirmation_content_is_escaped():
    body = OrderNotificationService.build_confirmation_html(make_order())

    assert "Jane &lt;b&gt;Buyer&lt;/b&gt;" in body
    assert "Classic Tee - M &amp; L" in body
    assert "0042-20240309-1234" in body
    assert "27.00 USD" in body
    assert OrderNotificationService.confirmation_subject(make_order()) == (
        "Your order 0042-20240309-1234 has been received"
    )


@pytest.mark.asyncio
async def test_sends_through_email_api():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(202, json={"id": "msg-1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = OrderNotificationService(EmailSender(API_URL, "key-123", "shop@example.com", client))
        assert await service.send_order_confirmation(make_order()) is True

    payload = json.loads(sent[0].content)
    assert payload["to"] == ["jane@example.com"]
    assert payload["from"] == "shop@example.com"
    assert sent[0].headers["Authorization"] == "Bearer key-123"


@pytest.mark.asyncio
async def test_failures_are_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "bad recipient"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = OrderNotificationService(EmailSender(API_URL, None, "shop@example.com", client))
        assert await service.send_order_confirmation(make_order()) is False


@pytest.mark.asyncio
async def test_unconfigured_sender_skips():
    assert await OrderNotificationService(None).send_order_confirmation(make_order()) is False


@pytest.mark.asyncio
async def test_order_survives_email_failure(order_service, tenant, product, variant, customer):
    sender = AsyncMock()
    sender.send.side_effect = RuntimeError("mail server down")
    order_service.notifier = OrderNotificationService(sender)

    order = await order_service.create_direct(tenant.id, product.id, variant.id, 1, customer)

    assert order.order_number
    sender.send.assert_awaited_once()


def test_retryable_errors():
    request = httpx.Request("POST", API_URL)
    assert is_retryable_error(httpx.HTTPStatusError("x", request=request, response=httpx.Response(503)))
    assert is_retryable_error(httpx.HTTPStatusError("x", request=request, response=httpx.Response(429)))
    assert not is_retryable_error(httpx.HTTPStatusError("x", request=request, response=httpx.Response(400)))
    assert is_retryable_error(httpx.ConnectError("refused"))
    assert not is_retryable_error(ValueError("nope"))


def test_http_clients_share_retry_policy():
    from storefront.integrations import paypal
    from storefront.services import notifications

    assert paypal.is_retryable_error is is_retryable_error
    assert notifications.is_retryable_error is is_retryable_error
