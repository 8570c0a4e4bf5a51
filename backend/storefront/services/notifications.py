"""
Order notifications over a transactional email HTTP API.

Sending is best effort: a failed confirmation email is logged and never
fails the order that triggered it.
"""

import html
import logging
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential, before_sleep_log

from storefront.integrations.retry import is_retryable_error
from storefront.models import Order

logger = logging.getLogger(__name__)


class EmailSender:
    """Posts messages to an email API (``POST {api_url}`` with a bearer key)."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        from_email: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_email = from_email
        self._client = http_client

    def _headers(self) -> dict:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @retry(
        retry=retry_if_exception(is_retryable_error),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def send(self, to: str, subject: str, html_body: str) -> None:
        payload = {"from": self.from_email, "to": [to], "subject": subject, "html": html_body}
        if self._client is not None:
            response = await self._client.post(self.api_url, json=payload, headers=self._headers(), timeout=10.0)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.api_url, json=payload, headers=self._headers(), timeout=10.0)
        response.raise_for_status()


class OrderNotificationService:
    def __init__(self, sender: Optional[EmailSender] = None):
        self.sender = sender

    @staticmethod
    def confirmation_subject(order: Order) -> str:
        return f"Your order {order.order_number} has been received"

    @staticmethod
    def build_confirmation_html(order: Order) -> str:
        esc = html.escape
        rows = "".join(
            f"<tr><td>{esc(item.product_name)}"
            f"{' - ' + esc(item.variant_name) if item.variant_name else ''}</td>"
            f"<td>{item.quantity}</td>"
            f"<td>{item.unit_price} {esc(order.currency)}</td>"
            f"<td>{item.total_price} {esc(order.currency)}</td></tr>"
            for item in order.items
        )
        return (
            f"<h1>Thank you for your order, {esc(order.customer_name)}!</h1>"
            f"<p>Order number: <strong>{esc(order.order_number)}</strong></p>"
            f"<table><thead><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr></thead>"
            f"<tbody>{rows}</tbody></table>"
            f"<p>Subtotal: {order.subtotal} {esc(order.currency)}</p>"
            f"<p>Tax: {order.tax_amount} {esc(order.currency)}</p>"
            f"<p>Shipping: {order.shipping_amount} {esc(order.currency)}</p>"
            f"<p><strong>Total: {order.total_amount} {esc(order.currency)}</strong></p>"
        )

    async def send_order_confirmation(self, order: Order) -> bool:
        """Returns True if the email went out. Never raises."""
        if self.sender is None:
            logger.info(f"Email not configured, skipping confirmation for order {order.order_number}")
            return False

        try:
            await self.sender.send(
                order.customer_email,
                self.confirmation_subject(order),
                self.build_confirmation_html(order),
            )
            logger.info(f"📧 Sent confirmation for order {order.order_number}")
            return True
        except Exception as e:
            logger.warning(f"Failed to send confirmation for order {order.order_number}: {e}")
            return False
