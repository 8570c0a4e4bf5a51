"""
PayPal Orders v2 connector.

Creates remote checkout orders and captures them. Transient failures (429,
5xx, transport errors) are retried with exponential backoff, and every call
goes through the PayPal circuit breaker.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.exceptions import PaymentProcessingError
from storefront.integrations.circuit_breaker import CircuitBreaker, get_paypal_circuit_breaker
from storefront.integrations.retry import is_retryable_error
from storefront.models import Order

logger = logging.getLogger(__name__)

COUNTRY_CODES = {
    "USA": "US",
    "UNITED STATES": "US",
    "CANADA": "CA",
    "UK": "GB",
    "UNITED KINGDOM": "GB",
}
DEFAULT_COUNTRY_CODE = "US"
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def country_code(country: Optional[str]) -> str:
    if not country:
        return DEFAULT_COUNTRY_CODE
    normalized = country.strip().upper()
    if len(normalized) == 2 and normalized.isalpha():
        return normalized
    return COUNTRY_CODES.get(normalized, DEFAULT_COUNTRY_CODE)


@dataclass(frozen=True)
class RemoteOrder:
    provider_order_id: str
    status: str
    approval_url: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CaptureResult:
    provider_order_id: str
    status: str
    capture_id: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


class PayPalClient:
    """
    PayPal REST adapter using httpx.

    Usage:
        client = PayPalClient(settings.PAYPAL_BASE_URL, client_id, secret)
        remote = await client.create_remote_order(order, return_url, cancel_url)
    """

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        brand_name: str = "Storefront",
        http_client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.brand_name = brand_name
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=30.0)
        self._breaker = breaker
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_paypal_circuit_breaker()
        return self._breaker

    async def aclose(self) -> None:
        await self._client.aclose()

    # Transport -------------------------------------------------------------

    @retry(
        retry=retry_if_exception(is_retryable_error),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.breaker.call(self._request, method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"PayPal {method} {path} failed with {status}: {e.response.text[:500]}")
            raise PaymentProcessingError(f"PayPal request failed with status {status}", status) from e
        except httpx.TransportError as e:
            logger.error(f"PayPal {method} {path} transport error: {e}")
            raise PaymentProcessingError(f"PayPal is unreachable: {e}") from e
        return response.json() if response.content else {}

    async def access_token(self) -> str:
        """OAuth2 client-credentials token, cached until shortly before expiry."""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not (self.client_id and self.client_secret):
            raise PaymentProcessingError("PayPal credentials are not configured")

        data = await self._call(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        self._token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))
        self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return self._token

    async def _authorized(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        token = await self.access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        return await self._call(method, path, json=json, headers=headers)

    # Orders API ------------------------------------------------------------

    def build_order_payload(self, order: Order, return_url: str, cancel_url: str) -> Dict[str, Any]:
        purchase_unit: Dict[str, Any] = {
            "reference_id": order.order_number,
            "description": f"Order {order.order_number}",
            "amount": {
                "currency_code": order.currency,
                "value": f"{order.total_amount:.2f}",
            },
        }
        if order.billing_address:
            purchase_unit["shipping"] = {
                "name": {"full_name": order.customer_name},
                "address": {
                    "address_line_1": order.billing_address,
                    "admin_area_2": order.billing_city or "",
                    "postal_code": order.billing_postal_code or "",
                    "country_code": country_code(order.billing_country),
                },
            }

        return {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit],
            "application_context": {
                "return_url": return_url,
                "cancel_url": cancel_url,
                "brand_name": self.brand_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
            },
        }

    async def create_remote_order(self, order: Order, return_url: str, cancel_url: str) -> RemoteOrder:
        data = await self._authorized(
            "POST", "/v2/checkout/orders", json=self.build_order_payload(order, return_url, cancel_url)
        )
        if "id" not in data:
            raise PaymentProcessingError("PayPal response did not include an order id")

        approval_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        logger.info(f"Created PayPal order {data['id']} for {order.order_number}")
        return RemoteOrder(data["id"], data.get("status", "CREATED"), approval_url, data)

    async def capture(self, provider_order_id: str) -> CaptureResult:
        data = await self._authorized("POST", f"/v2/checkout/orders/{provider_order_id}/capture")

        capture_id = None
        try:
            capture_id = data["purchase_units"][0]["payments"]["captures"][0]["id"]
        except (KeyError, IndexError, TypeError):
            logger.warning(f"PayPal capture response for {provider_order_id} has no capture id")

        status = data.get("status", "UNKNOWN")
        logger.info(f"Captured PayPal order {provider_order_id}: {status}")
        return CaptureResult(provider_order_id, status, capture_id, data)
