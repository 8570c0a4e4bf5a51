"""
Public Payments Router (PayPal).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, rate_limited
from storefront.schemas import PaymentResponse

router = APIRouter()


class CreatePaymentRequest(BaseModel):
    return_url: str = Field(..., max_length=2048)
    cancel_url: str = Field(..., max_length=2048)


@router.post("/paypal/{order_id}", response_model=PaymentResponse, status_code=201,
             dependencies=[Depends(rate_limited("payment"))])
async def create_paypal_payment(
    order_id: str,
    body: CreatePaymentRequest,
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Create the PayPal order and return the buyer approval URL."""
    result = await container.payments(db).create_payment(tenant.id, order_id, body.return_url, body.cancel_url)
    response = PaymentResponse.model_validate(result.payment)
    response.approval_url = result.approval_url
    return response


@router.post("/paypal/capture/{provider_order_id}", dependencies=[Depends(rate_limited("payment"))])
async def capture_paypal_payment(
    provider_order_id: str,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    async def capture() -> dict:
        payment = await container.payments(db).capture_payment(tenant.id, provider_order_id)
        await db.commit()
        return PaymentResponse.model_validate(payment).model_dump(mode="json")

    return await container.idempotency.ensure_idempotent(
        idempotency_key, tenant.id, f"/public/payments/paypal/capture/{provider_order_id}", capture
    )


@router.post("/paypal/webhook")
async def paypal_webhook(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    payments = container.payments(db)
    payments.verify_webhook_signature(payload, request.headers)
    processed = await payments.process_webhook(tenant.id, payload)
    return {"processed": processed}
