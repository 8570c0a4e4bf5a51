"""
Public Orders Router.

Checkout from the session cart or straight from a product ("buy now").
Both accept an optional Idempotency-Key header so a double-submitted
checkout returns the first order instead of placing a second one. The order
is committed before its result is cached, and the confirmation email goes out
as a background task once the response is sent.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.exceptions import NotFoundError
from storefront.models import Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, get_session_id, rate_limited
from storefront.schemas import OrderResponse
from storefront.services.orders import CustomerInfo

router = APIRouter()


class BuyNowRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1, le=10000)
    customer: CustomerInfo


@router.post("", status_code=201, dependencies=[Depends(rate_limited("order"))])
async def create_order(
    customer: CustomerInfo,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Place an order for everything in the session cart."""
    async def place_order() -> dict:
        orders = container.orders(db)
        order = await orders.create_from_cart(tenant.id, customer, session_id, send_confirmation=False)
        await db.commit()
        background_tasks.add_task(orders.send_order_confirmation, order)
        return OrderResponse.model_validate(order).model_dump(mode="json")

    return await container.idempotency.ensure_idempotent(
        idempotency_key, tenant.id, "/public/orders", place_order
    )


@router.post("/buy-now", status_code=201, dependencies=[Depends(rate_limited("order"))])
async def buy_now(
    body: BuyNowRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    async def place_order() -> dict:
        orders = container.orders(db)
        order = await orders.create_direct(
            tenant.id, body.product_id, body.variant_id, body.quantity, body.customer,
            send_confirmation=False,
        )
        await db.commit()
        background_tasks.add_task(orders.send_order_confirmation, order)
        return OrderResponse.model_validate(order).model_dump(mode="json")

    return await container.idempotency.ensure_idempotent(
        idempotency_key, tenant.id, "/public/orders/buy-now", place_order
    )


@router.get("/{order_number}", response_model=OrderResponse, dependencies=[Depends(rate_limited("order"))])
async def get_order(
    order_number: str,
    email: str = Query(..., max_length=255),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Order lookup for the buyer: the email must match the order's."""
    order = await container.orders(db).get_order_by_number(tenant.id, order_number)
    if order.customer_email.lower() != email.lower():
        raise NotFoundError("Order", order_number)
    return OrderResponse.model_validate(order)
