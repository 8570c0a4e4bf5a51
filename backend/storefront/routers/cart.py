"""
Public Cart Router.

The cart is identified by the X-Session-Id header within the tenant from
X-Tenant-Slug.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.container import ServiceContainer
from storefront.database import get_db
from storefront.models import Tenant
from storefront.routers.dependencies import get_container, get_public_tenant, get_session_id, rate_limited
from storefront.schemas import CartResponse

router = APIRouter(dependencies=[Depends(rate_limited("cart"))])


class AddItemRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1, le=10000)


class UpdateQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=1, le=10000)


class CustomerEmailRequest(BaseModel):
    email: str = Field(..., max_length=255)


@router.get("", response_model=CartResponse)
async def get_cart(
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    """Return the session's cart, creating an empty one on first visit."""
    cart = await container.carts(db).get_or_create_cart(tenant.id, session_id)
    return CartResponse.model_validate(cart)


@router.post("/items", response_model=CartResponse, status_code=201)
async def add_item(
    body: AddItemRequest,
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    cart = await container.carts(db).add_item(
        tenant.id, session_id, body.product_id, body.variant_id, body.quantity
    )
    return CartResponse.model_validate(cart)


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_item(
    item_id: str,
    body: UpdateQuantityRequest,
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    cart = await container.carts(db).update_item_quantity(tenant.id, session_id, item_id, body.quantity)
    return CartResponse.model_validate(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_item(
    item_id: str,
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    cart = await container.carts(db).remove_item(tenant.id, session_id, item_id)
    return CartResponse.model_validate(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    cart = await container.carts(db).clear_cart(tenant.id, session_id)
    return CartResponse.model_validate(cart)


@router.put("/email", response_model=CartResponse)
async def set_customer_email(
    body: CustomerEmailRequest,
    tenant: Tenant = Depends(get_public_tenant),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
):
    cart = await container.carts(db).update_customer_email(tenant.id, session_id, body.email)
    return CartResponse.model_validate(cart)
