from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from icl_store.core.errors import OrderNotFound
from icl_store.core.settings import settings
from icl_store.db import get_db
from icl_store.deps import get_current_user, get_current_admin
from icl_store.models.admin import Admin
from icl_store.models.order import Order, OrderStatus, PaymentMethod
from icl_store.models.user import User
from icl_store.routers.common import MAX_COINS, MAX_ID, MAX_PAGE, order_out, pagination, pricing_out
from icl_store.services import checkout_service, order_status
from icl_store.services.checkout_service import CheckoutRequest
from icl_store.services.pricing_service import coins_for_request

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


class ShippingAddressIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=64)
    last_name: str = Field(min_length=1, max_length=64)
    phone: str = Field(min_length=5, max_length=32)
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=64)
    state: str = Field(min_length=1, max_length=64)
    zip_code: str = Field(min_length=3, max_length=16)
    country: str = Field(default="India", max_length=64)


class QuoteIn(BaseModel):
    payment_method: PaymentMethod
    use_coins: bool = False
    coins: int | None = Field(default=None, ge=0, le=MAX_COINS)


class CheckoutIn(QuoteIn):
    shipping_address: ShippingAddressIn
    notes: str | None = Field(default=None, max_length=500)


class CancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class StatusIn(BaseModel):
    status: OrderStatus
    notes: str | None = Field(default=None, max_length=500)


@router.post("/quote")
async def quote_order(payload: QuoteIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    config = settings.pricing()
    request = CheckoutRequest(
        payment_method=payload.payment_method,
        coins_requested=coins_for_request(payload.use_coins, payload.coins, config),
    )
    pricing = await checkout_service.quote_cart(db, user.id, request, config)
    return pricing_out(pricing)


@router.post("", status_code=201)
async def create_order(payload: CheckoutIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    config = settings.pricing()
    user_id = user.id
    request = CheckoutRequest(
        payment_method=payload.payment_method,
        shipping_address=payload.shipping_address.model_dump(),
        coins_requested=coins_for_request(payload.use_coins, payload.coins, config),
        notes=payload.notes,
    )
    order = await checkout_service.with_retries(
        db,
        lambda: checkout_service.place_order(db, user_id, request, config),
        attempts=settings.CHECKOUT_MAX_ATTEMPTS,
        backoff=settings.CHECKOUT_RETRY_BACKOFF,
    )
    return {"ok": True, "order": order_out(order)}


@router.get("")
async def my_orders(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(10, ge=1, le=100),
    status: OrderStatus | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    cond = [Order.user_id == user.id]
    if status:
        cond.append(Order.status == status)
    total = (await db.execute(select(func.count()).select_from(Order).where(*cond))).scalar_one()
    rows = (
        await db.execute(
            select(Order).where(*cond).order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
        )
    ).scalars().all()
    return {"items": [order_out(o) for o in rows], "pagination": pagination(page, limit, total)}


@router.get("/{order_id}")
async def get_order(
    order_id: int = Path(ge=1, le=MAX_ID), user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)
):
    order = await db.get(Order, order_id)
    if not order or order.user_id != user.id:
        raise OrderNotFound(f"order {order_id} does not exist")
    return order_out(order)


@router.put("/{order_id}/cancel")
async def cancel_order(
    payload: CancelIn,
    order_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_status.cancel_order(db, user.id, order_id, payload.reason)
    return {"ok": True, "order": order_out(order)}


@router.patch("/{order_id}/status")
async def update_status(
    payload: StatusIn,
    order_id: int = Path(ge=1, le=MAX_ID),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await order_status.set_status(db, order_id, payload.status, notes=payload.notes, actor="admin")
    return {"ok": True, "order": order_out(order)}
