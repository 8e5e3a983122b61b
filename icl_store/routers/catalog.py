from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from icl_store.core.errors import ProductNotFound
from icl_store.core.settings import settings
from icl_store.db import get_db
from icl_store.deps import get_current_user
from icl_store.models.catalog import Product
from icl_store.models.user import User
from icl_store.routers.common import MAX_ID, product_out
from icl_store.services import cart_service, ledger_service
from icl_store.services.pricing_service import shipping_for

router = APIRouter(prefix="/api/v1", tags=["catalog"])


class AddItemIn(BaseModel):
    product_id: int = Field(ge=1, le=MAX_ID)
    size: str = Field(min_length=1, max_length=16)
    quantity: int = Field(default=1, ge=1, le=10)


class QuantityIn(BaseModel):
    quantity: int = Field(ge=0, le=10)


class CouponIn(BaseModel):
    coupon_code: str = Field(min_length=1, max_length=32)


@router.get("/products")
async def list_products(db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Product).where(Product.is_active == True).order_by(Product.id))).scalars().all()  # noqa: E712
    return [product_out(p) for p in rows]


@router.get("/products/{product_id}")
async def get_product(product_id: int = Path(ge=1, le=MAX_ID), db: AsyncSession = Depends(get_db)):
    product = await db.get(Product, product_id)
    if not product or not product.is_active:
        raise ProductNotFound(f"product {product_id} does not exist")
    return product_out(product)


@router.get("/cart")
async def get_cart(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    snapshot, items = await cart_service.load_snapshot(db, user.id)
    pricing = settings.pricing()
    return {
        "items": [
            {
                "id": i.id,
                "product_id": i.product_id,
                "name": i.product.name,
                "size": i.size,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "total": i.unit_price * i.quantity,
            }
            for i in items
        ],
        "subtotal": snapshot.subtotal,
        "coupon_code": snapshot.coupon_code,
        "discount_amount": snapshot.discount_amount,
        "estimated_shipping": shipping_for(snapshot.subtotal, "upi", snapshot.free_shipping, pricing),
        "coins_available": await ledger_service.get_balance(db, user.id),
    }


@router.delete("/cart")
async def clear_cart(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await cart_service.clear(db, user.id)
    return {"ok": True}


@router.post("/cart/items")
async def add_to_cart(payload: AddItemIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    item = await cart_service.add_item(db, user.id, payload.product_id, payload.size, payload.quantity)
    return {"ok": True, "item_id": item.id, "quantity": item.quantity}


@router.put("/cart/items/{item_id}")
async def update_cart_item(
    payload: QuantityIn,
    item_id: int = Path(ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    item = await cart_service.update_quantity(db, user.id, item_id, payload.quantity)
    return {"ok": True, "item_id": item_id, "quantity": item.quantity if item else 0}


@router.delete("/cart/items/{item_id}")
async def remove_from_cart(
    item_id: int = Path(ge=1, le=MAX_ID), user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)
):
    removed = await cart_service.remove_item(db, user.id, item_id)
    return {"ok": removed}


@router.post("/cart/coupon")
async def apply_coupon(payload: CouponIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    coupon = await cart_service.apply_coupon(db, user.id, payload.coupon_code)
    return {"ok": True, "coupon_code": coupon.code}


@router.delete("/cart/coupon")
async def remove_coupon(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await cart_service.remove_coupon(db, user.id)
    return {"ok": True}
