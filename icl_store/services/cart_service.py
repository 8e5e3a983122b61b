from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.core.errors import CartItemNotFound, InvalidCoupon, OutOfStock, ProductNotFound, ProductUnavailable
from icl_store.models.cart import CartItem, CartState
from icl_store.models.catalog import Coupon, Product
from icl_store.services.pricing_service import CartLine, CartSnapshot

logger = logging.getLogger(__name__)


async def get_items(db: AsyncSession, user_id: int) -> list[CartItem]:
    rows = (
        await db.execute(
            select(CartItem)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    return list(rows)


async def _state(db: AsyncSession, user_id: int) -> CartState:
    state = await db.get(CartState, user_id)
    if not state:
        state = CartState(user_id=user_id)
        db.add(state)
        await db.flush()
    return state


async def add_item(db: AsyncSession, user_id: int, product_id: int, size: str, quantity: int) -> CartItem:
    product = await db.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"product {product_id} does not exist")
    if not product.is_active:
        raise ProductUnavailable(f"{product.name} is no longer available")
    stock = product.stock_for(size)
    if stock is None:
        raise ProductUnavailable(f"size {size} is not available for {product.name}")

    item = (
        await db.execute(
            select(CartItem).where(
                CartItem.user_id == user_id, CartItem.product_id == product_id, CartItem.size == size
            )
        )
    ).scalar_one_or_none()
    wanted = quantity + (item.quantity if item else 0)
    if wanted > stock:
        raise OutOfStock(f"only {stock} left in size {size} for {product.name}")

    if item:
        item.quantity = wanted
    else:
        item = CartItem(user_id=user_id, product_id=product_id, size=size, quantity=quantity, unit_price=product.price)
        db.add(item)
    await db.flush()
    return item


async def update_quantity(db: AsyncSession, user_id: int, item_id: int, quantity: int) -> CartItem | None:
    """Set a line's quantity; zero drops the line and returns None."""
    item = (
        await db.execute(
            select(CartItem)
            .where(CartItem.id == item_id, CartItem.user_id == user_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not item:
        raise CartItemNotFound(f"cart item {item_id} does not exist")
    if quantity <= 0:
        await db.delete(item)
        await db.flush()
        return None

    product = item.product
    if not product.is_active:
        raise ProductUnavailable(f"{product.name} is no longer available")
    stock = product.stock_for(item.size) or 0
    if quantity > stock:
        raise OutOfStock(f"only {stock} left in size {item.size} for {product.name}")
    item.quantity = quantity
    await db.flush()
    return item


async def remove_item(db: AsyncSession, user_id: int, item_id: int) -> bool:
    result = await db.execute(delete(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id))
    return result.rowcount > 0


async def apply_coupon(db: AsyncSession, user_id: int, code: str) -> Coupon:
    coupon = await db.get(Coupon, code.strip().upper())
    if not coupon or not coupon.enabled:
        raise InvalidCoupon("invalid coupon code")
    subtotal = sum(i.unit_price * i.quantity for i in await get_items(db, user_id))
    if subtotal < coupon.min_amount:
        raise InvalidCoupon(f"minimum order amount of {coupon.min_amount} required for this coupon")
    state = await _state(db, user_id)
    state.coupon_code = coupon.code
    state.updated_at = datetime.utcnow()
    await db.flush()
    logger.info("coupon applied user=%s code=%s", user_id, coupon.code)
    return coupon


async def remove_coupon(db: AsyncSession, user_id: int) -> None:
    state = await db.get(CartState, user_id)
    if state and state.coupon_code:
        state.coupon_code = None
        state.updated_at = datetime.utcnow()
        await db.flush()


async def load_snapshot(db: AsyncSession, user_id: int) -> tuple[CartSnapshot, list[CartItem]]:
    """Freeze the cart into a pricing input; prices come from the cart rows."""
    items = await get_items(db, user_id)
    lines = tuple(
        CartLine(
            product_id=i.product_id,
            name=i.product.name,
            size=i.size,
            quantity=i.quantity,
            unit_price=i.unit_price,
            coins_reward=i.product.coins_reward or 0,
        )
        for i in items
    )
    subtotal = sum(line.line_total for line in lines)

    discount, free_shipping, code = 0, False, None
    state = await db.get(CartState, user_id)
    if state and state.coupon_code:
        coupon = await db.get(Coupon, state.coupon_code)
        # a coupon whose minimum is no longer met simply stops applying
        if coupon and coupon.enabled and subtotal >= coupon.min_amount:
            code = coupon.code
            discount = subtotal * coupon.percent_off // 100
            free_shipping = coupon.free_shipping

    snapshot = CartSnapshot(lines=lines, discount_amount=discount, coupon_code=code, free_shipping=free_shipping)
    return snapshot, items


async def clear(db: AsyncSession, user_id: int) -> None:
    await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    state = await db.get(CartState, user_id)
    if state:
        state.coupon_code = None
    await db.flush()
