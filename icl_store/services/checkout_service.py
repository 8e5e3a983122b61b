from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.core.errors import ConcurrentModification, EmptyCart, OutOfStock, ProductUnavailable, TransientError
from icl_store.core.settings import PricingConfig
from icl_store.models.cart import CartItem
from icl_store.models.catalog import ProductSize
from icl_store.models.order import Order, OrderItem, generate_order_number
from icl_store.services import cart_service, catalog_service, ledger_service
from icl_store.services.pricing_service import CartSnapshot, PricingResult, quote

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CheckoutRequest:
    payment_method: str
    shipping_address: dict = field(default_factory=dict)
    coins_requested: int = 0
    notes: str | None = None


def _check_stock(items: list[CartItem], stock: dict[tuple[int, str], ProductSize]) -> None:
    for item in items:
        product = item.product
        if not product or not product.is_active:
            raise ProductUnavailable(f"product {item.product_id} is no longer available")
        row = stock.get((item.product_id, item.size))
        if row is None:
            raise ProductUnavailable(f"size {item.size} is not available for {product.name}")
        if row.stock < item.quantity:
            raise OutOfStock(f"only {row.stock} items available in size {item.size} for {product.name}")


def _decrement_stock(items: list[CartItem], stock: dict[tuple[int, str], ProductSize]) -> None:
    for item in items:
        stock[(item.product_id, item.size)].stock -= item.quantity


async def _priced_cart(
    db: AsyncSession, user_id: int, request: CheckoutRequest, config: PricingConfig
) -> tuple[CartSnapshot, list[CartItem], PricingResult]:
    snapshot, items = await cart_service.load_snapshot(db, user_id)
    if not items:
        raise EmptyCart("cart is empty")
    balance = await ledger_service.get_balance(db, user_id)
    pricing = quote(snapshot, request.payment_method, request.coins_requested, balance, config)
    return snapshot, items, pricing


async def quote_cart(
    db: AsyncSession, user_id: int, request: CheckoutRequest, config: PricingConfig
) -> PricingResult:
    _, _, pricing = await _priced_cart(db, user_id, request, config)
    return pricing


async def place_order(
    db: AsyncSession, user_id: int, request: CheckoutRequest, config: PricingConfig
) -> Order:
    snapshot, items, pricing = await _priced_cart(db, user_id, request, config)
    # locked until the request transaction ends, so two checkouts cannot both take the last unit
    stock = await catalog_service.lock_sizes(db, [i.product_id for i in items])
    _check_stock(items, stock)
    return await commit(db, user_id, snapshot, pricing, request, items, stock)


async def commit(
    db: AsyncSession,
    user_id: int,
    snapshot: CartSnapshot,
    pricing: PricingResult,
    request: CheckoutRequest,
    items: list[CartItem],
    stock: dict[tuple[int, str], ProductSize],
) -> Order:
    order = Order(
        order_number=generate_order_number(),
        user_id=user_id,
        shipping_address=request.shipping_address,
        payment_method=request.payment_method,
        payment_status="pending",
        subtotal=pricing.subtotal,
        discount_amount=pricing.discount_amount,
        coupon_code=snapshot.coupon_code,
        coins_used=pricing.coins_used,
        coins_discount=pricing.coins_discount,
        shipping_cost=pricing.shipping_cost,
        total=pricing.total,
        coins_earned=pricing.coins_earned,
        status="pending",
        notes=request.notes,
        items=[
            OrderItem(
                product_id=line.product_id,
                name=line.name,
                size=line.size,
                quantity=line.quantity,
                price=line.unit_price,
                total=line.line_total,
            )
            for line in snapshot.lines
        ],
    )
    db.add(order)
    await ledger_service.flush_or_raise(db)

    # re-checks the balance under the wallet lock; a concurrent spend aborts here
    if pricing.coins_used > 0:
        await ledger_service.debit(db, user_id, pricing.coins_used, "Applied to order", type="redeemed", order=order)

    _decrement_stock(items, stock)
    await cart_service.clear(db, user_id)
    await ledger_service.flush_or_raise(db)

    logger.info(
        "order created number=%s user=%s total=%s coins_used=%s coins_earned=%s",
        order.order_number, user_id, order.total, order.coins_used, order.coins_earned,
    )
    return order


async def with_retries(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    backoff: float = 0.1,
) -> T:
    """Run ``operation`` as a whole, rolling back between tries.

    Store hiccups are retried up to ``attempts`` times with exponential
    backoff; an optimistic-concurrency conflict is retried once.
    """
    attempt = 0
    conflict_retried = False
    while True:
        attempt += 1
        try:
            return await operation()
        except TransientError:
            await db.rollback()
            if attempt >= attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning("transient store error, retrying in %.2fs (attempt %s/%s)", delay, attempt, attempts)
            await asyncio.sleep(delay)
        except ConcurrentModification:
            await db.rollback()
            if conflict_retried:
                raise
            conflict_retried = True
            logger.warning("concurrent balance update, retrying once")
