from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.core.errors import InvalidProduct, ProductNotFound
from icl_store.models.catalog import Product, ProductSize

logger = logging.getLogger(__name__)


async def lock_sizes(db: AsyncSession, product_ids: Iterable[int]) -> dict[tuple[int, str], ProductSize]:
    """Lock the size rows of ``product_ids`` and return them keyed by (product_id, size).

    Rows are reloaded from the store, so callers can read-modify-write ``stock``
    until the transaction ends.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = (
        await db.execute(
            select(ProductSize)
            .where(ProductSize.product_id.in_(ids))
            .order_by(ProductSize.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    return {(r.product_id, r.size): r for r in rows}


def _check_sizes(sizes: list[tuple[str, int]]) -> None:
    names = [s for s, _ in sizes]
    if len(set(names)) != len(names):
        raise InvalidProduct("each size may be listed once")


async def create_product(
    db: AsyncSession,
    name: str,
    price: int,
    sizes: list[tuple[str, int]],
    coins_reward: int = 0,
    is_active: bool = True,
) -> Product:
    _check_sizes(sizes)
    product = Product(
        name=name,
        price=price,
        coins_reward=coins_reward,
        is_active=is_active,
        sizes=[ProductSize(size=s, stock=n) for s, n in sizes],
    )
    db.add(product)
    await db.flush()
    logger.info("product created id=%s name=%s price=%s coins_reward=%s", product.id, name, price, coins_reward)
    return product


async def update_product(
    db: AsyncSession, product_id: int, sizes: list[tuple[str, int]] | None = None, **fields
) -> Product:
    """Patch product fields; ``sizes`` replaces the size list and sets absolute stock levels."""
    product = await db.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"product {product_id} does not exist")
    for k, v in fields.items():
        setattr(product, k, v)

    if sizes is not None:
        _check_sizes(sizes)
        current = await lock_sizes(db, [product.id])
        wanted = dict(sizes)
        for (_, size), row in current.items():
            if size not in wanted:
                product.sizes.remove(row)
        for size, stock in sizes:
            row = current.get((product.id, size))
            if row:
                row.stock = stock
            else:
                product.sizes.append(ProductSize(size=size, stock=stock))

    await db.flush()
    logger.info("product updated id=%s fields=%s sizes=%s", product.id, sorted(fields), sizes is not None)
    return product
