from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from icl_store.models.catalog import Coupon

# code, percent off, minimum subtotal, free shipping
DEFAULT_COUPONS = (
    ("WELCOME10", 10, 1000, False),
    ("SAVE20", 20, 2000, False),
    ("FREESHIP", 0, 1500, True),
)


async def ensure_default_coupons(db: AsyncSession) -> None:
    for code, percent, min_amount, free_shipping in DEFAULT_COUPONS:
        row = (await db.execute(select(Coupon).where(Coupon.code == code))).scalar_one_or_none()
        if not row:
            db.add(Coupon(code=code, percent_off=percent, min_amount=min_amount, free_shipping=free_shipping))
