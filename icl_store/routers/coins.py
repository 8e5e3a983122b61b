from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.db import get_db
from icl_store.deps import require_self_or_admin
from icl_store.routers.common import MAX_PAGE, pagination, transaction_out
from icl_store.services import ledger_service

router = APIRouter(prefix="/api/v1/users", tags=["coins"])


@router.get("/{user_id}/coins")
async def get_coins(user_id: int = Depends(require_self_or_admin), db: AsyncSession = Depends(get_db)):
    return {"user_id": user_id, "coins": await ledger_service.get_balance(db, user_id)}


@router.get("/{user_id}/coin-transactions")
async def get_coin_transactions(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(require_self_or_admin),
    db: AsyncSession = Depends(get_db),
):
    await ledger_service.get_balance(db, user_id)  # 404 for unknown users
    items, total = await ledger_service.list_transactions(db, user_id, page, limit)
    return {"items": [transaction_out(t) for t in items], "pagination": pagination(page, limit, total)}
