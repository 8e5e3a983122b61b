from __future__ import annotations

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.models.coins import CoinWallet, CoinTransaction, CREDIT_TYPES, DEBIT_TYPES
from icl_store.models.user import User


async def all_transactions(db: AsyncSession, page: int = 1, limit: int = 50) -> tuple[list[CoinTransaction], int]:
    total = (await db.execute(select(func.count()).select_from(CoinTransaction))).scalar_one()
    rows = (
        await db.execute(
            select(CoinTransaction)
            .order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return list(rows), total


async def user_balances(db: AsyncSession, page: int = 1, limit: int = 50) -> tuple[list[dict], int]:
    """Per-user balance with lifetime earned/redeemed totals, richest first."""
    earned = func.coalesce(
        func.sum(case((CoinTransaction.type.in_(CREDIT_TYPES), CoinTransaction.amount), else_=0)), 0
    )
    redeemed = func.coalesce(
        func.sum(case((CoinTransaction.type.in_(DEBIT_TYPES), CoinTransaction.amount), else_=0)), 0
    )
    coins = func.coalesce(CoinWallet.coins, 0)
    stmt = (
        select(
            User.id,
            User.first_name,
            User.last_name,
            User.email,
            coins.label("coins"),
            earned.label("total_earned"),
            redeemed.label("total_redeemed"),
            func.count(CoinTransaction.id).label("transaction_count"),
        )
        .outerjoin(CoinWallet, CoinWallet.user_id == User.id)
        .outerjoin(CoinTransaction, CoinTransaction.user_id == User.id)
        .group_by(User.id, CoinWallet.coins)
        .order_by(coins.desc(), User.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = (await db.execute(stmt)).mappings().all()
    total = (await db.execute(select(func.count()).select_from(User))).scalar_one()
    return [dict(r) for r in rows], total


async def stats(db: AsyncSession) -> dict:
    tx = (
        await db.execute(
            select(
                func.coalesce(func.sum(case((CoinTransaction.type.in_(CREDIT_TYPES), CoinTransaction.amount), else_=0)), 0),
                func.coalesce(func.sum(case((CoinTransaction.type.in_(DEBIT_TYPES), CoinTransaction.amount), else_=0)), 0),
                func.count(CoinTransaction.id),
            )
        )
    ).one()
    circulation = (await db.execute(select(func.coalesce(func.sum(CoinWallet.coins), 0)))).scalar_one()
    holders = (await db.execute(select(func.count()).select_from(CoinWallet).where(CoinWallet.coins > 0))).scalar_one()

    return {
        "total_coins_in_circulation": int(circulation),
        "total_users_with_coins": int(holders),
        "total_transactions": int(tx[2]),
        "total_earned": int(tx[0]),
        "total_redeemed": int(tx[1]),
        "average_coins_per_user": round(circulation / holders, 2) if holders else 0,
    }
