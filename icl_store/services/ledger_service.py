from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from icl_store.core.errors import (
    ConcurrentModification,
    InsufficientBalance,
    InvalidAmount,
    TransientError,
    UserNotFound,
)
from icl_store.models.coins import CoinWallet, CoinTransaction, CREDIT_TYPES, DEBIT_TYPES
from icl_store.models.order import Order
from icl_store.models.user import User

logger = logging.getLogger(__name__)


async def flush_or_raise(db: AsyncSession) -> None:
    """Flush pending writes, translating store failures into domain errors."""
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConcurrentModification(str(exc)) from exc
    except OperationalError as exc:
        raise TransientError(str(exc.orig)) from exc
    except IntegrityError as exc:
        # order numbers carry random digits; a clash is worth another attempt
        if "order_number" in str(exc.orig):
            raise TransientError(str(exc.orig)) from exc
        raise
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientError(str(exc.orig)) from exc
        raise


async def create_wallet(db: AsyncSession, user_id: int) -> CoinWallet:
    wallet = CoinWallet(user_id=user_id, coins=0)
    db.add(wallet)
    await flush_or_raise(db)
    return wallet


async def _lock_wallet(db: AsyncSession, user_id: int) -> CoinWallet:
    wallet = (
        await db.execute(
            select(CoinWallet)
            .where(CoinWallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if wallet:
        return wallet
    # accounts created before wallets existed get one on first touch
    if not await db.get(User, user_id):
        raise UserNotFound(f"user {user_id} does not exist")
    return await create_wallet(db, user_id)


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got {amount!r}")


def _record(
    db: AsyncSession,
    wallet: CoinWallet,
    type_: str,
    amount: int,
    description: str,
    order: Order | None,
) -> CoinTransaction:
    tx = CoinTransaction(
        user_id=wallet.user_id,
        type=type_,
        amount=amount,
        description=description,
        order=order,
        order_number=order.order_number if order else None,
        balance_after=wallet.coins,
        created_at=datetime.utcnow(),
    )
    db.add(tx)
    return tx


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    description: str,
    *,
    type: str = "earned",
    order: Order | None = None,
) -> CoinTransaction:
    if type not in CREDIT_TYPES:
        raise ValueError(f"{type} is not a credit transaction type")
    _check_amount(amount)
    wallet = await _lock_wallet(db, user_id)
    wallet.coins += amount
    wallet.updated_at = datetime.utcnow()
    tx = _record(db, wallet, type, amount, description, order)
    await flush_or_raise(db)
    logger.info("credit user=%s type=%s amount=%s balance=%s", user_id, type, amount, wallet.coins)
    return tx


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    description: str,
    *,
    type: str = "redeemed",
    order: Order | None = None,
) -> CoinTransaction:
    if type not in DEBIT_TYPES:
        raise ValueError(f"{type} is not a debit transaction type")
    _check_amount(amount)
    wallet = await _lock_wallet(db, user_id)
    if amount > wallet.coins:
        logger.warning("debit rejected user=%s amount=%s balance=%s", user_id, amount, wallet.coins)
        raise InsufficientBalance(amount, wallet.coins)
    wallet.coins -= amount
    wallet.updated_at = datetime.utcnow()
    tx = _record(db, wallet, type, amount, description, order)
    await flush_or_raise(db)
    logger.info("debit user=%s type=%s amount=%s balance=%s", user_id, type, amount, wallet.coins)
    return tx


async def get_balance(db: AsyncSession, user_id: int) -> int:
    coins = (
        await db.execute(
            select(CoinWallet.coins)
            .where(CoinWallet.user_id == user_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if coins is not None:
        return coins
    if not await db.get(User, user_id):
        raise UserNotFound(f"user {user_id} does not exist")
    return 0


def _newest_first():
    return (CoinTransaction.created_at.desc(), CoinTransaction.id.desc())


async def list_transactions(
    db: AsyncSession, user_id: int, page: int = 1, limit: int = 20
) -> tuple[list[CoinTransaction], int]:
    total = (
        await db.execute(select(func.count()).select_from(CoinTransaction).where(CoinTransaction.user_id == user_id))
    ).scalar_one()
    rows = (
        await db.execute(
            select(CoinTransaction)
            .where(CoinTransaction.user_id == user_id)
            .order_by(*_newest_first())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    return list(rows), total


async def iter_transactions(
    db: AsyncSession, user_id: int, page_size: int = 50
) -> AsyncIterator[CoinTransaction]:
    """Yield a user's transactions newest first, fetching one page at a time.

    Pages are cut with a (created_at, id) keyset, so rows appended while the
    iteration runs never shift or repeat earlier pages.
    """
    last: CoinTransaction | None = None
    while True:
        stmt = select(CoinTransaction).where(CoinTransaction.user_id == user_id)
        if last is not None:
            stmt = stmt.where(
                or_(
                    CoinTransaction.created_at < last.created_at,
                    and_(CoinTransaction.created_at == last.created_at, CoinTransaction.id < last.id),
                )
            )
        rows = (await db.execute(stmt.order_by(*_newest_first()).limit(page_size))).scalars().all()
        for row in rows:
            yield row
        if len(rows) < page_size:
            return
        last = rows[-1]


@dataclass
class Reconciliation:
    user_id: int
    balance: int
    replayed: int
    transactions: int
    first_mismatch_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.first_mismatch_id is None and self.balance == self.replayed


async def reconcile(db: AsyncSession, user_id: int) -> Reconciliation:
    """Replay the log oldest first and compare it with the stored snapshots."""
    balance = await get_balance(db, user_id)
    rows = (
        await db.execute(
            select(CoinTransaction)
            .where(CoinTransaction.user_id == user_id)
            .order_by(CoinTransaction.created_at.asc(), CoinTransaction.id.asc())
        )
    ).scalars().all()

    running = 0
    mismatch: int | None = None
    for tx in rows:
        running += tx.signed_amount
        if mismatch is None and (running != tx.balance_after or running < 0):
            mismatch = tx.id

    result = Reconciliation(
        user_id=user_id, balance=balance, replayed=running, transactions=len(rows), first_mismatch_id=mismatch
    )
    if not result.ok:
        logger.warning(
            "reconciliation failed user=%s balance=%s replayed=%s first_mismatch=%s",
            user_id, balance, running, mismatch,
        )
    return result
