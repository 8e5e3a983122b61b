from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import select, update

from icl_store.core.errors import ConcurrentModification, InsufficientBalance, InvalidAmount, UserNotFound
from icl_store.models.coins import CoinTransaction, CoinWallet
from icl_store.services import ledger_service
from tests.factories import make_user


async def test_new_account_starts_with_zero_coins(session) -> None:
    user = await make_user(session)

    assert await ledger_service.get_balance(session, user.id) == 0
    items, total = await ledger_service.list_transactions(session, user.id)
    assert items == [] and total == 0


async def test_admin_credit_records_balance_after(session) -> None:
    user = await make_user(session, coins=10)

    tx = await ledger_service.credit(session, user.id, 50, "Goodwill", type="admin_added")

    assert await ledger_service.get_balance(session, user.id) == 60
    assert tx.type == "admin_added"
    assert tx.amount == 50
    assert tx.balance_after == 60
    rows = (
        await session.execute(select(CoinTransaction).where(CoinTransaction.type == "admin_added", CoinTransaction.amount == 50))
    ).scalars().all()
    assert len(rows) == 1


async def test_debit_reduces_balance(session) -> None:
    user = await make_user(session, coins=100)

    tx = await ledger_service.debit(session, user.id, 30, "Applied to order")

    assert tx.type == "redeemed"
    assert tx.balance_after == 70
    assert await ledger_service.get_balance(session, user.id) == 70


@pytest.mark.parametrize("amount", [0, -5])
async def test_non_positive_amounts_are_rejected(session, amount) -> None:
    user = await make_user(session, coins=20)

    with pytest.raises(InvalidAmount):
        await ledger_service.credit(session, user.id, amount, "nope")
    with pytest.raises(InvalidAmount):
        await ledger_service.debit(session, user.id, amount, "nope")

    assert await ledger_service.get_balance(session, user.id) == 20


async def test_overdraw_fails_and_leaves_balance_untouched(session) -> None:
    user = await make_user(session, coins=40)

    with pytest.raises(InsufficientBalance):
        await ledger_service.debit(session, user.id, 41, "too much", type="admin_removed")

    assert await ledger_service.get_balance(session, user.id) == 40
    _, total = await ledger_service.list_transactions(session, user.id)
    assert total == 1


async def test_zero_balance_user_cannot_redeem_one_coin(session) -> None:
    user = await make_user(session)

    with pytest.raises(InsufficientBalance):
        await ledger_service.debit(session, user.id, 1, "redeem")


async def test_transaction_type_must_match_direction(session) -> None:
    user = await make_user(session, coins=5)

    with pytest.raises(ValueError):
        await ledger_service.credit(session, user.id, 1, "bad", type="redeemed")
    with pytest.raises(ValueError):
        await ledger_service.debit(session, user.id, 1, "bad", type="earned")


async def test_unknown_user(session) -> None:
    with pytest.raises(UserNotFound):
        await ledger_service.credit(session, 9999, 5, "ghost")
    with pytest.raises(UserNotFound):
        await ledger_service.get_balance(session, 9999)


async def test_replaying_the_log_reproduces_every_snapshot(session) -> None:
    user = await make_user(session)
    ops = [
        ("credit", 120, "earned"),
        ("debit", 20, "redeemed"),
        ("credit", 5, "admin_added"),
        ("debit", 105, "admin_removed"),
        ("credit", 33, "earned"),
    ]
    for action, amount, type_ in ops:
        fn = ledger_service.credit if action == "credit" else ledger_service.debit
        await fn(session, user.id, amount, action, type=type_)

    report = await ledger_service.reconcile(session, user.id)

    assert report.ok
    assert report.transactions == len(ops)
    assert report.balance == report.replayed == 33


async def test_reconcile_flags_a_tampered_snapshot(session) -> None:
    user = await make_user(session, coins=50)
    tx = await ledger_service.credit(session, user.id, 10, "bonus")
    tx.balance_after = 999
    await session.flush()

    report = await ledger_service.reconcile(session, user.id)

    assert not report.ok
    assert report.first_mismatch_id == tx.id


async def test_listing_is_newest_first_with_insertion_order_tiebreak(session) -> None:
    user = await make_user(session)
    for amount in (1, 2, 3):
        await ledger_service.credit(session, user.id, amount, f"c{amount}")
    # force identical timestamps
    same = datetime(2026, 1, 1, 12, 0, 0)
    await session.execute(update(CoinTransaction).where(CoinTransaction.user_id == user.id).values(created_at=same))

    items, total = await ledger_service.list_transactions(session, user.id, page=1, limit=2)

    assert total == 3
    assert [t.amount for t in items] == [3, 2]
    rest, _ = await ledger_service.list_transactions(session, user.id, page=2, limit=2)
    assert [t.amount for t in rest] == [1]


async def test_iter_transactions_is_lazy_and_restartable(session) -> None:
    user = await make_user(session)
    for amount in range(1, 8):
        await ledger_service.credit(session, user.id, amount, "c")

    first = [t.amount async for t in ledger_service.iter_transactions(session, user.id, page_size=3)]
    second = [t.amount async for t in ledger_service.iter_transactions(session, user.id, page_size=3)]

    assert first == [7, 6, 5, 4, 3, 2, 1]
    assert second == first


async def test_stale_wallet_version_raises_concurrent_modification(session) -> None:
    user = await make_user(session, coins=10)
    wallet = await session.get(CoinWallet, user.id)
    await session.execute(
        update(CoinWallet)
        .where(CoinWallet.user_id == user.id)
        .values(version=CoinWallet.version + 1)
        .execution_options(synchronize_session=False)
    )

    wallet.coins += 5
    with pytest.raises(ConcurrentModification):
        await ledger_service.flush_or_raise(session)
