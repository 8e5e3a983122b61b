from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import select, update

from icl_store.core.errors import InsufficientBalance, InvalidTransition, OrderNotCancellable, OrderNotFound
from icl_store.models.catalog import ProductSize
from icl_store.models.coins import CoinTransaction
from icl_store.models.order import ORDER_STATUSES
from icl_store.services import cart_service, checkout_service, ledger_service, order_status
from icl_store.services.checkout_service import CheckoutRequest
from icl_store.services.order_status import TRANSITIONS, LedgerOp, can_transition, plan_side_effects
from tests.factories import SHIPPING_ADDRESS, make_product, make_user


def _order(**overrides):
    fields = dict(coins_used=0, coins_earned=0, coins_credited=False, coins_debited=False, coins_refunded=False)
    fields.update(overrides)
    return SimpleNamespace(**fields)


async def _placed_order(session, config, *, coins: int = 0, balance: int = 0, price: int = 2500, stock: int = 10):
    user = await make_user(session, coins=balance)
    tee = await make_product(session, price=price, stock=stock)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    request = CheckoutRequest(payment_method="cod", shipping_address=SHIPPING_ADDRESS, coins_requested=coins)
    order = await checkout_service.place_order(session, user.id, request, config)
    return user, tee, order


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("pending", "confirmed", True),
        ("confirmed", "shipped", True),
        ("shipped", "delivered", True),
        ("pending", "cancelled", True),
        ("processing", "returned", True),
        ("delivered", "pending", False),
        ("cancelled", "confirmed", False),
        ("returned", "delivered", False),
        ("pending", "delivered", False),
        ("shipped", "confirmed", False),
    ],
)
def test_transition_graph(current, target, allowed) -> None:
    assert can_transition(current, target) is allowed


def test_graph_covers_every_status() -> None:
    assert set(TRANSITIONS) == set(ORDER_STATUSES)
    assert all(targets <= set(ORDER_STATUSES) for targets in TRANSITIONS.values())


def test_delivery_plans_reward_credit() -> None:
    ops = plan_side_effects("shipped", "delivered", _order(coins_earned=24))

    assert ops == [LedgerOp("credit", "earned", 24, "Purchase completed", "coins_credited")]


def test_delivery_does_not_credit_twice() -> None:
    assert plan_side_effects("shipped", "delivered", _order(coins_earned=24, coins_credited=True)) == []


def test_cancellation_plans_refund_of_redeemed_coins() -> None:
    ops = plan_side_effects("pending", "cancelled", _order(coins_used=30))

    assert ops == [LedgerOp("credit", "admin_added", 30, "Order cancelled - coins refunded", "coins_refunded")]


def test_unwinding_a_credited_order_reverses_earned_coins() -> None:
    ops = plan_side_effects("shipped", "returned", _order(coins_used=10, coins_earned=5, coins_credited=True))

    assert [op.action for op in ops] == ["credit", "debit"]
    assert ops[1].type == "admin_removed"
    assert ops[1].amount == 5


def test_same_status_plans_nothing() -> None:
    assert plan_side_effects("cancelled", "cancelled", _order(coins_used=30)) == []


async def test_cancelling_refunds_redeemed_coins_and_logs_it(session, config) -> None:
    user, _, order = await _placed_order(session, config, coins=30, balance=100)
    assert await ledger_service.get_balance(session, user.id) == 70

    updated = await order_status.set_status(session, order.id, "cancelled")

    assert updated.status == "cancelled"
    assert updated.coins_refunded is True
    assert updated.cancelled_by == "admin"
    assert await ledger_service.get_balance(session, user.id) == 100
    refund = (
        await session.execute(
            select(CoinTransaction).where(CoinTransaction.order_id == order.id, CoinTransaction.type == "admin_added")
        )
    ).scalar_one()
    assert refund.amount == 30
    assert refund.balance_after == 100
    assert (await ledger_service.reconcile(session, user.id)).ok


async def test_delivery_credits_earned_coins(session, config) -> None:
    user, _, order = await _placed_order(session, config, price=2500)
    for status in ("confirmed", "shipped", "delivered"):
        order = await order_status.set_status(session, order.id, status)

    assert order.coins_credited is True
    assert order.delivered_at is not None
    assert order.payment_status == "completed"
    assert await ledger_service.get_balance(session, user.id) == order.coins_earned == 25


async def test_repeating_the_current_status_is_a_noop(session, config) -> None:
    user, _, order = await _placed_order(session, config, coins=30, balance=30)
    await order_status.set_status(session, order.id, "cancelled")

    again = await order_status.set_status(session, order.id, "cancelled")

    assert again.status == "cancelled"
    assert await ledger_service.get_balance(session, user.id) == 30


async def test_illegal_transition_is_rejected(session, config) -> None:
    _, _, order = await _placed_order(session, config)
    await order_status.set_status(session, order.id, "cancelled")

    with pytest.raises(InvalidTransition) as exc:
        await order_status.set_status(session, order.id, "pending")

    assert exc.value.current == "cancelled"


async def test_unknown_status_is_rejected(session, config) -> None:
    _, _, order = await _placed_order(session, config)

    with pytest.raises(InvalidTransition):
        await order_status.set_status(session, order.id, "lost")


async def test_cancellation_restocks_items(session, config) -> None:
    _, tee, order = await _placed_order(session, config, stock=3)

    await order_status.set_status(session, order.id, "cancelled")

    size = (
        await session.execute(select(ProductSize).where(ProductSize.product_id == tee.id, ProductSize.size == "M"))
    ).scalar_one()
    assert size.stock == 3


async def test_customer_can_cancel_pending_order(session, config) -> None:
    user, _, order = await _placed_order(session, config, coins=20, balance=20)

    cancelled = await order_status.cancel_order(session, user.id, order.id, reason="changed my mind")

    assert cancelled.cancelled_by == "customer"
    assert cancelled.cancellation_reason == "changed my mind"
    assert await ledger_service.get_balance(session, user.id) == 20


async def test_customer_cannot_cancel_shipped_order(session, config) -> None:
    user, _, order = await _placed_order(session, config)
    await order_status.set_status(session, order.id, "confirmed")
    await order_status.set_status(session, order.id, "shipped")

    with pytest.raises(OrderNotCancellable):
        await order_status.cancel_order(session, user.id, order.id)


async def test_customer_cannot_cancel_someone_elses_order(session, config) -> None:
    _, _, order = await _placed_order(session, config)
    other = await make_user(session, email="other@example.com")

    with pytest.raises(OrderNotFound):
        await order_status.cancel_order(session, other.id, order.id)


async def test_reversal_fails_when_earned_coins_were_spent(session, config) -> None:
    user, _, order = await _placed_order(session, config)
    order.coins_credited = True
    await ledger_service.credit(session, user.id, order.coins_earned, "Purchase completed", order=order)
    await ledger_service.debit(session, user.id, order.coins_earned, "spent elsewhere")

    with pytest.raises(InsufficientBalance):
        await order_status.set_status(session, order.id, "returned")


async def test_restock_adds_to_the_current_stock_level(session, config) -> None:
    _, tee, order = await _placed_order(session, config, stock=10)
    # stock moved by other orders since this session loaded the row
    await session.execute(
        update(ProductSize)
        .where(ProductSize.product_id == tee.id, ProductSize.size == "M")
        .values(stock=4)
        .execution_options(synchronize_session=False)
    )

    await order_status.set_status(session, order.id, "cancelled")

    size = (
        await session.execute(
            select(ProductSize)
            .where(ProductSize.product_id == tee.id, ProductSize.size == "M")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert size.stock == 5
