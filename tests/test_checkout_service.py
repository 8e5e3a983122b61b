from __future__ import annotations

import pytest
from sqlalchemy import func, select, update

from icl_store.core.errors import (
    ConcurrentModification,
    EmptyCart,
    InsufficientBalance,
    OutOfStock,
    ProductUnavailable,
    TransientError,
)
from icl_store.models.catalog import ProductSize
from icl_store.models.coins import CoinTransaction
from icl_store.models.order import Order
from icl_store.services import cart_service, checkout_service, ledger_service
from icl_store.services.checkout_service import CheckoutRequest
from tests.factories import SHIPPING_ADDRESS, make_product, make_user


def _request(coins: int = 0, method: str = "upi") -> CheckoutRequest:
    return CheckoutRequest(payment_method=method, shipping_address=SHIPPING_ADDRESS, coins_requested=coins)


async def _order_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(Order))).scalar_one()


async def test_quote_then_commit_freezes_the_quoted_totals(session, config) -> None:
    user = await make_user(session, coins=300)
    tee = await make_product(session, price=1300)
    await cart_service.add_item(session, user.id, tee.id, "M", 2)
    await cart_service.apply_coupon(session, user.id, "WELCOME10")

    quoted = await checkout_service.quote_cart(session, user.id, _request(coins=100), config)
    order = await checkout_service.place_order(session, user.id, _request(coins=100), config)

    assert order.subtotal == quoted.subtotal == 2600
    assert order.discount_amount == quoted.discount_amount == 260
    assert order.coins_used == quoted.coins_used == 100
    assert order.coins_discount == quoted.coins_discount
    assert order.shipping_cost == quoted.shipping_cost == 0
    assert order.total == quoted.total == 2240
    assert order.coins_earned == quoted.coins_earned
    assert order.status == "pending"
    assert order.coupon_code == "WELCOME10"


async def test_commit_debits_coins_with_order_reference(session, config) -> None:
    user = await make_user(session, coins=150)
    tee = await make_product(session, price=2500)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)

    order = await checkout_service.place_order(session, user.id, _request(coins=100), config)

    assert order.total == 2400
    assert await ledger_service.get_balance(session, user.id) == 50
    tx = (
        await session.execute(select(CoinTransaction).where(CoinTransaction.type == "redeemed"))
    ).scalar_one()
    assert tx.order_id == order.id
    assert tx.order_number == order.order_number
    assert tx.balance_after == 50


async def test_commit_without_coins_writes_no_transaction(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=1500)
    await cart_service.add_item(session, user.id, tee.id, "L", 1)

    order = await checkout_service.place_order(session, user.id, _request(method="cod"), config)

    assert order.total == 1500 + config.flat_shipping_fee + config.cod_surcharge
    _, total = await ledger_service.list_transactions(session, user.id)
    assert total == 0


async def test_commit_decrements_stock_and_clears_cart(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=500, stock=5)
    await cart_service.add_item(session, user.id, tee.id, "M", 3)

    await checkout_service.place_order(session, user.id, _request(), config)

    size = (
        await session.execute(select(ProductSize).where(ProductSize.product_id == tee.id, ProductSize.size == "M"))
    ).scalar_one()
    assert size.stock == 2
    assert await cart_service.get_items(session, user.id) == []


async def test_redeeming_exact_balance_succeeds(session, config) -> None:
    user = await make_user(session, coins=100)
    tee = await make_product(session, price=1000)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)

    order = await checkout_service.place_order(session, user.id, _request(coins=100), config)

    assert order.coins_used == 100
    assert await ledger_service.get_balance(session, user.id) == 0


async def test_redeeming_one_more_than_balance_fails(session, config) -> None:
    user = await make_user(session, coins=100)
    tee = await make_product(session, price=1000)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)

    with pytest.raises(InsufficientBalance):
        await checkout_service.place_order(session, user.id, _request(coins=101), config)

    assert await _order_count(session) == 0
    assert await ledger_service.get_balance(session, user.id) == 100


async def test_failure_after_debit_rolls_everything_back(session, config, monkeypatch) -> None:
    user = await make_user(session, coins=200)
    tee = await make_product(session, price=1000)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    await session.commit()
    user_id = user.id

    async def boom(db, uid):
        raise RuntimeError("store went away")

    monkeypatch.setattr(checkout_service.cart_service, "clear", boom)

    with pytest.raises(RuntimeError):
        await checkout_service.place_order(session, user_id, _request(coins=100), config)
    await session.rollback()

    assert await ledger_service.get_balance(session, user_id) == 200
    assert await _order_count(session) == 0
    _, total = await ledger_service.list_transactions(session, user_id)
    assert total == 1
    report = await ledger_service.reconcile(session, user_id)
    assert report.ok


async def test_empty_cart_is_rejected(session, config) -> None:
    user = await make_user(session)

    with pytest.raises(EmptyCart):
        await checkout_service.place_order(session, user.id, _request(), config)


async def test_stock_is_rechecked_at_checkout(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=700, stock=2)
    await cart_service.add_item(session, user.id, tee.id, "M", 2)
    tee.sizes[0].stock = 1
    await session.flush()

    with pytest.raises(OutOfStock):
        await checkout_service.place_order(session, user.id, _request(), config)


async def test_inactive_product_blocks_checkout(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=700)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    tee.is_active = False
    await session.flush()

    with pytest.raises(ProductUnavailable):
        await checkout_service.place_order(session, user.id, _request(), config)


async def test_price_change_after_adding_does_not_reprice_cart(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=1000)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    tee.price = 5000
    await session.flush()

    order = await checkout_service.place_order(session, user.id, _request(), config)

    assert order.subtotal == 1000
    assert order.items[0].price == 1000


class _FakeSession:
    def __init__(self) -> None:
        self.rollbacks = 0

    async def rollback(self) -> None:
        self.rollbacks += 1


async def test_with_retries_retries_transient_errors() -> None:
    db = _FakeSession()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientError("timeout")
        return "done"

    result = await checkout_service.with_retries(db, flaky, attempts=3, backoff=0)

    assert result == "done"
    assert len(calls) == 3
    assert db.rollbacks == 2


async def test_with_retries_gives_up_after_max_attempts() -> None:
    db = _FakeSession()

    async def always_down():
        raise TransientError("timeout")

    with pytest.raises(TransientError):
        await checkout_service.with_retries(db, always_down, attempts=2, backoff=0)
    assert db.rollbacks == 2


async def test_with_retries_retries_conflicts_once() -> None:
    db = _FakeSession()
    calls = []

    async def conflicted():
        calls.append(1)
        raise ConcurrentModification()

    with pytest.raises(ConcurrentModification):
        await checkout_service.with_retries(db, conflicted, attempts=3, backoff=0)
    assert len(calls) == 2


async def _stock(session, product_id: int, size: str = "M") -> int:
    row = (
        await session.execute(
            select(ProductSize)
            .where(ProductSize.product_id == product_id, ProductSize.size == size)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    return row.stock


async def _sell_elsewhere(session, product_id: int, remaining: int) -> None:
    # a write from another checkout; objects already loaded in this session keep the old value
    await session.execute(
        update(ProductSize)
        .where(ProductSize.product_id == product_id, ProductSize.size == "M")
        .values(stock=remaining)
        .execution_options(synchronize_session=False)
    )


async def test_checkout_checks_stock_from_the_store_not_a_loaded_copy(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=700, stock=1)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    await _sell_elsewhere(session, tee.id, 0)

    with pytest.raises(OutOfStock):
        await checkout_service.place_order(session, user.id, _request(), config)


async def test_checkout_decrements_the_current_stock_level(session, config) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=700, stock=10)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    await _sell_elsewhere(session, tee.id, 4)

    await checkout_service.place_order(session, user.id, _request(), config)

    assert await _stock(session, tee.id) == 3


async def test_order_number_clash_is_retried_with_a_fresh_number(session, config, monkeypatch) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=800)
    user_id, tee_id = user.id, tee.id
    numbers = iter(["ICL12345678001", "ICL12345678001", "ICL12345678002"])
    monkeypatch.setattr(checkout_service, "generate_order_number", lambda: next(numbers))

    await cart_service.add_item(session, user_id, tee_id, "M", 1)
    first = await checkout_service.place_order(session, user_id, _request(), config)
    first_number = first.order_number
    await cart_service.add_item(session, user_id, tee_id, "M", 1)
    await session.commit()

    second = await checkout_service.with_retries(
        session,
        lambda: checkout_service.place_order(session, user_id, _request(), config),
        attempts=3,
        backoff=0,
    )

    assert first_number == "ICL12345678001"
    assert second.order_number == "ICL12345678002"
    assert await _order_count(session) == 2


async def test_order_number_clash_surfaces_as_transient(session, config, monkeypatch) -> None:
    user = await make_user(session)
    tee = await make_product(session, price=800)
    monkeypatch.setattr(checkout_service, "generate_order_number", lambda: "ICL12345678001")
    await cart_service.add_item(session, user.id, tee.id, "M", 1)
    await checkout_service.place_order(session, user.id, _request(), config)
    await cart_service.add_item(session, user.id, tee.id, "M", 1)

    with pytest.raises(TransientError):
        await checkout_service.place_order(session, user.id, _request(), config)
