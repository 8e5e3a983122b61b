from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from icl_store.core.errors import InvalidTransition, OrderNotCancellable, OrderNotFound
from icl_store.models.order import Order, ORDER_STATUSES
from icl_store.services import catalog_service, ledger_service

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "processing", "cancelled", "returned"}),
    "confirmed": frozenset({"processing", "shipped", "cancelled", "returned"}),
    "processing": frozenset({"shipped", "cancelled", "returned"}),
    "shipped": frozenset({"delivered", "cancelled", "returned"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
    "returned": frozenset(),
}

CUSTOMER_CANCELLABLE = frozenset({"pending", "confirmed"})


@dataclass(frozen=True)
class LedgerOp:
    action: str  # credit/debit
    type: str
    amount: int
    description: str
    marks: str  # Order flag set once the op has run


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def plan_side_effects(old_status: str, new_status: str, order: Order) -> list[LedgerOp]:
    if old_status == new_status:
        return []

    ops: list[LedgerOp] = []
    if new_status == "delivered" and order.coins_earned > 0 and not order.coins_credited:
        ops.append(LedgerOp("credit", "earned", order.coins_earned, "Purchase completed", "coins_credited"))

    if new_status in ("cancelled", "returned"):
        if order.coins_used > 0 and not order.coins_refunded:
            ops.append(
                LedgerOp("credit", "admin_added", order.coins_used, f"Order {new_status} - coins refunded", "coins_refunded")
            )
        if order.coins_earned > 0 and order.coins_credited and not order.coins_debited:
            ops.append(
                LedgerOp("debit", "admin_removed", order.coins_earned, f"Order {new_status} - coins debited", "coins_debited")
            )
    return ops


async def get_order(db: AsyncSession, order_id: int) -> Order:
    order = (
        await db.execute(
            select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not order:
        raise OrderNotFound(f"order {order_id} does not exist")
    return order


async def _apply(db: AsyncSession, order: Order, op: LedgerOp) -> None:
    if op.action == "credit":
        await ledger_service.credit(db, order.user_id, op.amount, op.description, type=op.type, order=order)
    else:
        await ledger_service.debit(db, order.user_id, op.amount, op.description, type=op.type, order=order)
    setattr(order, op.marks, True)


async def _restock(db: AsyncSession, order: Order) -> None:
    stock = await catalog_service.lock_sizes(db, [i.product_id for i in order.items])
    for item in order.items:
        row = stock.get((item.product_id, item.size))
        if row:
            row.stock += item.quantity


async def set_status(
    db: AsyncSession,
    order_id: int,
    new_status: str,
    notes: str | None = None,
    actor: str = "admin",
    reason: str | None = None,
) -> Order:
    order = await get_order(db, order_id)
    old_status = order.status

    if new_status not in ORDER_STATUSES:
        raise InvalidTransition(old_status, new_status)
    if notes:
        order.notes = notes
    if old_status == new_status:
        await ledger_service.flush_or_raise(db)
        return order
    if not can_transition(old_status, new_status):
        logger.warning("rejected transition order=%s %s -> %s", order.order_number, old_status, new_status)
        raise InvalidTransition(old_status, new_status)

    for op in plan_side_effects(old_status, new_status, order):
        await _apply(db, order, op)

    now = datetime.utcnow()
    order.status = new_status
    if new_status == "delivered":
        order.delivered_at = now
        if order.payment_method == "cod":
            order.payment_status = "completed"
    elif new_status in ("cancelled", "returned"):
        await _restock(db, order)
        if order.payment_status == "completed":
            order.payment_status = "refunded"
        if new_status == "cancelled":
            order.cancelled_at = now
            order.cancelled_by = actor
            order.cancellation_reason = reason

    await ledger_service.flush_or_raise(db)
    logger.info("order %s status %s -> %s by %s", order.order_number, old_status, new_status, actor)
    return order


async def cancel_order(db: AsyncSession, user_id: int, order_id: int, reason: str | None = None) -> Order:
    order = await get_order(db, order_id)
    if order.user_id != user_id:
        raise OrderNotFound(f"order {order_id} does not exist")
    if order.status == "cancelled":
        return order
    if order.status not in CUSTOMER_CANCELLABLE:
        raise OrderNotCancellable("order cannot be cancelled at this stage")
    return await set_status(db, order_id, "cancelled", actor="customer", reason=reason)
