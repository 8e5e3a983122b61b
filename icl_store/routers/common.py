from __future__ import annotations

import math

from icl_store.models.catalog import Product
from icl_store.models.coins import CoinTransaction
from icl_store.models.order import Order
from icl_store.services.pricing_service import PricingResult

# request bounds; integer columns are 64-bit
MAX_ID = 2**63 - 1
MAX_PAGE = 100_000
MAX_COINS = 1_000_000
MAX_PRICE = 10_000_000
MAX_STOCK = 100_000


def pagination(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def transaction_out(tx: CoinTransaction) -> dict:
    sign = "+" if tx.signed_amount > 0 else "-"
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "type": tx.type,
        "amount": tx.amount,
        "formatted_amount": f"{sign}{tx.amount}",
        "description": tx.description,
        "order_id": tx.order_id,
        "order_number": tx.order_number,
        "balance_after": tx.balance_after,
        "created_at": tx.created_at.isoformat(),
    }


def pricing_out(p: PricingResult) -> dict:
    return {
        "subtotal": p.subtotal,
        "discount_amount": p.discount_amount,
        "coins_requested": p.coins_requested,
        "coins_used": p.coins_used,
        "coins_discount": p.coins_discount,
        "coins_clamped": p.coins_clamped,
        "shipping_cost": p.shipping_cost,
        "total": p.total,
        "coins_earned": p.coins_earned,
    }


def order_out(o: Order) -> dict:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "user_id": o.user_id,
        "status": o.status,
        "payment_method": o.payment_method,
        "payment_status": o.payment_status,
        "shipping_address": o.shipping_address,
        "items": [
            {"product_id": i.product_id, "name": i.name, "size": i.size, "quantity": i.quantity, "price": i.price, "total": i.total}
            for i in o.items
        ],
        "subtotal": o.subtotal,
        "discount_amount": o.discount_amount,
        "coupon_code": o.coupon_code,
        "coins_used": o.coins_used,
        "coins_discount": o.coins_discount,
        "shipping_cost": o.shipping_cost,
        "total": o.total,
        "coins_earned": o.coins_earned,
        "coins_credited": o.coins_credited,
        "notes": o.notes,
        "cancelled_by": o.cancelled_by,
        "cancellation_reason": o.cancellation_reason,
        "delivered_at": o.delivered_at.isoformat() if o.delivered_at else None,
        "cancelled_at": o.cancelled_at.isoformat() if o.cancelled_at else None,
        "created_at": o.created_at.isoformat() if o.created_at else None,
    }


def product_out(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "price": p.price,
        "is_active": p.is_active,
        "coins_reward": p.coins_reward,
        "sizes": [{"size": s.size, "stock": s.stock} for s in p.sizes],
    }
