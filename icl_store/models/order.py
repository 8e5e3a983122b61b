from __future__ import annotations

import random
import time
from datetime import datetime
from typing import Literal, get_args

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from icl_store.db import Base

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned"]
PaymentMethod = Literal["cod", "upi", "card", "wallet"]

ORDER_STATUSES: tuple[str, ...] = get_args(OrderStatus)


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))[-8:]
    return f"ICL{timestamp}{random.randint(0, 999):03d}"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, default=generate_order_number)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    shipping_address: Mapped[dict] = mapped_column(JSON)
    payment_method: Mapped[str] = mapped_column(String(16))
    payment_status: Mapped[str] = mapped_column(String(16), default="pending")

    # frozen at checkout
    subtotal: Mapped[int] = mapped_column(Integer)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    coupon_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    coins_used: Mapped[int] = mapped_column(Integer, default=0)
    coins_discount: Mapped[int] = mapped_column(Integer, default=0)
    shipping_cost: Mapped[int] = mapped_column(Integer, default=0)
    total: Mapped[int] = mapped_column(Integer)
    coins_earned: Mapped[int] = mapped_column(Integer, default=0)

    # ledger bookkeeping so each side effect runs at most once
    coins_credited: Mapped[bool] = mapped_column(Boolean, default=False)
    coins_debited: Mapped[bool] = mapped_column(Boolean, default=False)
    coins_refunded: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(16), nullable=True)  # customer/admin/system
    cancellation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan", order_by="OrderItem.id"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    name: Mapped[str] = mapped_column(String(128))
    size: Mapped[str] = mapped_column(String(16))
    quantity: Mapped[int] = mapped_column(Integer)
    price: Mapped[int] = mapped_column(Integer)
    total: Mapped[int] = mapped_column(Integer)

    order: Mapped[Order] = relationship(back_populates="items")
