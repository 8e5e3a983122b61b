from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, ForeignKey, DateTime, String, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from icl_store.db import Base

CREDIT_TYPES = ("earned", "admin_added")
DEBIT_TYPES = ("redeemed", "admin_removed")

class CoinWallet(Base):
    __tablename__ = "coin_wallets"
    __table_args__ = (CheckConstraint("coins >= 0", name="ck_coin_wallets_non_negative"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    coins: Mapped[int] = mapped_column(Integer, default=0)
    # bumped on every UPDATE; a stale row raises StaleDataError on flush
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class CoinTransaction(Base):
    __tablename__ = "coin_transactions"
    __table_args__ = (
        Index("ix_coin_transactions_user_created", "user_id", "created_at"),
        CheckConstraint("amount > 0", name="ck_coin_transactions_positive"),
        CheckConstraint("balance_after >= 0", name="ck_coin_transactions_balance"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    type: Mapped[str] = mapped_column(String(16), index=True)  # earned/redeemed/admin_added/admin_removed
    amount: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(255))
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    order_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    order: Mapped["Order | None"] = relationship("Order", lazy="raise")

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type in CREDIT_TYPES else -self.amount
