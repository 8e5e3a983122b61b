from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from icl_store.core.errors import OrderNotFound, UserNotFound
from icl_store.core.settings import settings
from icl_store.db import get_db
from icl_store.deps import get_current_admin
from icl_store.models.admin import Admin
from icl_store.models.catalog import Product
from icl_store.models.coins import CoinWallet
from icl_store.models.order import Order, OrderStatus
from icl_store.models.user import User
from icl_store.routers.common import (
    MAX_COINS,
    MAX_ID,
    MAX_PAGE,
    MAX_PRICE,
    MAX_STOCK,
    order_out,
    pagination,
    product_out,
    transaction_out,
)
from icl_store.services import catalog_service, coin_report_service, ledger_service
from icl_store.services.security import verify_password, hash_password, create_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


class AdminLoginIn(BaseModel):
    username: str
    password: str


class ChangePwdIn(BaseModel):
    old_password: str
    new_password: str = Field(min_length=6, max_length=72)


class AdjustCoinsIn(BaseModel):
    amount: int = Field(gt=0, le=MAX_COINS)
    action: Literal["add", "remove"]
    note: str | None = Field(default=None, max_length=255)


class UserUpdateIn(BaseModel):
    # coins are deliberately absent: balances only move through /coins/adjust
    first_name: str | None = Field(default=None, max_length=64)
    last_name: str | None = Field(default=None, max_length=64)
    phone: str | None = Field(default=None, max_length=32)
    is_active: bool | None = None


class SizeIn(BaseModel):
    size: str = Field(min_length=1, max_length=16)
    stock: int = Field(ge=0, le=MAX_STOCK)


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    price: int = Field(gt=0, le=MAX_PRICE)
    coins_reward: int = Field(default=0, ge=0, le=MAX_COINS)
    is_active: bool = True
    sizes: list[SizeIn] = Field(default_factory=list, max_length=20)


class ProductUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    price: int | None = Field(default=None, gt=0, le=MAX_PRICE)
    coins_reward: int | None = Field(default=None, ge=0, le=MAX_COINS)
    is_active: bool | None = None
    # when given, replaces the size list with absolute stock levels
    sizes: list[SizeIn] | None = Field(default=None, max_length=20)


@router.post("/login")
async def admin_login(payload: AdminLoginIn, response: Response, db: AsyncSession = Depends(get_db)):
    admin = (await db.execute(select(Admin).where(Admin.username == payload.username.strip()))).scalar_one_or_none()
    if not admin or not admin.is_active:
        raise HTTPException(status_code=400, detail="invalid_credentials")
    if not verify_password(payload.password, admin.password_hash):
        raise HTTPException(status_code=400, detail="invalid_credentials")
    token = create_token({"type": "admin", "aid": admin.id})
    response.set_cookie(settings.ADMIN_COOKIE_NAME, token, httponly=True, samesite="lax")
    return {"ok": True}


@router.post("/logout")
async def admin_logout(response: Response):
    response.delete_cookie(settings.ADMIN_COOKIE_NAME)
    return {"ok": True}


@router.get("/me")
async def admin_me(admin: Admin = Depends(get_current_admin)):
    return {"id": admin.id, "username": admin.username}


@router.post("/change-password")
async def change_password(payload: ChangePwdIn, admin: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    if not verify_password(payload.old_password, admin.password_hash):
        raise HTTPException(status_code=400, detail="wrong_password")
    admin.password_hash = hash_password(payload.new_password)
    return {"ok": True}


@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(50, ge=1, le=200),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    total = (await db.execute(select(func.count()).select_from(User))).scalar_one()
    rows = (
        await db.execute(
            select(User, func.coalesce(CoinWallet.coins, 0))
            .outerjoin(CoinWallet, CoinWallet.user_id == User.id)
            .order_by(User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()
    items = [
        {
            "id": u.id,
            "email": u.email,
            "first_name": u.first_name,
            "last_name": u.last_name,
            "phone": u.phone,
            "is_active": u.is_active,
            "coins": coins,
        }
        for u, coins in rows
    ]
    return {"items": items, "pagination": pagination(page, limit, total)}


@router.put("/users/{user_id}")
async def update_user(
    payload: UserUpdateIn,
    user_id: int = Path(ge=1, le=MAX_ID),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await db.get(User, user_id)
    if not user:
        raise UserNotFound(f"user {user_id} does not exist")
    for k, v in payload.model_dump(exclude_none=True).items():
        setattr(user, k, v)
    return {"ok": True}


@router.post("/users/{user_id}/coins/adjust")
async def adjust_coins(
    payload: AdjustCoinsIn,
    user_id: int = Path(ge=1, le=MAX_ID),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    note = payload.note or f"Adjusted by admin {admin.username}"
    if payload.action == "add":
        tx = await ledger_service.credit(db, user_id, payload.amount, note, type="admin_added")
    else:
        tx = await ledger_service.debit(db, user_id, payload.amount, note, type="admin_removed")
    logger.info("admin %s %s %s coins for user %s", admin.username, payload.action, payload.amount, user_id)
    return {"ok": True, "coins": tx.balance_after, "transaction": transaction_out(tx)}


@router.get("/users/{user_id}/coins/reconcile")
async def reconcile_coins(
    user_id: int = Path(ge=1, le=MAX_ID), _: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)
):
    r = await ledger_service.reconcile(db, user_id)
    return {
        "user_id": r.user_id,
        "ok": r.ok,
        "balance": r.balance,
        "replayed": r.replayed,
        "transactions": r.transactions,
        "first_mismatch_id": r.first_mismatch_id,
    }


@router.get("/coins/transactions")
async def coin_transactions(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(50, ge=1, le=200),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    items, total = await coin_report_service.all_transactions(db, page, limit)
    return {"items": [transaction_out(t) for t in items], "pagination": pagination(page, limit, total)}


@router.get("/coins/users")
async def coin_users(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(50, ge=1, le=200),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    items, total = await coin_report_service.user_balances(db, page, limit)
    return {"items": items, "pagination": pagination(page, limit, total)}


@router.get("/coins/stats")
async def coin_stats(_: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    return await coin_report_service.stats(db)


@router.get("/orders")
async def list_orders(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(20, ge=1, le=200),
    status: OrderStatus | None = None,
    user_id: int | None = Query(None, ge=1, le=MAX_ID),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    cond = []
    if status:
        cond.append(Order.status == status)
    if user_id:
        cond.append(Order.user_id == user_id)
    total = (await db.execute(select(func.count()).select_from(Order).where(*cond))).scalar_one()
    rows = (
        await db.execute(
            select(Order).where(*cond).order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
        )
    ).scalars().all()
    return {"items": [order_out(o) for o in rows], "pagination": pagination(page, limit, total)}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: int = Path(ge=1, le=MAX_ID), _: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)
):
    order = await db.get(Order, order_id)
    if not order:
        raise OrderNotFound(f"order {order_id} does not exist")
    return order_out(order)


@router.get("/products")
async def list_products(_: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    rows = (await db.execute(select(Product).order_by(Product.id))).scalars().all()
    return [product_out(p) for p in rows]


@router.post("/products", status_code=201)
async def create_product(payload: ProductIn, _: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    product = await catalog_service.create_product(
        db,
        payload.name,
        payload.price,
        [(s.size, s.stock) for s in payload.sizes],
        coins_reward=payload.coins_reward,
        is_active=payload.is_active,
    )
    return product_out(product)


@router.put("/products/{product_id}")
async def update_product(
    payload: ProductUpdateIn,
    product_id: int = Path(ge=1, le=MAX_ID),
    _: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    fields = payload.model_dump(exclude_none=True, exclude={"sizes"})
    sizes = [(s.size, s.stock) for s in payload.sizes] if payload.sizes is not None else None
    product = await catalog_service.update_product(db, product_id, sizes=sizes, **fields)
    return product_out(product)
