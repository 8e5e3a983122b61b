from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from icl_store.core.settings import settings
from icl_store.db import get_db
from icl_store.deps import get_current_user
from icl_store.models.user import User
from icl_store.services import ledger_service
from icl_store.services.security import hash_password, verify_password, create_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class RegisterIn(BaseModel):
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=64)
    last_name: str = Field(default="", max_length=64)
    password: str = Field(min_length=6, max_length=72)
    phone: str | None = Field(default=None, max_length=32)


class LoginIn(BaseModel):
    email: str
    password: str


def _user_out(user: User, coins: int) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "coins": coins,
    }


@router.post("/register")
async def register(payload: RegisterIn, response: Response, db: AsyncSession = Depends(get_db)):
    email = payload.email.strip().lower()
    exists = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=400, detail="user_exists")

    user = User(
        email=email,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        password_hash=hash_password(payload.password),
        phone=(payload.phone.strip() if payload.phone else None),
        created_at=datetime.utcnow(),
    )
    db.add(user)
    await db.flush()
    # every account starts with an empty wallet
    await ledger_service.create_wallet(db, user.id)
    logger.info("registered user id=%s", user.id)

    token = create_token({"type": "user", "uid": user.id})
    response.set_cookie(settings.COOKIE_NAME, token, httponly=True, samesite="lax")
    return {"ok": True, "user": _user_out(user, 0)}


@router.post("/login")
async def login(payload: LoginIn, response: Response, db: AsyncSession = Depends(get_db)):
    user = (await db.execute(select(User).where(User.email == payload.email.strip().lower()))).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="invalid_credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="account_disabled")

    user.last_login_at = datetime.utcnow()
    token = create_token({"type": "user", "uid": user.id})
    response.set_cookie(settings.COOKIE_NAME, token, httponly=True, samesite="lax")
    coins = await ledger_service.get_balance(db, user.id)
    return {"ok": True, "user": _user_out(user, coins)}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(settings.COOKIE_NAME)
    return {"ok": True}


@router.get("/me")
async def me(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return _user_out(user, await ledger_service.get_balance(db, user.id))
