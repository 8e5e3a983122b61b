from __future__ import annotations

from fastapi import Depends, HTTPException, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from icl_store.core.settings import settings
from icl_store.db import get_db
from icl_store.services.security import decode_token
from icl_store.models.user import User
from icl_store.models.admin import Admin
from icl_store.routers.common import MAX_ID


async def _user_from_cookie(request: Request, db: AsyncSession) -> User | None:
    token = request.cookies.get(settings.COOKIE_NAME)
    payload = decode_token(token, "user") if token else None
    if not payload or not payload.get("uid"):
        return None
    user = (await db.execute(select(User).where(User.id == int(payload["uid"])))).scalar_one_or_none()
    if not user or not user.is_active:
        return None
    return user


async def _admin_from_cookie(request: Request, db: AsyncSession) -> Admin | None:
    token = request.cookies.get(settings.ADMIN_COOKIE_NAME)
    payload = decode_token(token, "admin") if token else None
    if not payload or not payload.get("aid"):
        return None
    admin = (await db.execute(select(Admin).where(Admin.id == int(payload["aid"])))).scalar_one_or_none()
    if not admin or not admin.is_active:
        return None
    return admin


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    if not request.cookies.get(settings.COOKIE_NAME):
        raise HTTPException(status_code=401, detail="not_logged_in")
    user = await _user_from_cookie(request, db)
    if not user:
        raise HTTPException(status_code=401, detail="invalid_token")
    return user


async def get_current_admin(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Admin:
    if not request.cookies.get(settings.ADMIN_COOKIE_NAME):
        raise HTTPException(status_code=401, detail="admin_not_logged_in")
    admin = await _admin_from_cookie(request, db)
    if not admin:
        raise HTTPException(status_code=401, detail="invalid_admin_token")
    return admin


async def require_self_or_admin(
    request: Request,
    user_id: int = Path(ge=1, le=MAX_ID),
    db: AsyncSession = Depends(get_db),
) -> int:
    """Gate for /users/{user_id}/... routes: the owner or any admin."""
    if await _admin_from_cookie(request, db):
        return user_id
    user = await _user_from_cookie(request, db)
    if not user:
        raise HTTPException(status_code=401, detail="not_logged_in")
    if user.id != user_id:
        raise HTTPException(status_code=403, detail="forbidden")
    return user_id
