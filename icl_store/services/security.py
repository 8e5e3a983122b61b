from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from jose import jwt, JWTError
from passlib.context import CryptContext

from icl_store.core.settings import settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def create_token(payload: dict[str, Any], days: int | None = None) -> str:
    exp_days = days if days is not None else settings.JWT_EXPIRE_DAYS
    data = dict(payload)
    data["exp"] = datetime.utcnow() + timedelta(days=exp_days)
    return jwt.encode(data, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str, kind: str) -> dict[str, Any] | None:
    """Decode a session cookie; None when invalid, expired or of the other kind."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return None
    if payload.get("type") != kind:
        return None
    return payload
