from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from icl_store.core.settings import settings
from icl_store.models.admin import Admin
from icl_store.services.security import hash_password

logger = logging.getLogger(__name__)


async def ensure_default_admin(db: AsyncSession) -> None:
    admin = (await db.execute(select(Admin).where(Admin.username == settings.DEFAULT_ADMIN_USERNAME))).scalar_one_or_none()
    if admin:
        return
    db.add(Admin(username=settings.DEFAULT_ADMIN_USERNAME, password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD)))
    logger.info("created default admin %s", settings.DEFAULT_ADMIN_USERNAME)
