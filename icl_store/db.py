from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from icl_store.core.settings import settings


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
)

AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncSession:
    # one unit of work per request: commit on success, roll everything back otherwise
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables on startup and seed default coupons/admin."""
    from icl_store.models import all_models  # noqa: F401
    from sqlalchemy import text
    from icl_store.services.bootstrap_defaults import ensure_default_coupons
    from icl_store.services.admin_bootstrap import ensure_default_admin

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if settings.DATABASE_URL.startswith("sqlite"):
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))

    async with AsyncSessionLocal() as session:
        await ensure_default_coupons(session)
        await ensure_default_admin(session)
        await session.commit()
