from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from icl_store.core.settings import PricingConfig
from icl_store.db import Base, get_db
from icl_store.models import all_models  # noqa: F401
from icl_store.services.admin_bootstrap import ensure_default_admin
from icl_store.services.bootstrap_defaults import ensure_default_coupons


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        await ensure_default_coupons(session)
        await session.commit()
        yield session


@pytest.fixture
def config() -> PricingConfig:
    return PricingConfig()


@pytest.fixture
async def client(session_factory):
    from icl_store.api import create_app

    async with session_factory() as s:
        await ensure_default_coupons(s)
        await ensure_default_admin(s)
        await s.commit()

    async def _get_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app = create_app(init_database=False)
    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
