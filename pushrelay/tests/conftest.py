from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pushrelay.core.config import get_settings
from pushrelay.domain.models import Base
from pushrelay.persistence.db import build_engine, build_session_factory


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are lru_cached; tests that set env vars must not leak them into later tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def sqlite_engine(tmp_path) -> AsyncEngine:
    # File-backed SQLite so every store call gets its own connection, like the asyncpg pool.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pushrelay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(sqlite_engine)
