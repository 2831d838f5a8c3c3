from __future__ import annotations

from typing import AsyncIterator

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.config import Settings, get_settings
from cmsstore.domain.models import Base


MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Env overrides applied by a test must not leak into the next one.
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url=MEMORY_URL)


@pytest.fixture
async def adapter(settings: Settings) -> AsyncIterator[CmsAdapter]:
    # Fresh in-memory database with the full schema for every test.
    store = CmsAdapter(settings)
    connected = await store.connect()
    assert connected.success, connected.message
    assert store.provider is not None
    async with store.provider.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield store
    await store.disconnect()
