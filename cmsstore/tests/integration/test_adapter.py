from __future__ import annotations

from datetime import timedelta

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.config import Settings
from cmsstore.core.errors import CONNECTION_FAILED, NOT_CONNECTED


MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.mark.asyncio
async def test_health_capabilities_and_pool_stats(adapter: CmsAdapter) -> None:
    assert adapter.is_connected()
    health = await adapter.get_connection_health()
    assert health.data.healthy is True
    assert health.data.latency_ms >= 0
    assert (await adapter.get_connection_pool_stats()).success
    capabilities = (await adapter.get_capabilities()).data
    assert capabilities.supports_transactions is True
    assert capabilities.supports_streaming is False
    assert capabilities.max_batch_size == adapter.settings.max_batch_size


@pytest.mark.asyncio
async def test_connect_failure_and_disconnected_health(tmp_path) -> None:
    settings = Settings(_env_file=None, database_url=MEMORY_URL)
    store = CmsAdapter(settings)
    bad = await store.connect(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/cms.db")
    assert bad.success is False
    assert bad.error.code == CONNECTION_FAILED
    assert store.is_connected() is False
    assert (await store.get_connection_health()).error.code == NOT_CONNECTED


@pytest.mark.asyncio
async def test_wait_for_connection_is_bounded() -> None:
    store = CmsAdapter(Settings(_env_file=None, database_url=MEMORY_URL, connect_wait_poll_ms=5))
    with pytest.raises(TimeoutError):
        await store.wait_for_connection(timeout=0.02)
    await store.connect()
    await store.wait_for_connection(timeout=0.02)
    await store.disconnect()


@pytest.mark.asyncio
async def test_collection_data_helpers(adapter: CmsAdapter) -> None:
    await adapter.crud.insert_many("themes", [{"name": "a"}, {"name": "b"}, {"name": "c"}])
    await adapter.system.widgets.register({"name": "hero"})

    page = await adapter.get_collection_data("themes", limit=2, include_metadata=True)
    assert [row["name"] for row in page.data["data"]] == ["a", "b"]
    assert page.data["metadata"]["total"] == 3
    assert page.data["metadata"]["table"] == "themes"
    assert "metadata" not in (await adapter.get_collection_data("themes")).data

    many = await adapter.get_multiple_collection_data(["themes", "widgets"], limit=1)
    assert [row["name"] for row in many.data["themes"]] == ["a"]
    assert [row["name"] for row in many.data["widgets"]] == ["hero"]


@pytest.mark.asyncio
async def test_map_query_uses_equality_and_null(adapter: CmsAdapter) -> None:
    conditions = adapter.map_query("media", {"folder_id": None, "filename": "a.png"})
    assert len(conditions) == 2
    assert adapter.get_table("media").name == "media_items"


@pytest.mark.asyncio
async def test_wrap_folds_exceptions(adapter: CmsAdapter) -> None:
    async def explode() -> None:
        raise ValueError("bad input")

    async def fine() -> int:
        return 7

    assert (await adapter.wrap(fine, "DEMO_FAILED")).data == 7
    failed = await adapter.wrap(explode, "DEMO_FAILED")
    assert failed.error.code == "DEMO_FAILED"
    assert failed.message == "bad input"


@pytest.mark.asyncio
async def test_cleanup_expired_data(adapter: CmsAdapter) -> None:
    user = (await adapter.auth.create_user({"email": "sweep@example.com"})).data
    past = adapter.clock.now() - timedelta(hours=2)
    await adapter.auth.create_session(user["id"], expires=past)
    live_session = (await adapter.auth.create_session(user["id"])).data
    await adapter.auth.create_token(user["id"], user["email"], type="verify", expires=past)
    consumed = (await adapter.auth.create_token(user["id"], user["email"], type="verify")).data
    await adapter.auth.consume_token(consumed)
    live_token = (await adapter.auth.create_token(user["id"], user["email"], type="reset")).data

    result = await adapter.cleanup_expired_data()
    # The consumed token is inside the retention window and survives.
    assert result.data == {"sessions": 1, "tokens": 1}
    assert (await adapter.auth.validate_session(live_session["id"])).data is not None
    assert (await adapter.auth.validate_token(live_token)).data.valid is True
    assert (await adapter.auth.get_token_by_value(consumed)).data is not None
