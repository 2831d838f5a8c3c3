from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.config import Settings
from cmsstore.core.errors import NOT_FOUND, TENANT_PREDICATE_REQUIRED


MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.mark.asyncio
async def test_queries_never_cross_tenants(adapter: CmsAdapter) -> None:
    a = (await adapter.crud.insert("themes", {"name": "shared"}, tenant_id="tenant-a")).data
    b = (await adapter.crud.insert("themes", {"name": "shared"}, tenant_id="tenant-b")).data

    listed = await adapter.crud.find_many("themes", {"name": "shared"}, tenant_id="tenant-a")
    assert [row["id"] for row in listed.data] == [a["id"]]

    cross_update = await adapter.crud.update("themes", a["id"], {"name": "hijacked"}, tenant_id="tenant-b")
    assert cross_update.error.code == NOT_FOUND
    await adapter.crud.delete("themes", a["id"], tenant_id="tenant-b")
    assert (await adapter.crud.find_one("themes", {"_id": a["id"]}, tenant_id="tenant-a")).data["name"] == "shared"
    assert (await adapter.crud.count("themes", tenant_id="tenant-b")).data == 1
    assert b["tenant_id"] == "tenant-b"


@pytest.mark.asyncio
async def test_paths_and_emails_may_repeat_across_tenants(adapter: CmsAdapter) -> None:
    for tenant in ("tenant-a", "tenant-b"):
        node = await adapter.content.nodes.create({"path": "/home"}, tenant_id=tenant)
        assert node.success, node.message
        user = await adapter.auth.create_user({"email": "owner@example.com"}, tenant_id=tenant)
        assert user.success, user.message

    found = await adapter.auth.get_user_by_email("owner@example.com", tenant_id="tenant-b")
    assert found.data["tenant_id"] == "tenant-b"
    session = (await adapter.auth.create_session(found.data["id"], tenant_id="tenant-b")).data
    assert (await adapter.auth.validate_session(session["id"], tenant_id="tenant-a")).data is None


@pytest.mark.asyncio
async def test_untenanted_keys_stay_unique(adapter: CmsAdapter) -> None:
    first = await adapter.content.nodes.create({"path": "/blog/hello", "title": "A"})
    assert first.success, first.message
    second = await adapter.content.nodes.create({"path": "/blog/hello", "title": "B"})
    assert second.success is False
    assert second.error.status_code == 409

    await adapter.content.nodes.create({"path": "/blog/other"})
    moved = await adapter.content.nodes.update("/blog/other", {"path": "/blog/hello"})
    assert moved.success is False

    await adapter.content.nodes.update("/blog/hello", {"title": "C"})
    titles = {row["path"]: row["title"] for row in (await adapter.content.nodes.get_structure()).data}
    assert titles == {"/blog/hello": "C", "/blog/other": None}

    assert (await adapter.auth.create_user({"email": "x@example.com"})).success
    assert (await adapter.auth.create_user({"email": "x@example.com"})).success is False
    assert (await adapter.crud.insert("widgets", {"name": "hero"})).success
    assert (await adapter.crud.insert("widgets", {"name": "hero"})).success is False
    folders = adapter.system.virtual_folders
    assert (await folders.create({"name": "Docs", "path": "/docs"})).success
    assert (await folders.create({"name": "Docs", "path": "/docs"})).success is False

    # A tenant may still reuse keys held by untenanted rows.
    scoped = await adapter.auth.create_user({"email": "x@example.com"}, tenant_id="tenant-a")
    assert scoped.success, scoped.message


@pytest.mark.asyncio
async def test_required_tenant_predicate_rejects_unscoped_calls() -> None:
    store = CmsAdapter(Settings(_env_file=None, database_url=MEMORY_URL, require_tenant_predicate=True))
    assert (await store.connect()).success
    try:
        result = await store.crud.find_many("themes")
        assert result.error.code == TENANT_PREDICATE_REQUIRED
        assert result.error.status_code == 400
    finally:
        await store.disconnect()
