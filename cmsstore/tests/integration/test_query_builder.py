from __future__ import annotations

import asyncio

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.errors import INVALID_QUERY, NOT_FOUND, NOT_IMPLEMENTED
from cmsstore.services import query_builder


async def _seed(adapter: CmsAdapter) -> None:
    await adapter.content.nodes.create_many(
        [
            {"path": "/a", "title": "Alpha Post", "status": "published", "order": 1},
            {"path": "/b", "title": "Beta", "status": "draft", "order": 2},
            {"path": "/c", "title": "Gamma post", "status": "published", "order": 3, "node_type": "page"},
            {"path": "/d", "title": None, "status": "archived", "order": 4},
        ]
    )


@pytest.mark.asyncio
async def test_filters_sort_and_limit(adapter: CmsAdapter) -> None:
    await _seed(adapter)
    result = await (
        adapter.query_builder("content_nodes")
        .where("status", "published")
        .sort("order", "desc")
        .limit(1)
        .execute()
    )
    assert result.success, result.message
    assert [row["path"] for row in result.data] == ["/c"]
    assert result.meta["execution_time"] >= 0

    ranged = await adapter.query_builder("content_nodes").where_between("order", 2, 3).select(["path"]).execute()
    assert sorted(row["path"] for row in ranged.data) == ["/b", "/c"]
    assert set(ranged.data[0]) == {"path"}

    excluded = await adapter.query_builder("nodes").where_not_in("status", ["draft", "archived"]).count()
    assert excluded.data == 2
    typed = await adapter.query_builder("nodes").where_in("node_type", ["page"]).find_one()
    assert typed.data["path"] == "/c"


@pytest.mark.asyncio
async def test_null_checks_search_and_paginate(adapter: CmsAdapter) -> None:
    await _seed(adapter)
    assert (await adapter.query_builder("nodes").where_null("title").count()).data == 1
    assert (await adapter.query_builder("nodes").where_not_null("title").count()).data == 3

    found = await adapter.query_builder("nodes").search("POST", ["title", "path"]).order_by("path").execute()
    assert [row["path"] for row in found.data] == ["/a", "/c"]

    page = await adapter.query_builder("nodes").paginate(2, 3, "order", "asc").execute()
    assert [row["path"] for row in page.data] == ["/d"]
    skipped = await adapter.query_builder("nodes").sort("order").skip(3).execute()
    assert [row["path"] for row in skipped.data] == ["/d"]


@pytest.mark.asyncio
async def test_find_one_or_fail_and_exists(adapter: CmsAdapter) -> None:
    await _seed(adapter)
    assert (await adapter.query_builder("nodes").where({"path": "/a"}).exists()).data is True
    missing = await adapter.query_builder("nodes").where("path", "/zzz").find_one_or_fail()
    assert missing.success is False
    assert missing.error.code == NOT_FOUND
    assert missing.message == "Document not found"
    assert "execution_time" in missing.meta


@pytest.mark.asyncio
async def test_unknown_fields_fail_at_the_terminal(adapter: CmsAdapter) -> None:
    builder = adapter.query_builder("nodes").where("colour", "red")
    result = await builder.execute()
    assert result.error.code == INVALID_QUERY


@pytest.mark.asyncio
async def test_update_and_delete_many(adapter: CmsAdapter) -> None:
    await _seed(adapter)
    updated = await adapter.query_builder("nodes").where("status", "published").update_many({"status": "archived"})
    assert updated.data == {"modified_count": 2}
    deleted = await adapter.query_builder("nodes").where("status", "archived").delete_many()
    assert deleted.data == {"deleted_count": 3}
    assert (await adapter.query_builder("nodes").stream()).error.code == NOT_IMPLEMENTED


@pytest.mark.asyncio
async def test_tenant_scoped_builder(adapter: CmsAdapter) -> None:
    await adapter.content.nodes.create({"path": "/home"}, tenant_id="t1")
    await adapter.content.nodes.create({"path": "/home"}, tenant_id="t2")
    scoped = await adapter.query_builder("nodes", tenant_id="t1").execute()
    assert [row["tenant_id"] for row in scoped.data] == ["t1"]


@pytest.mark.asyncio
async def test_timeout_bounds_the_terminal(adapter: CmsAdapter, monkeypatch) -> None:
    await _seed(adapter)
    fast = await adapter.query_builder("nodes").timeout(5000).count()
    assert fast.data == 4

    async def slow_select(*args, **kwargs):
        await asyncio.sleep(1)
        return []

    monkeypatch.setattr(query_builder, "select_rows", slow_select)
    result = await adapter.query_builder("nodes").timeout(20).execute()
    assert result.success is False
    assert result.error.code == "QUERY_BUILDER_EXECUTE_FAILED"
    assert result.error.details == {"type": "TimeoutError"}
    assert result.meta["execution_time"] < 1000
