from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.errors import INVALID_QUERY, NOT_CONNECTED, NOT_FOUND, NOT_IMPLEMENTED


@pytest.mark.asyncio
async def test_insert_assigns_server_fields(adapter: CmsAdapter) -> None:
    created = await adapter.crud.insert(
        "themes", {"name": "Aurora", "id": "caller-id", "created_at": "2000-01-01T00:00:00Z"}
    )
    assert created.success, created.message
    row = created.data
    assert row["id"] != "caller-id"
    assert adapter.ids.validate_id(row["id"])
    assert row["created_at"] != "2000-01-01T00:00:00Z"
    assert row["created_at"].endswith("Z")

    found = await adapter.crud.find_one("themes", {"_id": row["id"]})
    assert found.data == row


@pytest.mark.asyncio
async def test_upsert_is_idempotent(adapter: CmsAdapter) -> None:
    first = await adapter.crud.upsert("widgets", {"name": "hero"}, {"is_active": False})
    second = await adapter.crud.upsert("widgets", {"name": "hero"}, {"is_active": False})
    assert first.success and second.success
    assert first.data["id"] == second.data["id"]
    count = await adapter.crud.count("widgets", {"name": "hero"})
    assert count.data == 1


@pytest.mark.asyncio
async def test_find_many_sort_limit_offset(adapter: CmsAdapter) -> None:
    await adapter.crud.insert_many("themes", [{"name": name} for name in ("c", "a", "b")])
    page = await adapter.crud.find_many("themes", sort={"name": "asc"}, limit=2, offset=1)
    assert [row["name"] for row in page.data] == ["b", "c"]
    by_ids = await adapter.crud.find_by_ids("themes", [row["id"] for row in page.data])
    assert len(by_ids.data) == 2
    assert (await adapter.crud.exists("themes", {"name": "a"})).data is True
    assert (await adapter.crud.exists("themes", {"name": "z"})).data is False


@pytest.mark.asyncio
async def test_bulk_mutations_report_counts(adapter: CmsAdapter) -> None:
    await adapter.crud.insert_many("widgets", [{"name": "a"}, {"name": "b"}, {"name": "c"}])
    updated = await adapter.crud.update_many("widgets", {"is_active": True}, {"is_active": False})
    assert updated.data == {"modified_count": 3}
    deleted = await adapter.crud.delete_many("widgets", {"name": "a"})
    assert deleted.data == {"deleted_count": 1}
    upserted = await adapter.crud.upsert_many(
        "widgets",
        [{"query": {"name": "b"}, "data": {"is_active": True}}, {"query": {"name": "d"}, "data": {}}],
    )
    assert upserted.data == {"upserted_count": 1, "modified_count": 1}


@pytest.mark.asyncio
async def test_update_missing_record_is_not_found(adapter: CmsAdapter) -> None:
    result = await adapter.crud.update("themes", "missing", {"name": "x"})
    assert result.success is False
    assert result.error.code == NOT_FOUND


@pytest.mark.asyncio
async def test_unknown_fields_fail_with_invalid_query(adapter: CmsAdapter) -> None:
    result = await adapter.crud.find_one("themes", {"colour": "red"})
    assert result.success is False
    assert result.error.code == INVALID_QUERY
    assert result.error.details == {"field": "colour"}


@pytest.mark.asyncio
async def test_aggregate_is_not_implemented(adapter: CmsAdapter) -> None:
    result = await adapter.crud.aggregate("themes", [{"$match": {}}])
    assert result.success is False
    assert result.error.code == NOT_IMPLEMENTED
    assert result.error.status_code == 501


@pytest.mark.asyncio
async def test_calls_before_connect_fail_with_not_connected(settings) -> None:
    store = CmsAdapter(settings)
    result = await store.crud.find_one("themes", {"name": "x"})
    assert result.success is False
    assert result.error.code == NOT_CONNECTED
    assert result.error.status_code == 503
