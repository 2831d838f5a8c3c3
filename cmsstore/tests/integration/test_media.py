from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter


@pytest.mark.asyncio
async def test_search_is_case_insensitive_substring(adapter: CmsAdapter) -> None:
    await adapter.media.files.upload_many(
        [
            {"filename": "Quarterly-Report.pdf", "mime_type": "application/pdf"},
            {"filename": "logo.png", "original_filename": "Company REPORT logo.png"},
            {"filename": "100%_done.txt"},
        ]
    )
    found = await adapter.media.files.search("report")
    assert found.data.total == 2
    escaped = await adapter.media.files.search("%")
    assert [row["filename"] for row in escaped.data.items] == ["100%_done.txt"]


@pytest.mark.asyncio
async def test_get_by_folder_scopes_non_admin_users(adapter: CmsAdapter) -> None:
    folder = (await adapter.media.folders.create({"name": "images"})).data
    assert folder["path"] == "/images"
    await adapter.media.files.upload_many(
        [
            {"filename": "mine.png", "folder_id": folder["id"], "created_by": "u1"},
            {"filename": "theirs.png", "folder_id": folder["id"], "created_by": "u2"},
            {"filename": "shared.png", "folder_id": folder["id"], "created_by": "u2", "path": "global/shared.png"},
        ]
    )
    own = await adapter.media.files.get_by_folder(folder["id"], user_id="u1", sort_field="filename", sort_direction="asc")
    assert [row["filename"] for row in own.data.items] == ["mine.png", "shared.png"]
    admin = await adapter.media.files.get_by_folder(folder["id"], user_id="u1", is_admin=True, page_size=2)
    assert admin.data.total == 3
    assert len(admin.data.items) == 2


@pytest.mark.asyncio
async def test_metadata_merge_move_and_duplicate(adapter: CmsAdapter) -> None:
    item = (await adapter.media.files.upload({"filename": "a.png", "metadata": {"alt": "A"}})).data
    merged = await adapter.media.files.update_metadata(item["id"], {"width": 10})
    assert merged.data["metadata"] == {"alt": "A", "width": 10}
    assert (await adapter.media.files.get_metadata([item["id"]])).data == {item["id"]: {"alt": "A", "width": 10}}

    target = (await adapter.media.folders.create({"name": "archive"})).data
    assert (await adapter.media.files.move([item["id"]], target["id"])).data == {"moved_count": 1}

    copy = await adapter.media.files.duplicate(item["id"])
    assert copy.data["filename"] == "a.png_copy"
    assert copy.data["id"] != item["id"]
    assert copy.data["folder_id"] == target["id"]

    contents = await adapter.media.folders.get_folder_contents(target["id"])
    assert contents.data["total_count"] == 2


@pytest.mark.asyncio
async def test_folder_tree_and_move(adapter: CmsAdapter) -> None:
    parent = (await adapter.media.folders.create({"name": "photos"})).data
    child = (await adapter.media.folders.create({"name": "2024", "parent_id": parent["id"]})).data
    assert child["path"] == "/photos/2024"
    tree = await adapter.media.folders.get_tree()
    assert {row["id"] for row in tree.data} == {parent["id"], child["id"]}

    moved = await adapter.media.folders.move(child["id"], None)
    assert moved.data["parent_id"] is None
    root = await adapter.media.folders.get_folder_contents()
    assert {row["name"] for row in root.data["folders"]} == {"photos", "2024"}
    assert (await adapter.media.folders.delete_many([parent["id"], child["id"]])).data == {"deleted_count": 2}
