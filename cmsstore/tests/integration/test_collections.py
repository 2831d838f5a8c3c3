from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.errors import NOT_FOUND
from cmsstore.services.collections import CollectionModule


@pytest.mark.asyncio
async def test_model_registry_lifecycle(adapter: CmsAdapter) -> None:
    created = await adapter.collection.create_model({"id": "blog", "name": "Blog", "fields": ["title"]})
    assert created.data.collection == "collection_blog"
    assert (await adapter.collection.get_model("blog")).data.name == "Blog"

    updated = await adapter.collection.update_model("blog", {"name": "Journal"})
    assert updated.data.name == "Journal"
    assert (await adapter.collection.update_model("nope", {})).error.code == NOT_FOUND

    await adapter.collection.delete_model("blog")
    assert (await adapter.collection.get_model("blog")).error.code == NOT_FOUND


@pytest.mark.asyncio
async def test_models_read_and_write_documents(adapter: CmsAdapter) -> None:
    model = (await adapter.collection.create_model({"id": "posts"})).data
    inserted = await model.insert({"path": "/posts/hello", "title": "Hello"})
    assert inserted.success, inserted.message
    assert (await model.find_one({"title": "Hello"})).data["path"] == "/posts/hello"
    assert len((await model.find_many(limit=10)).data) == 1


@pytest.mark.asyncio
async def test_registry_entries_expire(adapter: CmsAdapter) -> None:
    now = {"t": 0.0}
    registry = CollectionModule(adapter.context, adapter.crud, time_source=lambda: now["t"])
    await registry.create_model({"id": "temp"})
    now["t"] = adapter.settings.collection_registry_ttl_s - 1
    assert (await registry.get_model("temp")).success
    now["t"] = adapter.settings.collection_registry_ttl_s + 1
    assert (await registry.get_model("temp")).error.code == NOT_FOUND


@pytest.mark.asyncio
async def test_models_only_see_their_own_documents(adapter: CmsAdapter) -> None:
    posts = (await adapter.collection.create_model({"id": "posts"})).data
    pages = (await adapter.collection.create_model({"id": "pages"})).data
    await adapter.content.nodes.create({"path": "/plain"})
    await posts.insert({"path": "/posts/one", "title": "One"})
    await pages.insert({"path": "/pages/about", "title": "About"})

    assert [row["path"] for row in (await posts.find_many()).data] == ["/posts/one"]
    assert (await pages.find_one({"title": "One"})).data is None
    assert (await pages.find_one({"title": "About"})).data["node_type"] == "collection_pages"


@pytest.mark.asyncio
async def test_creating_a_model_prunes_expired_entries(adapter: CmsAdapter) -> None:
    now = {"t": 0.0}
    registry = CollectionModule(adapter.context, adapter.crud, time_source=lambda: now["t"])
    await registry.create_model({"id": "old"})
    now["t"] = adapter.settings.collection_registry_ttl_s + 1
    await registry.create_model({"id": "new"})
    assert set(registry._registry) == {"new"}
