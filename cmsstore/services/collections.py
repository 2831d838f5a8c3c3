from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import Row
from cmsstore.services.context import StoreContext
from cmsstore.services.crud import CrudModule


logger = logging.getLogger(__name__)


@dataclass
class CollectionModel:
    # Lightweight handle over a document collection stored in content_nodes.
    id: str
    name: str
    schema: dict[str, Any]
    crud: CrudModule = field(repr=False)
    registered_at: float = 0.0

    @property
    def collection(self) -> str:
        return f"collection_{self.id}"

    def _scoped(self, values: Mapping[str, Any] | None) -> dict[str, Any]:
        # Documents share content_nodes; node_type marks the owning collection.
        return {**(values or {}), "node_type": self.collection}

    async def find_one(self, query: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row | None]:
        return await self.crud.find_one(self.collection, self._scoped(query), tenant_id=tenant_id)

    async def find_many(
        self,
        query: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        return await self.crud.find_many(
            self.collection, self._scoped(query), limit=limit, offset=offset, tenant_id=tenant_id
        )

    async def insert(self, data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        return await self.crud.insert(self.collection, self._scoped(data), tenant_id=tenant_id)


class CollectionModule:
    """Per-process registry of collection models.

    Entries expire after ``collection_registry_ttl_s``. The registry is not
    shared between processes or adapter instances.
    """

    def __init__(
        self,
        ctx: StoreContext,
        crud: CrudModule,
        *,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ctx = ctx
        self._crud = crud
        self._time = time_source
        self._registry: dict[str, CollectionModel] = {}

    def _expired(self, model: CollectionModel) -> bool:
        ttl = self._ctx.settings.collection_registry_ttl_s
        return ttl > 0 and self._time() - model.registered_at >= ttl

    def _prune(self) -> None:
        expired = [key for key, model in self._registry.items() if self._expired(model)]
        for key in expired:
            del self._registry[key]
        if expired:
            logger.debug("collection_models_pruned count=%s", len(expired))

    def _register(self, schema: Mapping[str, Any]) -> CollectionModel:
        self._prune()
        collection_id = schema.get("id") or schema.get("_id") or self._ctx.ids.generate_id()
        model = CollectionModel(
            id=str(collection_id),
            name=str(schema.get("name") or collection_id),
            schema=dict(schema),
            crud=self._crud,
            registered_at=self._time(),
        )
        self._registry[model.id] = model
        return model

    async def get_model(self, collection_id: str) -> Result[CollectionModel]:
        async def operation() -> CollectionModel:
            model = self._registry.get(collection_id)
            if model is not None and self._expired(model):
                del self._registry[collection_id]
                logger.debug("collection_model_expired id=%s", collection_id)
                model = None
            if model is None:
                raise NotFoundError(f"Collection {collection_id} not found")
            return model

        return await self._wrap(operation, "GET_COLLECTION_MODEL_FAILED")

    async def create_model(self, schema: Mapping[str, Any]) -> Result[CollectionModel]:
        async def operation() -> CollectionModel:
            return self._register(schema)

        return await self._wrap(operation, "CREATE_COLLECTION_MODEL_FAILED")

    async def update_model(self, collection_id: str, schema: Mapping[str, Any]) -> Result[CollectionModel]:
        # Replaces the schema and restarts the entry's TTL.
        async def operation() -> CollectionModel:
            if collection_id not in self._registry:
                raise NotFoundError(f"Collection {collection_id} not found")
            return self._register({**schema, "id": collection_id})

        return await self._wrap(operation, "UPDATE_COLLECTION_MODEL_FAILED")

    async def delete_model(self, collection_id: str) -> Result[None]:
        async def operation() -> None:
            self._registry.pop(collection_id, None)

        return await self._wrap(operation, "DELETE_COLLECTION_MODEL_FAILED")

    async def _wrap(self, operation: Callable[[], Any], code: str) -> Result[Any]:
        try:
            data = await operation()
        except Exception as exc:  # noqa: BLE001 - module methods never raise
            return self._ctx.handle_error(exc, code)
        return Result.ok(data)
