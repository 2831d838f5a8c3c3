from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import BATCH_OP_FAILED, create_database_error
from cmsstore.domain.results import BatchResult, DatabaseError, Result
from cmsstore.persistence.repos.records import delete_rows
from cmsstore.services.context import StoreContext
from cmsstore.services.crud import CrudModule


logger = logging.getLogger(__name__)


class BatchModule:
    """Sequential, non-atomic execution of mixed write operations.

    Every item runs in its own transaction, so items that succeeded before a
    failure stay persisted.
    """

    def __init__(self, ctx: StoreContext, crud: CrudModule) -> None:
        self._ctx = ctx
        self._crud = crud

    async def _run_one(self, item: Mapping[str, Any], tenant_id: str | None) -> Result[Any]:
        operation = item.get("operation")
        collection = item.get("collection", "")
        item_tenant = item.get("tenant_id", tenant_id)
        if operation == "insert":
            return await self._crud.insert(collection, item.get("data") or {}, tenant_id=item_tenant)
        if operation == "update":
            if not item.get("id"):
                return Result.fail(create_database_error(BATCH_OP_FAILED, "Update operation requires an id"))
            return await self._crud.update(collection, item["id"], item.get("data") or {}, tenant_id=item_tenant)
        if operation == "delete":
            if not item.get("id"):
                return Result.fail(create_database_error(BATCH_OP_FAILED, "Delete operation requires an id"))
            return await self._crud.delete(collection, item["id"], tenant_id=item_tenant)
        if operation == "upsert":
            if item.get("query") is None or item.get("data") is None:
                return Result.fail(create_database_error(BATCH_OP_FAILED, "Upsert operation requires query and data"))
            return await self._crud.upsert(collection, item["query"], item["data"], tenant_id=item_tenant)
        return Result.fail(create_database_error(BATCH_OP_FAILED, f"Unsupported batch operation: {operation}"))

    async def execute(
        self,
        operations: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[BatchResult]:
        # Items are {"operation", "collection", "id"?, "data"?, "query"?}.
        results: list[Result[Any]] = []
        errors: list[DatabaseError] = []
        for index, item in enumerate(operations):
            result = await self._run_one(item, tenant_id)
            results.append(result)
            if not result.success:
                cause = result.error
                errors.append(
                    create_database_error(
                        BATCH_OP_FAILED,
                        f"Batch operation {index} ({item.get('operation')}) failed: {result.message}",
                        {"index": index, "cause": cause.to_dict() if cause else None},
                    )
                )
        batch = BatchResult(success=not errors, results=results, total_processed=len(operations), errors=errors)
        if errors:
            logger.info("batch_partial_failure total=%s failed=%s", len(operations), len(errors))
            error = create_database_error(
                BATCH_OP_FAILED,
                f"{len(errors)} of {len(operations)} batch operations failed",
                {"failed_indexes": [err.details["index"] for err in errors if err.details]},
            )
            return Result(success=False, data=batch, message=error.message, error=error)
        return Result.ok(batch)

    async def bulk_insert(
        self,
        collection: str,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[list[dict[str, Any]]]:
        return await self._crud.insert_many(collection, items, tenant_id=tenant_id)

    async def bulk_update(
        self,
        collection: str,
        updates: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        # Items are {"id", "data"}; each update commits on its own and malformed items count as failures.
        modified = failed = 0
        for item in updates:
            record_id, data = item.get("id"), item.get("data")
            if not record_id or not isinstance(data, Mapping):
                failed += 1
                continue
            result = await self._crud.update(collection, record_id, data, tenant_id=tenant_id)
            if result.success:
                modified += 1
            else:
                failed += 1
        return Result.ok({"modified_count": modified, "failed_count": failed})

    async def bulk_delete(
        self,
        collection: str,
        ids: Sequence[str],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [table.c.id.in_(list(ids)), *self._ctx.tenant_conditions(table, tenant_id)]
            return {"deleted_count": await delete_rows(session, table, conditions)}

        return await self._ctx.run("BULK_DELETE_FAILED", op)

    async def bulk_upsert(
        self,
        collection: str,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        # Matched on id; items without one are inserted.
        pairs = [
            {
                "query": {"id": item.get("id") or item.get("_id")},
                "data": {key: value for key, value in item.items() if key not in ("id", "_id")},
            }
            for item in items
        ]
        return await self._crud.upsert_many(collection, pairs, tenant_id=tenant_id)
