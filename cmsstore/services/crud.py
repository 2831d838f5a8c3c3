from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import (
    Row,
    count_rows,
    delete_rows,
    equality_conditions,
    insert_rows,
    order_clauses,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext


class CrudModule:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _conditions(self, table: Table, query: Mapping[str, Any] | None, tenant_id: str | None) -> list[Any]:
        return [*equality_conditions(table, query), *self._ctx.tenant_conditions(table, tenant_id)]

    async def insert_record(
        self,
        session: AsyncSession,
        table: Table,
        data: Mapping[str, Any],
        tenant_id: str | None = None,
    ) -> Row:
        record = writable_values(table, self._ctx.new_record(data, tenant_id))
        await insert_rows(session, table, [record])
        created = await select_one(session, table, [table.c.id == record["id"]])
        assert created is not None
        return created

    async def update_record(
        self,
        session: AsyncSession,
        table: Table,
        record_id: str,
        data: Mapping[str, Any],
        tenant_id: str | None = None,
    ) -> Row:
        conditions = [table.c.id == record_id, *self._ctx.tenant_conditions(table, tenant_id)]
        changed = await update_rows(session, table, conditions, writable_values(table, self._ctx.touched(data)))
        if not changed:
            raise NotFoundError(f"No {table.name} record with id {record_id}")
        updated = await select_one(session, table, conditions)
        assert updated is not None
        return updated

    async def upsert_record(
        self,
        session: AsyncSession,
        table: Table,
        query: Mapping[str, Any],
        data: Mapping[str, Any],
        tenant_id: str | None = None,
    ) -> tuple[Row, bool]:
        # Lock the matching row so check-then-act is one step for concurrent writers.
        existing = await select_one(session, table, self._conditions(table, query, tenant_id), for_update=True)
        if existing is not None:
            return await self.update_record(session, table, existing["id"], data, tenant_id), False
        seed = {key: value for key, value in query.items() if not key.startswith("$")}
        return await self.insert_record(session, table, {**seed, **data}, tenant_id), True

    async def find_one(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row | None]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, table, self._conditions(table, query, tenant_id))

        return await self._ctx.run("CRUD_FIND_ONE_FAILED", op)

    async def find_many(
        self,
        collection: str,
        query: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
        sort: Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session,
                table,
                self._conditions(table, query, tenant_id),
                order_by=order_clauses(table, sort),
                limit=limit,
                offset=offset,
            )

        return await self._ctx.run("CRUD_FIND_MANY_FAILED", op)

    async def find_by_ids(
        self,
        collection: str,
        ids: Sequence[str],
        *,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> list[Row]:
            if not ids:
                return []
            conditions = [table.c.id.in_(list(ids)), *self._ctx.tenant_conditions(table, tenant_id)]
            return await select_rows(session, table, conditions)

        return await self._ctx.run("CRUD_FIND_BY_IDS_FAILED", op)

    async def insert(
        self,
        collection: str,
        data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> Row:
            return await self.insert_record(session, table, data, tenant_id)

        return await self._ctx.run("CRUD_INSERT_FAILED", op)

    async def update(
        self,
        collection: str,
        record_id: str,
        data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> Row:
            return await self.update_record(session, table, record_id, data, tenant_id)

        return await self._ctx.run("CRUD_UPDATE_FAILED", op)

    async def delete(self, collection: str, record_id: str, *, tenant_id: str | None = None) -> Result[None]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> None:
            await delete_rows(session, table, [table.c.id == record_id, *self._ctx.tenant_conditions(table, tenant_id)])

        return await self._ctx.run("CRUD_DELETE_FAILED", op)

    async def upsert(
        self,
        collection: str,
        query: Mapping[str, Any],
        data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> Row:
            row, _ = await self.upsert_record(session, table, query, data, tenant_id)
            return row

        return await self._ctx.run("CRUD_UPSERT_FAILED", op)

    async def count(
        self,
        collection: str,
        query: Mapping[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Result[int]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> int:
            return await count_rows(session, table, self._conditions(table, query, tenant_id))

        return await self._ctx.run("CRUD_COUNT_FAILED", op)

    async def exists(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[bool]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> bool:
            rows = await select_rows(
                session, table, self._conditions(table, query, tenant_id), columns=["id"], limit=1
            )
            return bool(rows)

        return await self._ctx.run("CRUD_EXISTS_FAILED", op)

    async def insert_many(
        self,
        collection: str,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> list[Row]:
            records = [writable_values(table, self._ctx.new_record(item, tenant_id)) for item in items]
            await insert_rows(session, table, records)
            ids = [record["id"] for record in records]
            if not ids:
                return []
            rows = {row["id"]: row for row in await select_rows(session, table, [table.c.id.in_(ids)])}
            return [rows[record_id] for record_id in ids]

        return await self._ctx.run("CRUD_INSERT_MANY_FAILED", op)

    async def update_many(
        self,
        collection: str,
        query: Mapping[str, Any],
        data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> dict[str, int]:
            changed = await update_rows(
                session,
                table,
                self._conditions(table, query, tenant_id),
                writable_values(table, self._ctx.touched(data)),
            )
            return {"modified_count": changed}

        return await self._ctx.run("CRUD_UPDATE_MANY_FAILED", op)

    async def delete_many(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> dict[str, int]:
            deleted = await delete_rows(session, table, self._conditions(table, query, tenant_id))
            return {"deleted_count": deleted}

        return await self._ctx.run("CRUD_DELETE_MANY_FAILED", op)

    async def upsert_many(
        self,
        collection: str,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        # Each item is {"query": {...}, "data": {...}}.
        table = self._ctx.resolve_table(collection)

        async def op(session: AsyncSession) -> dict[str, int]:
            upserted = modified = 0
            for item in items:
                _, created = await self.upsert_record(session, table, item["query"], item["data"], tenant_id)
                if created:
                    upserted += 1
                else:
                    modified += 1
            return {"upserted_count": upserted, "modified_count": modified}

        return await self._ctx.run("CRUD_UPSERT_MANY_FAILED", op)

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]] | None = None) -> Result[Any]:
        return self._ctx.not_implemented("aggregate")
