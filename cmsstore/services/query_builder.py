from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Mapping, Sequence

from sqlalchemy import Table, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import (
    Row,
    coerce_value,
    column_for,
    count_rows,
    delete_rows,
    order_clauses,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext


# Conditions are built lazily so unknown fields fail the terminal, not the chain.
Condition = Callable[[Table], ColumnElement[bool]]


class QueryBuilder:
    """Fluent query over a single collection.

    Filter and shaping methods return the builder; terminal methods run one
    statement and return a ``Result`` whose ``meta["execution_time"]`` holds the
    elapsed milliseconds.
    """

    def __init__(self, ctx: StoreContext, collection: str, *, tenant_id: str | None = None) -> None:
        self._ctx = ctx
        self.collection = collection
        self.table = ctx.resolve_table(collection)
        self._tenant_id = tenant_id
        self._conditions: list[Condition] = []
        self._sort: list[tuple[str, Any]] = []
        self._columns: list[str] | None = None
        self._limit: int | None = None
        self._offset: int | None = None
        timeout_ms = ctx.settings.query_timeout_ms
        self._timeout_s: float | None = timeout_ms / 1000.0 if timeout_ms > 0 else None

    def where(self, field: str | Mapping[str, Any], value: Any = None) -> "QueryBuilder":
        # Equality; accepts a single field/value pair or a mapping of them.
        pairs = field.items() if isinstance(field, Mapping) else [(field, value)]
        for name, expected in pairs:
            self._conditions.append(self._equals(name, expected))
        return self

    @staticmethod
    def _equals(name: str, expected: Any) -> Condition:
        def build(table: Table) -> ColumnElement[bool]:
            column = column_for(table, name)
            if expected is None:
                return column.is_(None)
            return column == coerce_value(column, expected)

        return build

    def where_in(self, field: str, values: Sequence[Any]) -> "QueryBuilder":
        self._conditions.append(lambda table: column_for(table, field).in_(list(values)))
        return self

    def where_not_in(self, field: str, values: Sequence[Any]) -> "QueryBuilder":
        self._conditions.append(lambda table: column_for(table, field).not_in(list(values)))
        return self

    def where_between(self, field: str, low: Any, high: Any) -> "QueryBuilder":
        def build(table: Table) -> ColumnElement[bool]:
            column = column_for(table, field)
            return column.between(coerce_value(column, low), coerce_value(column, high))

        self._conditions.append(build)
        return self

    def where_null(self, field: str) -> "QueryBuilder":
        self._conditions.append(lambda table: column_for(table, field).is_(None))
        return self

    def where_not_null(self, field: str) -> "QueryBuilder":
        self._conditions.append(lambda table: column_for(table, field).is_not(None))
        return self

    def search(self, term: str, fields: Sequence[str]) -> "QueryBuilder":
        # Case-insensitive substring match on any of the fields.
        def build(table: Table) -> ColumnElement[bool]:
            return or_(*(column_for(table, name).icontains(term, autoescape=True) for name in fields))

        if fields:
            self._conditions.append(build)
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._limit = count
        return self

    def skip(self, count: int) -> "QueryBuilder":
        self._offset = count
        return self

    def paginate(
        self,
        page: int,
        page_size: int | None = None,
        sort_field: str | None = None,
        sort_direction: str = "asc",
    ) -> "QueryBuilder":
        size = max(int(page_size or self._ctx.settings.default_page_size), 1)
        self._limit = size
        self._offset = (max(int(page), 1) - 1) * size
        if sort_field:
            self.sort(sort_field, sort_direction)
        return self

    def sort(self, field: str, direction: str | int = "asc") -> "QueryBuilder":
        self._sort.append((field, direction))
        return self

    def order_by(self, field: str, direction: str | int = "asc") -> "QueryBuilder":
        return self.sort(field, direction)

    def select(self, fields: Sequence[str]) -> "QueryBuilder":
        self._columns = list(fields)
        return self

    def timeout(self, ms: int) -> "QueryBuilder":
        self._timeout_s = ms / 1000.0 if ms > 0 else None
        return self

    def _compiled(self) -> list[ColumnElement[bool]]:
        conditions = [build(self.table) for build in self._conditions]
        conditions.extend(self._ctx.tenant_conditions(self.table, self._tenant_id))
        return conditions

    async def _terminal(self, name: str, fn: Callable[[AsyncSession], Awaitable[Any]]) -> Result[Any]:
        code = f"QUERY_BUILDER_{name}_FAILED"
        started = time.perf_counter()

        async def op(session: AsyncSession) -> Any:
            if self._timeout_s is None:
                return await fn(session)
            return await asyncio.wait_for(fn(session), timeout=self._timeout_s)

        result = await self._ctx.run(code, op)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return replace(result, meta={**(result.meta or {}), "execution_time": elapsed_ms})

    async def execute(self) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session,
                self.table,
                self._compiled(),
                order_by=order_clauses(self.table, self._sort),
                limit=self._limit,
                offset=self._offset,
                columns=self._columns,
            )

        return await self._terminal("EXECUTE", op)

    async def count(self) -> Result[int]:
        async def op(session: AsyncSession) -> int:
            return await count_rows(session, self.table, self._compiled())

        return await self._terminal("COUNT", op)

    async def exists(self) -> Result[bool]:
        async def op(session: AsyncSession) -> bool:
            return bool(await select_rows(session, self.table, self._compiled(), columns=["id"], limit=1))

        return await self._terminal("EXISTS", op)

    async def find_one(self) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(
                session, self.table, self._compiled(), order_by=order_clauses(self.table, self._sort)
            )

        return await self._terminal("FIND_ONE", op)

    async def find_one_or_fail(self) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            row = await select_one(
                session, self.table, self._compiled(), order_by=order_clauses(self.table, self._sort)
            )
            if row is None:
                raise NotFoundError("Document not found", details={"collection": self.collection})
            return row

        return await self._terminal("FIND_ONE_OR_FAIL", op)

    async def update_many(self, data: Mapping[str, Any]) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            values = writable_values(self.table, self._ctx.touched(data))
            return {"modified_count": await update_rows(session, self.table, self._compiled(), values)}

        return await self._terminal("UPDATE_MANY", op)

    async def delete_many(self) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            return {"deleted_count": await delete_rows(session, self.table, self._compiled())}

        return await self._terminal("DELETE_MANY", op)

    async def stream(self) -> Result[Any]:
        return self._ctx.not_implemented("stream")
