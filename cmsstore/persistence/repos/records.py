from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import DateTime, Table, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from cmsstore.core.errors import InvalidQueryError
from cmsstore.domain.results import PaginatedResult
from cmsstore.persistence.dates import parse as parse_datetime
from cmsstore.persistence.dates import serialize_row


Row = dict[str, Any]


def column_for(table: Table, key: str):
    # Resolve a caller-supplied field name to a column or fail loudly.
    if key == "_id":
        key = "id"
    try:
        return table.c[key]
    except KeyError:
        raise InvalidQueryError(f"Unknown field '{key}' for {table.name}", details={"field": key}) from None


def coerce_value(column, value: Any) -> Any:
    # ISO strings are accepted wherever a datetime column is written or compared.
    if isinstance(value, str) and isinstance(column.type, DateTime):
        return parse_datetime(value)
    return value


def equality_conditions(table: Table, query: Mapping[str, Any] | None) -> list[ColumnElement[bool]]:
    # Equality-AND filter; None means IS NULL and $-prefixed operator keys are ignored.
    conditions: list[ColumnElement[bool]] = []
    for key, value in (query or {}).items():
        if key.startswith("$"):
            continue
        column = column_for(table, key)
        if value is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == coerce_value(column, value))
    return conditions


def writable_values(table: Table, values: Mapping[str, Any], *, strict: bool = True) -> Row:
    # Drop keys the caller may not set and map _id to id.
    out: Row = {}
    for key, value in values.items():
        if key == "_id":
            key = "id"
        if key not in table.c:
            if strict:
                raise InvalidQueryError(f"Unknown field '{key}' for {table.name}", details={"field": key})
            continue
        out[key] = coerce_value(table.c[key], value)
    return out


def order_clauses(table: Table, sort: Mapping[str, Any] | Sequence[tuple[str, Any]] | None) -> list[Any]:
    if not sort:
        return []
    items = sort.items() if isinstance(sort, Mapping) else sort
    clauses = []
    for key, direction in items:
        column = column_for(table, key)
        descending = direction in (-1, "desc", "DESC", "descending")
        clauses.append(column.desc() if descending else column.asc())
    return clauses


async def select_rows(
    session: AsyncSession,
    table: Table,
    conditions: Iterable[ColumnElement[bool]] = (),
    *,
    order_by: Sequence[Any] = (),
    limit: int | None = None,
    offset: int | None = None,
    columns: Sequence[str] | None = None,
    distinct: bool = False,
    for_update: bool = False,
) -> list[Row]:
    selected = [column_for(table, name) for name in columns] if columns else [table]
    stmt = select(*selected).where(*conditions)
    if order_by:
        stmt = stmt.order_by(*order_by)
    if distinct:
        stmt = stmt.distinct()
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return [serialize_row(row) for row in result.mappings().all()]


async def select_one(
    session: AsyncSession,
    table: Table,
    conditions: Iterable[ColumnElement[bool]] = (),
    *,
    order_by: Sequence[Any] = (),
    for_update: bool = False,
) -> Row | None:
    rows = await select_rows(session, table, conditions, order_by=order_by, limit=1, for_update=for_update)
    return rows[0] if rows else None


async def count_rows(session: AsyncSession, table: Table, conditions: Iterable[ColumnElement[bool]] = ()) -> int:
    result = await session.execute(select(func.count()).select_from(table).where(*conditions))
    return int(result.scalar_one())


async def insert_rows(session: AsyncSession, table: Table, rows: Sequence[Mapping[str, Any]]) -> None:
    if not rows:
        return
    # Executemany needs a uniform key set; insert one by one when shapes differ.
    keysets = {frozenset(row) for row in rows}
    if len(keysets) == 1:
        await session.execute(insert(table), [dict(row) for row in rows])
        return
    for row in rows:
        await session.execute(insert(table).values(**row))


async def update_rows(
    session: AsyncSession,
    table: Table,
    conditions: Iterable[ColumnElement[bool]],
    values: Mapping[str, Any],
) -> int:
    result = await session.execute(update(table).where(*conditions).values(**values))
    return result.rowcount or 0


async def delete_rows(session: AsyncSession, table: Table, conditions: Iterable[ColumnElement[bool]]) -> int:
    result = await session.execute(delete(table).where(*conditions))
    return result.rowcount or 0


async def paginate_rows(
    session: AsyncSession,
    table: Table,
    conditions: Sequence[ColumnElement[bool]],
    *,
    page: int,
    page_size: int,
    order_by: Sequence[Any] = (),
) -> PaginatedResult[Row]:
    # Page numbers start at 1; the total is counted with the same predicates.
    page = max(int(page), 1)
    page_size = max(int(page_size), 1)
    total = await count_rows(session, table, conditions)
    items = await select_rows(
        session, table, conditions, order_by=order_by, limit=page_size, offset=(page - 1) * page_size
    )
    return PaginatedResult(items=items, total=total, page=page, page_size=page_size)
