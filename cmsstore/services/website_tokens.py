from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.domain.models import WebsiteToken
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import (
    Row,
    count_rows,
    delete_rows,
    insert_rows,
    order_clauses,
    select_one,
    select_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext


WEBSITE_TOKENS = WebsiteToken.__table__


class WebsiteTokensModule:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(WEBSITE_TOKENS, tenant_id)

    async def create(self, token: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        # Name and token uniqueness is left to the schema.
        async def op(session: AsyncSession) -> Row:
            values = dict(token)
            values.setdefault("token", self._ctx.ids.generate_token())
            record = writable_values(WEBSITE_TOKENS, self._ctx.new_record(values, tenant_id))
            await insert_rows(session, WEBSITE_TOKENS, [record])
            row = await select_one(session, WEBSITE_TOKENS, [WEBSITE_TOKENS.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("CREATE_WEBSITE_TOKEN_FAILED", op)

    async def get_all(
        self,
        *,
        limit: int | None = None,
        skip: int = 0,
        sort: str = "created_at",
        order: str = "desc",
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            conditions = self._tenant(tenant_id)
            total = await count_rows(session, WEBSITE_TOKENS, conditions)
            rows = await select_rows(
                session,
                WEBSITE_TOKENS,
                conditions,
                order_by=order_clauses(WEBSITE_TOKENS, {sort: order}),
                limit=limit,
                offset=skip,
            )
            return {"data": rows, "total": total}

        return await self._ctx.run("GET_WEBSITE_TOKENS_FAILED", op)

    async def get_by_name(self, name: str, *, tenant_id: str | None = None) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, WEBSITE_TOKENS, [WEBSITE_TOKENS.c.name == name, *self._tenant(tenant_id)])

        return await self._ctx.run("GET_WEBSITE_TOKEN_FAILED", op)

    async def delete(self, token_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, WEBSITE_TOKENS, [WEBSITE_TOKENS.c.id == token_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_WEBSITE_TOKEN_FAILED", op)
