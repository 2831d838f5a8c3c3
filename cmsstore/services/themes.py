from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import Theme
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import (
    Row,
    delete_rows,
    insert_rows,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext


THEMES = Theme.__table__


class ThemesModule:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(THEMES, tenant_id)

    async def get_active(self, *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            row = await select_one(
                session,
                THEMES,
                [THEMES.c.is_active.is_(True), *self._tenant(tenant_id)],
                order_by=[THEMES.c.is_default.desc(), THEMES.c.updated_at.desc()],
            )
            if row is None:
                raise NotFoundError("No active theme")
            return row

        return await self._ctx.run("GET_ACTIVE_THEME_FAILED", op)

    async def set_default(self, theme_id: str, *, tenant_id: str | None = None) -> Result[Row]:
        # Clear and set in one transaction so exactly one default remains.
        async def op(session: AsyncSession) -> Row:
            target = [THEMES.c.id == theme_id, *self._tenant(tenant_id)]
            if await select_one(session, THEMES, target, for_update=True) is None:
                raise NotFoundError(f"Theme {theme_id} not found")
            await update_rows(
                session,
                THEMES,
                [THEMES.c.is_default.is_(True), *self._tenant(tenant_id)],
                self._ctx.touched({"is_default": False}),
            )
            await update_rows(session, THEMES, target, self._ctx.touched({"is_default": True, "is_active": True}))
            row = await select_one(session, THEMES, target)
            assert row is not None
            return row

        return await self._ctx.run("SET_DEFAULT_THEME_FAILED", op)

    async def install(self, theme: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            record = writable_values(THEMES, self._ctx.new_record(theme, tenant_id))
            await insert_rows(session, THEMES, [record])
            row = await select_one(session, THEMES, [THEMES.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("INSTALL_THEME_FAILED", op)

    async def uninstall(self, theme_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, THEMES, [THEMES.c.id == theme_id, *self._tenant(tenant_id)])

        return await self._ctx.run("UNINSTALL_THEME_FAILED", op)

    async def update(self, theme_id: str, data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [THEMES.c.id == theme_id, *self._tenant(tenant_id)]
            if not await update_rows(session, THEMES, conditions, writable_values(THEMES, self._ctx.touched(data))):
                raise NotFoundError(f"Theme {theme_id} not found")
            row = await select_one(session, THEMES, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_THEME_FAILED", op)

    async def get_all_themes(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(session, THEMES, self._tenant(tenant_id), order_by=[THEMES.c.name.asc()])

        return await self._ctx.run("GET_ALL_THEMES_FAILED", op)

    async def store_themes(self, themes: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        # Inserts themes whose name is not stored yet; existing rows are left alone.
        async def op(session: AsyncSession) -> dict[str, int]:
            names = [theme["name"] for theme in themes]
            known = {
                row["name"]
                for row in await select_rows(
                    session, THEMES, [THEMES.c.name.in_(names), *self._tenant(tenant_id)], columns=["name"]
                )
            }
            fresh = []
            for theme in themes:
                if theme["name"] in known:
                    continue
                known.add(theme["name"])
                fresh.append(writable_values(THEMES, self._ctx.new_record(theme, tenant_id)))
            await insert_rows(session, THEMES, fresh)
            return {"inserted_count": len(fresh)}

        return await self._ctx.run("STORE_THEMES_FAILED", op)

    async def get_default_theme(self, *, tenant_id: str | None = None) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, THEMES, [THEMES.c.is_default.is_(True), *self._tenant(tenant_id)])

        return await self._ctx.run("GET_DEFAULT_THEME_FAILED", op)
