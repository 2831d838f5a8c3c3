from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import Widget
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import Row, delete_rows, select_one, select_rows, update_rows, writable_values
from cmsstore.services.context import StoreContext
from cmsstore.services.crud import CrudModule


WIDGETS = Widget.__table__


class WidgetsModule:
    def __init__(self, ctx: StoreContext, crud: CrudModule) -> None:
        self._ctx = ctx
        self._crud = crud

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(WIDGETS, tenant_id)

    async def register(self, widget: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        # Upsert keyed by name.
        async def op(session: AsyncSession) -> Row:
            data = {key: value for key, value in widget.items() if key != "name"}
            row, _ = await self._crud.upsert_record(session, WIDGETS, {"name": widget["name"]}, data, tenant_id)
            return row

        return await self._ctx.run("REGISTER_WIDGET_FAILED", op)

    async def find_all(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(session, WIDGETS, self._tenant(tenant_id), order_by=[WIDGETS.c.name.asc()])

        return await self._ctx.run("FIND_WIDGETS_FAILED", op)

    async def get_active_widgets(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session, WIDGETS, [WIDGETS.c.is_active.is_(True), *self._tenant(tenant_id)], order_by=[WIDGETS.c.name.asc()]
            )

        return await self._ctx.run("GET_ACTIVE_WIDGETS_FAILED", op)

    async def _change(self, widget_id: str, values: Mapping[str, Any], tenant_id: str | None, code: str) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [WIDGETS.c.id == widget_id, *self._tenant(tenant_id)]
            if not await update_rows(session, WIDGETS, conditions, writable_values(WIDGETS, self._ctx.touched(values))):
                raise NotFoundError(f"Widget {widget_id} not found")
            row = await select_one(session, WIDGETS, conditions)
            assert row is not None
            return row

        return await self._ctx.run(code, op)

    async def activate(self, widget_id: str, *, tenant_id: str | None = None) -> Result[Row]:
        return await self._change(widget_id, {"is_active": True}, tenant_id, "ACTIVATE_WIDGET_FAILED")

    async def deactivate(self, widget_id: str, *, tenant_id: str | None = None) -> Result[Row]:
        return await self._change(widget_id, {"is_active": False}, tenant_id, "DEACTIVATE_WIDGET_FAILED")

    async def update(self, widget_id: str, data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        return await self._change(widget_id, data, tenant_id, "UPDATE_WIDGET_FAILED")

    async def delete(self, widget_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, WIDGETS, [WIDGETS.c.id == widget_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_WIDGET_FAILED", op)
