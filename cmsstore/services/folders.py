from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import MediaItem, VirtualFolder
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


FOLDERS = VirtualFolder.__table__
MEDIA = MediaItem.__table__


async def build_folder_record(
    ctx: StoreContext,
    session: AsyncSession,
    folder: Mapping[str, Any],
    tenant_id: str | None,
    *,
    folder_type: str | None = None,
) -> dict[str, Any]:
    # Derive the path from the parent when the caller gives only a name.
    values = dict(folder)
    if folder_type is not None:
        values["type"] = folder_type
    if not values.get("path"):
        parent_path = ""
        if values.get("parent_id"):
            parent = await select_one(
                session, FOLDERS, [FOLDERS.c.id == values["parent_id"], *ctx.tenant_conditions(FOLDERS, tenant_id)]
            )
            if parent is None:
                raise NotFoundError(f"Folder {values['parent_id']} not found")
            parent_path = parent["path"].rstrip("/")
        values["path"] = f"{parent_path}/{values['name']}"
    return writable_values(FOLDERS, ctx.new_record(values, tenant_id))


class VirtualFoldersModule:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(FOLDERS, tenant_id)

    async def get_all(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session, FOLDERS, self._tenant(tenant_id), order_by=[FOLDERS.c.order.asc(), FOLDERS.c.path.asc()]
            )

        return await self._ctx.run("GET_VIRTUAL_FOLDERS_FAILED", op)

    async def get_by_id(self, folder_id: str, *, tenant_id: str | None = None) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, FOLDERS, [FOLDERS.c.id == folder_id, *self._tenant(tenant_id)])

        return await self._ctx.run("GET_VIRTUAL_FOLDER_FAILED", op)

    async def get_by_parent_id(self, parent_id: str | None, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            parent = FOLDERS.c.parent_id.is_(None) if parent_id is None else FOLDERS.c.parent_id == parent_id
            return await select_rows(
                session, FOLDERS, [parent, *self._tenant(tenant_id)], order_by=[FOLDERS.c.order.asc(), FOLDERS.c.name.asc()]
            )

        return await self._ctx.run("GET_VIRTUAL_FOLDERS_BY_PARENT_FAILED", op)

    async def create(self, folder: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            record = await build_folder_record(self._ctx, session, folder, tenant_id)
            await insert_rows(session, FOLDERS, [record])
            row = await select_one(session, FOLDERS, [FOLDERS.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("CREATE_VIRTUAL_FOLDER_FAILED", op)

    async def update(self, folder_id: str, data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [FOLDERS.c.id == folder_id, *self._tenant(tenant_id)]
            if not await update_rows(session, FOLDERS, conditions, writable_values(FOLDERS, self._ctx.touched(data))):
                raise NotFoundError("Folder not found", details={"folder_id": folder_id})
            row = await select_one(session, FOLDERS, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_VIRTUAL_FOLDER_FAILED", op)

    async def delete(self, folder_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, FOLDERS, [FOLDERS.c.id == folder_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_VIRTUAL_FOLDER_FAILED", op)

    async def exists(self, path: str, *, tenant_id: str | None = None) -> Result[bool]:
        async def op(session: AsyncSession) -> bool:
            rows = await select_rows(
                session, FOLDERS, [FOLDERS.c.path == path, *self._tenant(tenant_id)], columns=["id"], limit=1
            )
            return bool(rows)

        return await self._ctx.run("VIRTUAL_FOLDER_EXISTS_FAILED", op)

    async def get_contents(self, path: str, *, tenant_id: str | None = None) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            folder = await select_one(session, FOLDERS, [FOLDERS.c.path == path, *self._tenant(tenant_id)])
            if folder is None:
                raise NotFoundError("Folder not found", details={"path": path})
            folders = await select_rows(
                session,
                FOLDERS,
                [FOLDERS.c.parent_id == folder["id"], *self._tenant(tenant_id)],
                order_by=[FOLDERS.c.order.asc(), FOLDERS.c.name.asc()],
            )
            files = await select_rows(
                session,
                MEDIA,
                [MEDIA.c.folder_id == folder["id"], *self._ctx.tenant_conditions(MEDIA, tenant_id)],
                order_by=[MEDIA.c.filename.asc()],
            )
            return {"folder": folder, "folders": folders, "files": files}

        return await self._ctx.run("GET_VIRTUAL_FOLDER_CONTENTS_FAILED", op)

    async def add_to_folder(self, content_id: str, folder_path: str, *, tenant_id: str | None = None) -> Result[Any]:
        return self._ctx.not_implemented("add_to_folder")
