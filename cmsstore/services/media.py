from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import MediaItem, VirtualFolder
from cmsstore.domain.results import PaginatedResult, Result
from cmsstore.persistence.repos.records import (
    Row,
    delete_rows,
    insert_rows,
    order_clauses,
    paginate_rows,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext
from cmsstore.services.folders import build_folder_record


MEDIA = MediaItem.__table__
FOLDERS = VirtualFolder.__table__

# Paths under this prefix are visible to every user.
GLOBAL_PREFIX = "global/"


class MediaFilesApi:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(MEDIA, tenant_id)

    async def _insert_many(self, session: AsyncSession, files: Sequence[Mapping[str, Any]], tenant_id: str | None) -> list[Row]:
        records = [writable_values(MEDIA, self._ctx.new_record(item, tenant_id)) for item in files]
        await insert_rows(session, MEDIA, records)
        ids = [record["id"] for record in records]
        if not ids:
            return []
        rows = {row["id"]: row for row in await select_rows(session, MEDIA, [MEDIA.c.id.in_(ids)])}
        return [rows[file_id] for file_id in ids]

    async def upload(self, file: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            return (await self._insert_many(session, [file], tenant_id))[0]

        return await self._ctx.run("UPLOAD_MEDIA_FAILED", op)

    async def upload_many(self, files: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await self._insert_many(session, files, tenant_id)

        return await self._ctx.run("UPLOAD_MEDIA_MANY_FAILED", op)

    async def delete(self, file_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, MEDIA, [MEDIA.c.id == file_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_MEDIA_FAILED", op)

    async def delete_many(self, file_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            deleted = await delete_rows(session, MEDIA, [MEDIA.c.id.in_(list(file_ids)), *self._tenant(tenant_id)])
            return {"deleted_count": deleted}

        return await self._ctx.run("DELETE_MEDIA_MANY_FAILED", op)

    async def get_by_folder(
        self,
        folder_id: str | None = None,
        *,
        page: int = 1,
        page_size: int | None = None,
        sort_field: str = "created_at",
        sort_direction: str = "desc",
        user_id: str | None = None,
        is_admin: bool = False,
        tenant_id: str | None = None,
    ) -> Result[PaginatedResult[Row]]:
        # Non-admin users only see their own uploads plus the shared global area.
        async def op(session: AsyncSession) -> PaginatedResult[Row]:
            conditions: list[Any] = [
                MEDIA.c.folder_id.is_(None) if folder_id is None else MEDIA.c.folder_id == folder_id,
                *self._tenant(tenant_id),
            ]
            if user_id is not None and not is_admin:
                conditions.append(or_(MEDIA.c.created_by == user_id, MEDIA.c.path.like(f"{GLOBAL_PREFIX}%")))
            return await paginate_rows(
                session,
                MEDIA,
                conditions,
                page=page,
                page_size=page_size or self._ctx.settings.default_page_size,
                order_by=[*order_clauses(MEDIA, {sort_field: sort_direction}), MEDIA.c.id.asc()],
            )

        return await self._ctx.run("GET_MEDIA_BY_FOLDER_FAILED", op)

    async def search(
        self,
        query: str,
        *,
        page: int = 1,
        page_size: int | None = None,
        tenant_id: str | None = None,
    ) -> Result[PaginatedResult[Row]]:
        async def op(session: AsyncSession) -> PaginatedResult[Row]:
            match = or_(
                MEDIA.c.filename.icontains(query, autoescape=True),
                MEDIA.c.original_filename.icontains(query, autoescape=True),
            )
            return await paginate_rows(
                session,
                MEDIA,
                [match, *self._tenant(tenant_id)],
                page=page,
                page_size=page_size or self._ctx.settings.default_page_size,
                order_by=[MEDIA.c.created_at.desc(), MEDIA.c.id.asc()],
            )

        return await self._ctx.run("SEARCH_MEDIA_FAILED", op)

    async def get_metadata(self, file_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            rows = await select_rows(
                session,
                MEDIA,
                [MEDIA.c.id.in_(list(file_ids)), *self._tenant(tenant_id)],
                columns=["id", "metadata"],
            )
            return {row["id"]: row["metadata"] for row in rows}

        return await self._ctx.run("GET_MEDIA_METADATA_FAILED", op)

    async def update_metadata(
        self,
        file_id: str,
        metadata: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        # Merged into existing metadata, not replaced.
        async def op(session: AsyncSession) -> Row:
            conditions = [MEDIA.c.id == file_id, *self._tenant(tenant_id)]
            existing = await select_one(session, MEDIA, conditions, for_update=True)
            if existing is None:
                raise NotFoundError(f"Media item {file_id} not found")
            merged = {**(existing["metadata"] or {}), **metadata}
            await update_rows(session, MEDIA, conditions, self._ctx.touched({"metadata": merged}))
            row = await select_one(session, MEDIA, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_MEDIA_METADATA_FAILED", op)

    async def move(
        self,
        file_ids: Sequence[str],
        target_folder_id: str | None,
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            moved = await update_rows(
                session,
                MEDIA,
                [MEDIA.c.id.in_(list(file_ids)), *self._tenant(tenant_id)],
                self._ctx.touched({"folder_id": target_folder_id}),
            )
            return {"moved_count": moved}

        return await self._ctx.run("MOVE_MEDIA_FAILED", op)

    async def duplicate(
        self,
        file_id: str,
        new_name: str | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        # Copies the record only; no bytes are duplicated.
        async def op(session: AsyncSession) -> Row:
            original = await select_one(session, MEDIA, [MEDIA.c.id == file_id, *self._tenant(tenant_id)])
            if original is None:
                raise NotFoundError(f"Media item {file_id} not found")
            copy = {key: value for key, value in original.items() if key not in ("id", "created_at", "updated_at")}
            copy["filename"] = new_name or f"{original['filename']}_copy"
            return (await self._insert_many(session, [copy], original["tenant_id"]))[0]

        return await self._ctx.run("DUPLICATE_MEDIA_FAILED", op)


class MediaFoldersApi:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(FOLDERS, tenant_id)

    async def _create(self, session: AsyncSession, folders: Sequence[Mapping[str, Any]], tenant_id: str | None) -> list[Row]:
        records = [
            await build_folder_record(self._ctx, session, folder, tenant_id, folder_type="folder") for folder in folders
        ]
        await insert_rows(session, FOLDERS, records)
        ids = [record["id"] for record in records]
        if not ids:
            return []
        rows = {row["id"]: row for row in await select_rows(session, FOLDERS, [FOLDERS.c.id.in_(ids)])}
        return [rows[folder_id] for folder_id in ids]

    async def create(self, folder: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            return (await self._create(session, [folder], tenant_id))[0]

        return await self._ctx.run("CREATE_MEDIA_FOLDER_FAILED", op)

    async def create_many(self, folders: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await self._create(session, folders, tenant_id)

        return await self._ctx.run("CREATE_MEDIA_FOLDERS_FAILED", op)

    async def delete(self, folder_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, FOLDERS, [FOLDERS.c.id == folder_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_MEDIA_FOLDER_FAILED", op)

    async def delete_many(self, folder_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [FOLDERS.c.id.in_(list(folder_ids)), *self._tenant(tenant_id)]
            return {"deleted_count": await delete_rows(session, FOLDERS, conditions)}

        return await self._ctx.run("DELETE_MEDIA_FOLDERS_FAILED", op)

    async def get_tree(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        # Flat list; callers nest by parent_id if they need a tree.
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session,
                FOLDERS,
                [FOLDERS.c.type == "folder", *self._tenant(tenant_id)],
                order_by=[FOLDERS.c.order.asc(), FOLDERS.c.name.asc()],
            )

        return await self._ctx.run("GET_MEDIA_FOLDER_TREE_FAILED", op)

    async def get_folder_contents(self, folder_id: str | None = None, *, tenant_id: str | None = None) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            parent = FOLDERS.c.parent_id.is_(None) if folder_id is None else FOLDERS.c.parent_id == folder_id
            owner = MEDIA.c.folder_id.is_(None) if folder_id is None else MEDIA.c.folder_id == folder_id
            folders = await select_rows(
                session, FOLDERS, [parent, *self._tenant(tenant_id)], order_by=[FOLDERS.c.order.asc(), FOLDERS.c.name.asc()]
            )
            files = await select_rows(
                session,
                MEDIA,
                [owner, *self._ctx.tenant_conditions(MEDIA, tenant_id)],
                order_by=[MEDIA.c.filename.asc()],
            )
            return {"folders": folders, "files": files, "total_count": len(folders) + len(files)}

        return await self._ctx.run("GET_MEDIA_FOLDER_CONTENTS_FAILED", op)

    async def move(self, folder_id: str, target_parent_id: str | None, *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [FOLDERS.c.id == folder_id, *self._tenant(tenant_id)]
            if not await update_rows(session, FOLDERS, conditions, self._ctx.touched({"parent_id": target_parent_id})):
                raise NotFoundError(f"Folder {folder_id} not found")
            row = await select_one(session, FOLDERS, conditions)
            assert row is not None
            return row

        return await self._ctx.run("MOVE_MEDIA_FOLDER_FAILED", op)


class MediaModule:
    def __init__(self, ctx: StoreContext) -> None:
        self.files = MediaFilesApi(ctx)
        self.folders = MediaFoldersApi(ctx)
