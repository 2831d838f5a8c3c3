from __future__ import annotations

import logging
from typing import Any, Collection, Literal, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import ContentDraft, ContentNode, ContentRevision
from cmsstore.domain.results import PaginatedResult, Result
from cmsstore.persistence.repos.records import (
    Row,
    delete_rows,
    equality_conditions,
    insert_rows,
    paginate_rows,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext


logger = logging.getLogger(__name__)

NODES = ContentNode.__table__
DRAFTS = ContentDraft.__table__
REVISIONS = ContentRevision.__table__

# Node columns a published draft or restored revision may overwrite.
SNAPSHOT_COLUMNS = frozenset(
    column.key
    for column in NODES.columns
    if column.key
    not in {"id", "tenant_id", "created_at", "updated_at", "path", "parent_id", "data", "is_published", "published_at"}
)


def pick_valid_columns(values: Mapping[str, Any]) -> dict[str, Any]:
    # Content payloads may carry UI-only keys; only real node columns are persisted.
    return writable_values(NODES, values, strict=False)


def build_tree(nodes: Sequence[Row]) -> list[Row]:
    """Nest a flat node list by parent_id.

    Nodes whose parent is not part of ``nodes`` become roots, so callers that
    need structural fidelity must filter by subtree rather than by arbitrary
    predicates.
    """
    by_id: dict[str, Row] = {node["id"]: {**node, "children": []} for node in nodes}
    roots: list[Row] = []
    for node in nodes:
        entry = by_id[node["id"]]
        parent = by_id.get(node.get("parent_id") or "")
        if parent is not None and parent is not entry:
            parent["children"].append(entry)
        else:
            roots.append(entry)
    return roots


class NodesApi:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(NODES, tenant_id)

    async def _check_parent(
        self,
        session: AsyncSession,
        parent_id: str | None,
        tenant_id: str | None,
        pending: Collection[str] = (),
    ) -> None:
        if not parent_id or parent_id in pending:
            return
        parent = await select_one(session, NODES, [NODES.c.id == parent_id, *self._tenant(tenant_id)])
        if parent is None:
            raise NotFoundError(f"Parent node {parent_id} not found", details={"parent_id": parent_id})

    def _new_node(self, node: Mapping[str, Any], tenant_id: str | None) -> dict[str, Any]:
        # Callers may pin node ids so that a batch can reference its own parents.
        requested_id = node.get("id") or node.get("_id")
        record = self._ctx.new_record(pick_valid_columns(node), tenant_id)
        if requested_id:
            record["id"] = requested_id
        return record

    async def _insert(self, session: AsyncSession, node: Mapping[str, Any], tenant_id: str | None) -> Row:
        record = self._new_node(node, tenant_id)
        await self._check_parent(session, record.get("parent_id"), tenant_id)
        await insert_rows(session, NODES, [record])
        row = await select_one(session, NODES, [NODES.c.id == record["id"]])
        assert row is not None
        return row

    async def get_structure(
        self,
        mode: Literal["flat", "nested"] = "flat",
        filter: Mapping[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            conditions = [*equality_conditions(NODES, filter), *self._tenant(tenant_id)]
            rows = await select_rows(session, NODES, conditions, order_by=[NODES.c.order.asc(), NODES.c.path.asc()])
            return build_tree(rows) if mode == "nested" else rows

        return await self._ctx.run("GET_CONTENT_STRUCTURE_FAILED", op)

    async def upsert_content_structure_node(
        self,
        node: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            node_id = node.get("id") or node.get("_id")
            if node_id:
                conditions = [NODES.c.id == node_id, *self._tenant(tenant_id)]
                existing = await select_one(session, NODES, conditions, for_update=True)
                if existing is not None:
                    values = self._ctx.touched(pick_valid_columns(node))
                    await update_rows(session, NODES, conditions, values)
                    row = await select_one(session, NODES, conditions)
                    assert row is not None
                    return row
            return await self._insert(session, node, tenant_id)

        return await self._ctx.run("UPSERT_CONTENT_NODE_FAILED", op)

    async def create(self, node: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            return await self._insert(session, node, tenant_id)

        return await self._ctx.run("CREATE_CONTENT_NODE_FAILED", op)

    async def create_many(self, nodes: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            records = [self._new_node(node, tenant_id) for node in nodes]
            pending = {record["id"] for record in records}
            for record in records:
                await self._check_parent(session, record.get("parent_id"), tenant_id, pending)
            await insert_rows(session, NODES, records)
            ids = [record["id"] for record in records]
            if not ids:
                return []
            rows = {row["id"]: row for row in await select_rows(session, NODES, [NODES.c.id.in_(ids)])}
            return [rows[node_id] for node_id in ids]

        return await self._ctx.run("CREATE_CONTENT_NODES_FAILED", op)

    async def update(self, path: str, changes: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [NODES.c.path == path, *self._tenant(tenant_id)]
            values = self._ctx.touched(pick_valid_columns(changes))
            if "parent_id" in values:
                await self._check_parent(session, values["parent_id"], tenant_id)
            if not await update_rows(session, NODES, conditions, values):
                raise NotFoundError(f"Content node {path} not found", details={"path": path})
            new_path = values.get("path", path)
            row = await select_one(session, NODES, [NODES.c.path == new_path, *self._tenant(tenant_id)])
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_CONTENT_NODE_FAILED", op)

    async def bulk_update(
        self,
        updates: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        # Each item is {"path": ..., "changes": {...}}; missing paths are created.
        async def op(session: AsyncSession) -> list[Row]:
            results: list[Row] = []
            for item in updates:
                path = item["path"]
                changes = dict(item.get("changes") or {})
                conditions = [NODES.c.path == path, *self._tenant(tenant_id)]
                existing = await select_one(session, NODES, conditions, for_update=True)
                if existing is not None:
                    await update_rows(session, NODES, conditions, self._ctx.touched(pick_valid_columns(changes)))
                    row = await select_one(session, NODES, [NODES.c.id == existing["id"]])
                    assert row is not None
                    results.append(row)
                else:
                    changes.setdefault("node_type", "collection")
                    results.append(await self._insert(session, {**changes, "path": path}, tenant_id))
            return results

        return await self._ctx.run("BULK_UPDATE_CONTENT_NODES_FAILED", op)

    async def delete(self, path: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, NODES, [NODES.c.path == path, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_CONTENT_NODE_FAILED", op)

    async def delete_many(self, paths: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            deleted = await delete_rows(session, NODES, [NODES.c.path.in_(list(paths)), *self._tenant(tenant_id)])
            return {"deleted_count": deleted}

        return await self._ctx.run("DELETE_CONTENT_NODES_FAILED", op)

    async def reorder(self, items: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        # Each item is {"path": ..., "new_order": int}.
        async def op(session: AsyncSession) -> dict[str, int]:
            modified = 0
            for item in items:
                modified += await update_rows(
                    session,
                    NODES,
                    [NODES.c.path == item["path"], *self._tenant(tenant_id)],
                    self._ctx.touched({"order": int(item["new_order"])}),
                )
            return {"modified_count": modified}

        return await self._ctx.run("REORDER_CONTENT_NODES_FAILED", op)

    async def reorder_structure(
        self,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        # Each item is {"id", "parent_id", "order", "path"}; only position fields change.
        async def op(session: AsyncSession) -> dict[str, int]:
            modified = 0
            for item in items:
                values: dict[str, Any] = {"parent_id": item.get("parent_id"), "order": int(item.get("order", 0))}
                if item.get("path"):
                    values["path"] = item["path"]
                modified += await update_rows(
                    session, NODES, [NODES.c.id == item["id"], *self._tenant(tenant_id)], self._ctx.touched(values)
                )
            return {"modified_count": modified}

        return await self._ctx.run("REORDER_CONTENT_STRUCTURE_FAILED", op)


async def apply_snapshot(
    ctx: StoreContext,
    session: AsyncSession,
    node_id: str,
    data: Any,
    tenant_id: str | None,
    **extra: Any,
) -> Row:
    # Replace node data with a snapshot and copy snapshot keys that name node columns.
    conditions = [NODES.c.id == node_id, *ctx.tenant_conditions(NODES, tenant_id)]
    values: dict[str, Any] = {"data": data, **extra}
    if isinstance(data, Mapping):
        values.update({key: value for key, value in data.items() if key in SNAPSHOT_COLUMNS})
    if not await update_rows(session, NODES, conditions, ctx.touched(writable_values(NODES, values))):
        raise NotFoundError(f"Content node {node_id} not found", details={"content_id": node_id})
    row = await select_one(session, NODES, conditions)
    assert row is not None
    return row


class DraftsApi:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(DRAFTS, tenant_id)

    def _new_draft(self, draft: Mapping[str, Any], tenant_id: str | None) -> dict[str, Any]:
        values = dict(draft)
        values.setdefault("version", 1)
        values.setdefault("status", "draft")
        return writable_values(DRAFTS, self._ctx.new_record(values, tenant_id))

    async def create(self, draft: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            record = self._new_draft(draft, tenant_id)
            await insert_rows(session, DRAFTS, [record])
            row = await select_one(session, DRAFTS, [DRAFTS.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("CREATE_DRAFT_FAILED", op)

    async def create_many(self, drafts: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            records = [self._new_draft(draft, tenant_id) for draft in drafts]
            await insert_rows(session, DRAFTS, records)
            ids = [record["id"] for record in records]
            if not ids:
                return []
            rows = {row["id"]: row for row in await select_rows(session, DRAFTS, [DRAFTS.c.id.in_(ids)])}
            return [rows[draft_id] for draft_id in ids]

        return await self._ctx.run("CREATE_DRAFTS_FAILED", op)

    async def update(self, draft_id: str, data: Any, *, tenant_id: str | None = None) -> Result[Row]:
        # Draft data is replaced wholesale.
        async def op(session: AsyncSession) -> Row:
            conditions = [DRAFTS.c.id == draft_id, *self._tenant(tenant_id)]
            if not await update_rows(session, DRAFTS, conditions, self._ctx.touched({"data": data})):
                raise NotFoundError("Draft not found", details={"draft_id": draft_id})
            row = await select_one(session, DRAFTS, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_DRAFT_FAILED", op)

    async def publish(self, draft_id: str, *, tenant_id: str | None = None) -> Result[Row]:
        # Load, apply to the node and delete the draft in one transaction.
        async def op(session: AsyncSession) -> Row:
            conditions = [DRAFTS.c.id == draft_id, *self._tenant(tenant_id)]
            draft = await select_one(session, DRAFTS, conditions, for_update=True)
            if draft is None:
                raise NotFoundError("Draft not found", details={"draft_id": draft_id})
            node = await apply_snapshot(
                self._ctx,
                session,
                draft["content_id"],
                draft["data"],
                tenant_id,
                is_published=True,
                published_at=self._ctx.now(),
            )
            await delete_rows(session, DRAFTS, [DRAFTS.c.id == draft_id])
            logger.debug("draft_published draft_id=%s content_id=%s", draft_id, draft["content_id"])
            return node

        return await self._ctx.run("PUBLISH_DRAFT_FAILED", op)

    async def publish_many(self, draft_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        # Best effort: each draft publishes in its own transaction.
        published = 0
        for draft_id in draft_ids:
            result = await self.publish(draft_id, tenant_id=tenant_id)
            if result.success:
                published += 1
        return Result.ok({"published_count": published})

    async def get_for_content(
        self,
        content_id: str,
        *,
        page: int = 1,
        page_size: int | None = None,
        tenant_id: str | None = None,
    ) -> Result[PaginatedResult[Row]]:
        async def op(session: AsyncSession) -> PaginatedResult[Row]:
            return await paginate_rows(
                session,
                DRAFTS,
                [DRAFTS.c.content_id == content_id, *self._tenant(tenant_id)],
                page=page,
                page_size=page_size or self._ctx.settings.default_page_size,
                order_by=[DRAFTS.c.updated_at.desc(), DRAFTS.c.id.desc()],
            )

        return await self._ctx.run("GET_DRAFTS_FAILED", op)

    async def delete(self, draft_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, DRAFTS, [DRAFTS.c.id == draft_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_DRAFT_FAILED", op)

    async def delete_many(self, draft_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            deleted = await delete_rows(session, DRAFTS, [DRAFTS.c.id.in_(list(draft_ids)), *self._tenant(tenant_id)])
            return {"deleted_count": deleted}

        return await self._ctx.run("DELETE_DRAFTS_FAILED", op)


class RevisionsApi:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _tenant(self, tenant_id: str | None) -> list[Any]:
        return self._ctx.tenant_conditions(REVISIONS, tenant_id)

    async def create(self, revision: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            record = writable_values(REVISIONS, self._ctx.new_record(revision, tenant_id))
            await insert_rows(session, REVISIONS, [record])
            row = await select_one(session, REVISIONS, [REVISIONS.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("CREATE_REVISION_FAILED", op)

    async def get_history(
        self,
        content_id: str,
        *,
        page: int = 1,
        page_size: int | None = None,
        tenant_id: str | None = None,
    ) -> Result[PaginatedResult[Row]]:
        async def op(session: AsyncSession) -> PaginatedResult[Row]:
            return await paginate_rows(
                session,
                REVISIONS,
                [REVISIONS.c.content_id == content_id, *self._tenant(tenant_id)],
                page=page,
                page_size=page_size or self._ctx.settings.default_page_size,
                order_by=[REVISIONS.c.created_at.desc(), REVISIONS.c.id.desc()],
            )

        return await self._ctx.run("GET_REVISION_HISTORY_FAILED", op)

    async def restore(self, revision_id: str, *, tenant_id: str | None = None) -> Result[Row]:
        # The pre-restore state is not snapshotted.
        async def op(session: AsyncSession) -> Row:
            revision = await select_one(session, REVISIONS, [REVISIONS.c.id == revision_id, *self._tenant(tenant_id)])
            if revision is None:
                raise NotFoundError("Revision not found", details={"revision_id": revision_id})
            return await apply_snapshot(self._ctx, session, revision["content_id"], revision["data"], tenant_id)

        return await self._ctx.run("RESTORE_REVISION_FAILED", op)

    async def delete(self, revision_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, REVISIONS, [REVISIONS.c.id == revision_id, *self._tenant(tenant_id)])

        return await self._ctx.run("DELETE_REVISION_FAILED", op)

    async def delete_many(self, revision_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [REVISIONS.c.id.in_(list(revision_ids)), *self._tenant(tenant_id)]
            return {"deleted_count": await delete_rows(session, REVISIONS, conditions)}

        return await self._ctx.run("DELETE_REVISIONS_FAILED", op)

    async def cleanup(self, content_id: str, keep_latest: int, *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        # Keep the newest keep_latest revisions by creation time and delete the rest.
        async def op(session: AsyncSession) -> dict[str, int]:
            stale = await select_rows(
                session,
                REVISIONS,
                [REVISIONS.c.content_id == content_id, *self._tenant(tenant_id)],
                order_by=[REVISIONS.c.created_at.desc(), REVISIONS.c.id.desc()],
                offset=max(int(keep_latest), 0),
                columns=["id"],
            )
            if not stale:
                return {"deleted_count": 0}
            ids = [row["id"] for row in stale]
            return {"deleted_count": await delete_rows(session, REVISIONS, [REVISIONS.c.id.in_(ids)])}

        return await self._ctx.run("CLEANUP_REVISIONS_FAILED", op)


class ContentModule:
    def __init__(self, ctx: StoreContext) -> None:
        self.nodes = NodesApi(ctx)
        self.drafts = DraftsApi(ctx)
        self.revisions = RevisionsApi(ctx)
