from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.adapter.core import AdapterCore
from cmsstore.core.config import Settings
from cmsstore.domain.models import AuthSession, AuthToken
from cmsstore.domain.results import Result
from cmsstore.persistence.dates import MonotonicClock
from cmsstore.persistence.ids import IdGenerator
from cmsstore.persistence.repos.records import count_rows, delete_rows, select_rows
from cmsstore.services.auth import AuthModule
from cmsstore.services.batch import BatchModule
from cmsstore.services.collections import CollectionModule
from cmsstore.services.content import ContentModule
from cmsstore.services.crud import CrudModule
from cmsstore.services.folders import VirtualFoldersModule
from cmsstore.services.media import MediaModule
from cmsstore.services.passwords import PasswordService
from cmsstore.services.preferences import PreferencesModule
from cmsstore.services.query_builder import QueryBuilder
from cmsstore.services.themes import ThemesModule
from cmsstore.services.transactions import TransactionFn, TransactionModule
from cmsstore.services.website_tokens import WebsiteTokensModule
from cmsstore.services.widgets import WidgetsModule


logger = logging.getLogger(__name__)

SESSIONS = AuthSession.__table__
TOKENS = AuthToken.__table__


@dataclass(frozen=True)
class SystemModules:
    preferences: PreferencesModule
    virtual_folders: VirtualFoldersModule
    themes: ThemesModule
    widgets: WidgetsModule
    website_tokens: WebsiteTokensModule


class CmsAdapter(AdapterCore):
    """Single entry point composing every store module over one connection pool."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        ids: IdGenerator | None = None,
        clock: MonotonicClock | None = None,
        passwords: PasswordService | None = None,
    ) -> None:
        super().__init__(settings, ids=ids, clock=clock)
        ctx = self.context
        self.crud = CrudModule(ctx)
        self.auth = AuthModule(ctx, passwords)
        self.content = ContentModule(ctx)
        self.media = MediaModule(ctx)
        self.system = SystemModules(
            preferences=PreferencesModule(ctx),
            virtual_folders=VirtualFoldersModule(ctx),
            themes=ThemesModule(ctx),
            widgets=WidgetsModule(ctx, self.crud),
            website_tokens=WebsiteTokensModule(ctx),
        )
        self.batch = BatchModule(ctx, self.crud)
        self.transactions = TransactionModule(ctx)
        self.collection = CollectionModule(ctx, self.crud)

    async def transaction(self, fn: TransactionFn, *, isolation_level: str | None = None) -> Result[Any]:
        return await self.transactions.execute(fn, isolation_level=isolation_level)

    def query_builder(self, collection: str, *, tenant_id: str | None = None) -> QueryBuilder:
        return QueryBuilder(self.context, collection, tenant_id=tenant_id)

    async def get_collection_data(
        self,
        collection: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        include_metadata: bool = False,
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any]]:
        table = self.get_table(collection)

        async def op(session: AsyncSession) -> dict[str, Any]:
            conditions = self.context.tenant_conditions(table, tenant_id)
            rows = await select_rows(
                session, table, conditions, order_by=[table.c.created_at.asc()], limit=limit, offset=offset
            )
            payload: dict[str, Any] = {"data": rows}
            if include_metadata:
                payload["metadata"] = {
                    "collection": collection,
                    "table": table.name,
                    "total": await count_rows(session, table, conditions),
                    "limit": limit,
                    "offset": offset or 0,
                }
            return payload

        return await self.context.run("GET_COLLECTION_DATA_FAILED", op)

    async def get_multiple_collection_data(
        self,
        collections: Sequence[str],
        *,
        limit: int | None = None,
        tenant_id: str | None = None,
    ) -> Result[dict[str, list[dict[str, Any]]]]:
        # One session for all reads; results keyed by the requested name.
        async def op(session: AsyncSession) -> dict[str, list[dict[str, Any]]]:
            out: dict[str, list[dict[str, Any]]] = {}
            for name in collections:
                table = self.get_table(name)
                out[name] = await select_rows(
                    session,
                    table,
                    self.context.tenant_conditions(table, tenant_id),
                    order_by=[table.c.created_at.asc()],
                    limit=limit,
                )
            return out

        return await self.context.run("GET_MULTIPLE_COLLECTION_DATA_FAILED", op)

    async def cleanup_expired_data(self) -> Result[dict[str, int]]:
        # Global sweep across tenants: expired sessions, expired tokens and long-consumed tokens.
        async def op(session: AsyncSession) -> dict[str, int]:
            now = self.context.now()
            consumed_before = now - timedelta(hours=self.settings.consumed_token_retention_h)
            sessions = await delete_rows(session, SESSIONS, [SESSIONS.c.expires <= now])
            tokens = await delete_rows(
                session,
                TOKENS,
                [
                    or_(
                        TOKENS.c.expires <= now,
                        and_(TOKENS.c.consumed.is_(True), TOKENS.c.updated_at <= consumed_before),
                    )
                ],
            )
            logger.info("expired_data_cleaned sessions=%s tokens=%s", sessions, tokens)
            return {"sessions": sessions, "tokens": tokens}

        return await self.context.run("CLEANUP_EXPIRED_DATA_FAILED", op)
