from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.config import Settings
from cmsstore.core.errors import NOT_IMPLEMENTED, NotConnectedError, create_database_error
from cmsstore.domain.results import Result
from cmsstore.persistence.dates import MonotonicClock
from cmsstore.persistence.db import SessionProvider
from cmsstore.persistence.guards import tenant_predicate
from cmsstore.persistence.ids import IdGenerator


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StoreContext:
    # Dependencies handed to every module; modules never reach back into the adapter.
    settings: Settings
    ids: IdGenerator
    clock: MonotonicClock
    provider_getter: Callable[[], SessionProvider | None]
    resolve_table: Callable[[str], Table]
    handle_error: Callable[[BaseException, str], Result[Any]]

    def provider(self) -> SessionProvider:
        provider = self.provider_getter()
        if provider is None:
            raise NotConnectedError("Database not connected")
        return provider

    def now(self) -> datetime:
        return self.clock.now()

    async def run(self, code: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> Result[T]:
        # Execute fn in a session scope and fold any failure into the result envelope.
        try:
            async with self.provider().scope() as session:
                data = await fn(session)
        except Exception as exc:  # noqa: BLE001 - module methods never raise
            return self.handle_error(exc, code)
        return Result.ok(data)

    def not_implemented(self, method: str) -> Result[Any]:
        return Result.fail(create_database_error(NOT_IMPLEMENTED, f"Method {method} is not implemented"))

    def tenant_conditions(self, table: Table, tenant_id: str | None) -> list[Any]:
        predicate = tenant_predicate(table, tenant_id, self.settings)
        return [] if predicate is None else [predicate]

    def new_record(self, values: Mapping[str, Any], tenant_id: str | None = None) -> dict[str, Any]:
        # Server-assigned id and timestamps always win over caller values.
        now = self.now()
        record = {key: value for key, value in values.items() if key != "_id"}
        record["id"] = self.ids.generate_id()
        record["created_at"] = now
        record["updated_at"] = now
        if tenant_id is not None:
            record["tenant_id"] = tenant_id
        return record

    def touched(self, values: Mapping[str, Any]) -> dict[str, Any]:
        # Strip immutable keys and bump updated_at.
        record = {
            key: value
            for key, value in values.items()
            if key not in ("_id", "id", "created_at", "tenant_id")
        }
        record["updated_at"] = self.now()
        return record
