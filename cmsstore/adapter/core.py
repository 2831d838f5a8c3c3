from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from sqlalchemy import Table
from sqlalchemy.engine import URL
from sqlalchemy.sql import ColumnElement

from cmsstore.adapter.tables import resolve_table
from cmsstore.core.config import Settings, get_settings
from cmsstore.core.errors import (
    CONNECTION_FAILED,
    HEALTH_CHECK_FAILED,
    NOT_CONNECTED,
    CmsStoreError,
    create_database_error,
    error_from_exception,
)
from cmsstore.domain.results import Capabilities, ConnectionHealth, PoolStats, Result
from cmsstore.persistence.dates import MonotonicClock
from cmsstore.persistence.db import ConnectionOptions, SessionProvider
from cmsstore.persistence.ids import IdGenerator
from cmsstore.persistence.repos.records import equality_conditions
from cmsstore.services.context import StoreContext


logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterCore:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        ids: IdGenerator | None = None,
        clock: MonotonicClock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ids = ids or IdGenerator()
        self.clock = clock or MonotonicClock()
        self._provider: SessionProvider | None = None
        self.context = StoreContext(
            settings=self.settings,
            ids=self.ids,
            clock=self.clock,
            provider_getter=lambda: self._provider,
            resolve_table=self.get_table,
            handle_error=self.handle_error,
        )

    async def connect(self, connection_info: str | URL | ConnectionOptions | None = None) -> Result[None]:
        # Build the pool and prove it with a round trip before reporting connected.
        if self._provider is not None:
            return Result.ok(None)
        provider: SessionProvider | None = None
        try:
            provider = SessionProvider(connection_info or self.settings.database_url, self.settings)
            await provider.ping()
        except Exception as exc:  # noqa: BLE001 - reported as CONNECTION_FAILED
            if provider is not None:
                await provider.dispose()
            return self.handle_error(exc, CONNECTION_FAILED)
        self._provider = provider
        logger.info("store_connected backend=%s", provider.url.get_backend_name())
        return Result.ok(None)

    async def disconnect(self) -> Result[None]:
        provider, self._provider = self._provider, None
        if provider is not None:
            await provider.dispose()
            logger.info("store_disconnected backend=%s", provider.url.get_backend_name())
        return Result.ok(None)

    def is_connected(self) -> bool:
        return self._provider is not None

    @property
    def provider(self) -> SessionProvider | None:
        return self._provider

    async def wait_for_connection(self, timeout: float | None = None) -> None:
        # Poll until connect() has completed; raises TimeoutError past the bound.
        limit = self.settings.connect_wait_timeout_s if timeout is None else timeout
        interval = self.settings.connect_wait_poll_ms / 1000.0
        deadline = time.monotonic() + limit
        while not self.is_connected():
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Database not connected after {limit}s")
            await asyncio.sleep(interval)

    async def get_connection_health(self) -> Result[ConnectionHealth]:
        if self._provider is None:
            return self.not_connected_error()
        started = time.perf_counter()
        try:
            await self._provider.ping()
        except Exception as exc:  # noqa: BLE001 - health probes report, never raise
            return self.handle_error(exc, HEALTH_CHECK_FAILED)
        latency_ms = (time.perf_counter() - started) * 1000.0
        stats = self._provider.pool_stats()
        return Result.ok(
            ConnectionHealth(healthy=True, latency_ms=latency_ms, active_connections=stats["checked_out"])
        )

    async def get_connection_pool_stats(self) -> Result[PoolStats]:
        if self._provider is None:
            return self.not_connected_error()
        stats = self._provider.pool_stats()
        active = stats["checked_out"]
        idle = stats["checked_in"]
        total = active + idle if active is not None and idle is not None else stats["size"]
        return Result.ok(PoolStats(total=total, active=active, idle=idle, waiting=None))

    async def get_capabilities(self) -> Result[Capabilities]:
        return Result.ok(
            Capabilities(
                max_batch_size=self.settings.max_batch_size,
                max_query_complexity=self.settings.max_query_complexity,
            )
        )

    async def wrap(self, operation: Callable[[], Awaitable[T]], code: str) -> Result[T]:
        try:
            data = await operation()
        except Exception as exc:  # noqa: BLE001 - module methods never raise
            return self.handle_error(exc, code)
        return Result.ok(data)

    def handle_error(self, exc: BaseException, code: str) -> Result[Any]:
        # Single exit point for failures; only the message and type name survive.
        error = error_from_exception(exc, code)
        if isinstance(exc, CmsStoreError):
            logger.info("store_operation_failed code=%s error_code=%s message=%s", code, error.code, error.message)
        else:
            logger.warning("store_operation_failed code=%s error_code=%s", code, error.code, exc_info=exc)
        return Result.fail(error)

    def not_implemented(self, method: str) -> Result[Any]:
        return self.context.not_implemented(method)

    def not_connected_error(self) -> Result[Any]:
        return Result.fail(create_database_error(NOT_CONNECTED, "Database not connected"))

    def get_table(self, collection: str) -> Table:
        return resolve_table(collection)

    def map_query(self, collection: str | Table, query: Mapping[str, Any] | None) -> list[ColumnElement[bool]]:
        table = collection if isinstance(collection, Table) else self.get_table(collection)
        return equality_conditions(table, query)
