from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cmsstore.core.config import Settings, get_settings


# Session bound by the outermost open scope or by an explicit transaction.
_bound_session: ContextVar[tuple["SessionProvider", AsyncSession] | None] = ContextVar(
    "cmsstore_bound_session", default=None
)


@dataclass(frozen=True)
class ConnectionOptions:
    host: str = "localhost"
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    driver: str = "postgresql+asyncpg"
    query: dict[str, str] = field(default_factory=dict)

    def to_url(self) -> URL:
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=self.query,
        )


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and (not url.database or url.database == ":memory:")


def build_engine_kwargs(url: URL, settings: Settings) -> dict[str, Any]:
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.db_echo}
    if url.get_backend_name() == "sqlite":
        if _is_memory_sqlite(url):
            # One shared connection keeps the in-memory database alive across sessions.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        return engine_kwargs
    # Configure bounded asyncpg pools for predictable latency under load.
    engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    engine_kwargs["pool_timeout"] = settings.db_pool_timeout_s
    engine_kwargs["pool_recycle"] = settings.db_pool_recycle_s
    if settings.db_statement_timeout_ms > 0 and url.get_backend_name() == "postgresql":
        engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
        }
    return engine_kwargs


class SessionProvider:
    def __init__(self, connection: str | URL | ConnectionOptions, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        if isinstance(connection, ConnectionOptions):
            self.url = connection.to_url()
        else:
            self.url = make_url(connection)
        self.engine: AsyncEngine = create_async_engine(self.url, **build_engine_kwargs(self.url, self.settings))
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    def bound_session(self) -> AsyncSession | None:
        bound = _bound_session.get()
        if bound is not None and bound[0] is self:
            return bound[1]
        return None

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[AsyncSession]:
        # Reuse the bound session; otherwise open one transaction that commits on clean exit.
        existing = self.bound_session()
        if existing is not None:
            yield existing
            return
        async with self.sessionmaker() as session:
            async with session.begin():
                token = _bound_session.set((self, session))
                try:
                    yield session
                finally:
                    _bound_session.reset(token)

    @asynccontextmanager
    async def transaction(self, isolation_level: str | None = None) -> AsyncIterator[AsyncSession]:
        # Caller owns commit/rollback; closing without commit rolls back.
        async with self.sessionmaker() as session:
            if isolation_level:
                await session.connection(execution_options={"isolation_level": isolation_level})
            token = _bound_session.set((self, session))
            try:
                yield session
            finally:
                _bound_session.reset(token)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    def pool_stats(self) -> dict[str, int | None]:
        # Expose pool counters without querying database internals.
        pool = self.engine.sync_engine.pool
        checked_out_fn = getattr(pool, "checkedout", None)
        checked_in_fn = getattr(pool, "checkedin", None)
        overflow_fn = getattr(pool, "overflow", None)
        size_fn = getattr(pool, "size", None)
        return {
            "size": int(size_fn()) if callable(size_fn) else None,
            "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
            "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
            "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
        }

    async def dispose(self) -> None:
        await self.engine.dispose()
