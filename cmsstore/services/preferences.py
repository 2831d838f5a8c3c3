from __future__ import annotations

from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import SystemPreference
from cmsstore.domain.results import Result
from cmsstore.persistence.repos.records import Row, delete_rows, insert_rows, select_one, select_rows, update_rows
from cmsstore.services.context import StoreContext


PREFERENCES = SystemPreference.__table__

DEFAULT_SCOPE = "system"
DEFAULT_VISIBILITY = "private"


class PreferencesModule:
    """Scoped key/value settings.

    A preference is identified by ``(key, scope, user_id, tenant_id)``; the same
    key may hold different values for the system scope and for each user.
    """

    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    def _identity(self, scope: str, user_id: str | None, tenant_id: str | None) -> list[Any]:
        owner = PREFERENCES.c.user_id.is_(None) if user_id is None else PREFERENCES.c.user_id == user_id
        return [PREFERENCES.c.scope == scope, owner, *self._ctx.tenant_conditions(PREFERENCES, tenant_id)]

    async def _set(
        self,
        session: AsyncSession,
        key: str,
        value: Any,
        scope: str,
        user_id: str | None,
        visibility: str,
        tenant_id: str | None,
    ) -> Row:
        # Locked check-then-act keeps one row per identity.
        conditions = [PREFERENCES.c.key == key, *self._identity(scope, user_id, tenant_id)]
        existing = await select_one(session, PREFERENCES, conditions, for_update=True)
        if existing is not None:
            await update_rows(
                session,
                PREFERENCES,
                [PREFERENCES.c.id == existing["id"]],
                self._ctx.touched({"value": value, "visibility": visibility}),
            )
            row_id = existing["id"]
        else:
            record = self._ctx.new_record(
                {"key": key, "value": value, "scope": scope, "user_id": user_id, "visibility": visibility},
                tenant_id,
            )
            await insert_rows(session, PREFERENCES, [record])
            row_id = record["id"]
        row = await select_one(session, PREFERENCES, [PREFERENCES.c.id == row_id])
        assert row is not None
        return row

    async def get(
        self,
        key: str,
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[Any]:
        async def op(session: AsyncSession) -> Any:
            rows = await select_rows(
                session,
                PREFERENCES,
                [PREFERENCES.c.key == key, *self._identity(scope, user_id, tenant_id)],
                columns=["value"],
                limit=1,
            )
            if not rows:
                raise NotFoundError("Preference not found", details={"key": key, "scope": scope})
            return rows[0]["value"]

        return await self._ctx.run("GET_PREFERENCE_FAILED", op)

    async def get_many(
        self,
        keys: Sequence[str],
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            rows = await select_rows(
                session,
                PREFERENCES,
                [PREFERENCES.c.key.in_(list(keys)), *self._identity(scope, user_id, tenant_id)],
                columns=["key", "value"],
            )
            return {row["key"]: row["value"] for row in rows}

        return await self._ctx.run("GET_PREFERENCES_FAILED", op)

    async def set(
        self,
        key: str,
        value: Any,
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        visibility: str = DEFAULT_VISIBILITY,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            return await self._set(session, key, value, scope, user_id, visibility, tenant_id)

        return await self._ctx.run("SET_PREFERENCE_FAILED", op)

    async def set_many(
        self,
        items: Sequence[Mapping[str, Any]],
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        # Items are {"key", "value"} with optional per-item scope, user_id and visibility.
        async def op(session: AsyncSession) -> list[Row]:
            return [
                await self._set(
                    session,
                    item["key"],
                    item.get("value"),
                    item.get("scope", scope),
                    item.get("user_id", user_id),
                    item.get("visibility", DEFAULT_VISIBILITY),
                    tenant_id,
                )
                for item in items
            ]

        return await self._ctx.run("SET_PREFERENCES_FAILED", op)

    async def delete(
        self,
        key: str,
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, PREFERENCES, [PREFERENCES.c.key == key, *self._identity(scope, user_id, tenant_id)])

        return await self._ctx.run("DELETE_PREFERENCE_FAILED", op)

    async def delete_many(
        self,
        keys: Sequence[str],
        *,
        scope: str = DEFAULT_SCOPE,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [PREFERENCES.c.key.in_(list(keys)), *self._identity(scope, user_id, tenant_id)]
            return {"deleted_count": await delete_rows(session, PREFERENCES, conditions)}

        return await self._ctx.run("DELETE_PREFERENCES_FAILED", op)

    async def clear(
        self,
        *,
        scope: str | None = None,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[dict[str, int]]:
        # Without a scope or user every preference in the tenant is removed.
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions: list[Any] = list(self._ctx.tenant_conditions(PREFERENCES, tenant_id))
            if scope is not None:
                conditions.append(PREFERENCES.c.scope == scope)
            if user_id is not None:
                conditions.append(PREFERENCES.c.user_id == user_id)
            return {"deleted_count": await delete_rows(session, PREFERENCES, conditions)}

        return await self._ctx.run("CLEAR_PREFERENCES_FAILED", op)
