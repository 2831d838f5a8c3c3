from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import NotFoundError
from cmsstore.domain.models import AuthSession, AuthToken, AuthUser, Role
from cmsstore.domain.records import map_user
from cmsstore.domain.results import Result, TokenCheck, TokenConsumption
from cmsstore.persistence.dates import parse as parse_datetime
from cmsstore.persistence.repos.records import (
    Row,
    count_rows,
    delete_rows,
    equality_conditions,
    insert_rows,
    order_clauses,
    select_one,
    select_rows,
    update_rows,
    writable_values,
)
from cmsstore.services.context import StoreContext
from cmsstore.services.passwords import PasswordService


logger = logging.getLogger(__name__)

USERS = AuthUser.__table__
SESSIONS = AuthSession.__table__
TOKENS = AuthToken.__table__
ROLES = Role.__table__


class AuthModule:
    def __init__(self, ctx: StoreContext, passwords: PasswordService | None = None) -> None:
        self._ctx = ctx
        self._passwords = passwords or PasswordService()

    # users

    def _prepare_user_values(self, data: Mapping[str, Any]) -> dict[str, Any]:
        # Hash plaintext passwords and fold the legacy singular role into role_ids.
        values = dict(data)
        legacy_role = values.pop("role", None)
        if legacy_role and not values.get("role_ids"):
            values["role_ids"] = [legacy_role]
        password = values.get("password")
        if password:
            values["password"] = self._passwords.hash_password(password)
        return values

    async def _insert_user(self, session: AsyncSession, data: Mapping[str, Any], tenant_id: str | None) -> Row:
        record = writable_values(USERS, self._ctx.new_record(self._prepare_user_values(data), tenant_id))
        record.setdefault("role_ids", [])
        await insert_rows(session, USERS, [record])
        row = await select_one(session, USERS, [USERS.c.id == record["id"]])
        assert row is not None
        return row

    async def _insert_session(
        self,
        session: AsyncSession,
        user_id: str,
        expires: datetime | str | None,
        tenant_id: str | None,
    ) -> Row:
        expires_at = parse_datetime(expires) or self._ctx.now() + timedelta(seconds=self._ctx.settings.session_ttl_s)
        record = self._ctx.new_record({"user_id": user_id, "expires": expires_at}, tenant_id)
        await insert_rows(session, SESSIONS, [record])
        row = await select_one(session, SESSIONS, [SESSIONS.c.id == record["id"]])
        assert row is not None
        return row

    async def create_user(self, user_data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            return map_user(await self._insert_user(session, user_data, tenant_id))

        return await self._ctx.run("CREATE_USER_FAILED", op)

    async def update_user_attributes(
        self,
        user_id: str,
        attributes: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            conditions = [USERS.c.id == user_id, *self._ctx.tenant_conditions(USERS, tenant_id)]
            values = writable_values(USERS, self._ctx.touched(self._prepare_user_values(attributes)))
            if not await update_rows(session, USERS, conditions, values):
                raise NotFoundError(f"User {user_id} not found")
            row = await select_one(session, USERS, conditions)
            assert row is not None
            return map_user(row)

        return await self._ctx.run("UPDATE_USER_FAILED", op)

    async def _delete_users(self, session: AsyncSession, user_ids: Sequence[str], tenant_id: str | None) -> int:
        # Sessions and tokens never outlive their user.
        ids = list(user_ids)
        await delete_rows(session, SESSIONS, [SESSIONS.c.user_id.in_(ids), *self._ctx.tenant_conditions(SESSIONS, tenant_id)])
        await delete_rows(session, TOKENS, [TOKENS.c.user_id.in_(ids), *self._ctx.tenant_conditions(TOKENS, tenant_id)])
        return await delete_rows(session, USERS, [USERS.c.id.in_(ids), *self._ctx.tenant_conditions(USERS, tenant_id)])

    async def delete_user(self, user_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await self._delete_users(session, [user_id], tenant_id)

        return await self._ctx.run("DELETE_USER_FAILED", op)

    async def delete_users(self, user_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        async def op(session: AsyncSession) -> dict[str, int]:
            return {"deleted_count": await self._delete_users(session, user_ids, tenant_id)}

        return await self._ctx.run("DELETE_USERS_FAILED", op)

    async def get_user_by_id(self, user_id: str, *, tenant_id: str | None = None) -> Result[dict[str, Any] | None]:
        async def op(session: AsyncSession) -> dict[str, Any] | None:
            row = await select_one(
                session, USERS, [USERS.c.id == user_id, *self._ctx.tenant_conditions(USERS, tenant_id)]
            )
            return map_user(row) if row else None

        return await self._ctx.run("GET_USER_BY_ID_FAILED", op)

    async def get_user_by_email(self, email: str, *, tenant_id: str | None = None) -> Result[dict[str, Any] | None]:
        async def op(session: AsyncSession) -> dict[str, Any] | None:
            row = await select_one(
                session, USERS, [USERS.c.email == email, *self._ctx.tenant_conditions(USERS, tenant_id)]
            )
            return map_user(row) if row else None

        return await self._ctx.run("GET_USER_BY_EMAIL_FAILED", op)

    async def get_all_users(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
        sort: Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
    ) -> Result[list[dict[str, Any]]]:
        async def op(session: AsyncSession) -> list[dict[str, Any]]:
            rows = await select_rows(
                session,
                USERS,
                self._ctx.tenant_conditions(USERS, tenant_id),
                order_by=order_clauses(USERS, sort or {"created_at": "asc"}),
                limit=limit,
                offset=offset,
            )
            return [map_user(row) for row in rows]

        return await self._ctx.run("GET_ALL_USERS_FAILED", op)

    async def get_user_count(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Result[int]:
        async def op(session: AsyncSession) -> int:
            conditions = [*equality_conditions(USERS, filter), *self._ctx.tenant_conditions(USERS, tenant_id)]
            return await count_rows(session, USERS, conditions)

        return await self._ctx.run("GET_USER_COUNT_FAILED", op)

    async def _set_blocked(self, user_ids: Sequence[str], blocked: bool, tenant_id: str | None, code: str):
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [USERS.c.id.in_(list(user_ids)), *self._ctx.tenant_conditions(USERS, tenant_id)]
            changed = await update_rows(session, USERS, conditions, self._ctx.touched({"blocked": blocked}))
            return {"modified_count": changed}

        return await self._ctx.run(code, op)

    async def block_users(self, user_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        return await self._set_blocked(user_ids, True, tenant_id, "BLOCK_USERS_FAILED")

    async def unblock_users(self, user_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        return await self._set_blocked(user_ids, False, tenant_id, "UNBLOCK_USERS_FAILED")

    async def verify_password(self, user_id: str, password: str, *, tenant_id: str | None = None) -> Result[bool]:
        async def op(session: AsyncSession) -> bool:
            rows = await select_rows(
                session,
                USERS,
                [USERS.c.id == user_id, *self._ctx.tenant_conditions(USERS, tenant_id)],
                columns=["password"],
                limit=1,
            )
            if not rows:
                raise NotFoundError(f"User {user_id} not found")
            return self._passwords.verify_password(password, rows[0]["password"])

        return await self._ctx.run("VERIFY_PASSWORD_FAILED", op)

    async def create_user_and_session(
        self,
        user_data: Mapping[str, Any],
        *,
        expires: datetime | str | None = None,
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            user = await self._insert_user(session, user_data, tenant_id)
            created = await self._insert_session(session, user["id"], expires, tenant_id)
            return {"user": map_user(user), "session": created}

        return await self._ctx.run("CREATE_USER_AND_SESSION_FAILED", op)

    async def delete_user_and_sessions(self, user_id: str, *, tenant_id: str | None = None) -> Result[dict[str, Any]]:
        async def op(session: AsyncSession) -> dict[str, Any]:
            removed_sessions = await delete_rows(
                session, SESSIONS, [SESSIONS.c.user_id == user_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            )
            removed_users = await self._delete_users(session, [user_id], tenant_id)
            return {"deleted_user": bool(removed_users), "deleted_session_count": removed_sessions}

        return await self._ctx.run("DELETE_USER_AND_SESSIONS_FAILED", op)

    # sessions

    async def create_session(
        self,
        user_id: str,
        *,
        expires: datetime | str | None = None,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            return await self._insert_session(session, user_id, expires, tenant_id)

        return await self._ctx.run("CREATE_SESSION_FAILED", op)

    async def update_session_expiry(
        self,
        session_id: str,
        new_expiry: datetime | str,
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [SESSIONS.c.id == session_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            values = self._ctx.touched({"expires": parse_datetime(new_expiry)})
            if not await update_rows(session, SESSIONS, conditions, values):
                raise NotFoundError(f"Session {session_id} not found")
            row = await select_one(session, SESSIONS, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_SESSION_FAILED", op)

    async def delete_session(self, session_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(
                session, SESSIONS, [SESSIONS.c.id == session_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            )

        return await self._ctx.run("DELETE_SESSION_FAILED", op)

    async def delete_expired_sessions(self, *, tenant_id: str | None = None) -> Result[int]:
        async def op(session: AsyncSession) -> int:
            conditions = [SESSIONS.c.expires <= self._ctx.now(), *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            return await delete_rows(session, SESSIONS, conditions)

        return await self._ctx.run("DELETE_EXPIRED_SESSIONS_FAILED", op)

    async def validate_session(self, session_id: str, *, tenant_id: str | None = None) -> Result[dict[str, Any] | None]:
        # A session is valid iff it exists and expires in the future; callers get the owning user.
        async def op(session: AsyncSession) -> dict[str, Any] | None:
            found = await select_one(
                session,
                SESSIONS,
                [
                    SESSIONS.c.id == session_id,
                    SESSIONS.c.expires > self._ctx.now(),
                    *self._ctx.tenant_conditions(SESSIONS, tenant_id),
                ],
            )
            if found is None:
                return None
            user = await select_one(
                session, USERS, [USERS.c.id == found["user_id"], *self._ctx.tenant_conditions(USERS, tenant_id)]
            )
            return map_user(user) if user else None

        return await self._ctx.run("VALIDATE_SESSION_FAILED", op)

    async def invalidate_all_user_sessions(self, user_id: str, *, tenant_id: str | None = None) -> Result[int]:
        async def op(session: AsyncSession) -> int:
            return await delete_rows(
                session, SESSIONS, [SESSIONS.c.user_id == user_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            )

        return await self._ctx.run("INVALIDATE_USER_SESSIONS_FAILED", op)

    async def get_active_sessions(self, user_id: str, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            conditions = [
                SESSIONS.c.user_id == user_id,
                SESSIONS.c.expires > self._ctx.now(),
                *self._ctx.tenant_conditions(SESSIONS, tenant_id),
            ]
            return await select_rows(session, SESSIONS, conditions, order_by=[SESSIONS.c.created_at.desc()])

        return await self._ctx.run("GET_ACTIVE_SESSIONS_FAILED", op)

    async def get_all_active_sessions(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            conditions = [SESSIONS.c.expires > self._ctx.now(), *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            return await select_rows(session, SESSIONS, conditions, order_by=[SESSIONS.c.created_at.desc()])

        return await self._ctx.run("GET_ALL_ACTIVE_SESSIONS_FAILED", op)

    async def get_session_token_data(
        self,
        session_id: str,
        *,
        tenant_id: str | None = None,
    ) -> Result[dict[str, Any] | None]:
        async def op(session: AsyncSession) -> dict[str, Any] | None:
            row = await select_one(
                session, SESSIONS, [SESSIONS.c.id == session_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)]
            )
            if row is None:
                return None
            return {"expires_at": row["expires"], "user_id": row["user_id"]}

        return await self._ctx.run("GET_SESSION_TOKEN_DATA_FAILED", op)

    async def rotate_token(
        self,
        old_session_id: str,
        *,
        expires: datetime | str | None = None,
        tenant_id: str | None = None,
    ) -> Result[str]:
        # Insert the replacement and drop the old row in one transaction.
        async def op(session: AsyncSession) -> str:
            old = await select_one(
                session,
                SESSIONS,
                [SESSIONS.c.id == old_session_id, *self._ctx.tenant_conditions(SESSIONS, tenant_id)],
                for_update=True,
            )
            if old is None:
                raise NotFoundError(f"Session {old_session_id} not found")
            replacement = await self._insert_session(session, old["user_id"], expires, old["tenant_id"])
            await delete_rows(session, SESSIONS, [SESSIONS.c.id == old_session_id])
            logger.debug("session_rotated user_id=%s", old["user_id"])
            return replacement["id"]

        return await self._ctx.run("ROTATE_TOKEN_FAILED", op)

    # tokens

    def _token_conditions(
        self,
        token: str,
        user_id: str | None,
        type: str | None,
        tenant_id: str | None,
    ) -> list[Any]:
        conditions: list[Any] = [TOKENS.c.token == token, *self._ctx.tenant_conditions(TOKENS, tenant_id)]
        if user_id is not None:
            conditions.append(TOKENS.c.user_id == user_id)
        if type is not None:
            conditions.append(TOKENS.c.type == type)
        return conditions

    async def create_token(
        self,
        user_id: str,
        email: str | None,
        *,
        type: str,
        expires: datetime | str | None = None,
        role: str | None = None,
        username: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[str]:
        # The token value is always generated here; only the bare string is returned.
        async def op(session: AsyncSession) -> str:
            expires_at = parse_datetime(expires) or self._ctx.now() + timedelta(seconds=self._ctx.settings.token_ttl_s)
            value = self._ctx.ids.generate_token()
            record = self._ctx.new_record(
                {
                    "user_id": user_id,
                    "email": email,
                    "token": value,
                    "type": type,
                    "expires": expires_at,
                    "role": role,
                    "username": username,
                },
                tenant_id,
            )
            await insert_rows(session, TOKENS, [record])
            return value

        return await self._ctx.run("CREATE_TOKEN_FAILED", op)

    async def update_token(
        self,
        token_id: str,
        data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            conditions = [TOKENS.c.id == token_id, *self._ctx.tenant_conditions(TOKENS, tenant_id)]
            values = writable_values(TOKENS, self._ctx.touched({k: v for k, v in data.items() if k != "token"}))
            if not await update_rows(session, TOKENS, conditions, values):
                raise NotFoundError(f"Token {token_id} not found")
            row = await select_one(session, TOKENS, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_TOKEN_FAILED", op)

    async def validate_token(
        self,
        token: str,
        *,
        user_id: str | None = None,
        type: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[TokenCheck]:
        # Read-only check; the verdict is carried in the payload.
        async def op(session: AsyncSession) -> TokenCheck:
            conditions = [
                *self._token_conditions(token, user_id, type, tenant_id),
                TOKENS.c.expires > self._ctx.now(),
                TOKENS.c.consumed.is_(False),
                TOKENS.c.blocked.is_(False),
            ]
            row = await select_one(session, TOKENS, conditions)
            if row is None:
                return TokenCheck(valid=False, message="Invalid or expired token")
            return TokenCheck(valid=True, message="Token is valid", email=row["email"])

        return await self._ctx.run("VALIDATE_TOKEN_FAILED", op)

    async def consume_token(
        self,
        token: str,
        *,
        user_id: str | None = None,
        type: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[TokenConsumption]:
        async def op(session: AsyncSession) -> TokenConsumption:
            conditions = [*self._token_conditions(token, user_id, type, tenant_id), TOKENS.c.consumed.is_(False)]
            changed = await update_rows(session, TOKENS, conditions, self._ctx.touched({"consumed": True}))
            if not changed:
                return TokenConsumption(consumed=False, message="Token not found or already consumed")
            return TokenConsumption(consumed=True, message="Token consumed")

        return await self._ctx.run("CONSUME_TOKEN_FAILED", op)

    async def get_token_data(
        self,
        token: str,
        *,
        user_id: str | None = None,
        type: str | None = None,
        tenant_id: str | None = None,
    ) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, TOKENS, self._token_conditions(token, user_id, type, tenant_id))

        return await self._ctx.run("GET_TOKEN_DATA_FAILED", op)

    async def get_token_by_value(self, token: str, *, tenant_id: str | None = None) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(session, TOKENS, self._token_conditions(token, None, None, tenant_id))

        return await self._ctx.run("GET_TOKEN_BY_VALUE_FAILED", op)

    async def get_all_tokens(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            conditions = [*equality_conditions(TOKENS, filter), *self._ctx.tenant_conditions(TOKENS, tenant_id)]
            return await select_rows(session, TOKENS, conditions, order_by=[TOKENS.c.created_at.desc()])

        return await self._ctx.run("GET_ALL_TOKENS_FAILED", op)

    async def delete_expired_tokens(self, *, tenant_id: str | None = None) -> Result[int]:
        async def op(session: AsyncSession) -> int:
            conditions = [TOKENS.c.expires <= self._ctx.now(), *self._ctx.tenant_conditions(TOKENS, tenant_id)]
            return await delete_rows(session, TOKENS, conditions)

        return await self._ctx.run("DELETE_EXPIRED_TOKENS_FAILED", op)

    async def delete_tokens(self, tokens: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        # Accepts row ids or token values.
        async def op(session: AsyncSession) -> dict[str, int]:
            values = list(tokens)
            tenant = self._ctx.tenant_conditions(TOKENS, tenant_id)
            deleted = await delete_rows(session, TOKENS, [TOKENS.c.id.in_(values), *tenant])
            if deleted == 0:
                deleted = await delete_rows(session, TOKENS, [TOKENS.c.token.in_(values), *tenant])
            return {"deleted_count": deleted}

        return await self._ctx.run("DELETE_TOKENS_FAILED", op)

    async def _set_token_blocked(self, token_ids: Sequence[str], blocked: bool, tenant_id: str | None, code: str):
        async def op(session: AsyncSession) -> dict[str, int]:
            conditions = [TOKENS.c.id.in_(list(token_ids)), *self._ctx.tenant_conditions(TOKENS, tenant_id)]
            return {"modified_count": await update_rows(session, TOKENS, conditions, self._ctx.touched({"blocked": blocked}))}

        return await self._ctx.run(code, op)

    async def block_tokens(self, token_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        return await self._set_token_blocked(token_ids, True, tenant_id, "BLOCK_TOKENS_FAILED")

    async def unblock_tokens(self, token_ids: Sequence[str], *, tenant_id: str | None = None) -> Result[dict[str, int]]:
        return await self._set_token_blocked(token_ids, False, tenant_id, "UNBLOCK_TOKENS_FAILED")

    # roles

    async def get_all_roles(self, *, tenant_id: str | None = None) -> Result[list[Row]]:
        async def op(session: AsyncSession) -> list[Row]:
            return await select_rows(
                session, ROLES, self._ctx.tenant_conditions(ROLES, tenant_id), order_by=[ROLES.c.name.asc()]
            )

        return await self._ctx.run("GET_ALL_ROLES_FAILED", op)

    async def get_role_by_id(self, role_id: str, *, tenant_id: str | None = None) -> Result[Row | None]:
        async def op(session: AsyncSession) -> Row | None:
            return await select_one(
                session, ROLES, [ROLES.c.id == role_id, *self._ctx.tenant_conditions(ROLES, tenant_id)]
            )

        return await self._ctx.run("GET_ROLE_FAILED", op)

    async def create_role(self, role_data: Mapping[str, Any], *, tenant_id: str | None = None) -> Result[Row]:
        async def op(session: AsyncSession) -> Row:
            record = writable_values(ROLES, self._ctx.new_record(role_data, tenant_id))
            await insert_rows(session, ROLES, [record])
            row = await select_one(session, ROLES, [ROLES.c.id == record["id"]])
            assert row is not None
            return row

        return await self._ctx.run("CREATE_ROLE_FAILED", op)

    async def update_role(
        self,
        role_id: str,
        role_data: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> Result[Row]:
        # Permissions are replaced wholesale, never merged.
        async def op(session: AsyncSession) -> Row:
            conditions = [ROLES.c.id == role_id, *self._ctx.tenant_conditions(ROLES, tenant_id)]
            if not await update_rows(session, ROLES, conditions, writable_values(ROLES, self._ctx.touched(role_data))):
                raise NotFoundError(f"Role {role_id} not found")
            row = await select_one(session, ROLES, conditions)
            assert row is not None
            return row

        return await self._ctx.run("UPDATE_ROLE_FAILED", op)

    async def delete_role(self, role_id: str, *, tenant_id: str | None = None) -> Result[None]:
        async def op(session: AsyncSession) -> None:
            await delete_rows(session, ROLES, [ROLES.c.id == role_id, *self._ctx.tenant_conditions(ROLES, tenant_id)])

        return await self._ctx.run("DELETE_ROLE_FAILED", op)
