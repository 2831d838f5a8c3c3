from __future__ import annotations

from datetime import timedelta

import pytest

from cmsstore.adapter import CmsAdapter


async def _user(adapter: CmsAdapter, email: str = "ada@example.com", tenant_id: str | None = None) -> dict:
    created = await adapter.auth.create_user(
        {"email": email, "username": "ada", "password": "correct horse", "role": "admin"}, tenant_id=tenant_id
    )
    assert created.success, created.message
    return created.data


@pytest.mark.asyncio
async def test_create_user_hashes_password_and_maps_role(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    assert user["role_ids"] == ["admin"]
    assert user["role"] == "admin"
    assert "password" not in user
    assert (await adapter.auth.verify_password(user["id"], "correct horse")).data is True
    assert (await adapter.auth.verify_password(user["id"], "wrong")).data is False

    updated = await adapter.auth.update_user_attributes(user["id"], {"first_name": "Ada", "password": "new pass"})
    assert updated.data["first_name"] == "Ada"
    assert (await adapter.auth.verify_password(user["id"], "new pass")).data is True


@pytest.mark.asyncio
async def test_email_is_unique_per_tenant(adapter: CmsAdapter) -> None:
    await _user(adapter, tenant_id="t1")
    duplicate = await adapter.auth.create_user({"email": "ada@example.com"}, tenant_id="t1")
    assert duplicate.success is False
    assert duplicate.error.code == "CREATE_USER_FAILED"
    assert duplicate.error.status_code == 409
    other_tenant = await adapter.auth.create_user({"email": "ada@example.com"}, tenant_id="t2")
    assert other_tenant.success is True


@pytest.mark.asyncio
async def test_rotated_session_is_invalid_immediately(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    session = (await adapter.auth.create_session(user["id"])).data
    assert (await adapter.auth.validate_session(session["id"])).data["id"] == user["id"]

    rotated = await adapter.auth.rotate_token(session["id"])
    assert rotated.success
    assert rotated.data != session["id"]
    assert (await adapter.auth.validate_session(session["id"])).data is None
    assert (await adapter.auth.validate_session(rotated.data)).data["email"] == user["email"]

    missing = await adapter.auth.rotate_token("nope")
    assert missing.error.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_expired_sessions_are_invalid_and_swept(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    past = adapter.clock.now() - timedelta(hours=1)
    expired = (await adapter.auth.create_session(user["id"], expires=past)).data
    live = (await adapter.auth.create_session(user["id"])).data
    assert (await adapter.auth.validate_session(expired["id"])).data is None
    active = await adapter.auth.get_active_sessions(user["id"])
    assert [row["id"] for row in active.data] == [live["id"]]
    assert (await adapter.auth.delete_expired_sessions()).data == 1
    token_data = await adapter.auth.get_session_token_data(live["id"])
    assert token_data.data["user_id"] == user["id"]


@pytest.mark.asyncio
async def test_token_consumption_is_one_way(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    token = (await adapter.auth.create_token(user["id"], user["email"], type="verify")).data
    assert isinstance(token, str)

    check = await adapter.auth.validate_token(token, type="verify")
    assert check.data.valid is True
    assert check.data.email == user["email"]

    first = await adapter.auth.consume_token(token)
    second = await adapter.auth.consume_token(token)
    assert first.data.consumed is True
    assert second.data.consumed is False
    assert second.data.message == "Token not found or already consumed"
    assert (await adapter.auth.validate_token(token)).data.valid is False


@pytest.mark.asyncio
async def test_blocked_and_expired_tokens_fail_validation(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    token = (await adapter.auth.create_token(user["id"], user["email"], type="reset")).data
    row = (await adapter.auth.get_token_by_value(token)).data
    await adapter.auth.block_tokens([row["id"]])
    assert (await adapter.auth.validate_token(token)).data.valid is False
    await adapter.auth.unblock_tokens([row["id"]])
    assert (await adapter.auth.validate_token(token)).data.valid is True

    past = adapter.clock.now() - timedelta(minutes=1)
    stale = (await adapter.auth.create_token(user["id"], user["email"], type="reset", expires=past)).data
    assert (await adapter.auth.validate_token(stale)).data.message == "Invalid or expired token"
    assert (await adapter.auth.delete_expired_tokens()).data == 1
    assert (await adapter.auth.delete_tokens([token])).data == {"deleted_count": 1}


@pytest.mark.asyncio
async def test_delete_user_cascades_sessions_and_tokens(adapter: CmsAdapter) -> None:
    user = await _user(adapter)
    await adapter.auth.create_session(user["id"])
    await adapter.auth.create_token(user["id"], user["email"], type="verify")
    assert (await adapter.auth.delete_user(user["id"])).success
    assert (await adapter.auth.get_user_by_id(user["id"])).data is None
    assert (await adapter.auth.get_active_sessions(user["id"])).data == []
    assert (await adapter.auth.get_all_tokens({"user_id": user["id"]})).data == []


@pytest.mark.asyncio
async def test_create_user_and_session_together(adapter: CmsAdapter) -> None:
    created = await adapter.auth.create_user_and_session({"email": "grace@example.com"})
    assert created.data["session"]["user_id"] == created.data["user"]["id"]
    removed = await adapter.auth.delete_user_and_sessions(created.data["user"]["id"])
    assert removed.data == {"deleted_user": True, "deleted_session_count": 1}
    assert (await adapter.auth.get_user_count()).data == 0


@pytest.mark.asyncio
async def test_role_permissions_are_replaced(adapter: CmsAdapter) -> None:
    role = (await adapter.auth.create_role({"name": "editor", "permissions": ["read", "write"]})).data
    updated = await adapter.auth.update_role(role["id"], {"permissions": ["read"]})
    assert updated.data["permissions"] == ["read"]
    assert [r["name"] for r in (await adapter.auth.get_all_roles()).data] == ["editor"]
    assert (await adapter.auth.delete_role(role["id"])).success
    assert (await adapter.auth.get_role_by_id(role["id"])).data is None
