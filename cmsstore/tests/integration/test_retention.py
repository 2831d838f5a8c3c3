from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter
from cmsstore.core.config import Settings
from scripts import prune_expired_auth


MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    # Zero retention makes every consumed token eligible for cleanup.
    return Settings(_env_file=None, database_url=MEMORY_URL, consumed_token_retention_h=0)


@pytest.mark.asyncio
async def test_consumed_tokens_past_retention_are_removed(adapter: CmsAdapter) -> None:
    user = (await adapter.auth.create_user({"email": "old@example.com"})).data
    token = (await adapter.auth.create_token(user["id"], user["email"], type="verify")).data
    await adapter.auth.consume_token(token)
    fresh = (await adapter.auth.create_token(user["id"], user["email"], type="verify")).data

    result = await adapter.cleanup_expired_data()
    assert result.data == {"sessions": 0, "tokens": 1}
    assert (await adapter.auth.get_token_by_value(token)).data is None
    assert (await adapter.auth.get_token_by_value(fresh)).data is not None


@pytest.mark.asyncio
async def test_prune_script_reports_counts(adapter: CmsAdapter, monkeypatch, capsys) -> None:
    user = (await adapter.auth.create_user({"email": "prune@example.com"})).data
    token = (await adapter.auth.create_token(user["id"], user["email"], type="verify")).data
    await adapter.auth.consume_token(token)
    monkeypatch.setattr(prune_expired_auth, "CmsAdapter", lambda: adapter)

    exit_code = await prune_expired_auth.prune()
    assert exit_code == 0
    output = capsys.readouterr().out
    assert "pruned_sessions=0" in output
    assert "pruned_tokens=1" in output
