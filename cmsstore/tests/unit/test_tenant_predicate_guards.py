from __future__ import annotations

import pytest

from cmsstore.adapter.tables import resolve_table
from cmsstore.core.config import Settings, get_settings
from cmsstore.core.errors import TenantPredicateError
from cmsstore.persistence.guards import require_tenant_id, scope_to_tenant, tenant_predicate


def _enable_guard(monkeypatch: pytest.MonkeyPatch) -> None:
    # Force tenant predicate enforcement for guard tests.
    monkeypatch.setenv("REQUIRE_TENANT_PREDICATE", "true")
    get_settings.cache_clear()


def test_guard_rejects_missing_tenant(monkeypatch: pytest.MonkeyPatch) -> None:
    _enable_guard(monkeypatch)
    with pytest.raises(TenantPredicateError):
        require_tenant_id(None)
    with pytest.raises(TenantPredicateError):
        tenant_predicate(resolve_table("auth_users"), "")


def test_guard_disabled_allows_unscoped_queries() -> None:
    settings = Settings(_env_file=None, require_tenant_predicate=False)
    assert tenant_predicate(resolve_table("auth_users"), None, settings) is None


def test_scope_to_tenant_adds_predicate() -> None:
    from sqlalchemy import select

    table = resolve_table("widgets")
    settings = Settings(_env_file=None, require_tenant_predicate=True)
    stmt = scope_to_tenant(select(table), table, "t1", settings)
    assert "widgets.tenant_id" in str(stmt)
