from __future__ import annotations

from sqlalchemy import Table
from sqlalchemy.sql import ColumnElement

from cmsstore.core.config import Settings, get_settings
from cmsstore.core.errors import TenantPredicateError


def require_tenant_id(tenant_id: str | None, settings: Settings | None = None) -> None:
    # Enforce non-empty tenant identifiers when tenant guard checks are enabled.
    settings = settings or get_settings()
    if not settings.require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(
    table: Table,
    tenant_id: str | None,
    settings: Settings | None = None,
) -> ColumnElement[bool] | None:
    # Build tenant predicates through a single helper so every query passes the guard.
    require_tenant_id(tenant_id, settings)
    if tenant_id is None:
        return None
    return table.c.tenant_id == tenant_id


def scope_to_tenant(stmt, table: Table, tenant_id: str | None, settings: Settings | None = None):
    predicate = tenant_predicate(table, tenant_id, settings)
    if predicate is None:
        return stmt
    return stmt.where(predicate)
