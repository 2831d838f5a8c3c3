from __future__ import annotations

import pytest

from cmsstore.adapter.tables import resolve_table, to_snake
from cmsstore.core.errors import InvalidQueryError
from cmsstore.persistence.repos.records import equality_conditions, order_clauses, writable_values


def test_resolve_direct_snake_and_alias_names() -> None:
    assert resolve_table("auth_users").name == "auth_users"
    assert resolve_table("contentDrafts").name == "content_drafts"
    assert resolve_table("media").name == "media_items"
    assert resolve_table("preferences").name == "system_preferences"
    assert resolve_table("sessions").name == "auth_sessions"


def test_unknown_collections_fall_back_to_content_nodes() -> None:
    assert resolve_table("collection_blog").name == "content_nodes"
    assert resolve_table("somethingElse").name == "content_nodes"


def test_to_snake() -> None:
    assert to_snake("websiteTokens") == "website_tokens"
    assert to_snake("themes") == "themes"


def test_equality_conditions_skip_operators_and_map_null() -> None:
    table = resolve_table("content_nodes")
    conditions = equality_conditions(table, {"_id": "n1", "parent_id": None, "$or": []})
    assert len(conditions) == 2
    assert "IS NULL" in str(conditions[1])


def test_unknown_fields_are_rejected() -> None:
    table = resolve_table("themes")
    with pytest.raises(InvalidQueryError):
        equality_conditions(table, {"colour": "red"})
    with pytest.raises(InvalidQueryError):
        writable_values(table, {"colour": "red"})
    with pytest.raises(InvalidQueryError):
        order_clauses(table, {"colour": 1})
    assert writable_values(table, {"colour": "red", "name": "x"}, strict=False) == {"name": "x"}
