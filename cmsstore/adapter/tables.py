from __future__ import annotations

import logging
import re

from sqlalchemy import Table

from cmsstore.domain.models import Base, ContentNode


logger = logging.getLogger(__name__)


TABLES: dict[str, Table] = {name: table for name, table in Base.metadata.tables.items()}

# Logical collection names used by callers that predate the physical table names.
_ALIASES = {
    "media": "media_items",
    "media_item": "media_items",
    "collections": "content_nodes",
    "nodes": "content_nodes",
    "content": "content_nodes",
    "drafts": "content_drafts",
    "revisions": "content_revisions",
    "preferences": "system_preferences",
    "virtual_folders": "system_virtual_folders",
    "tokens": "auth_tokens",
    "sessions": "auth_sessions",
    "users": "auth_users",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def resolve_table(name: str) -> Table:
    # Direct name, then snake_case form, then alias; anything else is a document collection.
    if name in TABLES:
        return TABLES[name]
    snake = to_snake(name)
    if snake in TABLES:
        return TABLES[snake]
    alias = _ALIASES.get(snake)
    if alias is not None:
        return TABLES[alias]
    if not snake.startswith("collection_"):
        logger.debug("collection_table_fallback name=%s", name)
    return ContentNode.__table__
