from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Portable JSON that becomes JSONB on PostgreSQL.
JsonType = JSON().with_variant(JSONB(), "postgresql")

# Composite unique constraints treat NULL tenant_id as distinct; untenanted rows are covered here.
_UNTENANTED = text("tenant_id IS NULL")


def untenanted_unique(name: str, *columns: str) -> Index:
    return Index(name, *columns, unique=True, postgresql_where=_UNTENANTED, sqlite_where=_UNTENANTED)


class Base(DeclarativeBase):
    pass


class RecordMixin:
    # Shared identity, tenancy and timestamps; values are assigned by the store, not the database.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuthUser(RecordMixin, Base):
    __tablename__ = "auth_users"
    __table_args__ = (
        UniqueConstraint("email", "tenant_id", name="uq_auth_users_email_tenant"),
        untenanted_unique("uq_auth_users_email_untenanted", "email"),
    )

    email: Mapped[str] = mapped_column(String, index=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    # Only argon2 hashes are stored.
    password: Mapped[str | None] = mapped_column(String, nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    avatar: Mapped[str | None] = mapped_column(String, nullable=True)
    role_ids: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)


class AuthSession(RecordMixin, Base):
    __tablename__ = "auth_sessions"

    user_id: Mapped[str] = mapped_column(String, index=True)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class AuthToken(RecordMixin, Base):
    __tablename__ = "auth_tokens"

    user_id: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    token: Mapped[str] = mapped_column(String, unique=True, index=True)
    type: Mapped[str] = mapped_column(String)
    expires: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)


class Role(RecordMixin, Base):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    permissions: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)


class ContentNode(RecordMixin, Base):
    __tablename__ = "content_nodes"
    __table_args__ = (
        UniqueConstraint("path", "tenant_id", name="uq_content_nodes_path_tenant"),
        untenanted_unique("uq_content_nodes_path_untenanted", "path"),
        Index("ix_content_nodes_parent_order", "parent_id", "order"),
    )

    path: Mapped[str] = mapped_column(String, index=True)
    parent_id: Mapped[str | None] = mapped_column(String, nullable=True)
    node_type: Mapped[str] = mapped_column(String, default="collection")
    status: Mapped[str] = mapped_column(String, default="draft")
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    slug: Mapped[str | None] = mapped_column(String, nullable=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[Any] = mapped_column(JsonType, nullable=True)
    metadata_: Mapped[Any] = mapped_column("metadata", JsonType, nullable=True)
    translations: Mapped[Any] = mapped_column(JsonType, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ContentDraft(RecordMixin, Base):
    __tablename__ = "content_drafts"

    content_id: Mapped[str] = mapped_column(String, index=True)
    data: Mapped[Any] = mapped_column(JsonType, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(String, default="draft")
    author_id: Mapped[str | None] = mapped_column(String, nullable=True)


class ContentRevision(RecordMixin, Base):
    __tablename__ = "content_revisions"

    content_id: Mapped[str] = mapped_column(String, index=True)
    data: Mapped[Any] = mapped_column(JsonType, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    commit_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    author_id: Mapped[str | None] = mapped_column(String, nullable=True)


class Theme(RecordMixin, Base):
    __tablename__ = "themes"

    name: Mapped[str] = mapped_column(String)
    path: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    config: Mapped[Any] = mapped_column(JsonType, nullable=True)
    preview_image: Mapped[str | None] = mapped_column(String, nullable=True)
    custom_css: Mapped[str | None] = mapped_column(Text, nullable=True)


class Widget(RecordMixin, Base):
    __tablename__ = "widgets"
    __table_args__ = (
        UniqueConstraint("name", "tenant_id", name="uq_widgets_name_tenant"),
        untenanted_unique("uq_widgets_name_untenanted", "name"),
    )

    name: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    instances: Mapped[Any] = mapped_column(JsonType, nullable=True)
    dependencies: Mapped[Any] = mapped_column(JsonType, nullable=True)


class MediaItem(RecordMixin, Base):
    __tablename__ = "media_items"

    filename: Mapped[str] = mapped_column(String)
    original_filename: Mapped[str | None] = mapped_column(String, nullable=True)
    hash: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    path: Mapped[str | None] = mapped_column(String, nullable=True)
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String, nullable=True)
    folder_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    original_id: Mapped[str | None] = mapped_column(String, nullable=True)
    thumbnails: Mapped[Any] = mapped_column(JsonType, nullable=True)
    metadata_: Mapped[Any] = mapped_column("metadata", JsonType, nullable=True)
    access: Mapped[str] = mapped_column(String, default="public")
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)


class VirtualFolder(RecordMixin, Base):
    __tablename__ = "system_virtual_folders"
    __table_args__ = (
        UniqueConstraint("path", "tenant_id", name="uq_virtual_folders_path_tenant"),
        untenanted_unique("uq_virtual_folders_path_untenanted", "path"),
    )

    name: Mapped[str] = mapped_column(String)
    path: Mapped[str] = mapped_column(String, index=True)
    parent_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    type: Mapped[str] = mapped_column(String, default="folder")
    metadata_: Mapped[Any] = mapped_column("metadata", JsonType, nullable=True)


class SystemPreference(RecordMixin, Base):
    __tablename__ = "system_preferences"
    __table_args__ = (Index("ix_system_preferences_identity", "key", "scope", "user_id", "tenant_id"),)

    key: Mapped[str] = mapped_column(String)
    value: Mapped[Any] = mapped_column(JsonType, nullable=True)
    scope: Mapped[str] = mapped_column(String, default="system")
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    visibility: Mapped[str] = mapped_column(String, default="private")


class WebsiteToken(RecordMixin, Base):
    __tablename__ = "website_tokens"

    name: Mapped[str] = mapped_column(String)
    token: Mapped[str] = mapped_column(String, unique=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    permissions: Mapped[Any] = mapped_column(JsonType, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
