from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cmsstore.core.errors import MalformedRecordError


class UserRecord(BaseModel):
    # Public user shape; the password hash is never part of it.
    model_config = ConfigDict(extra="ignore")

    id: str
    tenant_id: str | None = None
    email: str
    username: str | None = None
    email_verified: bool = False
    blocked: bool = False
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    role_ids: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("role_ids", mode="before")
    @classmethod
    def _decode_role_ids(cls, value: Any) -> Any:
        # Some drivers return JSON columns as text.
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def role(self) -> str:
        return self.role_ids[0] if self.role_ids else "user"


def map_user(row: Mapping[str, Any]) -> dict[str, Any]:
    # Decode a raw auth_users row, failing loudly on malformed stored data.
    try:
        record = UserRecord.model_validate(dict(row))
    except ValidationError as exc:
        raise MalformedRecordError(
            f"Malformed user record {row.get('id')!r}",
            details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc
    payload = record.model_dump()
    payload["role"] = record.role
    return payload
