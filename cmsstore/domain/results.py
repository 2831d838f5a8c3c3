from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class DatabaseError:
    code: str
    message: str
    status_code: int = 500
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message, "statusCode": self.status_code}
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(frozen=True)
class Result(Generic[T]):
    # Uniform envelope returned by every module operation.
    success: bool
    data: T | None = None
    message: str | None = None
    error: DatabaseError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: T, meta: dict[str, Any] | None = None) -> "Result[T]":
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def fail(cls, error: DatabaseError, meta: dict[str, Any] | None = None) -> "Result[T]":
        return cls(success=False, message=error.message, error=error, meta=meta)

    def unwrap(self) -> T:
        if not self.success:
            from cmsstore.core.errors import ResultError

            assert self.error is not None
            raise ResultError(self.error)
        return self.data  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            payload: dict[str, Any] = {"success": True, "data": self.data}
        else:
            payload = {
                "success": False,
                "message": self.message,
                "error": self.error.to_dict() if self.error else None,
            }
        if self.meta:
            payload["meta"] = self.meta
        return payload


@dataclass(frozen=True)
class PaginationOptions:
    page: int = 1
    page_size: int = 20
    sort_field: str | None = None
    sort_direction: str = "asc"

    @property
    def offset(self) -> int:
        return max(self.page - 1, 0) * self.page_size


@dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def has_next_page(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class TokenCheck:
    # Verdict returned by validate_token; the envelope stays successful either way.
    valid: bool
    message: str
    email: str | None = None


@dataclass(frozen=True)
class TokenConsumption:
    consumed: bool
    message: str


@dataclass(frozen=True)
class BatchResult:
    success: bool
    results: list[Result[Any]] = field(default_factory=list)
    total_processed: int = 0
    errors: list[DatabaseError] = field(default_factory=list)


@dataclass(frozen=True)
class ConnectionHealth:
    healthy: bool
    latency_ms: float
    active_connections: int | None


@dataclass(frozen=True)
class PoolStats:
    total: int | None
    active: int | None
    idle: int | None
    waiting: int | None


@dataclass(frozen=True)
class Capabilities:
    supports_transactions: bool = True
    supports_indexing: bool = True
    supports_full_text_search: bool = True
    supports_aggregation: bool = True
    supports_streaming: bool = False
    supports_partitioning: bool = True
    max_batch_size: int = 1000
    max_query_complexity: int = 100


@dataclass(frozen=True)
class Commit(Generic[T]):
    # Transaction body outcome: persist writes and return value.
    value: T | None = None


@dataclass(frozen=True)
class Rollback:
    # Transaction body outcome: discard writes.
    reason: str = "Transaction rolled back"
