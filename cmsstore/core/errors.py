from __future__ import annotations

from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cmsstore.domain.results import DatabaseError


NOT_FOUND = "NOT_FOUND"
NOT_CONNECTED = "NOT_CONNECTED"
NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
INVALID_QUERY = "INVALID_QUERY"
MALFORMED_RECORD = "MALFORMED_RECORD"
TENANT_PREDICATE_REQUIRED = "TENANT_PREDICATE_REQUIRED"
CONNECTION_FAILED = "CONNECTION_FAILED"
HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"
TRANSACTION_FAILED = "TRANSACTION_FAILED"
TRANSACTION_ROLLED_BACK = "TRANSACTION_ROLLED_BACK"
BATCH_OP_FAILED = "BATCH_OP_FAILED"

_DEFAULT_STATUS = {
    NOT_FOUND: 404,
    NOT_CONNECTED: 503,
    NOT_IMPLEMENTED: 501,
    INVALID_QUERY: 400,
    MALFORMED_RECORD: 500,
    TENANT_PREDICATE_REQUIRED: 400,
    CONNECTION_FAILED: 503,
    TRANSACTION_ROLLED_BACK: 409,
}


class CmsStoreError(Exception):
    """Base error for the CMS store."""

    # Subclasses with a fixed code override the operation code when reported.
    code: str | None = None

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(CmsStoreError):
    """Requested record does not exist."""

    code = NOT_FOUND


class NotConnectedError(CmsStoreError):
    """Adapter used before connect() succeeded."""

    code = NOT_CONNECTED


class InvalidQueryError(CmsStoreError):
    """Query referenced an unknown field or an unsupported operator."""

    code = INVALID_QUERY


class MalformedRecordError(CmsStoreError):
    """Stored row could not be decoded into its public shape."""

    code = MALFORMED_RECORD


class TenantPredicateError(CmsStoreError):
    """Tenant predicate required but tenant_id is missing."""

    code = TENANT_PREDICATE_REQUIRED


class IntegrityViolation(CmsStoreError):
    """Unique or referential constraint rejected a write."""


class ResultError(CmsStoreError):
    """Raised by Result.unwrap() on a failed result."""

    def __init__(self, error: DatabaseError) -> None:
        super().__init__(error.message, details=error.details)
        self.error = error
        self.code = error.code


def create_database_error(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    status_code: int | None = None,
) -> DatabaseError:
    # Build the structured error carried inside a failed Result.
    if status_code is None:
        status_code = _DEFAULT_STATUS.get(code, 500)
    return DatabaseError(code=code, message=message, status_code=status_code, details=details)


def error_from_exception(exc: BaseException, code: str) -> DatabaseError:
    # Reduce any exception to a DatabaseError without keeping driver objects around.
    if isinstance(exc, CmsStoreError):
        effective = exc.code or code
        status = 409 if isinstance(exc, IntegrityViolation) else None
        return create_database_error(effective, exc.message, exc.details, status)
    if isinstance(exc, IntegrityError):
        return create_database_error(
            code,
            str(exc.orig) if exc.orig is not None else str(exc),
            {"type": type(exc).__name__},
            409,
        )
    if isinstance(exc, SQLAlchemyError):
        return create_database_error(code, str(exc).splitlines()[0], {"type": type(exc).__name__})
    if isinstance(exc, TimeoutError):
        return create_database_error(code, str(exc) or "Operation timed out", {"type": "TimeoutError"}, 504)
    return create_database_error(code, str(exc) or type(exc).__name__, {"type": type(exc).__name__})
