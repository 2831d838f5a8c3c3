from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from cmsstore.core.errors import TRANSACTION_FAILED, TRANSACTION_ROLLED_BACK, CmsStoreError, create_database_error
from cmsstore.domain.results import Commit, Result, Rollback
from cmsstore.services.context import StoreContext


logger = logging.getLogger(__name__)


class TransactionHandle:
    """Passed to transaction callbacks.

    Module calls made while the callback runs share the transaction's session.
    Calling ``handle.rollback(...)`` discards every write whether or not the
    body returns its value; returning ``handle.commit(value)`` or any other
    value commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.requested_rollback: Rollback | None = None

    def commit(self, value: Any = None) -> Commit:
        return Commit(value)

    def rollback(self, reason: str = "Transaction rolled back") -> Rollback:
        # First request wins.
        if self.requested_rollback is None:
            self.requested_rollback = Rollback(reason)
        return self.requested_rollback


TransactionFn = Callable[[TransactionHandle], Awaitable[Any]]


class TransactionModule:
    def __init__(self, ctx: StoreContext) -> None:
        self._ctx = ctx

    async def execute(self, fn: TransactionFn, *, isolation_level: str | None = None) -> Result[Any]:
        try:
            provider = self._ctx.provider()
            if provider.bound_session() is not None:
                raise CmsStoreError("Nested transactions are not supported")
            async with provider.transaction(isolation_level) as session:
                handle = TransactionHandle(session)
                outcome = await fn(handle)
                if handle.requested_rollback is not None:
                    outcome = handle.requested_rollback
                if isinstance(outcome, Rollback):
                    await session.rollback()
                    logger.info("transaction_rolled_back reason=%s", outcome.reason)
                    return Result.fail(create_database_error(TRANSACTION_ROLLED_BACK, outcome.reason))
                if isinstance(outcome, Result) and not outcome.success:
                    # A failed module call inside the callback aborts the whole unit.
                    await session.rollback()
                    cause = outcome.error
                    logger.info("transaction_aborted cause=%s", cause.code if cause else None)
                    return Result.fail(
                        create_database_error(
                            TRANSACTION_FAILED,
                            outcome.message or "Transaction failed",
                            {"cause": cause.to_dict() if cause else None},
                        )
                    )
                await session.commit()
        except Exception as exc:  # noqa: BLE001 - session close rolls back uncommitted work
            return self._ctx.handle_error(exc, TRANSACTION_FAILED)
        if isinstance(outcome, Commit):
            return Result.ok(outcome.value)
        if isinstance(outcome, Result):
            return outcome
        return Result.ok(outcome)
