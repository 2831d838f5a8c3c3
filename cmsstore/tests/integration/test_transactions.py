from __future__ import annotations

import pytest

from cmsstore.adapter import CmsAdapter, TransactionHandle
from cmsstore.core.errors import TRANSACTION_FAILED, TRANSACTION_ROLLED_BACK


@pytest.mark.asyncio
async def test_commit_persists_writes(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        await adapter.crud.insert("themes", {"name": "a"})
        await adapter.system.preferences.set("site_name", "Demo")
        return tx.commit("done")

    result = await adapter.transaction(body)
    assert result.success, result.message
    assert result.data == "done"
    assert (await adapter.crud.count("themes")).data == 1
    assert (await adapter.system.preferences.get("site_name")).data == "Demo"


@pytest.mark.asyncio
async def test_rollback_leaves_no_writes(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        await adapter.crud.insert("themes", {"name": "a"})
        return tx.rollback("changed my mind")

    result = await adapter.transaction(body)
    assert result.success is False
    assert result.error.code == TRANSACTION_ROLLED_BACK
    assert result.message == "changed my mind"
    assert (await adapter.crud.count("themes")).data == 0


@pytest.mark.asyncio
async def test_calling_rollback_without_returning_it_discards_writes(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        await adapter.crud.insert("themes", {"name": "a"})
        tx.rollback("abort")

    result = await adapter.transaction(body)
    assert result.success is False
    assert result.error.code == TRANSACTION_ROLLED_BACK
    assert result.message == "abort"
    assert (await adapter.crud.count("themes")).data == 0


@pytest.mark.asyncio
async def test_exceptions_roll_back(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        await adapter.crud.insert("themes", {"name": "a"})
        raise RuntimeError("boom")

    result = await adapter.transaction(body)
    assert result.error.code == TRANSACTION_FAILED
    assert result.message == "boom"
    assert (await adapter.crud.count("themes")).data == 0


@pytest.mark.asyncio
async def test_failed_result_aborts_transaction(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        await adapter.crud.insert("themes", {"name": "a"})
        return await adapter.crud.update("themes", "missing", {"name": "b"})

    result = await adapter.transaction(body)
    assert result.error.code == TRANSACTION_FAILED
    assert result.error.details["cause"]["code"] == "NOT_FOUND"
    assert (await adapter.crud.count("themes")).data == 0


@pytest.mark.asyncio
async def test_successful_result_commits(adapter: CmsAdapter) -> None:
    async def body(tx: TransactionHandle):
        return await adapter.crud.insert("themes", {"name": "a"})

    result = await adapter.transaction(body)
    assert result.data["name"] == "a"
    assert (await adapter.crud.count("themes")).data == 1


@pytest.mark.asyncio
async def test_nested_transactions_are_rejected(adapter: CmsAdapter) -> None:
    async def inner(tx: TransactionHandle):
        return tx.commit()

    async def outer(tx: TransactionHandle):
        return await adapter.transaction(inner)

    result = await adapter.transaction(outer)
    assert result.error.code == TRANSACTION_FAILED
    assert "Nested transactions" in result.error.details["cause"]["message"]
