"""PostgresStorage error translation over a stub asyncpg pool (no database needed)."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
import pytest

from preference_vault import (
    ConstraintViolationError,
    PostgresStorage,
    PreferenceStore,
    StorageError,
)


class StubConnection:
    """Connection whose statements all raise the configured error."""

    def __init__(self, error: BaseException) -> None:
        self._error = error
        self.statements = 0
        self.rolled_back = 0

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except BaseException:
            self.rolled_back += 1
            raise

    async def fetchrow(self, query: str, *args: Any) -> None:
        self.statements += 1
        raise self._error


class StubPool:
    """
    Minimal stand-in for asyncpg.Pool.

    Reads through the pool raise read_error when set; writes go through
    acquire() and fail with write_error.
    """

    def __init__(
        self,
        write_error: BaseException,
        read_error: Optional[BaseException] = None,
    ) -> None:
        self.conn = StubConnection(write_error)
        self._read_error = read_error

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def fetchval(self, query: str, *args: Any) -> bool:
        if self._read_error is not None:
            raise self._read_error
        return True

    async def fetchrow(self, query: str, *args: Any) -> None:
        if self._read_error is not None:
            raise self._read_error
        return None


STORAGE_FAILURES = [
    asyncio.TimeoutError(),
    OSError("connection refused"),
    asyncpg.InterfaceError("connection is closed"),
    asyncpg.PostgresError("generic failure"),
    asyncpg.DeadlockDetectedError("deadlock detected"),
]


# ─── atomic_upsert ───


@pytest.mark.parametrize("error", STORAGE_FAILURES, ids=lambda e: type(e).__name__)
async def test_upsert_failure_becomes_storage_error(error):
    pool = StubPool(write_error=error)
    storage = PostgresStorage(pool)

    with pytest.raises(StorageError) as exc_info:
        await storage.atomic_upsert("u1", "blob")

    assert type(exc_info.value) is StorageError
    assert exc_info.value.__cause__ is error
    assert pool.conn.rolled_back == 1


async def test_unique_violation_becomes_constraint_violation():
    error = asyncpg.UniqueViolationError("duplicate key value")
    storage = PostgresStorage(StubPool(write_error=error))

    with pytest.raises(ConstraintViolationError) as exc_info:
        await storage.atomic_upsert("u1", "blob")

    assert exc_info.value.__cause__ is error


async def test_cancellation_propagates_unchanged():
    pool = StubPool(write_error=asyncio.CancelledError())
    storage = PostgresStorage(pool)

    with pytest.raises(asyncio.CancelledError):
        await storage.atomic_upsert("u1", "blob")
    assert pool.conn.rolled_back == 1


# ─── Reads ───


@pytest.mark.parametrize("error", STORAGE_FAILURES, ids=lambda e: type(e).__name__)
async def test_read_failures_become_storage_error(error):
    storage = PostgresStorage(StubPool(write_error=error, read_error=error))

    with pytest.raises(StorageError):
        await storage.user_exists("u1")
    with pytest.raises(StorageError):
        await storage.find_by_user_id("u1")


# ─── Store retry policy over PostgresStorage ───


async def test_store_retries_only_unique_violations(key):
    pool = StubPool(write_error=asyncpg.UniqueViolationError("duplicate key value"))
    store = PreferenceStore(PostgresStorage(pool), key, max_upsert_attempts=3)

    with pytest.raises(StorageError) as exc_info:
        await store.put_preferences("u1", {"order_created": True})

    assert not isinstance(exc_info.value, ConstraintViolationError)
    assert isinstance(exc_info.value.__cause__, ConstraintViolationError)
    assert pool.conn.statements == 3


@pytest.mark.parametrize("error", STORAGE_FAILURES, ids=lambda e: type(e).__name__)
async def test_store_does_not_retry_storage_failures(key, error):
    pool = StubPool(write_error=error)
    store = PreferenceStore(PostgresStorage(pool), key, max_upsert_attempts=3)

    with pytest.raises(StorageError):
        await store.put_preferences("u1", {"order_created": True})

    assert pool.conn.statements == 1
