"""
PostgreSQL storage backend for encrypted preferences.

This module provides:
- PostgresStorage: asyncpg-backed implementation of PreferenceStorage
- SCHEMA_SQL: Tables used by the backend
- create_pool / close_pool / create_schema / health_check: Pool helpers

Architecture:
- **Database**: Stores one AEAD blob per user in notification_preferences,
  unique on user_id, cascading from users
- **Application**: Encrypts/decrypts blobs; the database never sees
  plaintext preferences

Upsert strategy:
1. Open a transaction and lock the user's row (SELECT ... FOR UPDATE)
2. If present, UPDATE the blob and bump updated_at
3. Otherwise INSERT ... ON CONFLICT (user_id) DO UPDATE, so a concurrent
   first write for the same user turns into an update instead of failing
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import asyncpg

from .errors import ConstraintViolationError, StorageError
from .storage import PreferenceRecord, PreferenceStorage

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    encrypted_preferences TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

    CONSTRAINT uq_notification_preferences_user UNIQUE (user_id)
);
"""

_SELECT_COLUMNS = "id, user_id, encrypted_preferences, created_at, updated_at"

# asyncpg raises these for lost connections and command_timeout expiry
_TRANSIENT_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.InterfaceError)


class PostgresStorage(PreferenceStorage):
    """
    PostgreSQL storage backend for preference records.

    User existence is checked against users_table, which is owned by the
    account service; only its id column is read.
    """

    def __init__(self, pool: asyncpg.Pool, users_table: str = "users") -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
            users_table: Table holding user ids in an "id" column
        """
        self._pool = pool
        self._users_table = users_table

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def user_exists(self, user_id: str) -> bool:
        """
        Check whether a user exists.

        Args:
            user_id: User id

        Returns:
            True if a row with this id exists in the users table
        """
        query = f"SELECT EXISTS (SELECT 1 FROM {self._users_table} WHERE id = $1)"
        try:
            return bool(await self._pool.fetchval(query, user_id))
        except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
            raise StorageError(f"Failed to check user existence: {e}") from e

    async def find_by_user_id(self, user_id: str) -> Optional[PreferenceRecord]:
        """
        Get the preference record for a user.

        Args:
            user_id: User id

        Returns:
            PreferenceRecord if found, None otherwise
        """
        query = f"""
            SELECT {_SELECT_COLUMNS}
            FROM notification_preferences
            WHERE user_id = $1
        """
        try:
            row = await self._pool.fetchrow(query, user_id)
        except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
            raise StorageError(f"Failed to load preferences: {e}") from e
        if row is None:
            return None
        return self._row_to_record(row)

    async def atomic_upsert(self, user_id: str, blob: str) -> PreferenceRecord:
        """
        Insert or update a user's record inside one transaction.

        Args:
            user_id: User id
            blob: Serialized AEAD blob

        Returns:
            The persisted PreferenceRecord

        Raises:
            ConstraintViolationError: If the unique constraint on user_id fired
            StorageError: On any other database failure
        """
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    existing = await conn.fetchrow(
                        """
                        SELECT id
                        FROM notification_preferences
                        WHERE user_id = $1
                        FOR UPDATE
                        """,
                        user_id,
                    )
                    if existing is not None:
                        row = await conn.fetchrow(
                            f"""
                            UPDATE notification_preferences
                            SET encrypted_preferences = $2,
                                updated_at = NOW()
                            WHERE id = $1
                            RETURNING {_SELECT_COLUMNS}
                            """,
                            existing["id"],
                            blob,
                        )
                    else:
                        row = await conn.fetchrow(
                            f"""
                            INSERT INTO notification_preferences
                                (user_id, encrypted_preferences)
                            VALUES ($1, $2)
                            ON CONFLICT (user_id) DO UPDATE
                            SET encrypted_preferences = EXCLUDED.encrypted_preferences,
                                updated_at = NOW()
                            RETURNING {_SELECT_COLUMNS}
                            """,
                            user_id,
                            blob,
                        )
        except asyncpg.UniqueViolationError as e:
            raise ConstraintViolationError(
                f"Unique constraint violated for user {user_id}: {e}"
            ) from e
        except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
            raise StorageError(f"Failed to upsert preferences: {e}") from e

        return self._row_to_record(row)

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> PreferenceRecord:
        """Convert database row to PreferenceRecord."""
        return PreferenceRecord(
            record_id=row["id"],
            user_id=row["user_id"],
            encrypted_preferences=row["encrypted_preferences"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# =============================================================================
# Pool helpers
# =============================================================================


async def create_pool(
    dsn: str,
    min_size: int = 1,
    max_size: int = 10,
    command_timeout: Optional[float] = 5.0,
) -> asyncpg.Pool:
    """
    Create an asyncpg pool.

    command_timeout bounds every statement, so a stuck transaction fails
    with StorageError instead of blocking readers indefinitely.
    """
    try:
        pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
        )
    except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
        raise StorageError(f"Failed to create pool: {e}") from e
    if pool is None:
        raise StorageError("Failed to create connection pool")
    return pool


async def close_pool(pool: asyncpg.Pool, timeout: float = 5.0) -> None:
    """Close a pool, terminating it if graceful close takes too long."""
    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Pool close timed out after %.1fs, terminating", timeout)
        pool.terminate()


async def create_schema(pool: asyncpg.Pool) -> None:
    """Create the tables used by PostgresStorage if they do not exist."""
    try:
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
    except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
        raise StorageError(f"Failed to create schema: {e}") from e
    logger.info("Preference schema ready")


async def health_check(pool: asyncpg.Pool) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
        logger.warning("Database health check failed: %s", e)
        return False
