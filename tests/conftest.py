"""
Shared fixtures: keys, an in-memory backend with one registered user, and
a PostgreSQL backend that is only available when DATABASE_URL is set.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator

import asyncpg
import pytest
from dotenv import load_dotenv

from preference_vault import (
    InMemoryStorage,
    PostgresStorage,
    PreferenceStore,
    SecureKey,
    close_pool,
    create_pool,
    create_schema,
)


@pytest.fixture
def key() -> SecureKey:
    """A fresh 32-byte encryption key."""
    return SecureKey.generate()


@pytest.fixture
def other_key() -> SecureKey:
    """A second, unrelated key."""
    return SecureKey.generate()


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    """Empty in-memory backend; tests register users as needed."""
    return InMemoryStorage()


@pytest.fixture
async def store(memory_storage: InMemoryStorage, key: SecureKey) -> PreferenceStore:
    """Preference store over in-memory storage with user "u1" registered."""
    await memory_storage.add_user("u1")
    return PreferenceStore(memory_storage, key)


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """
    Pool on a scratch database with the preference schema and no rows.

    Reads DATABASE_URL from the environment or the project .env file and
    skips the test when it is absent.
    """
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set")

    pool = await create_pool(database_url, min_size=2, max_size=10)

    await create_schema(pool)
    # Preference rows go with their users
    await pool.execute("TRUNCATE TABLE users CASCADE")

    yield pool

    await close_pool(pool)


@pytest.fixture
async def postgres_storage(pg_pool: asyncpg.Pool) -> PostgresStorage:
    """PostgresStorage over the scratch pool."""
    return PostgresStorage(pg_pool)
