"""
Storage abstractions for encrypted preference records.

This module provides:
- PreferenceStorage: Abstract interface for preference storage backends
- InMemoryStorage: asyncio-safe in-memory implementation for testing
- PreferenceRecord: One user's encrypted preference row
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Set
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PreferenceRecord:
    """
    Persisted preferences for one user.

    encrypted_preferences holds the serialized AEAD blob; the storage layer
    never sees plaintext preferences.
    """

    user_id: str
    encrypted_preferences: str
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    record_id: UUID = field(default_factory=uuid4)


class PreferenceStorage(ABC):
    """
    Abstract storage interface for preference records.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def user_exists(self, user_id: str) -> bool:
        """Check whether a user exists."""
        ...

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> Optional[PreferenceRecord]:
        """Get the preference record for a user, if any."""
        ...

    @abstractmethod
    async def atomic_upsert(self, user_id: str, blob: str) -> PreferenceRecord:
        """
        Insert or update a user's record in a single atomic unit.

        The existence check deciding insert vs update runs inside the same
        atomic unit as the write.

        Raises:
            ConstraintViolationError: If the uniqueness constraint fired
            StorageError: On any other persistence failure
        """
        ...


class InMemoryStorage(PreferenceStorage):
    """
    In-memory storage implementation for testing.

    Uses asyncio.Lock for safe concurrent access. Records are keyed by user
    id, which gives the one-record-per-user guarantee.
    """

    def __init__(self) -> None:
        self._users: Set[str] = set()
        self._records: Dict[str, PreferenceRecord] = {}
        self._lock = asyncio.Lock()

    async def add_user(self, user_id: str) -> None:
        """Register a user."""
        async with self._lock:
            self._users.add(user_id)

    async def remove_user(self, user_id: str) -> None:
        """Remove a user and, by cascade, their preference record."""
        async with self._lock:
            self._users.discard(user_id)
            self._records.pop(user_id, None)

    async def user_exists(self, user_id: str) -> bool:
        """Check whether a user exists."""
        async with self._lock:
            return user_id in self._users

    async def find_by_user_id(self, user_id: str) -> Optional[PreferenceRecord]:
        """Get the preference record for a user, if any."""
        async with self._lock:
            record = self._records.get(user_id)
            # Copy so callers cannot mutate stored state
            return replace(record) if record is not None else None

    async def atomic_upsert(self, user_id: str, blob: str) -> PreferenceRecord:
        """Insert or update a user's record under the storage lock."""
        async with self._lock:
            record = self._records.get(user_id)
            if record is None:
                record = PreferenceRecord(user_id=user_id, encrypted_preferences=blob)
            else:
                record = replace(
                    record, encrypted_preferences=blob, updated_at=_utcnow()
                )
            self._records[user_id] = record
            return replace(record)

    async def count_records(self) -> int:
        """Number of stored preference records."""
        async with self._lock:
            return len(self._records)
