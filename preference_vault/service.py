"""
Preference store: encrypted read and atomic write of user preferences.

Read path:
1. Load the user's record from storage
2. No record -> empty mapping (all defaults)
3. Decode the blob; any codec failure -> PreferenceLoadFailure

Write path:
1. Validate the payload (string keys, boolean values)
2. Check the user exists (exactly once, before crypto/storage work)
3. Encode the mapping with a fresh nonce
4. Atomic upsert; constraint races are retried, each attempt in a new
   transaction
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .crypto import PreferenceCodec, PreferenceMapping, SecureKey
from .errors import (
    ConstraintViolationError,
    FormatError,
    IntegrityError,
    InvalidPreferencesError,
    PreferenceLoadFailure,
    StorageError,
    UserNotFoundError,
)
from .storage import PreferenceStorage

logger = logging.getLogger(__name__)

DEFAULT_UPSERT_ATTEMPTS = 3


def validate_preferences(preferences: Any) -> PreferenceMapping:
    """
    Check a caller-supplied payload and return it as a plain dict.

    Keys are not checked against any registry of event types.

    Raises:
        InvalidPreferencesError: If payload is not a mapping of str -> bool
    """
    if not isinstance(preferences, Mapping):
        raise InvalidPreferencesError("Invalid preferences payload.")
    for event_type, enabled in preferences.items():
        if not isinstance(event_type, str):
            raise InvalidPreferencesError("Preference keys must be strings.")
        if not isinstance(enabled, bool):
            raise InvalidPreferencesError(
                f"Preference {event_type!r} must be true or false."
            )
    return dict(preferences)


class PreferenceStore:
    """
    Encrypted preference service.

    Provides the get/put API over a storage backend. The key is bound at
    construction, so a misconfigured key fails here (ConfigError) rather
    than on the first request.
    """

    def __init__(
        self,
        storage: PreferenceStorage,
        key: SecureKey,
        max_upsert_attempts: int = DEFAULT_UPSERT_ATTEMPTS,
    ) -> None:
        """
        Initialize store with storage backend and encryption key.

        Args:
            storage: PreferenceStorage implementation
            key: 32-byte encryption key
            max_upsert_attempts: Total upsert attempts on constraint races

        Raises:
            ConfigError: If key size is invalid
        """
        if max_upsert_attempts < 1:
            raise ValueError("max_upsert_attempts must be at least 1")
        self._storage = storage
        self._codec = PreferenceCodec(key)
        self._max_upsert_attempts = max_upsert_attempts

    async def get_preferences(self, user_id: str) -> PreferenceMapping:
        """
        Get a user's preferences.

        Args:
            user_id: Authenticated user id

        Returns:
            Mapping of event type -> enabled; empty if nothing saved yet

        Raises:
            PreferenceLoadFailure: If the stored blob cannot be decrypted
            StorageError: If storage is unavailable
        """
        record = await self._storage.find_by_user_id(user_id)
        if record is None:
            return {}

        try:
            return self._codec.decode(record.encrypted_preferences)
        except (FormatError, IntegrityError) as e:
            logger.error(
                "Failed to decrypt preferences for user %s (record %s): %s: %s",
                user_id,
                record.record_id,
                type(e).__name__,
                e,
            )
            raise PreferenceLoadFailure(user_id) from e

    async def put_preferences(self, user_id: str, preferences: Mapping[str, bool]) -> None:
        """
        Replace a user's preferences.

        Args:
            user_id: Authenticated user id
            preferences: Mapping of event type -> enabled

        Raises:
            InvalidPreferencesError: If the payload is malformed
            UserNotFoundError: If the user does not exist
            ConfigError: If the encryption key is misconfigured
            StorageError: If the write could not be committed
        """
        mapping = validate_preferences(preferences)

        if not await self._storage.user_exists(user_id):
            raise UserNotFoundError(user_id)

        blob = self._codec.encode(mapping)

        last_error: ConstraintViolationError | None = None
        for attempt in range(1, self._max_upsert_attempts + 1):
            try:
                record = await self._storage.atomic_upsert(user_id, blob)
            except ConstraintViolationError as e:
                last_error = e
                logger.warning(
                    "Preference upsert for user %s hit constraint (attempt %d/%d): %s",
                    user_id,
                    attempt,
                    self._max_upsert_attempts,
                    e,
                )
                continue
            except StorageError:
                logger.exception("Preference upsert for user %s failed", user_id)
                raise
            logger.debug(
                "Saved %d preferences for user %s (record %s)",
                len(mapping),
                user_id,
                record.record_id,
            )
            return

        logger.error(
            "Preference upsert for user %s gave up after %d attempts",
            user_id,
            self._max_upsert_attempts,
        )
        raise StorageError(
            f"Could not save preferences for user {user_id} after "
            f"{self._max_upsert_attempts} attempts"
        ) from last_error
