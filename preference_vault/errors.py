"""
Exception classes for encrypted preference operations.

This module defines the exception hierarchy shared by the codec, the storage
backends and the preference store, plus the mapping from an exception to the
information that may be shown to an external caller.
"""

from __future__ import annotations

from dataclasses import dataclass


class PreferenceError(Exception):
    """Base exception for all preference store operations."""

    pass


class FormatError(PreferenceError):
    """Blob or decrypted payload is not in the expected format."""

    pass


class IntegrityError(PreferenceError):
    """Authentication tag did not verify (wrong key or tampered blob)."""

    pass


class ConfigError(PreferenceError):
    """Configuration error (missing or wrong-length encryption key)."""

    pass


class InvalidPreferencesError(PreferenceError):
    """Preference payload is not a mapping of strings to booleans."""

    pass


class UserNotFoundError(PreferenceError):
    """Write target user does not exist."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class PreferenceLoadFailure(PreferenceError):
    """Stored preferences could not be decoded.

    The underlying FormatError / IntegrityError is chained as __cause__ and
    logged, never included in the message.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("Failed to load notification preferences.")


class StorageError(PreferenceError):
    """Storage backend error (database, transaction, timeout)."""

    pass


class ConstraintViolationError(StorageError):
    """Uniqueness constraint fired during an upsert."""

    pass


# =============================================================================
# Caller-facing classification
# =============================================================================

UNAVAILABLE_MESSAGE = "Service temporarily unavailable."


@dataclass(frozen=True)
class FailureInfo:
    """What may be reported to an external caller for a failure."""

    kind: str
    message: str


def describe_failure(exc: BaseException) -> FailureInfo:
    """
    Classify an exception for an external caller.

    Operator-facing failures (configuration, storage and anything unexpected)
    collapse to a generic "unavailable" message. Codec errors never reach
    callers directly; if one does, it is reported like a load failure.

    Args:
        exc: Exception raised by a store operation

    Returns:
        FailureInfo with a stable kind and a message safe to expose
    """
    if isinstance(exc, InvalidPreferencesError):
        return FailureInfo("invalid_request", str(exc))
    if isinstance(exc, UserNotFoundError):
        return FailureInfo("not_found", "User not found.")
    if isinstance(exc, (PreferenceLoadFailure, FormatError, IntegrityError)):
        return FailureInfo("load_failed", "Failed to load notification preferences.")
    return FailureInfo("unavailable", UNAVAILABLE_MESSAGE)
