"""
Preference Vault

Encrypted-at-rest notification preferences: each user's mapping of event
type -> enabled flag is stored as a single AES-256-GCM blob.

Quick Start
-----------
```python
import asyncio
from preference_vault import (
    PostgresStorage,
    PreferenceStore,
    create_pool,
    load_settings,
)

async def main():
    settings = load_settings()  # validates PREFERENCES_ENCRYPTION_KEY
    pool = await create_pool(settings.database_url)
    store = PreferenceStore(PostgresStorage(pool), settings.encryption_key)

    await store.put_preferences("u1", {"order_created": True, "order_shipped": False})
    prefs = await store.get_preferences("u1")

asyncio.run(main())
```

Key Features
------------
- **AES-256-GCM**: Authenticated encryption, fresh nonce per write
- **Tamper Detection**: Wrong key or altered blob never yields data
- **Atomic Upsert**: One record per user, written in a single transaction
- **PostgreSQL Storage**: asyncpg backend, in-memory backend for tests
- **Memory Security**: Best-effort key zeroization on deletion
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    BLOB_DELIMITER,
    NONCE_SIZE,
    TAG_SIZE,
    EncryptedBlob,
    PreferenceCodec,
    SecureKey,
    decode,
    encode,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    ConfigError,
    ConstraintViolationError,
    FailureInfo,
    FormatError,
    IntegrityError,
    InvalidPreferencesError,
    PreferenceError,
    PreferenceLoadFailure,
    StorageError,
    UserNotFoundError,
    describe_failure,
)

# =============================================================================
# Storage Exports
# =============================================================================

from .storage import (
    InMemoryStorage,
    PreferenceRecord,
    PreferenceStorage,
)

from .postgres import (
    PostgresStorage,
    close_pool,
    create_pool,
    create_schema,
    health_check,
)

# =============================================================================
# Service / Config Exports
# =============================================================================

from .service import PreferenceStore, validate_preferences
from .config import Settings, configure_logging, load_settings, parse_encryption_key

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "BLOB_DELIMITER",
    "EncryptedBlob",
    "PreferenceCodec",
    "SecureKey",
    "encode",
    "decode",
    # Errors
    "PreferenceError",
    "FormatError",
    "IntegrityError",
    "ConfigError",
    "InvalidPreferencesError",
    "UserNotFoundError",
    "PreferenceLoadFailure",
    "StorageError",
    "ConstraintViolationError",
    "FailureInfo",
    "describe_failure",
    # Storage
    "PreferenceStorage",
    "PreferenceRecord",
    "InMemoryStorage",
    "PostgresStorage",
    "create_pool",
    "close_pool",
    "create_schema",
    "health_check",
    # Service / config
    "PreferenceStore",
    "validate_preferences",
    "Settings",
    "load_settings",
    "parse_encryption_key",
    "configure_logging",
]
