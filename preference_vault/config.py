"""
Process configuration for the preference store.

Settings are read once at startup from the environment, after loading a
.env file if one is present. The encryption key is validated here, so a
misconfigured key stops the process before any request is served.

Environment variables:
    PREFERENCES_ENCRYPTION_KEY   required; "base64:...", "hex:..." or a
                                 32-character string used as UTF-8 bytes
    DATABASE_URL                 PostgreSQL DSN
    PG_POOL_MIN_SIZE             default 1
    PG_POOL_MAX_SIZE             default 10
    PG_COMMAND_TIMEOUT           seconds, default 5.0
    PREFERENCES_UPSERT_ATTEMPTS  default 3
    LOG_LEVEL                    default INFO
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .crypto import AES_256_KEY_SIZE, SecureKey
from .errors import ConfigError

KEY_ENV_VAR = "PREFERENCES_ENCRYPTION_KEY"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    """Validated process settings."""

    encryption_key: SecureKey
    database_url: Optional[str] = None
    pool_min_size: int = 1
    pool_max_size: int = 10
    command_timeout: float = 5.0
    upsert_attempts: int = 3
    log_level: str = "INFO"


def parse_encryption_key(value: str) -> SecureKey:
    """
    Parse a configured key into a 32-byte SecureKey.

    Args:
        value: "base64:<data>", "hex:<data>" or a raw string taken as UTF-8

    Returns:
        SecureKey of exactly 32 bytes

    Raises:
        ConfigError: If the value cannot be decoded or has the wrong length
    """
    if value.startswith("base64:"):
        try:
            raw = base64.b64decode(value[len("base64:"):], validate=True)
        except (binascii.Error, ValueError):
            raise ConfigError(f"{KEY_ENV_VAR} is not valid base64")
    elif value.startswith("hex:"):
        try:
            raw = bytes.fromhex(value[len("hex:"):])
        except ValueError:
            raise ConfigError(f"{KEY_ENV_VAR} is not valid hex")
    else:
        raw = value.encode("utf-8")

    if len(raw) != AES_256_KEY_SIZE:
        raise ConfigError(
            f"{KEY_ENV_VAR} must decode to {AES_256_KEY_SIZE} bytes, got {len(raw)}"
        )
    return SecureKey(raw)


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _float_setting(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> Settings:
    """
    Load and validate settings.

    Args:
        env: Variables to read instead of os.environ (no .env loading then)
        dotenv_path: Explicit .env file; default searches upwards from the cwd

    Returns:
        Settings instance

    Raises:
        ConfigError: If the key is missing or invalid, or a number is malformed
    """
    if env is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        env = os.environ

    key_value = env.get(KEY_ENV_VAR)
    if not key_value:
        raise ConfigError(f"{KEY_ENV_VAR} must be set")

    upsert_attempts = _int_setting(env, "PREFERENCES_UPSERT_ATTEMPTS", 3)
    if upsert_attempts < 1:
        raise ConfigError("PREFERENCES_UPSERT_ATTEMPTS must be at least 1")

    return Settings(
        encryption_key=parse_encryption_key(key_value),
        database_url=env.get("DATABASE_URL") or None,
        pool_min_size=_int_setting(env, "PG_POOL_MIN_SIZE", 1),
        pool_max_size=_int_setting(env, "PG_POOL_MAX_SIZE", 10),
        command_timeout=_float_setting(env, "PG_COMMAND_TIMEOUT", 5.0),
        upsert_attempts=upsert_attempts,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the CLI and services."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
