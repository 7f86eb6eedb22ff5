"""Tests for settings loading and key parsing."""

import base64
import os

import pytest

from preference_vault import AES_256_KEY_SIZE, ConfigError, load_settings, parse_encryption_key

RAW_KEY = bytes(range(32))


def test_parse_base64_key():
    key = parse_encryption_key("base64:" + base64.b64encode(RAW_KEY).decode())
    assert key.as_bytes() == RAW_KEY


def test_parse_hex_key():
    key = parse_encryption_key("hex:" + RAW_KEY.hex())
    assert key.as_bytes() == RAW_KEY


def test_parse_plain_string_key_as_utf8():
    key = parse_encryption_key("0123456789abcdef0123456789abcdef")
    assert key.as_bytes() == b"0123456789abcdef0123456789abcdef"
    assert len(key) == AES_256_KEY_SIZE


@pytest.mark.parametrize(
    "value",
    [
        "too-short",
        "0123456789abcdef0123456789abcdef0",
        "base64:" + base64.b64encode(b"x" * 16).decode(),
        "base64:not base64!",
        "hex:abcd",
        "hex:zz" * 32,
    ],
)
def test_invalid_keys_rejected(value):
    with pytest.raises(ConfigError):
        parse_encryption_key(value)


def test_load_settings_defaults():
    settings = load_settings({"PREFERENCES_ENCRYPTION_KEY": "hex:" + RAW_KEY.hex()})
    assert settings.encryption_key.as_bytes() == RAW_KEY
    assert settings.database_url is None
    assert settings.pool_min_size == 1
    assert settings.pool_max_size == 10
    assert settings.command_timeout == 5.0
    assert settings.upsert_attempts == 3
    assert settings.log_level == "INFO"


def test_load_settings_overrides():
    settings = load_settings(
        {
            "PREFERENCES_ENCRYPTION_KEY": "hex:" + RAW_KEY.hex(),
            "DATABASE_URL": "postgresql://localhost/prefs",
            "PG_POOL_MIN_SIZE": "2",
            "PG_POOL_MAX_SIZE": "4",
            "PG_COMMAND_TIMEOUT": "1.5",
            "PREFERENCES_UPSERT_ATTEMPTS": "5",
            "LOG_LEVEL": "debug",
        }
    )
    assert settings.database_url == "postgresql://localhost/prefs"
    assert settings.pool_min_size == 2
    assert settings.pool_max_size == 4
    assert settings.command_timeout == 1.5
    assert settings.upsert_attempts == 5
    assert settings.log_level == "DEBUG"


def test_missing_key_is_config_error():
    with pytest.raises(ConfigError):
        load_settings({"DATABASE_URL": "postgresql://localhost/prefs"})


@pytest.mark.parametrize(
    "name, value",
    [
        ("PG_POOL_MAX_SIZE", "many"),
        ("PG_COMMAND_TIMEOUT", "soon"),
        ("PREFERENCES_UPSERT_ATTEMPTS", "0"),
    ],
)
def test_malformed_numbers_rejected(name, value):
    with pytest.raises(ConfigError):
        load_settings({"PREFERENCES_ENCRYPTION_KEY": "hex:" + RAW_KEY.hex(), name: value})


def test_load_settings_reads_dotenv(tmp_path, monkeypatch):
    monkeypatch.delenv("PREFERENCES_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(
        f"PREFERENCES_ENCRYPTION_KEY=hex:{RAW_KEY.hex()}\n"
        "DATABASE_URL=postgresql://localhost/from_dotenv\n"
    )

    try:
        settings = load_settings(dotenv_path=str(env_file))
    finally:
        # load_dotenv writes into os.environ
        os.environ.pop("PREFERENCES_ENCRYPTION_KEY", None)
        os.environ.pop("DATABASE_URL", None)

    assert settings.encryption_key.as_bytes() == RAW_KEY
    assert settings.database_url == "postgresql://localhost/from_dotenv"


def test_load_settings_finds_dotenv_in_working_directory(tmp_path, monkeypatch):
    monkeypatch.delenv("PREFERENCES_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    (tmp_path / ".env").write_text(
        f"PREFERENCES_ENCRYPTION_KEY=base64:{base64.b64encode(RAW_KEY).decode()}\n"
        "LOG_LEVEL=debug\n"
    )
    monkeypatch.chdir(tmp_path)

    try:
        settings = load_settings()
    finally:
        os.environ.pop("PREFERENCES_ENCRYPTION_KEY", None)
        os.environ.pop("LOG_LEVEL", None)

    assert settings.encryption_key.as_bytes() == RAW_KEY
    assert settings.log_level == "DEBUG"
