"""
Preference Vault operator CLI.

Usage:
    preference-vault generate-key
    preference-vault init-db
    preference-vault add-user USER_ID
    preference-vault get USER_ID
    preference-vault put USER_ID order_created=true order_shipped=false

Or run directly:
    python -m preference_vault.cli ...

PostgreSQL setup:
    1. Set DATABASE_URL and PREFERENCES_ENCRYPTION_KEY in the environment
       or a .env file
    2. Run: preference-vault init-db
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from typing import Dict, List, Optional

import asyncpg

from .config import configure_logging, load_settings
from .crypto import SecureKey
from .errors import ConfigError, InvalidPreferencesError, PreferenceError, describe_failure
from .postgres import PostgresStorage, close_pool, create_pool, create_schema
from .service import PreferenceStore

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def parse_assignments(items: List[str]) -> Dict[str, bool]:
    """
    Parse EVENT=BOOL arguments into a preference mapping.

    Raises:
        InvalidPreferencesError: If an item is not EVENT=true|false
    """
    preferences: Dict[str, bool] = {}
    for item in items:
        event_type, sep, value = item.partition("=")
        if not sep or not event_type:
            raise InvalidPreferencesError(f"Expected EVENT=true|false, got {item!r}")
        lowered = value.strip().lower()
        if lowered in _TRUE:
            preferences[event_type] = True
        elif lowered in _FALSE:
            preferences[event_type] = False
        else:
            raise InvalidPreferencesError(f"Invalid boolean for {event_type!r}: {value!r}")
    return preferences


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="preference-vault",
        description="Encrypted notification preference store",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("generate-key", help="Print a new random encryption key")
    sub.add_parser("init-db", help="Create database tables")

    add_user = sub.add_parser("add-user", help="Register a user id (development)")
    add_user.add_argument("user_id")

    get = sub.add_parser("get", help="Print a user's preferences as JSON")
    get.add_argument("user_id")

    put = sub.add_parser("put", help="Replace a user's preferences")
    put.add_argument("user_id")
    put.add_argument("preferences", nargs="*", metavar="EVENT=BOOL")

    return parser


async def execute(args: argparse.Namespace, store: PreferenceStore) -> int:
    """
    Run a get/put command against a store.

    Returns:
        Process exit code
    """
    try:
        if args.command == "get":
            preferences = await store.get_preferences(args.user_id)
            print(json.dumps({"preferences": preferences}, sort_keys=True))
        elif args.command == "put":
            await store.put_preferences(args.user_id, parse_assignments(args.preferences))
            print("Preferences updated successfully.")
        else:
            raise ValueError(f"Unsupported command: {args.command}")
    except PreferenceError as e:
        failure = describe_failure(e)
        if failure.kind == "unavailable":
            logger.error("%s failed: %s", args.command, e)
        print(f"ERROR: {failure.message}", file=sys.stderr)
        return 1
    return 0


async def run(args: argparse.Namespace) -> int:
    """Run a command that needs settings and a database."""
    try:
        settings = load_settings()
    except ConfigError as e:
        # Refuse to serve with a bad key
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if not settings.database_url:
        print("ERROR: DATABASE_URL must be set in environment or .env file", file=sys.stderr)
        return 2

    try:
        pool = await create_pool(
            settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            command_timeout=settings.command_timeout,
        )
    except PreferenceError as e:
        logger.error("Startup failed: %s", e)
        print(f"ERROR: {describe_failure(e).message}", file=sys.stderr)
        return 1

    try:
        if args.command == "init-db":
            await create_schema(pool)
            print("Schema created.")
            return 0
        if args.command == "add-user":
            await pool.execute(
                "INSERT INTO users (id) VALUES ($1) ON CONFLICT (id) DO NOTHING",
                args.user_id,
            )
            print(f"User {args.user_id} registered.")
            return 0

        store = PreferenceStore(
            PostgresStorage(pool),
            settings.encryption_key,
            max_upsert_attempts=settings.upsert_attempts,
        )
        return await execute(args, store)
    except (PreferenceError, asyncpg.PostgresError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"ERROR: {describe_failure(e).message}", file=sys.stderr)
        return 1
    finally:
        await close_pool(pool)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "generate-key":
        key = SecureKey.generate()
        print("base64:" + base64.b64encode(key.as_bytes()).decode("ascii"))
        return

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
