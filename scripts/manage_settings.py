#!/usr/bin/env python3
"""Operator setup: hash the operator password and manage persisted Didit settings."""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from observer_identity.core.security import CryptoPrimitives
from observer_identity.database import async_session_maker
from observer_identity.services.settings_service import (
    DatabaseSettingsStore,
    resolve_verification_config,
)

SECRET_FIELDS = {"client_secret", "api_key"}


async def set_settings(pairs: list[str]) -> None:
    """Persist key=value pairs into the settings table."""
    async with async_session_maker() as db:
        store = DatabaseSettingsStore(db)
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep or not key.strip():
                print(f"Skipping malformed pair: {pair}")
                continue
            await store.set_setting(key.strip(), value.strip() or None)
            print(f"Set {key.strip()}")


async def show_config() -> None:
    """Print the resolved Didit configuration with secrets masked."""
    async with async_session_maker() as db:
        config = await resolve_verification_config(DatabaseSettingsStore(db))

    for field, value in config.model_dump().items():
        if field in SECRET_FIELDS and value:
            value = "****"
        print(f"{field}: {value}")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Observer identity settings")
    parser.add_argument(
        "--hash-password",
        metavar="PASSWORD",
        help="Print a salt:hash value for OPERATOR_PASSWORD_HASH",
    )
    parser.add_argument(
        "--set",
        metavar="KEY=VALUE",
        nargs="+",
        help="Persist settings, e.g. didit_aml_check_enabled=true",
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Show the resolved Didit configuration",
    )

    args = parser.parse_args()

    if args.hash_password:
        print(CryptoPrimitives.hash_password(args.hash_password))
    if args.set:
        asyncio.run(set_settings(args.set))
    if args.show:
        asyncio.run(show_config())
    if not (args.hash_password or args.set or args.show):
        parser.print_help()


if __name__ == "__main__":
    main()
