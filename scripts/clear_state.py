#!/usr/bin/env python3
"""Delete the persisted app state record (all sessions) from the database."""

import argparse
import asyncio
import sys
from pathlib import Path

import aiosqlite

from src.core.config import settings
from src.core.exceptions import StorageError
from src.persistence.repositories.state_repo import StateRepository


async def main() -> int:
    parser = argparse.ArgumentParser(description="Delete the persisted app state")
    parser.add_argument(
        "--db",
        default=str(settings.database_path),
        help=f"Database path (default: {settings.database_path})",
    )
    parser.add_argument(
        "--key",
        default=settings.storage_key,
        help=f"State record key (default: {settings.storage_key})",
    )
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args()

    db_path = Path(args.db)
    if not db_path.exists():
        print(f"Error: Database not found at {db_path}", file=sys.stderr)
        return 1

    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("SELECT COUNT(*) FROM app_state")
        row = await cur.fetchone()
    count = row[0] if row else 0
    print(f"Found {count} state record(s)")

    if not args.yes:
        confirm = input(f"Delete state record '{args.key}'? (yes/no): ")
        if confirm.lower() != "yes":
            print("Cancelled.")
            return 0

    try:
        deleted = await StateRepository(str(db_path)).delete(args.key)
    except StorageError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(f"✓ Deleted '{args.key}'" if deleted else f"No record stored under '{args.key}'")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
