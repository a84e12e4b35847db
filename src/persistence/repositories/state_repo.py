"""State repository: the single persisted app state record."""

import json
from typing import Any, Dict, Optional, Tuple

import aiosqlite
import structlog

from src.core.exceptions import StorageError

log = structlog.get_logger(__name__)


class StateRepository:
    """Repository for the versioned app state record.

    Every operation opens its own connection, so the repository is safe
    to share across requests. Storage failures surface as StorageError.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def load(self, key: str) -> Optional[Tuple[int, Dict[str, Any]]]:
        """Return (version, record) stored under ``key``, or None."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT version, payload FROM app_state WHERE key = ?", (key,)
                )
                row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to load state '{key}': {e}") from e

        if not row:
            return None

        try:
            record = json.loads(row["payload"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored state '{key}' is not valid JSON") from e
        return row["version"], record

    async def save(self, key: str, version: int, record: Dict[str, Any]) -> None:
        """Insert or replace the record under ``key``."""
        payload = json.dumps(record)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO app_state (key, version, payload, updated_at) "
                    "VALUES (?, ?, ?, datetime('now')) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "version = excluded.version, payload = excluded.payload, "
                    "updated_at = excluded.updated_at",
                    (key, version, payload),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to save state '{key}': {e}") from e

        log.debug("state_saved", key=key, version=version, size=len(payload))

    async def delete(self, key: str) -> bool:
        """Delete the record under ``key``. Returns True if deleted."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM app_state WHERE key = ?", (key,))
                await db.commit()
                return cursor.rowcount > 0
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to delete state '{key}': {e}") from e
