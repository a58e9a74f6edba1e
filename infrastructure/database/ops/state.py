from __future__ import annotations

import logging
import sqlite3
from typing import Any

logger = logging.getLogger(__name__)


class StateOperations:
    """Entity snapshot helpers shared across database handlers."""

    def save_entity_state(self, name: str, payload: str, updated_at: str) -> None:
        try:
            with self.connection() as db:
                db.execute(
                    """
                    INSERT INTO EntityState (name, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (name, payload, updated_at),
                )
        except sqlite3.Error as exc:
            logger.error("Failed to save state for %s: %s", name, exc)
            raise

    def load_entity_state(self, name: str) -> dict[str, Any] | None:
        db = self.get_db()
        row = db.execute(
            "SELECT name, payload, updated_at FROM EntityState WHERE name = ?",
            (name,),
        ).fetchone()
        return dict(row) if row else None

    def delete_entity_state(self, name: str) -> bool:
        with self.connection() as db:
            cursor = db.execute("DELETE FROM EntityState WHERE name = ?", (name,))
            return cursor.rowcount > 0
