from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class EventLogOperations:
    """Capped event log helpers shared across database handlers."""

    def insert_event_log(self, category: str, payload: str, created_at: str, *, max_entries: int) -> int:
        """Append an entry and evict the oldest ones beyond ``max_entries`` for the category."""
        with self.connection() as db:
            cursor = db.execute(
                "INSERT INTO EventLog (category, payload, created_at) VALUES (?, ?, ?)",
                (category, payload, created_at),
            )
            entry_id = int(cursor.lastrowid)
            db.execute(
                """
                DELETE FROM EventLog
                WHERE category = ?
                  AND id NOT IN (
                      SELECT id FROM EventLog WHERE category = ? ORDER BY id DESC LIMIT ?
                  )
                """,
                (category, category, int(max_entries)),
            )
        return entry_id

    def fetch_event_log(self, category: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        db = self.get_db()
        if category:
            rows = db.execute(
                "SELECT id, category, payload, created_at FROM EventLog WHERE category = ? ORDER BY id DESC LIMIT ?",
                (category, int(limit)),
            ).fetchall()
        else:
            rows = db.execute(
                "SELECT id, category, payload, created_at FROM EventLog ORDER BY id DESC LIMIT ?",
                (int(limit),),
            ).fetchall()
        return [dict(row) for row in rows]

    def count_event_log(self, category: str) -> int:
        db = self.get_db()
        row = db.execute("SELECT COUNT(*) FROM EventLog WHERE category = ?", (category,)).fetchone()
        return int(row[0]) if row else 0
