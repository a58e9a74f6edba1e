from __future__ import annotations

from typing import Any

from dripsim.enums import LogCategory
from infrastructure.database.ops.event_log import EventLogOperations
from infrastructure.utils.structured_fields import dump_json_field, parse_json_object

DEFAULT_MAX_ENTRIES = 100


class EventLogRepository:
    """Facade over the capped irrigation / moisture log."""

    def __init__(self, backend: EventLogOperations, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._backend = backend
        self._max_entries = int(max_entries)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def append(self, category: LogCategory, payload: dict[str, Any], *, created_at: str) -> int:
        return self._backend.insert_event_log(
            category.value,
            dump_json_field(payload) or "{}",
            created_at,
            max_entries=self._max_entries,
        )

    def recent(self, category: LogCategory | None = None, limit: int = 20) -> list[dict[str, Any]]:
        """Newest first."""
        rows = self._backend.fetch_event_log(category.value if category else None, limit=limit)
        entries = []
        for row in rows:
            payload = parse_json_object(row["payload"]) or {}
            entries.append(
                {
                    "id": row["id"],
                    "category": row["category"],
                    "created_at": row["created_at"],
                    **payload,
                }
            )
        return entries

    def count(self, category: LogCategory) -> int:
        return self._backend.count_event_log(category.value)
