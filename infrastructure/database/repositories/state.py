from __future__ import annotations

import sqlite3
from typing import Any

from dripsim.domain.exceptions import CorruptedStateError, RepositoryError
from infrastructure.database.ops.state import StateOperations
from infrastructure.utils.structured_fields import dump_json_field, parse_json_object


class StateRepository:
    """Facade providing typed access to persisted entity snapshots."""

    def __init__(self, backend: StateOperations) -> None:
        self._backend = backend

    def save(self, name: str, payload: dict[str, Any], *, updated_at: str) -> None:
        encoded = dump_json_field(payload)
        if encoded is None:
            raise RepositoryError(f"Snapshot for {name!r} is not JSON-serializable")
        try:
            self._backend.save_entity_state(name, encoded, updated_at)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to persist {name!r} snapshot") from exc

    def load(self, name: str) -> dict[str, Any] | None:
        """Return the stored snapshot, or None if nothing was saved yet.

        Raises:
            CorruptedStateError: if a row exists but is not a JSON object.
        """
        row = self._backend.load_entity_state(name)
        if row is None:
            return None
        parsed = parse_json_object(row.get("payload"))
        if not isinstance(parsed, dict):
            raise CorruptedStateError(name, row.get("payload"), "snapshot is not a JSON object")
        return parsed

    def delete(self, name: str) -> bool:
        return self._backend.delete_entity_state(name)
