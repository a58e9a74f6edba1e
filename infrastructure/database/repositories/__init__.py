"""Repository facades exposing typed accessors over low-level mixins."""

from infrastructure.database.repositories.event_log import EventLogRepository
from infrastructure.database.repositories.state import StateRepository

__all__ = [
    "EventLogRepository",
    "StateRepository",
]
