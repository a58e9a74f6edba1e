"""Low-level SQL mixins composed into SQLiteDatabaseHandler."""

from infrastructure.database.ops.event_log import EventLogOperations
from infrastructure.database.ops.state import StateOperations

__all__ = [
    "EventLogOperations",
    "StateOperations",
]
