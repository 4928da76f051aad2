"""Database module."""

from decisionflow.db.database import close_database, get_db, init_database
from decisionflow.db.flow_store import (
    ConcurrentModificationError,
    FlowNotFoundError,
    FlowStore,
    flow_store,
)

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "flow_store",
    "FlowStore",
    "FlowNotFoundError",
    "ConcurrentModificationError",
]
