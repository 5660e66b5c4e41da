"""
Persistence layer for the party games server.

Provides SQLite-based storage for rooms, players and the action log,
with row-level change subscriptions.
"""

from server.persistence.database import (
    Database,
    get_database,
    init_database
)
from server.persistence.models import (
    RoomRecord,
    PlayerRecord,
    ActionRecord
)
from server.persistence.store import (
    RecordStore,
    ChangeEvent,
    Subscription,
    StoreWriteFailure
)
from server.persistence.repository import RoomRepository


__all__ = [
    # Database
    "Database",
    "get_database",
    "init_database",

    # Models
    "RoomRecord",
    "PlayerRecord",
    "ActionRecord",

    # Store
    "RecordStore",
    "ChangeEvent",
    "Subscription",
    "StoreWriteFailure",

    # Repository
    "RoomRepository"
]
