"""
Data models for database operations.

These are simple dataclasses that map to database rows. The JSON payload
columns are decoded to plain dicts here; the game engine parses them into
variant-specific types.
"""

import json
from dataclasses import dataclass, field
from typing import Any


def _load_json(value: Any) -> dict:
    if value is None or value == "":
        return {}
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


@dataclass
class RoomRecord:
    """Database representation of a room."""
    id: int
    room_code: str
    host_id: str
    game_type: str
    game_settings: dict[str, Any] = field(default_factory=dict)
    game_state: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RoomRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            room_code=row["room_code"],
            host_id=row["host_id"],
            game_type=row["game_type"],
            game_settings=_load_json(row["game_settings"]),
            game_state=_load_json(row["game_state"]),
            is_active=bool(row["is_active"]),
            version=row["version"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "room_code": self.room_code,
            "host_id": self.host_id,
            "game_type": self.game_type,
            "game_settings": self.game_settings,
            "game_state": self.game_state,
            "is_active": self.is_active,
            "version": self.version,
        }


@dataclass
class PlayerRecord:
    """Database representation of a player in a room."""
    id: str
    room_id: int
    player_name: str
    is_host: bool = False
    is_connected: bool = True
    last_heartbeat: int = 0
    player_data: dict[str, Any] = field(default_factory=dict)
    joined_at: int = 0
    version: int = 1

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PlayerRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            room_id=row["room_id"],
            player_name=row["player_name"],
            is_host=bool(row["is_host"]),
            is_connected=bool(row["is_connected"]),
            last_heartbeat=row["last_heartbeat"],
            player_data=_load_json(row["player_data"]),
            joined_at=row["joined_at"],
            version=row["version"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "player_name": self.player_name,
            "is_host": self.is_host,
            "is_connected": self.is_connected,
            "last_heartbeat": self.last_heartbeat,
            "player_data": self.player_data,
            "joined_at": self.joined_at,
            "version": self.version,
        }


@dataclass
class ActionRecord:
    """Database representation of an action log entry."""
    id: int
    room_id: int
    player_id: str | None
    action_type: str
    action_data: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ActionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            room_id=row["room_id"],
            player_id=row["player_id"],
            action_type=row["action_type"],
            action_data=_load_json(row["action_data"]),
            created_at=row["created_at"],
        )
