"""
Repository for room, player and action-log persistence.

Wraps the generic record store with typed operations used by the
room manager and the coordinators.
"""

import logging
from typing import Any, Callable

from server.persistence.models import RoomRecord, PlayerRecord, ActionRecord
from server.persistence.store import RecordStore, ChangeEvent, Subscription, StoreWriteFailure


logger = logging.getLogger(__name__)


class RoomRepository:
    """
    Handles all persistence operations for rooms and their players.

    Usage:
        repo = RoomRepository(RecordStore(db))
        room = repo.create_room("ABC123", host_id, "timeAuction", settings, state)
        players = repo.get_players(room.id)
    """

    def __init__(self, store: RecordStore):
        self.store = store

    # =========================================================================
    # Room Operations
    # =========================================================================

    def create_room(
        self,
        room_code: str,
        host_id: str,
        game_type: str,
        game_settings: dict[str, Any],
        game_state: dict[str, Any]
    ) -> RoomRecord:
        """Insert a new active room and return it."""
        row = self.store.create("rooms", {
            "room_code": room_code,
            "host_id": host_id,
            "game_type": game_type,
            "game_settings": game_settings,
            "game_state": game_state,
            "is_active": True,
        })
        return RoomRecord.from_row(row)

    def get_room(self, room_id: int) -> RoomRecord | None:
        row = self.store.get("rooms", room_id)
        return RoomRecord.from_row(row) if row else None

    def find_active_room(self, room_code: str) -> RoomRecord | None:
        """Look up an active room by its shareable code."""
        rows = self.store.query("rooms", {"room_code": room_code, "is_active": True})
        return RoomRecord.from_row(rows[0]) if rows else None

    def room_code_in_use(self, room_code: str) -> bool:
        return self.find_active_room(room_code) is not None

    def list_active_rooms(self) -> list[RoomRecord]:
        rows = self.store.query("rooms", {"is_active": True}, order_by="id")
        return [RoomRecord.from_row(row) for row in rows]

    def update_game_state(
        self,
        room_id: int,
        game_state: dict[str, Any],
        expected_version: int | None = None
    ) -> bool:
        """
        Replace a room's phase record.

        Returns False when ``expected_version`` no longer matches, meaning
        another transition already landed.
        """
        return self.store.update(
            "rooms", room_id, {"game_state": game_state}, expected_version=expected_version
        )

    def update_host(self, room_id: int, host_id: str) -> bool:
        return self.store.update("rooms", room_id, {"host_id": host_id})

    def deactivate_room(self, room_id: int) -> bool:
        """Soft-delete a room."""
        return self.store.update("rooms", room_id, {"is_active": False})

    # =========================================================================
    # Player Operations
    # =========================================================================

    def create_player(
        self,
        player_id: str,
        room_id: int,
        player_name: str,
        player_data: dict[str, Any],
        now: int,
        is_host: bool = False
    ) -> PlayerRecord:
        """Insert a player row with a client-generated id."""
        row = self.store.create("players", {
            "id": player_id,
            "room_id": room_id,
            "player_name": player_name,
            "is_host": is_host,
            "is_connected": True,
            "last_heartbeat": now,
            "player_data": player_data,
            "joined_at": now,
        })
        return PlayerRecord.from_row(row)

    def get_player(self, player_id: str) -> PlayerRecord | None:
        row = self.store.get("players", player_id)
        return PlayerRecord.from_row(row) if row else None

    def get_players(self, room_id: int) -> list[PlayerRecord]:
        """Get all players in a room, earliest joiner first."""
        rows = self.store.query("players", {"room_id": room_id}, order_by="joined_at")
        return [PlayerRecord.from_row(row) for row in rows]

    def update_player_data(
        self,
        player_id: str,
        player_data: dict[str, Any],
        expected_version: int | None = None
    ) -> bool:
        return self.store.update(
            "players", player_id, {"player_data": player_data}, expected_version=expected_version
        )

    def set_host_flag(self, player_id: str, is_host: bool) -> bool:
        return self.store.update("players", player_id, {"is_host": is_host})

    def touch_heartbeat(self, player_id: str, now: int) -> bool:
        """Record a heartbeat; a heartbeat always marks the player connected."""
        return self.store.update(
            "players", player_id, {"last_heartbeat": now, "is_connected": True}
        )

    def set_connected(self, player_id: str, connected: bool) -> bool:
        return self.store.update("players", player_id, {"is_connected": connected})

    def delete_player(self, player_id: str) -> bool:
        return self.store.delete("players", player_id)

    # =========================================================================
    # Action Log
    # =========================================================================

    def log_action(
        self,
        room_id: int,
        player_id: str | None,
        action_type: str,
        action_data: dict[str, Any] | None,
        now: int
    ) -> None:
        """
        Append to the action log.

        Best-effort: a failed write is logged and never propagates.
        """
        try:
            self.store.create("game_actions", {
                "room_id": room_id,
                "player_id": player_id,
                "action_type": action_type,
                "action_data": action_data or {},
                "created_at": now,
            })
        except StoreWriteFailure as e:
            logger.warning(f"Could not log {action_type} for room {room_id}: {e}")

    def get_actions(self, room_id: int, action_type: str | None = None) -> list[ActionRecord]:
        """
        Read back a room's action log, oldest first.

        Server-side only: entries carry every bid and time bank, so they
        are never sent to clients.
        """
        filters: dict[str, Any] = {"room_id": room_id}
        if action_type:
            filters["action_type"] = action_type
        rows = self.store.query("game_actions", filters, order_by="id")
        return [ActionRecord.from_row(row) for row in rows]

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe_rooms(
        self,
        callback: Callable[[ChangeEvent], None],
        room_id: int | None = None
    ) -> Subscription:
        filters = {"id": room_id} if room_id is not None else None
        return self.store.subscribe("rooms", callback, filters)

    def subscribe_players(
        self,
        callback: Callable[[ChangeEvent], None],
        room_id: int | None = None
    ) -> Subscription:
        filters = {"room_id": room_id} if room_id is not None else None
        return self.store.subscribe("players", callback, filters)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.store.unsubscribe(subscription)
