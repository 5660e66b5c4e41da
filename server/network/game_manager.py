"""
Room manager for handling multiple rooms.

Manages the room lifecycle: creation, joining, leaving and recovery of
active rooms after a restart. Each room gets one coordinator, which is the
only thing allowed to change its phase record.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from server.game_engine import (
    RoomCoordinator,
    AuctionCoordinator,
    RemoveOneCoordinator,
    PresenceTracker,
    ValidationResult,
    ActionResult,
    SettingsError,
    parse_settings,
    initial_state,
    initial_player_data,
    now_ms,
)
from server.game_engine.variants import load_settings, parse_state
from server.persistence import RoomRepository, RoomRecord, get_database, RecordStore
from shared.constants import ROOM_CODE_LENGTH, ROOM_CODE_ALPHABET
from shared.enums import GameType, ActionType


logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 20


def generate_room_code(rng: random.Random | None = None) -> str:
    """Random short code, e.g. ``K3ZQ9A``."""
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


@dataclass
class ManagedRoom:
    """A live room and its coordinator."""
    room_id: int
    room_code: str
    game_type: GameType
    coordinator: RoomCoordinator
    created_at: datetime = field(default_factory=datetime.now)


class RoomManager:
    """
    Tracks live rooms and which room each player is in.

    Methods return ``(ValidationResult, ManagedRoom | None)`` tuples; store
    failures propagate as StoreWriteFailure for the caller to report.
    """

    def __init__(
        self,
        repository: RoomRepository | None = None,
        presence: PresenceTracker | None = None,
        clock: Callable[[], int] = now_ms,
        code_generator: Callable[[], str] = generate_room_code
    ):
        # room_id -> ManagedRoom
        self._rooms: dict[int, ManagedRoom] = {}

        # player_id -> room_id (for quick lookup)
        self._player_rooms: dict[str, int] = {}

        self._repository = repository or RoomRepository(RecordStore(get_database()))
        self._presence = presence or PresenceTracker()
        self._clock = clock
        self._code_generator = code_generator

    @property
    def repository(self) -> RoomRepository:
        return self._repository

    # =========================================================================
    # Room Creation
    # =========================================================================

    def create_room(
        self,
        player_id: str,
        player_name: str,
        game_type: str,
        settings: dict | None = None
    ) -> tuple[ValidationResult, ManagedRoom | None]:
        """
        Create a room and add its creator as host.

        Args:
            player_id: Client-generated id of the creator
            player_name: Display name of the creator
            game_type: One of the GameType values
            settings: Room settings, validated here and never again

        Returns:
            Tuple of (result, ManagedRoom or None)
        """
        if self.get_room_for_player(player_id):
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "You are already in a room"), None

        try:
            variant = GameType(game_type)
        except ValueError:
            return ValidationResult.failure(ActionResult.INVALID_ACTION, f"Unknown game type: {game_type}"), None

        try:
            parsed = parse_settings(variant, settings)
        except SettingsError as e:
            return ValidationResult.failure(ActionResult.INVALID_ACTION, str(e)), None

        room_code = self._unused_room_code()
        room = self._repository.create_room(
            room_code=room_code,
            host_id=player_id,
            game_type=variant.value,
            game_settings=parsed.to_dict(),
            game_state=initial_state(variant).to_dict(),
        )
        self._repository.create_player(
            player_id=player_id,
            room_id=room.id,
            player_name=player_name,
            player_data=initial_player_data(variant, parsed).to_dict(),
            now=self._clock(),
            is_host=True,
        )

        managed = self._register(room)
        self._player_rooms[player_id] = room.id
        self._repository.log_action(room.id, player_id, ActionType.JOIN.value, {"host": True}, self._clock())

        logger.info(f"Room {room_code} ({variant.value}) created by {player_name}")
        return ValidationResult.success(f"Room {room_code} created"), managed

    def _unused_room_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self._code_generator()
            if not self._repository.room_code_in_use(code):
                return code
        raise RuntimeError("Could not find an unused room code")

    def _register(self, room: RoomRecord) -> ManagedRoom:
        managed = self._rooms.get(room.id)
        if managed:
            return managed
        game_type = GameType(room.game_type)
        coordinator_class = AuctionCoordinator if game_type.is_auction else RemoveOneCoordinator
        managed = ManagedRoom(
            room_id=room.id,
            room_code=room.room_code,
            game_type=game_type,
            coordinator=coordinator_class(
                room.id, game_type, self._repository, self._presence, self._clock
            ),
        )
        self._rooms[room.id] = managed
        return managed

    # =========================================================================
    # Joining and Leaving
    # =========================================================================

    def join_room(
        self,
        player_id: str,
        room_code: str,
        player_name: str
    ) -> tuple[ValidationResult, ManagedRoom | None]:
        """
        Add a player to an active room by code.

        Fails with ROOM_NOT_FOUND, GAME_ALREADY_STARTED or ROOM_FULL.
        """
        room = self._repository.find_active_room((room_code or "").strip().upper())
        if room is None:
            return ValidationResult.failure(ActionResult.ROOM_NOT_FOUND, "Room not found"), None

        current = self.get_room_for_player(player_id)
        if current:
            if current.room_id == room.id:
                self._repository.touch_heartbeat(player_id, self._clock())
                return ValidationResult.success("Rejoined room"), current
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "You are already in another room"), None

        game_type = GameType(room.game_type)
        if parse_state(game_type, room.game_state).game_started:
            return ValidationResult.failure(ActionResult.GAME_ALREADY_STARTED, "Game already started"), None

        game_settings = load_settings(game_type, room.game_settings)
        if len(self._repository.get_players(room.id)) >= game_settings.max_players:
            return ValidationResult.failure(ActionResult.ROOM_FULL, "Room is full"), None

        self._repository.create_player(
            player_id=player_id,
            room_id=room.id,
            player_name=player_name,
            player_data=initial_player_data(game_type, game_settings).to_dict(),
            now=self._clock(),
        )
        managed = self._register(room)
        self._player_rooms[player_id] = room.id
        self._repository.log_action(room.id, player_id, ActionType.JOIN.value, None, self._clock())

        logger.info(f"Player {player_name} ({player_id}) joined room {room.room_code}")
        return ValidationResult.success(f"Joined room {room.room_code}"), managed

    def leave_room(self, player_id: str) -> tuple[ValidationResult, ManagedRoom | None]:
        """
        Remove a player from their room.

        A departing host hands over to the earliest-joined remaining player;
        the last player out deactivates the room.
        """
        managed = self.get_room_for_player(player_id)
        if not managed:
            return ValidationResult.failure(ActionResult.NOT_IN_ROOM, "You are not in a room"), None

        room = self._repository.get_room(managed.room_id)
        self._repository.delete_player(player_id)
        self._player_rooms.pop(player_id, None)
        self._repository.log_action(managed.room_id, player_id, ActionType.LEAVE.value, None, self._clock())

        remaining = self._repository.get_players(managed.room_id)
        if not remaining:
            self._repository.deactivate_room(managed.room_id)
            self._rooms.pop(managed.room_id, None)
            rounds = self._repository.get_actions(managed.room_id, ActionType.ROUND_RESULT.value)
            logger.info(f"Room {managed.room_code} is empty and was closed after {len(rounds)} scored rounds")
        elif room and room.host_id == player_id:
            connected = self._presence.connected(remaining, self._clock())
            new_host = (connected or remaining)[0]
            managed.coordinator.assign_host(new_host.id)

        logger.info(f"Player {player_id} left room {managed.room_code}")
        return ValidationResult.success("Left room"), managed

    # =========================================================================
    # Presence
    # =========================================================================

    def heartbeat(self, player_id: str) -> ValidationResult:
        managed = self.get_room_for_player(player_id)
        if not managed:
            return ValidationResult.failure(ActionResult.NOT_IN_ROOM, "You are not in a room")
        now = self._clock()
        self._repository.touch_heartbeat(player_id, now)
        self._repository.log_action(managed.room_id, player_id, ActionType.HEARTBEAT.value, None, now)
        return ValidationResult.success()

    def mark_disconnected(self, player_id: str) -> None:
        """Flag a player offline as soon as their socket closes."""
        if self.get_room_for_player(player_id):
            self._repository.set_connected(player_id, False)

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_room(self, room_id: int) -> ManagedRoom | None:
        return self._rooms.get(room_id)

    def get_room_for_player(self, player_id: str) -> ManagedRoom | None:
        """Get the room a player is in, falling back to the store."""
        room_id = self._player_rooms.get(player_id)
        if room_id is not None and room_id in self._rooms:
            return self._rooms[room_id]

        player = self._repository.get_player(player_id)
        if player is None:
            self._player_rooms.pop(player_id, None)
            return None
        room = self._repository.get_room(player.room_id)
        if room is None or not room.is_active:
            return None
        self._player_rooms[player_id] = room.id
        return self._register(room)

    def list_rooms(self) -> list[ManagedRoom]:
        return list(self._rooms.values())

    def load_active_rooms(self) -> int:
        """Register coordinators for rooms that survived a restart."""
        rooms = self._repository.list_active_rooms()
        for room in rooms:
            self._register(room)
            for player in self._repository.get_players(room.id):
                self._player_rooms[player.id] = room.id
        if rooms:
            logger.info(f"Recovered {len(rooms)} active rooms")
        return len(rooms)

    def get_stats(self) -> dict[str, Any]:
        """Get room manager statistics."""
        by_type: dict[str, int] = {}
        for managed in self._rooms.values():
            by_type[managed.game_type.value] = by_type.get(managed.game_type.value, 0) + 1

        return {
            "total_rooms_in_memory": len(self._rooms),
            "rooms_by_type": by_type,
            "total_players_in_rooms": len(self._player_rooms),
        }
