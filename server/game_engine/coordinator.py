"""
Room coordinator base: the single writer of a room's phase record.

Every phase-mutating operation for a room goes through one coordinator
owned by the server. Decisions are always taken on a freshly fetched
snapshot, and room writes are compare-and-swap on the room version so a
forced (timeout) transition and a normal one can never both land.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from server.persistence import RoomRepository, RoomRecord, PlayerRecord
from shared.enums import GameType, ActionType

from .presence import PresenceTracker, Clock, now_ms
from .resolver import rank_players
from .variants import load_settings, parse_state, parse_player_data, initial_player_data


logger = logging.getLogger(__name__)


class ActionResult(Enum):
    """Result of attempting an action."""
    SUCCESS = auto()
    ROOM_NOT_FOUND = auto()
    ROOM_FULL = auto()
    NOT_HOST = auto()
    ALREADY_SUBMITTED = auto()
    STORE_WRITE_FAILURE = auto()
    GAME_ALREADY_STARTED = auto()
    GAME_NOT_STARTED = auto()
    NOT_IN_ROOM = auto()
    INVALID_PHASE = auto()
    INVALID_ACTION = auto()
    NOT_ENOUGH_PLAYERS = auto()
    PLAYER_ELIMINATED = auto()
    STALE_STATE = auto()


@dataclass
class ValidationResult:
    """Result of validating and applying an action."""
    valid: bool
    result: ActionResult
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.result == ActionResult.ALREADY_SUBMITTED

    @classmethod
    def success(cls, message: str = "", data: dict | None = None) -> "ValidationResult":
        return cls(valid=True, result=ActionResult.SUCCESS, message=message, data=data or {})

    @classmethod
    def failure(cls, result: ActionResult, message: str = "") -> "ValidationResult":
        return cls(valid=False, result=result, message=message)

    @classmethod
    def noop(cls, message: str = "Already submitted") -> "ValidationResult":
        return cls(valid=False, result=ActionResult.ALREADY_SUBMITTED, message=message)


@dataclass
class RoomSnapshot:
    """Everything a decision needs, read in one go."""
    room: RoomRecord
    settings: Any
    state: Any
    players: list[PlayerRecord]
    player_data: dict[str, Any]
    connected_ids: set[str]
    now: int

    def player(self, player_id: str) -> PlayerRecord | None:
        return next((p for p in self.players if p.id == player_id), None)

    def is_connected(self, player_id: str) -> bool:
        return player_id in self.connected_ids

    def survivors(self) -> list[str]:
        """Ids of players still in the game, in join order."""
        return [p.id for p in self.players if not self.player_data[p.id].is_eliminated]


class RoomCoordinator:
    """
    Shared phase-machine plumbing for one room.

    Subclasses implement the variant rules:
        _start_state, _evaluate, _advance_round, _score_key
    """

    # Phases a host "continue" may leave
    results_phases: tuple = ()

    def __init__(
        self,
        room_id: int,
        game_type: GameType,
        repository: RoomRepository,
        presence: PresenceTracker | None = None,
        clock: Clock = now_ms
    ):
        self.room_id = room_id
        self.game_type = game_type
        self.repository = repository
        self.presence = presence or PresenceTracker()
        self.clock = clock
        self._processing = False

    # =========================================================================
    # Snapshot and writes
    # =========================================================================

    def snapshot(self) -> RoomSnapshot | None:
        """Re-fetch the room and all its players."""
        room = self.repository.get_room(self.room_id)
        if room is None or not room.is_active:
            return None
        now = self.clock()
        players = self.repository.get_players(self.room_id)
        return RoomSnapshot(
            room=room,
            settings=load_settings(self.game_type, room.game_settings),
            state=parse_state(self.game_type, room.game_state),
            players=players,
            player_data={p.id: parse_player_data(self.game_type, p.player_data) for p in players},
            connected_ids={p.id for p in self.presence.connected(players, now)},
            now=now,
        )

    def _write_state(self, snapshot: RoomSnapshot, state) -> bool:
        """
        Compare-and-swap the phase record against the snapshot's version.

        Returns False when another transition got there first.
        """
        previous = snapshot.state.game_phase
        written = self.repository.update_game_state(
            self.room_id, state.to_dict(), expected_version=snapshot.room.version
        )
        if not written:
            logger.debug(
                f"Room {snapshot.room.room_code}: stale snapshot v{snapshot.room.version}, "
                f"transition to {state.game_phase.value} skipped"
            )
            return False

        snapshot.room.version += 1
        snapshot.state = state
        if state.game_phase != previous:
            logger.info(
                f"Room {snapshot.room.room_code} round {state.current_round}: "
                f"{previous.value} -> {state.game_phase.value}"
            )
            self._log(None, ActionType.PHASE_CHANGE, {
                "from": previous.value,
                "to": state.game_phase.value,
                "round": state.current_round,
            })
        return True

    def _write_player(self, snapshot: RoomSnapshot, player_id: str, data, guarded: bool = False) -> bool:
        """Store a player payload; ``guarded`` makes it compare-and-swap."""
        player = snapshot.player(player_id)
        expected = player.version if guarded and player else None
        written = self.repository.update_player_data(player_id, data.to_dict(), expected_version=expected)
        if written:
            snapshot.player_data[player_id] = data
            if player:
                player.version += 1
        return written

    def _log(self, player_id: str | None, action_type: ActionType, data: dict | None = None) -> None:
        self.repository.log_action(self.room_id, player_id, action_type.value, data, self.clock())

    # =========================================================================
    # Guards
    # =========================================================================

    def _load(self, player_id: str) -> tuple[RoomSnapshot | None, ValidationResult | None]:
        snapshot = self.snapshot()
        if snapshot is None:
            return None, ValidationResult.failure(ActionResult.ROOM_NOT_FOUND, "Room not found")
        if snapshot.player(player_id) is None:
            return None, ValidationResult.failure(ActionResult.NOT_IN_ROOM, "You are not in this room")
        return snapshot, None

    def _require_host(self, snapshot: RoomSnapshot, player_id: str) -> ValidationResult | None:
        if snapshot.room.host_id != player_id:
            return ValidationResult.failure(ActionResult.NOT_HOST, "Only the host can do that")
        return None

    # =========================================================================
    # Host-only operations
    # =========================================================================

    def start_game(self, player_id: str) -> ValidationResult:
        """Reset every player's payload and enter the first round."""
        snapshot, error = self._load(player_id)
        if error:
            return error
        error = self._require_host(snapshot, player_id)
        if error:
            return error
        if snapshot.state.game_started:
            return ValidationResult.failure(ActionResult.GAME_ALREADY_STARTED, "Game already started")
        if len(snapshot.players) < snapshot.settings.min_players:
            return ValidationResult.failure(
                ActionResult.NOT_ENOUGH_PLAYERS,
                f"Need at least {snapshot.settings.min_players} players"
            )

        if not self._write_state(snapshot, self._start_state(snapshot)):
            return ValidationResult.failure(ActionResult.STALE_STATE, "Room changed, try again")

        for player in snapshot.players:
            self._write_player(snapshot, player.id, initial_player_data(self.game_type, snapshot.settings))

        logger.info(f"Room {snapshot.room.room_code} started with {len(snapshot.players)} players")
        return ValidationResult.success("Game started")

    def continue_to_next_round(self, player_id: str) -> ValidationResult:
        """Leave the results phase for the next round or game over."""
        snapshot, error = self._load(player_id)
        if error:
            return error
        error = self._require_host(snapshot, player_id)
        if error:
            return error
        if snapshot.state.game_phase not in self.results_phases:
            return ValidationResult.failure(ActionResult.INVALID_PHASE, "Round results are not showing")

        if not self._advance_round(snapshot):
            return ValidationResult.failure(ActionResult.STALE_STATE, "Room changed, try again")
        return ValidationResult.success(f"Now {snapshot.state.game_phase.value}")

    def transfer_host(self, player_id: str, new_host_id: str) -> ValidationResult:
        snapshot, error = self._load(player_id)
        if error:
            return error
        error = self._require_host(snapshot, player_id)
        if error:
            return error
        if snapshot.player(new_host_id) is None:
            return ValidationResult.failure(ActionResult.NOT_IN_ROOM, "Player not in room")
        if new_host_id == player_id:
            return ValidationResult.noop("Already host")

        self._reassign_host(snapshot, new_host_id)
        return ValidationResult.success("Host transferred", {"new_host_id": new_host_id})

    def assign_host(self, new_host_id: str) -> bool:
        """Make ``new_host_id`` host without checking who asked."""
        snapshot = self.snapshot()
        if snapshot is None or snapshot.player(new_host_id) is None:
            return False
        if snapshot.room.host_id != new_host_id:
            self._reassign_host(snapshot, new_host_id)
        return True

    def _reassign_host(self, snapshot: RoomSnapshot, new_host_id: str) -> None:
        old_host_id = snapshot.room.host_id
        if self.repository.update_host(self.room_id, new_host_id):
            snapshot.room.version += 1
        snapshot.room.host_id = new_host_id
        for player in snapshot.players:
            is_host = player.id == new_host_id
            if player.is_host != is_host and self.repository.set_host_flag(player.id, is_host):
                player.is_host = is_host
                player.version += 1
        self._log(new_host_id, ActionType.HOST_CHANGE, {"from": old_host_id, "to": new_host_id})
        logger.info(f"Room {snapshot.room.room_code}: host {old_host_id} -> {new_host_id}")

    def migrate_host(self, snapshot: RoomSnapshot) -> str | None:
        """
        Hand host duties to the earliest-joined connected player when the
        host is gone. Returns the new host id, if any.
        """
        if snapshot.is_connected(snapshot.room.host_id):
            return None
        candidates = [p for p in snapshot.players if snapshot.is_connected(p.id)]
        if not candidates:
            return None
        new_host = candidates[0]
        self._reassign_host(snapshot, new_host.id)
        return new_host.id

    # =========================================================================
    # Polling
    # =========================================================================

    def tick(self) -> bool:
        """
        Run one evaluation pass: presence sweep, host migration and the
        phase rules. Safe to call repeatedly; returns True if a
        transition was written.
        """
        if self._processing:
            return False
        self._processing = True
        try:
            snapshot = self.snapshot()
            if snapshot is None:
                return False

            for change in self.presence.sweep(snapshot.players, snapshot.now):
                if self.repository.set_connected(change.player_id, change.connected):
                    player = snapshot.player(change.player_id)
                    player.is_connected = change.connected
                    player.version += 1
                logger.info(f"Room {snapshot.room.room_code}: player {change.player_id} went stale")

            self.migrate_host(snapshot)

            if not snapshot.state.game_started:
                return False
            return self._evaluate(snapshot)
        finally:
            self._processing = False

    def _timed_out(self, snapshot: RoomSnapshot) -> bool:
        timeout = snapshot.state.phase_timeout
        return timeout is not None and snapshot.now > timeout

    # =========================================================================
    # Standings
    # =========================================================================

    def standings(self, snapshot: RoomSnapshot | None = None) -> list[dict[str, Any]]:
        """Players best first."""
        snapshot = snapshot or self.snapshot()
        if snapshot is None:
            return []
        names = {p.id: p.player_name for p in snapshot.players}
        scores = {pid: self._score_key(data) for pid, data in snapshot.player_data.items()}
        return [
            {"player_id": pid, "player_name": names[pid], "score": list(scores[pid])}
            for pid in rank_players(scores)
        ]

    # =========================================================================
    # Variant hooks
    # =========================================================================

    def _start_state(self, snapshot: RoomSnapshot):
        raise NotImplementedError

    def _evaluate(self, snapshot: RoomSnapshot) -> bool:
        raise NotImplementedError

    def _advance_round(self, snapshot: RoomSnapshot) -> bool:
        raise NotImplementedError

    def _score_key(self, data) -> tuple:
        raise NotImplementedError
