"""
Client-side projection of a room.

Holds the last known room and player rows, applies server pushes by
version, and derives the time-based values (countdown remaining, auction
elapsed, local time bank) from the shared timestamps so nothing ticking
has to be pushed by the server.
"""

import logging
import time
from typing import Any, Callable, Optional

from shared.enums import MessageType, AuctionPhase, RemoveOnePhase, GameType


logger = logging.getLogger(__name__)


def _wall_ms() -> int:
    return int(time.time() * 1000)


def format_time(ms: int | None) -> str:
    """
    Format milliseconds as ``mm:ss.t``.

    >>> format_time(65430)
    '01:05.4'
    >>> format_time(-5)
    '00:00.0'
    """
    ms = max(0, int(ms or 0))
    minutes, rest = divmod(ms, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{minutes:02d}:{seconds:02d}.{millis // 100}"


class ClientGameView:
    """Local view of one room for one player."""

    def __init__(self, player_id: str, clock: Callable[[], int] = _wall_ms):
        self.player_id = player_id
        self._clock = clock

        self.room: Optional[dict[str, Any]] = None
        self.players: dict[str, dict[str, Any]] = {}

        # Server clock minus local clock, from the last push that carried it
        self.clock_offset = 0

        # Unconfirmed local press state, None when the row is authoritative
        self._optimistic_press: Optional[bool] = None

    # =========================================================================
    # Applying server messages
    # =========================================================================

    def apply_message(self, message: dict) -> bool:
        """
        Fold a server message into the view.

        Returns:
            True if anything visible changed
        """
        msg_type = message.get("type")
        data = message.get("data") or {}

        if msg_type == MessageType.ROOM_STATE.value:
            self._sync_clock(data.get("server_time"))
            changed = self.apply_room(data["room"])
            seen = set()
            for player in data.get("players", []):
                seen.add(player["id"])
                changed = self.apply_player(player) or changed
            for player_id in list(self.players):
                if player_id not in seen:
                    del self.players[player_id]
                    changed = True
            return changed

        if msg_type == MessageType.ROOM_UPDATED.value:
            self._sync_clock(data.get("server_time"))
            return self.apply_room(data["room"])

        if msg_type == MessageType.PLAYER_UPDATED.value:
            return self.apply_player(data["player"])

        if msg_type == MessageType.PLAYER_REMOVED.value:
            return self.players.pop(data.get("player_id"), None) is not None

        if msg_type == MessageType.ROOM_LEFT.value:
            self.clear()
            return True

        return False

    def apply_room(self, room: dict) -> bool:
        """Take a room row unless it is older than the one held."""
        if self.room is not None:
            if room.get("id") != self.room.get("id"):
                self.players.clear()
            elif room.get("version", 0) < self.room.get("version", 0):
                logger.debug(f"Dropped stale room v{room.get('version')}")
                return False
            elif room.get("version", 0) == self.room.get("version", 0):
                return False
        self.room = room
        return True

    def apply_player(self, player: dict) -> bool:
        """Take a player row unless it is older than the one held."""
        if self.room is not None and player.get("room_id") not in (None, self.room.get("id")):
            return False
        current = self.players.get(player["id"])
        if current is not None and player.get("version", 0) <= current.get("version", 0):
            return False
        self.players[player["id"]] = player
        return True

    def clear(self) -> None:
        self.room = None
        self.players.clear()
        self._optimistic_press = None

    def _sync_clock(self, server_time: int | None) -> None:
        if server_time is not None:
            self.clock_offset = int(server_time) - self._clock()

    # =========================================================================
    # Accessors
    # =========================================================================

    def now(self) -> int:
        """Current time on the server's clock."""
        return self._clock() + self.clock_offset

    @property
    def game_type(self) -> Optional[GameType]:
        return GameType(self.room["game_type"]) if self.room else None

    @property
    def state(self) -> dict:
        return (self.room or {}).get("game_state") or {}

    @property
    def settings(self) -> dict:
        return (self.room or {}).get("game_settings") or {}

    @property
    def phase(self) -> str:
        return self.state.get("gamePhase", "")

    @property
    def me(self) -> Optional[dict]:
        return self.players.get(self.player_id)

    @property
    def my_data(self) -> dict:
        return (self.me or {}).get("player_data") or {}

    @property
    def is_host(self) -> bool:
        return bool(self.room) and self.room.get("host_id") == self.player_id

    def ordered_players(self) -> list[dict]:
        return sorted(self.players.values(), key=lambda p: p.get("joined_at", 0))

    # =========================================================================
    # Local timers
    # =========================================================================

    def countdown_remaining(self) -> int:
        """Milliseconds left in the countdown, 0 outside it."""
        start = self.state.get("countdownStartTime")
        if self.phase != AuctionPhase.COUNTDOWN.value or start is None:
            return 0
        duration = self.settings.get("countdownDuration", 0)
        return max(0, duration - (self.now() - start))

    def auction_elapsed(self) -> int:
        """Forward-counting time since the auction began, 0 outside it."""
        start = self.state.get("auctionStartTime")
        if self.phase != AuctionPhase.AUCTION.value or start is None:
            return 0
        return max(0, self.now() - start)

    def local_time_bank(self) -> int:
        """My bank as it will be if I release now."""
        bank = self.my_data.get("timeBank", 0)
        if self.is_button_pressed and not self.my_data.get("hasCompletedBid"):
            bank -= self.auction_elapsed()
        return max(0, bank)

    def should_auto_release(self) -> bool:
        """True while I am holding an auction with nothing left in the bank."""
        return (
            self.phase == AuctionPhase.AUCTION.value
            and self.is_button_pressed
            and not self.my_data.get("hasCompletedBid")
            and self.local_time_bank() == 0
        )

    # =========================================================================
    # Optimistic control state
    # =========================================================================

    @property
    def is_button_pressed(self) -> bool:
        confirmed = bool(self.my_data.get("isButtonPressed"))
        if self._optimistic_press is not None:
            if self._optimistic_press != confirmed:
                return self._optimistic_press
            # The row caught up with the guess
            self._optimistic_press = None
        return confirmed

    def set_pressed(self, pressed: bool) -> None:
        """Show the control as pressed/released before the server confirms."""
        self._optimistic_press = pressed

    def revert(self) -> None:
        """Drop the optimistic guess; the last confirmed row shows again."""
        self._optimistic_press = None

    # =========================================================================
    # Remove One helpers
    # =========================================================================

    def available_cards(self) -> list[int]:
        data = self.my_data
        blocked = set(data.get("holdingBox", [])) | set(data.get("tempUnavailable", []))
        return [card for card in data.get("deck", []) if card not in blocked]

    def awaiting_my_cards(self) -> bool:
        return (
            self.phase == RemoveOnePhase.CARD_SELECTION.value
            and not self.my_data.get("isEliminated")
            and not self.my_data.get("hasSubmittedCards")
        )
