"""
Heartbeat-based presence.
"""
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from server.config import settings
from server.persistence import PlayerRecord


def now_ms() -> int:
    """Wall-clock time in milliseconds, the unit of every stored timestamp."""
    return int(time.time() * 1000)


Clock = Callable[[], int]


@dataclass
class PresenceChange:
    """A player whose stored connected flag disagrees with their heartbeat."""
    player_id: str
    connected: bool


class PresenceTracker:
    """
    Derives "connected" from heartbeat freshness.

    The staleness window must exceed the heartbeat interval, otherwise a
    little network jitter would flap players offline.
    """

    def __init__(
        self,
        heartbeat_interval: float | None = None,
        stale_after: float | None = None
    ):
        self.heartbeat_interval = heartbeat_interval or settings.HEARTBEAT_INTERVAL
        self.stale_after = stale_after or settings.PRESENCE_STALE_AFTER
        if self.stale_after <= self.heartbeat_interval:
            raise ValueError("stale_after must be greater than heartbeat_interval")

    @property
    def stale_after_ms(self) -> int:
        return int(self.stale_after * 1000)

    def is_fresh(self, player: PlayerRecord, now: int) -> bool:
        return now - player.last_heartbeat <= self.stale_after_ms

    def is_connected(self, player: PlayerRecord, now: int) -> bool:
        """A player is connected while flagged so and heartbeating."""
        return player.is_connected and self.is_fresh(player, now)

    def connected(self, players: Iterable[PlayerRecord], now: int) -> list[PlayerRecord]:
        """Filter to players with a fresh heartbeat."""
        return [p for p in players if self.is_connected(p, now)]

    def sweep(self, players: Iterable[PlayerRecord], now: int) -> list[PresenceChange]:
        """
        List flagged-connected players whose heartbeat went stale.

        Only a heartbeat sets the flag back, so sweeps never reconnect anyone.
        """
        return [
            PresenceChange(player.id, False)
            for player in players
            if player.is_connected and not self.is_fresh(player, now)
        ]
