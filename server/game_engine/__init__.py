"""
Game engine package.
"""
from .variants import (
    SettingsError,
    AuctionSettings,
    AuctionState,
    AuctionPlayerData,
    RemoveOneSettings,
    RemoveOneState,
    RemoveOnePlayerData,
    parse_settings,
    initial_state,
    initial_player_data,
)
from .resolver import (
    AuctionOutcome,
    CardOutcome,
    CardRoundDecision,
    resolve_auction,
    resolve_unique_minimum,
    decide_card_round,
    pick_elimination,
    rank_players,
)
from .presence import PresenceTracker, now_ms
from .coordinator import RoomCoordinator, RoomSnapshot, ValidationResult, ActionResult
from .auction import AuctionCoordinator
from .remove_one import RemoveOneCoordinator
from .visibility import redact_player, redact_room

__all__ = [
    "SettingsError",
    "AuctionSettings",
    "AuctionState",
    "AuctionPlayerData",
    "RemoveOneSettings",
    "RemoveOneState",
    "RemoveOnePlayerData",
    "parse_settings",
    "initial_state",
    "initial_player_data",
    "AuctionOutcome",
    "CardOutcome",
    "CardRoundDecision",
    "resolve_auction",
    "resolve_unique_minimum",
    "decide_card_round",
    "pick_elimination",
    "rank_players",
    "PresenceTracker",
    "now_ms",
    "RoomCoordinator",
    "RoomSnapshot",
    "ValidationResult",
    "ActionResult",
    "AuctionCoordinator",
    "RemoveOneCoordinator",
    "redact_player",
    "redact_room",
]
