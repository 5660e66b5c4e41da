"""
Per-viewer redaction of room and player rows.

Other players' bids and time banks are never revealed; only the round
winner and winning bid are public. Card picks stay hidden until the phase
in which everyone has committed.
"""
from typing import Any

from shared.enums import GameType, AuctionPhase, RemoveOnePhase

_HIDDEN_AUCTION_FIELDS = ("timeBank", "bidTime", "totalTimeUsed", "buttonPressTime", "lastAction")
_LIVE_AUCTION_FIELDS = ("isButtonPressed", "hasOptedOut", "hasCompletedBid")
_LIVE_AUCTION_PHASES = (AuctionPhase.COUNTDOWN.value, AuctionPhase.AUCTION.value)

_HIDDEN_CARD_FIELDS = ("deck", "holdingBox", "tempUnavailable")


def redact_player(
    player: dict[str, Any],
    viewer_id: str | None,
    game_type: GameType,
    game_phase: str
) -> dict[str, Any]:
    """Return a copy of a player row as ``viewer_id`` may see it."""
    if player["id"] == viewer_id:
        return player

    data = dict(player.get("player_data") or {})
    if game_type.is_auction:
        for key in _HIDDEN_AUCTION_FIELDS:
            data.pop(key, None)
        if game_phase in _LIVE_AUCTION_PHASES:
            for key in _LIVE_AUCTION_FIELDS:
                data.pop(key, None)
    else:
        for key in _HIDDEN_CARD_FIELDS:
            data.pop(key, None)
        if game_phase == RemoveOnePhase.CARD_SELECTION.value:
            data.pop("selectedCards", None)
        if game_phase in (RemoveOnePhase.CARD_SELECTION.value, RemoveOnePhase.FINAL_CHOICE.value):
            data.pop("finalChoice", None)
            data.pop("finalCard", None)

    redacted = dict(player)
    redacted["player_data"] = data
    return redacted


def redact_room(room: dict[str, Any], players: list[dict[str, Any]], viewer_id: str | None) -> list[dict[str, Any]]:
    """Redact every player row of a room for one viewer."""
    game_type = GameType(room["game_type"])
    game_phase = (room.get("game_state") or {}).get("gamePhase", "")
    return [redact_player(p, viewer_id, game_type, game_phase) for p in players]
