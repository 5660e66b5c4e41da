"""
Per-variant payload schemas.

A room's ``game_type`` selects which settings, state and player payload
classes apply. Payloads are stored as camelCase JSON; settings are
validated once when the room is created, state and player payloads are
parsed with defaults for any missing keys.
"""
from dataclasses import dataclass, field
from typing import Any

from server.config import settings as config
from shared.constants import (
    DEFAULT_AUCTION_ROUNDS, DEFAULT_TIME_BANK_MS, AUTO_ADVANCE_MS,
    BID_ROUNDING_MS, INITIAL_DECK, CARDS_PER_SELECTION,
    DEFAULT_REMOVE_ONE_ROUNDS, DEFAULT_SURVIVAL_ROUNDS, DEFAULT_DECK_RESET_ROUNDS,
    MIN_PLAYERS, MAX_PLAYERS,
)
from shared.enums import GameType, AuctionPhase, RemoveOnePhase


class SettingsError(ValueError):
    """Room settings failed validation at creation."""


def _check_players(min_players: int, max_players: int) -> None:
    if min_players < 1:
        raise SettingsError("minPlayers must be at least 1")
    if max_players < min_players:
        raise SettingsError("maxPlayers must not be below minPlayers")


# =============================================================================
# Time Auction
# =============================================================================

@dataclass
class AuctionSettings:
    """Write-once configuration for both time-auction variants."""
    total_rounds: int = DEFAULT_AUCTION_ROUNDS
    total_time_bank: int = DEFAULT_TIME_BANK_MS
    min_players: int = MIN_PLAYERS
    max_players: int = MAX_PLAYERS
    countdown_duration: int = config.COUNTDOWN_DURATION_MS
    tie_tolerance: int = config.TIE_TOLERANCE_MS
    auto_advance: int = 0  # ms on the results screen; 0 waits for the host
    bid_rounding: int = 1  # bids are recorded in multiples of this

    def validate(self) -> None:
        if self.total_rounds < 1:
            raise SettingsError("totalRounds must be at least 1")
        if self.total_time_bank <= 0:
            raise SettingsError("totalTimeBank must be positive")
        if self.countdown_duration <= 0:
            raise SettingsError("countdownDuration must be positive")
        if self.tie_tolerance < 0:
            raise SettingsError("tieTolerance must not be negative")
        if self.auto_advance < 0 or self.bid_rounding < 1:
            raise SettingsError("autoAdvance and bidRounding are out of range")
        _check_players(self.min_players, self.max_players)

    def to_dict(self) -> dict:
        return {
            "totalRounds": self.total_rounds,
            "totalTimeBank": self.total_time_bank,
            "minPlayers": self.min_players,
            "maxPlayers": self.max_players,
            "countdownDuration": self.countdown_duration,
            "tieTolerance": self.tie_tolerance,
            "autoAdvance": self.auto_advance,
            "bidRounding": self.bid_rounding,
        }

    @classmethod
    def from_dict(cls, data: dict, game_type: GameType = GameType.TIME_AUCTION) -> "AuctionSettings":
        second = game_type == GameType.TIME_AUCTION_2
        try:
            return cls(
                total_rounds=int(data.get("totalRounds", DEFAULT_AUCTION_ROUNDS)),
                total_time_bank=int(data.get("totalTimeBank", DEFAULT_TIME_BANK_MS)),
                min_players=int(data.get("minPlayers", MIN_PLAYERS)),
                max_players=int(data.get("maxPlayers", MAX_PLAYERS)),
                countdown_duration=int(data.get("countdownDuration", config.COUNTDOWN_DURATION_MS)),
                tie_tolerance=int(data.get("tieTolerance", config.TIE_TOLERANCE_MS)),
                auto_advance=int(data.get("autoAdvance", AUTO_ADVANCE_MS if second else 0)),
                bid_rounding=int(data.get("bidRounding", BID_ROUNDING_MS if second else 1)),
            )
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid auction settings: {e}") from e


@dataclass
class AuctionState:
    """Phase record of a time-auction room."""
    game_phase: AuctionPhase = AuctionPhase.LOBBY
    current_round: int = 1
    game_started: bool = False
    round_winner: str | None = None
    winner_bid_time: int | None = None
    is_tie: bool = False
    countdown_start_time: int | None = None
    auction_start_time: int | None = None
    last_phase_update: int | None = None
    phase_timeout: int | None = None
    results_round: int = 0  # last round whose results were applied

    def to_dict(self) -> dict:
        return {
            "gamePhase": self.game_phase.value,
            "currentRound": self.current_round,
            "gameStarted": self.game_started,
            "roundWinner": self.round_winner,
            "winnerBidTime": self.winner_bid_time,
            "isTie": self.is_tie,
            "countdownStartTime": self.countdown_start_time,
            "auctionStartTime": self.auction_start_time,
            "lastPhaseUpdate": self.last_phase_update,
            "phaseTimeout": self.phase_timeout,
            "resultsRound": self.results_round,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuctionState":
        return cls(
            game_phase=AuctionPhase(data.get("gamePhase", AuctionPhase.LOBBY.value)),
            current_round=data.get("currentRound", 1),
            game_started=data.get("gameStarted", False),
            round_winner=data.get("roundWinner"),
            winner_bid_time=data.get("winnerBidTime"),
            is_tie=data.get("isTie", False),
            countdown_start_time=data.get("countdownStartTime"),
            auction_start_time=data.get("auctionStartTime"),
            last_phase_update=data.get("lastPhaseUpdate"),
            phase_timeout=data.get("phaseTimeout"),
            results_round=data.get("resultsRound", 0),
        )


@dataclass
class AuctionPlayerData:
    """Per-player payload for the time auctions."""
    time_bank: int = DEFAULT_TIME_BANK_MS
    victory_tokens: int = 0
    total_time_used: int = 0
    is_eliminated: bool = False
    # Round-scoped
    is_button_pressed: bool = False
    has_opted_out: bool = False
    has_completed_bid: bool = False
    bid_time: int | None = None
    button_press_time: int | None = None
    last_action: int | None = None

    def reset_round(self) -> None:
        """Clear the round-scoped fields."""
        self.is_button_pressed = False
        self.has_opted_out = False
        self.has_completed_bid = False
        self.bid_time = None
        self.button_press_time = None

    def to_dict(self) -> dict:
        return {
            "timeBank": self.time_bank,
            "victoryTokens": self.victory_tokens,
            "totalTimeUsed": self.total_time_used,
            "isEliminated": self.is_eliminated,
            "isButtonPressed": self.is_button_pressed,
            "hasOptedOut": self.has_opted_out,
            "hasCompletedBid": self.has_completed_bid,
            "bidTime": self.bid_time,
            "buttonPressTime": self.button_press_time,
            "lastAction": self.last_action,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuctionPlayerData":
        return cls(
            time_bank=data.get("timeBank", DEFAULT_TIME_BANK_MS),
            victory_tokens=data.get("victoryTokens", 0),
            total_time_used=data.get("totalTimeUsed", 0),
            is_eliminated=data.get("isEliminated", False),
            is_button_pressed=data.get("isButtonPressed", False),
            has_opted_out=data.get("hasOptedOut", False),
            has_completed_bid=data.get("hasCompletedBid", False),
            bid_time=data.get("bidTime"),
            button_press_time=data.get("buttonPressTime"),
            last_action=data.get("lastAction"),
        )


# =============================================================================
# Remove One
# =============================================================================

@dataclass
class RemoveOneSettings:
    """Write-once configuration for the card-elimination game."""
    total_rounds: int = DEFAULT_REMOVE_ONE_ROUNDS
    min_players: int = MIN_PLAYERS
    max_players: int = MAX_PLAYERS
    survival_rounds: list[int] = field(default_factory=lambda: list(DEFAULT_SURVIVAL_ROUNDS))
    deck_reset_rounds: list[int] = field(default_factory=lambda: list(DEFAULT_DECK_RESET_ROUNDS))

    def validate(self) -> None:
        if self.total_rounds < 1:
            raise SettingsError("totalRounds must be at least 1")
        _check_players(self.min_players, self.max_players)
        for round_number in self.survival_rounds:
            if not 1 <= round_number <= self.total_rounds:
                raise SettingsError(f"Survival round {round_number} is outside the game")
        missing = set(self.deck_reset_rounds) - set(self.survival_rounds)
        if missing:
            raise SettingsError(
                f"Deck reset rounds must also be survival rounds: {sorted(missing)}"
            )

    def to_dict(self) -> dict:
        return {
            "totalRounds": self.total_rounds,
            "minPlayers": self.min_players,
            "maxPlayers": self.max_players,
            "survivalRounds": list(self.survival_rounds),
            "deckResetRounds": list(self.deck_reset_rounds),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoveOneSettings":
        survival = data.get("survivalRounds", DEFAULT_SURVIVAL_ROUNDS)
        if isinstance(survival, str):
            survival = [part for part in survival.split(",") if part.strip()]
        try:
            return cls(
                total_rounds=int(data.get("totalRounds", DEFAULT_REMOVE_ONE_ROUNDS)),
                min_players=int(data.get("minPlayers", MIN_PLAYERS)),
                max_players=int(data.get("maxPlayers", MAX_PLAYERS)),
                survival_rounds=sorted(int(r) for r in survival),
                deck_reset_rounds=sorted(
                    int(r) for r in data.get("deckResetRounds", DEFAULT_DECK_RESET_ROUNDS)
                ),
            )
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid Remove One settings: {e}") from e


@dataclass
class RemoveOneState:
    """Phase record of a card-elimination room."""
    game_phase: RemoveOnePhase = RemoveOnePhase.LOBBY
    current_round: int = 1
    game_started: bool = False
    round_winner: str | None = None
    winning_card: int | None = None
    eliminated_player: str | None = None
    deck_was_reset: bool = False
    last_phase_update: int | None = None
    phase_timeout: int | None = None
    results_round: int = 0

    def to_dict(self) -> dict:
        return {
            "gamePhase": self.game_phase.value,
            "currentRound": self.current_round,
            "gameStarted": self.game_started,
            "roundWinner": self.round_winner,
            "winningCard": self.winning_card,
            "eliminatedPlayer": self.eliminated_player,
            "deckWasReset": self.deck_was_reset,
            "lastPhaseUpdate": self.last_phase_update,
            "phaseTimeout": self.phase_timeout,
            "resultsRound": self.results_round,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoveOneState":
        return cls(
            game_phase=RemoveOnePhase(data.get("gamePhase", RemoveOnePhase.LOBBY.value)),
            current_round=data.get("currentRound", 1),
            game_started=data.get("gameStarted", False),
            round_winner=data.get("roundWinner"),
            winning_card=data.get("winningCard"),
            eliminated_player=data.get("eliminatedPlayer"),
            deck_was_reset=data.get("deckWasReset", False),
            last_phase_update=data.get("lastPhaseUpdate"),
            phase_timeout=data.get("phaseTimeout"),
            results_round=data.get("resultsRound", 0),
        )


@dataclass
class RemoveOnePlayerData:
    """Per-player payload for the card-elimination game."""
    deck: list[int] = field(default_factory=lambda: list(INITIAL_DECK))
    holding_box: list[int] = field(default_factory=list)
    temp_unavailable: list[int] = field(default_factory=list)
    points: int = 0
    victory_tokens: int = 0
    is_eliminated: bool = False
    # Round-scoped
    selected_cards: list[int] = field(default_factory=list)
    final_choice: str | None = None
    final_card: int | None = None
    has_submitted_cards: bool = False
    has_submitted_final_choice: bool = False

    @property
    def available_cards(self) -> list[int]:
        """Cards in the deck that are neither discarded nor frozen."""
        blocked = set(self.holding_box) | set(self.temp_unavailable)
        return sorted(card for card in self.deck if card not in blocked)

    @property
    def required_selection(self) -> int:
        return min(CARDS_PER_SELECTION, len(self.available_cards))

    def reset_round(self) -> None:
        """Clear the round-scoped fields."""
        self.selected_cards = []
        self.final_choice = None
        self.final_card = None
        self.has_submitted_cards = False
        self.has_submitted_final_choice = False

    def reset_deck(self) -> None:
        """Restore the full initial card pool."""
        self.deck = list(INITIAL_DECK)
        self.holding_box = []
        self.temp_unavailable = []

    def to_dict(self) -> dict:
        return {
            "deck": list(self.deck),
            "holdingBox": list(self.holding_box),
            "tempUnavailable": list(self.temp_unavailable),
            "points": self.points,
            "victoryTokens": self.victory_tokens,
            "isEliminated": self.is_eliminated,
            "selectedCards": list(self.selected_cards),
            "finalChoice": self.final_choice,
            "finalCard": self.final_card,
            "hasSubmittedCards": self.has_submitted_cards,
            "hasSubmittedFinalChoice": self.has_submitted_final_choice,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoveOnePlayerData":
        return cls(
            deck=list(data.get("deck", INITIAL_DECK)),
            holding_box=list(data.get("holdingBox", [])),
            temp_unavailable=list(data.get("tempUnavailable", [])),
            points=data.get("points", 0),
            victory_tokens=data.get("victoryTokens", 0),
            is_eliminated=data.get("isEliminated", False),
            selected_cards=list(data.get("selectedCards") or []),
            final_choice=data.get("finalChoice"),
            final_card=data.get("finalCard"),
            has_submitted_cards=data.get("hasSubmittedCards", False),
            has_submitted_final_choice=data.get("hasSubmittedFinalChoice", False),
        )


# =============================================================================
# Dispatch by game type
# =============================================================================

def parse_settings(game_type: GameType, data: dict | None) -> AuctionSettings | RemoveOneSettings:
    """
    Build and validate settings for a new room.

    Raises:
        SettingsError: If any value is missing its constraints
    """
    data = data or {}
    if game_type.is_auction:
        parsed = AuctionSettings.from_dict(data, game_type)
    else:
        parsed = RemoveOneSettings.from_dict(data)
    parsed.validate()
    return parsed


def load_settings(game_type: GameType, data: dict) -> AuctionSettings | RemoveOneSettings:
    """Parse settings already validated at creation."""
    if game_type.is_auction:
        return AuctionSettings.from_dict(data, game_type)
    return RemoveOneSettings.from_dict(data)


def initial_state(game_type: GameType) -> AuctionState | RemoveOneState:
    if game_type.is_auction:
        return AuctionState()
    return RemoveOneState()


def parse_state(game_type: GameType, data: dict) -> AuctionState | RemoveOneState:
    if game_type.is_auction:
        return AuctionState.from_dict(data)
    return RemoveOneState.from_dict(data)


def initial_player_data(
    game_type: GameType,
    game_settings: AuctionSettings | RemoveOneSettings
) -> AuctionPlayerData | RemoveOnePlayerData:
    if game_type.is_auction:
        return AuctionPlayerData(time_bank=game_settings.total_time_bank)
    return RemoveOnePlayerData()


def parse_player_data(game_type: GameType, data: dict[str, Any]) -> AuctionPlayerData | RemoveOnePlayerData:
    if game_type.is_auction:
        return AuctionPlayerData.from_dict(data)
    return RemoveOnePlayerData.from_dict(data)
