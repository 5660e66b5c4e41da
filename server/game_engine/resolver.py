"""
Round resolution rules.

Everything here is a pure function of its inputs: the coordinators gather a
fresh snapshot, ask for a decision, and apply it themselves.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from shared.constants import TIE_TOLERANCE_MS

from .variants import RemoveOnePlayerData

# Absorbs float noise when bids arrive as fractional seconds
_EPSILON = 1e-9


def _entries(values: Mapping[str, float] | Iterable[tuple[str, float]]) -> list[tuple[str, float]]:
    items = values.items() if isinstance(values, Mapping) else values
    return [(pid, value) for pid, value in items if value is not None]


# =============================================================================
# Time auction
# =============================================================================

@dataclass
class AuctionOutcome:
    """Winner of an auction round, or no winner."""
    winner_id: str | None = None
    winning_bid: float | None = None
    is_tie: bool = False

    @property
    def has_winner(self) -> bool:
        return self.winner_id is not None


def resolve_auction(
    bids: Mapping[str, float] | Iterable[tuple[str, float]],
    tie_tolerance: float = TIE_TOLERANCE_MS
) -> AuctionOutcome:
    """
    Pick the highest bid.

    If any other bid is within ``tie_tolerance`` of the maximum the round
    has no winner. Bids and tolerance must share units.

    Examples:
        >>> resolve_auction({"A": 4700, "B": 3200, "C": 1800}).winner_id
        'A'
        >>> resolve_auction({"A": 3250, "B": 3150}).is_tie
        True
    """
    entries = _entries(bids)
    if not entries:
        return AuctionOutcome()

    leader_id, max_bid = max(entries, key=lambda entry: entry[1])
    contenders = [
        pid for pid, value in entries
        if max_bid - value <= tie_tolerance + _EPSILON
    ]
    if len(contenders) > 1:
        return AuctionOutcome(is_tie=True)
    return AuctionOutcome(winner_id=leader_id, winning_bid=max_bid)


def round_bid(bid: int, resolution: int) -> int:
    """Round a bid to the nearest multiple of ``resolution``."""
    if resolution <= 1:
        return int(bid)
    return int(round(bid / resolution)) * resolution


# =============================================================================
# Remove One
# =============================================================================

@dataclass
class CardOutcome:
    """Winner of a card round: the lowest card nobody else played."""
    winner_id: str | None = None
    winning_card: int | None = None

    @property
    def has_winner(self) -> bool:
        return self.winner_id is not None


def resolve_unique_minimum(submissions: Mapping[str, int] | Iterable[tuple[str, int]]) -> CardOutcome:
    """
    Find the smallest value submitted by exactly one participant.

    Examples:
        >>> resolve_unique_minimum({"A": 3, "B": 5, "C": 3})
        CardOutcome(winner_id='B', winning_card=5)
    """
    entries = _entries(submissions)
    counts = Counter(value for _, value in entries)
    unique = [value for value, count in counts.items() if count == 1]
    if not unique:
        return CardOutcome()

    lowest = min(unique)
    winner_id = next(pid for pid, value in entries if value == lowest)
    return CardOutcome(winner_id=winner_id, winning_card=lowest)


@dataclass
class CardRoundDecision:
    """
    Per-player effects of one card round.

    ``played`` maps each submitter to the card they played; ``unused`` maps
    them to the selected card they kept back, which sits out exactly one round.
    """
    outcome: CardOutcome
    played: dict[str, int] = field(default_factory=dict)
    unused: dict[str, list[int]] = field(default_factory=dict)

    def apply(self, player_id: str, data: RemoveOnePlayerData) -> RemoveOnePlayerData:
        """Return a copy of ``data`` with this round's effects applied."""
        updated = RemoveOnePlayerData.from_dict(data.to_dict())

        card = self.played.get(player_id)
        if card is not None and card not in updated.holding_box:
            updated.holding_box.append(card)

        # Last round's frozen card comes back now
        updated.temp_unavailable = list(self.unused.get(player_id, []))

        if player_id == self.outcome.winner_id and card is not None:
            updated.points += card
            updated.victory_tokens += 1
        return updated


def decide_card_round(players: Mapping[str, RemoveOnePlayerData]) -> CardRoundDecision:
    """
    Resolve a card round from the final choices of surviving players.

    Players that never submitted a final choice play nothing and freeze nothing.
    """
    played: dict[str, int] = {}
    unused: dict[str, list[int]] = {}
    for player_id, data in players.items():
        if data.is_eliminated or not data.has_submitted_final_choice or data.final_card is None:
            continue
        played[player_id] = data.final_card
        unused[player_id] = [card for card in data.selected_cards if card != data.final_card]

    return CardRoundDecision(
        outcome=resolve_unique_minimum(played),
        played=played,
        unused=unused,
    )


def pick_elimination(scores: Mapping[str, tuple[int, int]]) -> str | None:
    """
    Choose the player to eliminate on a survival round.

    Lowest points lose, victory tokens break ties. A tie that tokens do not
    break eliminates nobody.
    """
    if len(scores) < 2:
        return None
    ordered = sorted(scores.items(), key=lambda item: item[1])
    lowest_id, lowest_score = ordered[0]
    if ordered[1][1] == lowest_score:
        return None
    return lowest_id


def rank_players(scores: Mapping[str, tuple]) -> list[str]:
    """Order players best first by their score tuples."""
    return [pid for pid, _ in sorted(scores.items(), key=lambda item: item[1], reverse=True)]
