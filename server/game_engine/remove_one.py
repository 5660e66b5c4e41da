"""
Remove One coordinator.

Every round each surviving player picks two cards from their available
pool, then plays one of them. The lowest card nobody else played scores
its face value plus a victory token. Played cards are discarded for the
rest of the deck cycle; the card kept back sits out one round.
"""
import logging

from shared.enums import RemoveOnePhase, FinalChoice, ActionType
from server.config import settings as config

from .coordinator import RoomCoordinator, RoomSnapshot, ValidationResult, ActionResult
from .resolver import decide_card_round, pick_elimination
from .variants import RemoveOneState, RemoveOnePlayerData


logger = logging.getLogger(__name__)


class RemoveOneCoordinator(RoomCoordinator):
    """Drives cardSelection -> finalChoice -> roundEnd/survival."""

    results_phases = (RemoveOnePhase.ROUND_END, RemoveOnePhase.SURVIVAL)

    # =========================================================================
    # Player actions
    # =========================================================================

    def select_cards(self, player_id: str, cards: list) -> ValidationResult:
        """Pick the cards for this round (two, or fewer if the pool is short)."""
        snapshot, error = self._load(player_id)
        if error:
            return error
        data: RemoveOnePlayerData = snapshot.player_data[player_id]

        if snapshot.state.game_phase != RemoveOnePhase.CARD_SELECTION:
            return ValidationResult.failure(ActionResult.INVALID_PHASE, "Card selection is closed")
        if data.is_eliminated:
            return ValidationResult.failure(ActionResult.PLAYER_ELIMINATED, "You have been eliminated")
        if data.has_submitted_cards:
            return ValidationResult.noop("Cards already selected")

        try:
            cards = [int(card) for card in cards]
        except (TypeError, ValueError):
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "Cards must be numbers")

        available = data.available_cards
        if len(cards) != data.required_selection or len(set(cards)) != len(cards):
            return ValidationResult.failure(
                ActionResult.INVALID_ACTION,
                f"Select {data.required_selection} different cards"
            )
        unavailable = [card for card in cards if card not in available]
        if unavailable:
            return ValidationResult.failure(
                ActionResult.INVALID_ACTION,
                f"Cards not available: {unavailable}"
            )

        data.selected_cards = cards
        data.has_submitted_cards = True
        self._write_player(snapshot, player_id, data)
        self._log(player_id, ActionType.CARD_SELECTION, {"cards": cards})
        return ValidationResult.success("Cards selected", {"evaluate": True})

    def submit_final_choice(self, player_id: str, choice: str) -> ValidationResult:
        """Play the left or right selected card."""
        snapshot, error = self._load(player_id)
        if error:
            return error
        data: RemoveOnePlayerData = snapshot.player_data[player_id]

        if snapshot.state.game_phase != RemoveOnePhase.FINAL_CHOICE:
            return ValidationResult.failure(ActionResult.INVALID_PHASE, "Final choice is closed")
        if data.is_eliminated:
            return ValidationResult.failure(ActionResult.PLAYER_ELIMINATED, "You have been eliminated")
        if data.has_submitted_final_choice:
            return ValidationResult.noop("Final choice already made")
        if not data.has_submitted_cards or not data.selected_cards:
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "You did not select cards this round")

        try:
            side = FinalChoice(choice)
        except ValueError:
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "Choose left or right")
        index = 0 if side == FinalChoice.LEFT else 1
        if index >= len(data.selected_cards):
            return ValidationResult.failure(ActionResult.INVALID_ACTION, "You only have one card")

        data.final_choice = side.value
        data.final_card = data.selected_cards[index]
        data.has_submitted_final_choice = True
        self._write_player(snapshot, player_id, data)
        self._log(player_id, ActionType.FINAL_CHOICE, {"choice": side.value})
        return ValidationResult.success("Card played", {"evaluate": True})

    # =========================================================================
    # Phase rules
    # =========================================================================

    def _start_state(self, snapshot: RoomSnapshot) -> RemoveOneState:
        return RemoveOneState(
            game_phase=RemoveOnePhase.CARD_SELECTION,
            current_round=1,
            game_started=True,
            last_phase_update=snapshot.now,
            phase_timeout=snapshot.now + config.CARD_SELECTION_TIMEOUT_MS,
        )

    def _evaluate(self, snapshot: RoomSnapshot) -> bool:
        phase = snapshot.state.game_phase
        if phase == RemoveOnePhase.CARD_SELECTION:
            return self._evaluate_selection(snapshot)
        if phase == RemoveOnePhase.FINAL_CHOICE:
            return self._evaluate_final_choice(snapshot)
        if phase in self.results_phases and self._timed_out(snapshot):
            return self._advance_round(snapshot)
        return False

    def _waiting_on(self, snapshot: RoomSnapshot, latch: str) -> list[str]:
        """Connected survivors that have not set ``latch`` yet."""
        return [
            pid for pid in snapshot.survivors()
            if snapshot.is_connected(pid) and not getattr(snapshot.player_data[pid], latch)
        ]

    def _evaluate_selection(self, snapshot: RoomSnapshot) -> bool:
        submitted = [
            pid for pid in snapshot.survivors()
            if snapshot.player_data[pid].has_submitted_cards
        ]
        everyone_in = submitted and not self._waiting_on(snapshot, "has_submitted_cards")
        if not everyone_in and not self._timed_out(snapshot):
            return False

        next_state = RemoveOneState.from_dict(snapshot.state.to_dict())
        next_state.game_phase = RemoveOnePhase.FINAL_CHOICE
        next_state.last_phase_update = snapshot.now
        next_state.phase_timeout = snapshot.now + config.FINAL_CHOICE_TIMEOUT_MS
        return self._write_state(snapshot, next_state)

    def _evaluate_final_choice(self, snapshot: RoomSnapshot) -> bool:
        pending = [
            pid for pid in self._waiting_on(snapshot, "has_submitted_final_choice")
            if snapshot.player_data[pid].has_submitted_cards
        ]
        if pending and not self._timed_out(snapshot):
            return False
        return self._resolve(snapshot)

    def _resolve(self, snapshot: RoomSnapshot) -> bool:
        """Score the round, then apply eliminations and deck resets."""
        if snapshot.state.results_round >= snapshot.state.current_round:
            return False

        fresh = self.snapshot()
        if fresh is None or fresh.state.game_phase != RemoveOnePhase.FINAL_CHOICE:
            return False
        state: RemoveOneState = fresh.state
        round_number = state.current_round
        survivors = fresh.survivors()

        decision = decide_card_round({pid: fresh.player_data[pid] for pid in survivors})
        updated = {pid: decision.apply(pid, fresh.player_data[pid]) for pid in survivors}

        is_survival = round_number in fresh.settings.survival_rounds
        eliminated = None
        if is_survival:
            eliminated = pick_elimination({
                pid: (data.points, data.victory_tokens) for pid, data in updated.items()
            })
        deck_reset = round_number in fresh.settings.deck_reset_rounds

        next_state = RemoveOneState.from_dict(state.to_dict())
        next_state.game_phase = RemoveOnePhase.SURVIVAL if is_survival else RemoveOnePhase.ROUND_END
        next_state.round_winner = decision.outcome.winner_id
        next_state.winning_card = decision.outcome.winning_card
        next_state.eliminated_player = eliminated
        next_state.deck_was_reset = deck_reset
        next_state.results_round = round_number
        next_state.last_phase_update = fresh.now
        next_state.phase_timeout = fresh.now + config.ROUND_END_TIMEOUT_MS
        if not self._write_state(fresh, next_state):
            return False

        for pid, data in updated.items():
            if pid == eliminated:
                data.is_eliminated = True
            elif deck_reset:
                data.reset_deck()
            self._write_player(fresh, pid, data)

        self._log(None, ActionType.ROUND_RESULT, {
            "round": round_number,
            "winner": decision.outcome.winner_id,
            "card": decision.outcome.winning_card,
            "played": decision.played,
            "eliminated": eliminated,
            "deckReset": deck_reset,
        })
        logger.info(
            f"Room {fresh.room.room_code} round {round_number}: "
            f"winner {decision.outcome.winner_id} card {decision.outcome.winning_card}"
            f"{f', eliminated {eliminated}' if eliminated else ''}"
            f"{', deck reset' if deck_reset else ''}"
        )
        snapshot.state = fresh.state
        return True

    def _advance_round(self, snapshot: RoomSnapshot) -> bool:
        state: RemoveOneState = snapshot.state
        if state.current_round >= snapshot.settings.total_rounds or len(snapshot.survivors()) <= 1:
            next_state = RemoveOneState.from_dict(state.to_dict())
            next_state.game_phase = RemoveOnePhase.GAME_OVER
            next_state.last_phase_update = snapshot.now
            next_state.phase_timeout = None
            return self._write_state(snapshot, next_state)

        next_state = RemoveOneState(
            game_phase=RemoveOnePhase.CARD_SELECTION,
            current_round=state.current_round + 1,
            game_started=True,
            last_phase_update=snapshot.now,
            phase_timeout=snapshot.now + config.CARD_SELECTION_TIMEOUT_MS,
            results_round=state.results_round,
        )
        if not self._write_state(snapshot, next_state):
            return False

        for player in snapshot.players:
            data = snapshot.player_data[player.id]
            data.reset_round()
            self._write_player(snapshot, player.id, data)
        return True

    def _score_key(self, data: RemoveOnePlayerData) -> tuple:
        return (data.points, data.victory_tokens)
