"""
Time-auction coordinator.

Each round: everyone holds their button (waiting), a fixed countdown runs
during which letting go opts a player out, then the auction clock starts
and each release records a bid equal to the time held. The longest hold
wins a victory token unless another bid is within the tie tolerance.
"""
import logging

from shared.constants import PHASE_GRACE_MS
from shared.enums import AuctionPhase, ActionType
from server.config import settings as config

from .coordinator import RoomCoordinator, RoomSnapshot, ValidationResult, ActionResult
from .resolver import resolve_auction, round_bid
from .variants import AuctionState, AuctionPlayerData


logger = logging.getLogger(__name__)


class AuctionCoordinator(RoomCoordinator):
    """Drives the waiting -> countdown -> auction -> roundResults cycle."""

    results_phases = (AuctionPhase.ROUND_RESULTS,)

    # =========================================================================
    # Player actions
    # =========================================================================

    def press(self, player_id: str) -> ValidationResult:
        """Signal ready for the next auction. Only valid while waiting."""
        snapshot, error = self._load(player_id)
        if error:
            return error
        state: AuctionState = snapshot.state
        data: AuctionPlayerData = snapshot.player_data[player_id]

        if state.game_phase != AuctionPhase.WAITING:
            return ValidationResult.failure(ActionResult.INVALID_PHASE, "Wait for the next round")
        if data.is_eliminated or data.time_bank <= 0:
            return ValidationResult.failure(ActionResult.PLAYER_ELIMINATED, "You have no time left")
        if data.is_button_pressed:
            return ValidationResult.noop("Already holding")

        data.is_button_pressed = True
        data.button_press_time = snapshot.now
        data.last_action = snapshot.now
        self._write_player(snapshot, player_id, data)
        self._log(player_id, ActionType.BUTTON_PRESS, {"phase": state.game_phase.value})
        return ValidationResult.success("Holding", {"evaluate": True})

    def release(self, player_id: str) -> ValidationResult:
        """
        Let go of the button.

        While waiting this just un-readies, during the countdown it opts out
        of the round, and during the auction it records the bid (once).
        """
        snapshot, error = self._load(player_id)
        if error:
            return error
        state: AuctionState = snapshot.state
        data: AuctionPlayerData = snapshot.player_data[player_id]
        phase = state.game_phase

        if phase == AuctionPhase.WAITING:
            if not data.is_button_pressed:
                return ValidationResult.noop("Not holding")
            data.is_button_pressed = False
            data.button_press_time = None

        elif phase == AuctionPhase.COUNTDOWN:
            if not data.is_button_pressed or data.has_opted_out:
                return ValidationResult.noop("Already out of this round")
            data.is_button_pressed = False
            data.has_opted_out = True

        elif phase == AuctionPhase.AUCTION:
            if data.has_completed_bid or not data.is_button_pressed or data.has_opted_out:
                return ValidationResult.noop("Bid already recorded")
            self._finalize_bid(snapshot, data, snapshot.now - state.auction_start_time)

        else:
            return ValidationResult.failure(ActionResult.INVALID_PHASE, "Nothing to release")

        data.last_action = snapshot.now
        self._write_player(snapshot, player_id, data)
        self._log(player_id, ActionType.BUTTON_RELEASE, {
            "phase": phase.value,
            "bidTime": data.bid_time,
            "timeBank": data.time_bank,
        })
        return ValidationResult.success("Released", {"evaluate": True})

    def _finalize_bid(self, snapshot: RoomSnapshot, data: AuctionPlayerData, held: int) -> None:
        """Deduct a bid from the time bank, exactly once per round."""
        bid = round_bid(max(0, held), snapshot.settings.bid_rounding)
        bid = min(bid, data.time_bank)
        data.bid_time = bid
        data.time_bank -= bid
        data.total_time_used += bid
        data.has_completed_bid = True
        data.is_button_pressed = False
        if data.time_bank <= 0:
            data.time_bank = 0
            data.is_eliminated = True

    # =========================================================================
    # Phase rules
    # =========================================================================

    def _start_state(self, snapshot: RoomSnapshot) -> AuctionState:
        return AuctionState(
            game_phase=AuctionPhase.WAITING,
            current_round=1,
            game_started=True,
            last_phase_update=snapshot.now,
            phase_timeout=snapshot.now + config.WAITING_TIMEOUT_MS,
        )

    def _evaluate(self, snapshot: RoomSnapshot) -> bool:
        phase = snapshot.state.game_phase
        if phase == AuctionPhase.WAITING:
            return self._evaluate_waiting(snapshot)
        if phase == AuctionPhase.COUNTDOWN:
            return self._evaluate_countdown(snapshot)
        if phase == AuctionPhase.AUCTION:
            return self._evaluate_auction(snapshot)
        if phase == AuctionPhase.ROUND_RESULTS and self._timed_out(snapshot):
            return self._advance_round(snapshot)
        return False

    def _evaluate_waiting(self, snapshot: RoomSnapshot) -> bool:
        survivors = snapshot.survivors()
        if not survivors:
            return self._finish(snapshot)

        contenders = [pid for pid in survivors if snapshot.is_connected(pid)]
        holders = [pid for pid in contenders if snapshot.player_data[pid].is_button_pressed]
        required = max(1, min(snapshot.settings.min_players, len(contenders)))

        if contenders and len(holders) == len(contenders) and len(holders) >= required:
            return self._begin_countdown(snapshot)

        if self._timed_out(snapshot):
            if any(snapshot.player_data[pid].is_button_pressed for pid in survivors):
                return self._begin_countdown(snapshot)
            logger.info(f"Room {snapshot.room.room_code}: nobody ready, skipping round")
            return self._resolve(snapshot)
        return False

    def _begin_countdown(self, snapshot: RoomSnapshot) -> bool:
        state: AuctionState = snapshot.state
        duration = snapshot.settings.countdown_duration
        next_state = AuctionState.from_dict(state.to_dict())
        next_state.game_phase = AuctionPhase.COUNTDOWN
        next_state.countdown_start_time = snapshot.now
        next_state.last_phase_update = snapshot.now
        next_state.phase_timeout = snapshot.now + duration + PHASE_GRACE_MS
        return self._write_state(snapshot, next_state)

    def _evaluate_countdown(self, snapshot: RoomSnapshot) -> bool:
        state: AuctionState = snapshot.state
        elapsed = snapshot.now - (state.countdown_start_time or snapshot.now)
        if elapsed < snapshot.settings.countdown_duration and not self._timed_out(snapshot):
            return False

        participants = [
            pid for pid in snapshot.survivors()
            if snapshot.player_data[pid].is_button_pressed
            and not snapshot.player_data[pid].has_opted_out
        ]
        if not participants:
            return self._resolve(snapshot)

        largest_bank = max(snapshot.player_data[pid].time_bank for pid in participants)
        next_state = AuctionState.from_dict(state.to_dict())
        next_state.game_phase = AuctionPhase.AUCTION
        next_state.auction_start_time = snapshot.now
        next_state.last_phase_update = snapshot.now
        next_state.phase_timeout = snapshot.now + largest_bank + PHASE_GRACE_MS
        if not self._write_state(snapshot, next_state):
            return False

        # Whoever is not holding when the clock starts sits this round out
        for pid in snapshot.survivors():
            data = snapshot.player_data[pid]
            if pid not in participants and not data.has_opted_out:
                data.has_opted_out = True
                data.is_button_pressed = False
                self._write_player(snapshot, pid, data, guarded=True)
        return True

    def _evaluate_auction(self, snapshot: RoomSnapshot) -> bool:
        state: AuctionState = snapshot.state
        held = snapshot.now - state.auction_start_time
        forced = self._timed_out(snapshot)

        for pid, data in snapshot.player_data.items():
            if not data.is_button_pressed or data.has_completed_bid or data.has_opted_out:
                continue
            if forced or held >= data.time_bank:
                self._finalize_bid(snapshot, data, held)
                data.last_action = snapshot.now
                if self._write_player(snapshot, pid, data, guarded=True):
                    logger.info(
                        f"Room {snapshot.room.room_code}: auto-released {pid} at {data.bid_time}ms"
                    )
                    self._log(pid, ActionType.BUTTON_RELEASE, {
                        "phase": AuctionPhase.AUCTION.value,
                        "bidTime": data.bid_time,
                        "forced": True,
                    })

        still_holding = [
            pid for pid, data in snapshot.player_data.items()
            if data.is_button_pressed and not data.has_completed_bid and not data.has_opted_out
        ]
        if still_holding:
            return False
        return self._resolve(snapshot)

    def _resolve(self, snapshot: RoomSnapshot) -> bool:
        """
        Record the round result. Running it twice for the same round
        awards nothing the second time.
        """
        if snapshot.state.results_round >= snapshot.state.current_round:
            return False

        # Decide on a fresh read, not on what this tick has accumulated
        fresh = self.snapshot()
        if fresh is None or fresh.state.game_phase != snapshot.state.game_phase:
            return False
        state: AuctionState = fresh.state

        bids = {
            pid: data.bid_time for pid, data in fresh.player_data.items()
            if data.has_completed_bid and not data.has_opted_out and data.bid_time is not None
        }
        outcome = resolve_auction(bids, fresh.settings.tie_tolerance)

        auto_advance = fresh.settings.auto_advance
        next_state = AuctionState.from_dict(state.to_dict())
        next_state.game_phase = AuctionPhase.ROUND_RESULTS
        next_state.round_winner = outcome.winner_id
        next_state.winner_bid_time = outcome.winning_bid
        next_state.is_tie = outcome.is_tie
        next_state.results_round = state.current_round
        next_state.last_phase_update = fresh.now
        next_state.phase_timeout = fresh.now + (auto_advance or config.RESULTS_TIMEOUT_MS)
        if not self._write_state(fresh, next_state):
            return False

        if outcome.has_winner:
            winner = fresh.player_data[outcome.winner_id]
            winner.victory_tokens += 1
            self._write_player(fresh, outcome.winner_id, winner)

        self._log(None, ActionType.ROUND_RESULT, {
            "round": state.current_round,
            "winner": outcome.winner_id,
            "bidTime": outcome.winning_bid,
            "tie": outcome.is_tie,
            "bids": bids,
        })
        logger.info(
            f"Room {fresh.room.room_code} round {state.current_round}: "
            f"{'tie' if outcome.is_tie else outcome.winner_id or 'no winner'}"
        )
        snapshot.state = fresh.state
        return True

    def _advance_round(self, snapshot: RoomSnapshot) -> bool:
        state: AuctionState = snapshot.state
        if state.current_round >= snapshot.settings.total_rounds or not snapshot.survivors():
            return self._finish(snapshot)

        next_state = AuctionState(
            game_phase=AuctionPhase.WAITING,
            current_round=state.current_round + 1,
            game_started=True,
            last_phase_update=snapshot.now,
            phase_timeout=snapshot.now + config.WAITING_TIMEOUT_MS,
            results_round=state.results_round,
        )
        if not self._write_state(snapshot, next_state):
            return False

        for player in snapshot.players:
            data = snapshot.player_data[player.id]
            data.reset_round()
            self._write_player(snapshot, player.id, data)
        return True

    def _finish(self, snapshot: RoomSnapshot) -> bool:
        next_state = AuctionState.from_dict(snapshot.state.to_dict())
        next_state.game_phase = AuctionPhase.GAME_OVER
        next_state.last_phase_update = snapshot.now
        next_state.phase_timeout = None
        return self._write_state(snapshot, next_state)

    def _score_key(self, data: AuctionPlayerData) -> tuple:
        return (data.victory_tokens, data.time_bank)
