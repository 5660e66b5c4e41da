"""
Tests for the game engine: resolvers, variant payloads, presence,
redaction and both room coordinators.

Run with: python3 -m pytest tests/test_game_engine/test_game_engine.py -v
"""

import itertools
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from server.config import settings as config
from server.game_engine import (
    ActionResult,
    AuctionPlayerData,
    RemoveOnePlayerData,
    PresenceTracker,
    SettingsError,
    decide_card_round,
    parse_settings,
    pick_elimination,
    rank_players,
    redact_player,
    resolve_auction,
    resolve_unique_minimum,
)
from server.game_engine.resolver import round_bid
from server.network.game_manager import RoomManager
from server.persistence import init_database, RecordStore, RoomRepository, PlayerRecord
from shared.constants import PHASE_GRACE_MS
from shared.enums import GameType, AuctionPhase, RemoveOnePhase, ActionType


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# =============================================================================
# Pure rules
# =============================================================================

class TestAuctionResolver(unittest.TestCase):
    """Highest bid wins unless another is within tolerance."""

    def test_clear_winner(self):
        outcome = resolve_auction({"A": 4700, "B": 3200, "C": 1800})
        self.assertEqual(outcome.winner_id, "A")
        self.assertEqual(outcome.winning_bid, 4700)
        self.assertFalse(outcome.is_tie)

    def test_bids_within_tolerance_tie(self):
        outcome = resolve_auction({"A": 3250, "B": 3150})
        self.assertIsNone(outcome.winner_id)
        self.assertTrue(outcome.is_tie)

    def test_just_outside_tolerance_wins(self):
        outcome = resolve_auction({"A": 3251, "B": 3150})
        self.assertEqual(outcome.winner_id, "A")

    def test_seconds_with_matching_tolerance(self):
        outcome = resolve_auction([("A", 4.7), ("B", 3.2)], tie_tolerance=0.1)
        self.assertEqual(outcome.winner_id, "A")

    def test_no_bids(self):
        outcome = resolve_auction({})
        self.assertFalse(outcome.has_winner)
        self.assertFalse(outcome.is_tie)

    def test_single_bid_wins(self):
        self.assertEqual(resolve_auction({"A": 10}).winner_id, "A")

    def test_round_bid(self):
        self.assertEqual(round_bid(3249, 100), 3200)
        self.assertEqual(round_bid(3251, 100), 3300)
        self.assertEqual(round_bid(3249, 1), 3249)


class TestCardResolver(unittest.TestCase):
    """Lowest unique card wins."""

    def test_unique_minimum(self):
        outcome = resolve_unique_minimum({"A": 3, "B": 5, "C": 3})
        self.assertEqual(outcome.winner_id, "B")
        self.assertEqual(outcome.winning_card, 5)

    def test_all_duplicated_has_no_winner(self):
        outcome = resolve_unique_minimum({"A": 2, "B": 2, "C": 6, "D": 6})
        self.assertFalse(outcome.has_winner)

    def test_decision_applies_holding_box_and_freeze(self):
        players = {}
        for pid, selected, final in (("A", [3, 4], 3), ("B", [5, 6], 5), ("C", [3, 7], 3)):
            data = RemoveOnePlayerData(temp_unavailable=[8])
            data.selected_cards = selected
            data.final_card = final
            data.has_submitted_cards = True
            data.has_submitted_final_choice = True
            players[pid] = data

        decision = decide_card_round(players)
        self.assertEqual(decision.outcome.winner_id, "B")

        b = decision.apply("B", players["B"])
        self.assertEqual((b.points, b.victory_tokens), (5, 1))
        self.assertEqual(b.holding_box, [5])
        self.assertEqual(b.temp_unavailable, [6])

        a = decision.apply("A", players["A"])
        self.assertEqual((a.points, a.victory_tokens), (0, 0))
        self.assertEqual(a.holding_box, [3])
        # Last round's frozen 8 is back, 4 sits out next round
        self.assertEqual(a.temp_unavailable, [4])
        self.assertIn(8, a.available_cards)

        # The input is left untouched
        self.assertEqual(players["A"].holding_box, [])

    def test_non_submitter_plays_nothing(self):
        idle = RemoveOnePlayerData(temp_unavailable=[2])
        decision = decide_card_round({"A": idle})
        updated = decision.apply("A", idle)
        self.assertEqual(updated.holding_box, [])
        self.assertEqual(updated.temp_unavailable, [])

    def test_pick_elimination(self):
        self.assertEqual(pick_elimination({"A": (5, 1), "B": (0, 0), "C": (3, 1)}), "B")
        # Tokens break a points tie
        self.assertEqual(pick_elimination({"A": (2, 1), "B": (2, 0)}), "B")
        # A full tie eliminates nobody
        self.assertIsNone(pick_elimination({"A": (2, 1), "B": (2, 1), "C": (9, 2)}))

    def test_rank_players(self):
        self.assertEqual(rank_players({"A": (1, 50), "B": (2, 0), "C": (1, 90)}), ["B", "C", "A"])


class TestVariantSettings(unittest.TestCase):

    def test_auction_defaults(self):
        first = parse_settings(GameType.TIME_AUCTION, {})
        self.assertEqual(first.total_rounds, 19)
        self.assertEqual(first.total_time_bank, 600000)
        self.assertEqual(first.auto_advance, 0)
        self.assertEqual(first.bid_rounding, 1)

        second = parse_settings(GameType.TIME_AUCTION_2, {})
        self.assertEqual(second.auto_advance, 5000)
        self.assertEqual(second.bid_rounding, 100)

    def test_remove_one_defaults(self):
        parsed = parse_settings(GameType.REMOVE_ONE, None)
        self.assertEqual(parsed.total_rounds, 18)
        self.assertEqual(parsed.survival_rounds, [3, 6, 9, 12, 18])
        self.assertEqual(parsed.deck_reset_rounds, [6, 12])

    def test_survival_rounds_from_text(self):
        parsed = parse_settings(GameType.REMOVE_ONE, {"survivalRounds": "6, 3,12", "deckResetRounds": [6]})
        self.assertEqual(parsed.survival_rounds, [3, 6, 12])

    def test_reset_rounds_must_be_survival_rounds(self):
        with self.assertRaises(SettingsError):
            parse_settings(GameType.REMOVE_ONE, {"survivalRounds": [3], "deckResetRounds": [4]})

    def test_invalid_auction_settings(self):
        with self.assertRaises(SettingsError):
            parse_settings(GameType.TIME_AUCTION, {"totalTimeBank": 0})
        with self.assertRaises(SettingsError):
            parse_settings(GameType.TIME_AUCTION, {"minPlayers": 4, "maxPlayers": 3})
        with self.assertRaises(SettingsError):
            parse_settings(GameType.TIME_AUCTION, {"totalRounds": "many"})

    def test_round_reset_clears_transients(self):
        data = AuctionPlayerData(time_bank=100, is_button_pressed=True, has_opted_out=True,
                                 has_completed_bid=True, bid_time=40)
        data.reset_round()
        self.assertFalse(data.is_button_pressed or data.has_opted_out or data.has_completed_bid)
        self.assertIsNone(data.bid_time)
        self.assertEqual(data.time_bank, 100)


class TestPresence(unittest.TestCase):

    def _player(self, last_heartbeat: int, connected: bool = True) -> PlayerRecord:
        return PlayerRecord(id="p", room_id=1, player_name="P",
                            is_connected=connected, last_heartbeat=last_heartbeat)

    def test_window_must_exceed_interval(self):
        with self.assertRaises(ValueError):
            PresenceTracker(heartbeat_interval=5, stale_after=5)

    def test_connected_needs_flag_and_fresh_heartbeat(self):
        tracker = PresenceTracker(5, 15)
        self.assertTrue(tracker.is_connected(self._player(0), 15_000))
        self.assertFalse(tracker.is_connected(self._player(0), 15_001))
        self.assertFalse(tracker.is_connected(self._player(0, connected=False), 1))

    def test_sweep_only_disconnects(self):
        tracker = PresenceTracker(5, 15)
        stale = self._player(0)
        offline_but_fresh = self._player(20_000, connected=False)
        changes = tracker.sweep([stale, offline_but_fresh], 20_000)
        self.assertEqual([(c.player_id, c.connected) for c in changes], [("p", False)])


class TestVisibility(unittest.TestCase):

    def test_auction_hides_banks_and_live_flags(self):
        row = {"id": "B", "player_data": AuctionPlayerData(time_bank=500, is_button_pressed=True).to_dict()}
        seen = redact_player(row, "A", GameType.TIME_AUCTION, AuctionPhase.AUCTION.value)
        self.assertNotIn("timeBank", seen["player_data"])
        self.assertNotIn("isButtonPressed", seen["player_data"])
        self.assertIn("victoryTokens", seen["player_data"])
        # Own row is untouched
        self.assertIs(redact_player(row, "B", GameType.TIME_AUCTION, AuctionPhase.AUCTION.value), row)

    def test_waiting_shows_ready_flags(self):
        row = {"id": "B", "player_data": AuctionPlayerData(time_bank=500, is_button_pressed=True).to_dict()}
        seen = redact_player(row, "A", GameType.TIME_AUCTION_2, AuctionPhase.WAITING.value)
        self.assertTrue(seen["player_data"]["isButtonPressed"])

    def test_cards_hidden_until_committed(self):
        data = RemoveOnePlayerData(selected_cards=[2, 3], final_card=2, final_choice="left")
        row = {"id": "B", "player_data": data.to_dict()}
        selecting = redact_player(row, "A", GameType.REMOVE_ONE, RemoveOnePhase.CARD_SELECTION.value)
        self.assertNotIn("selectedCards", selecting["player_data"])
        self.assertNotIn("deck", selecting["player_data"])

        choosing = redact_player(row, "A", GameType.REMOVE_ONE, RemoveOnePhase.FINAL_CHOICE.value)
        self.assertEqual(choosing["player_data"]["selectedCards"], [2, 3])
        self.assertNotIn("finalCard", choosing["player_data"])

        ended = redact_player(row, "A", GameType.REMOVE_ONE, RemoveOnePhase.ROUND_END.value)
        self.assertEqual(ended["player_data"]["finalCard"], 2)


# =============================================================================
# Coordinators
# =============================================================================

class CoordinatorTestCase(unittest.TestCase):
    """Temporary database, fake clock and a room manager."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db = init_database(str(Path(self.temp_dir.name) / "test.db"))
        self.repository = RoomRepository(RecordStore(self.db))
        self.clock = FakeClock()
        codes = (f"ROOM{n:02d}" for n in itertools.count())
        self.manager = RoomManager(
            self.repository,
            PresenceTracker(5, 15),
            clock=self.clock,
            code_generator=lambda: next(codes),
        )

    def tearDown(self):
        self.db.close_connection()
        self.temp_dir.cleanup()

    def seat(self, names: list[str], game_type: GameType, settings: dict | None = None):
        """Create a room hosted by the first name and seat the rest."""
        result, managed = self.manager.create_room(names[0], names[0], game_type.value, settings or {})
        self.assertTrue(result.valid, result.message)
        for name in names[1:]:
            self.clock.advance(1)
            result, _ = self.manager.join_room(name, managed.room_code, name)
            self.assertTrue(result.valid, result.message)
        self.coordinator = managed.coordinator
        self.room_id = managed.room_id
        return managed

    def heartbeat_all(self, names: list[str]) -> None:
        for name in names:
            self.manager.heartbeat(name)

    def state(self) -> dict:
        return self.repository.get_room(self.room_id).game_state

    def data(self, player_id: str) -> dict:
        return self.repository.get_player(player_id).player_data


class TestAuctionCoordinator(CoordinatorTestCase):

    def start(self, names: list[str], game_type: GameType = GameType.TIME_AUCTION, settings: dict | None = None):
        self.seat(names, game_type, settings)
        result = self.coordinator.start_game(names[0])
        self.assertTrue(result.valid, result.message)

    def run_to_auction(self, names: list[str]) -> None:
        for name in names:
            self.assertTrue(self.coordinator.press(name).valid)
        self.assertTrue(self.coordinator.tick())
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.COUNTDOWN.value)
        self.clock.advance(5000)
        self.assertTrue(self.coordinator.tick())
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.AUCTION.value)

    def release_at(self, schedule: list[tuple[str, int]]) -> None:
        """Release each player once the auction clock reads their bid."""
        start = self.state()["auctionStartTime"]
        for player_id, bid in sorted(schedule, key=lambda item: item[1]):
            self.clock.now = start + bid
            self.assertTrue(self.coordinator.release(player_id).valid)

    def test_start_requires_host_and_players(self):
        managed = self.seat(["A"], GameType.TIME_AUCTION)
        self.assertEqual(self.coordinator.start_game("A").result, ActionResult.NOT_ENOUGH_PLAYERS)
        self.manager.join_room("B", managed.room_code, "B")
        self.assertEqual(self.coordinator.start_game("B").result, ActionResult.NOT_HOST)
        self.assertTrue(self.coordinator.start_game("A").valid)
        self.assertEqual(self.coordinator.start_game("A").result, ActionResult.GAME_ALREADY_STARTED)

        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.WAITING.value)
        self.assertEqual(state["currentRound"], 1)

    def test_longest_hold_wins_token(self):
        self.start(["A", "B", "C"])
        self.run_to_auction(["A", "B", "C"])
        self.release_at([("A", 4700), ("B", 3200), ("C", 1800)])

        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.ROUND_RESULTS.value)
        self.assertEqual(state["roundWinner"], "A")
        self.assertEqual(state["winnerBidTime"], 4700)
        self.assertFalse(state["isTie"])

        self.assertEqual(self.data("A")["victoryTokens"], 1)
        self.assertEqual(self.data("B")["victoryTokens"], 0)
        self.assertEqual(self.data("C")["victoryTokens"], 0)
        self.assertEqual(self.data("A")["timeBank"], 600000 - 4700)
        self.assertEqual(self.data("C")["timeBank"], 600000 - 1800)
        self.assertEqual(self.coordinator.standings()[0]["player_id"], "A")

    def test_close_bids_tie(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 3250), ("B", 3150)])

        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertTrue(state["isTie"])
        self.assertIsNone(state["roundWinner"])
        self.assertEqual(self.data("A")["victoryTokens"], 0)
        self.assertEqual(self.data("B")["victoryTokens"], 0)

    def test_results_processed_once(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 4000), ("B", 1000)])
        self.assertTrue(self.coordinator.tick())

        # A second pass, timer or callback, finds the round already recorded
        self.assertFalse(self.coordinator._resolve(self.coordinator.snapshot()))
        self.assertFalse(self.coordinator.tick())
        self.assertEqual(self.data("A")["victoryTokens"], 1)
        self.assertEqual(len(self.repository.get_actions(self.room_id, ActionType.ROUND_RESULT.value)), 1)

    def test_second_release_is_noop(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 2000)])
        self.clock.advance(500)
        result = self.coordinator.release("A")
        self.assertTrue(result.is_noop)
        self.assertEqual(self.data("A")["bidTime"], 2000)
        self.assertEqual(self.data("A")["timeBank"], 600000 - 2000)

    def test_duplicate_press_is_noop(self):
        self.start(["A", "B"])
        self.assertTrue(self.coordinator.press("A").valid)
        self.assertTrue(self.coordinator.press("A").is_noop)

    def test_press_outside_waiting(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.assertEqual(self.coordinator.press("A").result, ActionResult.INVALID_PHASE)

    def test_countdown_release_opts_out(self):
        self.start(["A", "B", "C"])
        for name in ("A", "B", "C"):
            self.coordinator.press(name)
        self.coordinator.tick()
        self.clock.advance(1000)
        self.assertTrue(self.coordinator.release("C").valid)
        self.assertTrue(self.data("C")["hasOptedOut"])
        self.assertFalse(self.data("C")["isEliminated"])

        self.clock.advance(4000)
        self.coordinator.tick()
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.AUCTION.value)
        # C cannot bid this round
        self.assertTrue(self.coordinator.release("C").is_noop)

        self.release_at([("A", 900), ("B", 2500)])
        self.coordinator.tick()
        self.assertEqual(self.state()["roundWinner"], "B")
        self.assertIsNone(self.data("C")["bidTime"])
        self.assertEqual(self.data("C")["timeBank"], 600000)

    def test_bank_exhaustion_clamps_and_eliminates(self):
        self.start(["A", "B"], settings={"totalTimeBank": 2000})
        self.run_to_auction(["A", "B"])
        self.release_at([("B", 1000)])

        # A keeps holding past their bank; the loop releases them
        self.clock.now = self.state()["auctionStartTime"] + 2500
        self.assertTrue(self.coordinator.tick())

        a = self.data("A")
        self.assertEqual(a["bidTime"], 2000)
        self.assertEqual(a["timeBank"], 0)
        self.assertTrue(a["isEliminated"])
        self.assertEqual(self.state()["roundWinner"], "A")

        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.continue_to_next_round("A").valid)
        self.assertEqual(self.coordinator.press("A").result, ActionResult.PLAYER_ELIMINATED)

    def test_next_round_resets_round_fields(self):
        self.start(["A", "B", "C"])
        self.run_to_auction(["A", "B", "C"])
        self.release_at([("A", 300), ("B", 1200), ("C", 2400)])
        self.coordinator.tick()

        self.assertEqual(self.coordinator.continue_to_next_round("B").result, ActionResult.NOT_HOST)
        self.assertTrue(self.coordinator.continue_to_next_round("A").valid)

        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.WAITING.value)
        self.assertEqual(state["currentRound"], 2)
        for name in ("A", "B", "C"):
            data = self.data(name)
            self.assertIsNone(data["bidTime"])
            self.assertFalse(data["hasCompletedBid"])
            self.assertFalse(data["isButtonPressed"])
            self.assertFalse(data["hasOptedOut"])
        self.assertEqual(self.data("C")["victoryTokens"], 1)

    def test_continue_on_final_round_ends_game(self):
        self.start(["A", "B"], settings={"totalRounds": 1})
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 500), ("B", 3000)])
        self.coordinator.tick()

        self.assertTrue(self.coordinator.continue_to_next_round("A").valid)
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.GAME_OVER.value)
        self.assertEqual(self.coordinator.continue_to_next_round("A").result, ActionResult.INVALID_PHASE)

    def test_second_variant_rounds_and_auto_advances(self):
        self.start(["A", "B"], GameType.TIME_AUCTION_2)
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 3249), ("B", 1000)])
        self.assertEqual(self.data("A")["bidTime"], 3200)

        self.coordinator.tick()
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.ROUND_RESULTS.value)

        self.clock.advance(5001)
        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.WAITING.value)
        self.assertEqual(state["currentRound"], 2)

    def test_waiting_timeout_without_holders_skips_round(self):
        self.start(["A", "B"])
        self.clock.advance(config.WAITING_TIMEOUT_MS + 1)
        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.ROUND_RESULTS.value)
        self.assertIsNone(state["roundWinner"])
        self.assertFalse(state["isTie"])

    def test_waiting_ignores_disconnected_players(self):
        self.start(["A", "B", "C"])
        self.clock.advance(16_000)
        self.heartbeat_all(["A", "B"])
        self.coordinator.press("A")
        self.coordinator.press("B")
        self.assertTrue(self.coordinator.tick())
        self.assertFalse(self.repository.get_player("C").is_connected)
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.COUNTDOWN.value)

    def test_sole_connected_player_starts_countdown(self):
        self.start(["A", "B"])
        self.assertTrue(self.coordinator.press("A").valid)
        # B is still around and not holding
        self.assertFalse(self.coordinator.tick())
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.WAITING.value)

        self.clock.advance(16_000)
        self.heartbeat_all(["A"])
        self.assertTrue(self.coordinator.tick())
        self.assertFalse(self.repository.get_player("B").is_connected)
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.COUNTDOWN.value)

    def test_countdown_deadline_forces_auction(self):
        self.start(["A", "B"])
        self.coordinator.press("A")
        self.coordinator.press("B")
        self.assertTrue(self.coordinator.tick())
        started = self.state()["countdownStartTime"]
        self.assertEqual(self.state()["phaseTimeout"], started + 5000 + PHASE_GRACE_MS)

        self.clock.now = started + 4999
        self.assertFalse(self.coordinator.tick())

        # No pass ran until well after the deadline
        self.clock.now = started + 5000 + PHASE_GRACE_MS + 1
        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.AUCTION.value)
        self.assertEqual(state["auctionStartTime"], self.clock.now)

    def test_auction_deadline_releases_remaining_holders(self):
        self.start(["A", "B"], settings={"totalTimeBank": 2000})
        self.run_to_auction(["A", "B"])
        start = self.state()["auctionStartTime"]
        self.assertEqual(self.state()["phaseTimeout"], start + 2000 + PHASE_GRACE_MS)
        self.release_at([("B", 500)])

        self.clock.now = start + 2000 + PHASE_GRACE_MS + 1
        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.tick())

        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.ROUND_RESULTS.value)
        self.assertEqual(state["roundWinner"], "A")
        self.assertEqual(self.data("A")["bidTime"], 2000)
        self.assertTrue(self.data("A")["isEliminated"])

        releases = self.repository.get_actions(self.room_id, ActionType.BUTTON_RELEASE.value)
        forced = [a.player_id for a in releases if a.action_data.get("forced")]
        self.assertEqual(forced, ["A"])

    def test_passed_deadline_releases_holder_with_bank_left(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.release_at([("B", 400)])

        # Pull the deadline in while A still has most of their bank
        self.clock.now = self.state()["auctionStartTime"] + 1000
        room = self.repository.get_room(self.room_id)
        state = dict(room.game_state, phaseTimeout=self.clock.now - 1)
        self.assertTrue(self.repository.update_game_state(self.room_id, state, room.version))

        self.assertTrue(self.coordinator.tick())
        a = self.data("A")
        self.assertEqual(a["bidTime"], 1000)
        self.assertEqual(a["timeBank"], 600000 - 1000)
        self.assertFalse(a["isEliminated"])
        self.assertEqual(self.state()["roundWinner"], "A")

    def test_results_deadline_advances_without_host(self):
        self.start(["A", "B"])
        self.run_to_auction(["A", "B"])
        self.release_at([("A", 2000), ("B", 900)])
        self.assertTrue(self.coordinator.tick())
        resolved_at = self.clock.now
        self.assertEqual(self.state()["phaseTimeout"], resolved_at + config.RESULTS_TIMEOUT_MS)

        self.clock.now = resolved_at + config.RESULTS_TIMEOUT_MS
        self.heartbeat_all(["A", "B"])
        self.assertFalse(self.coordinator.tick())
        self.assertEqual(self.state()["gamePhase"], AuctionPhase.ROUND_RESULTS.value)

        self.clock.advance(1)
        self.assertTrue(self.coordinator.tick())
        state = self.state()
        self.assertEqual(state["gamePhase"], AuctionPhase.WAITING.value)
        self.assertEqual(state["currentRound"], 2)
        self.assertEqual(self.data("A")["victoryTokens"], 1)

    def test_stale_host_hands_over(self):
        self.start(["A", "B", "C"])
        self.clock.advance(16_000)
        self.heartbeat_all(["C", "B"])
        self.coordinator.tick()

        room = self.repository.get_room(self.room_id)
        self.assertEqual(room.host_id, "B")
        self.assertTrue(self.repository.get_player("B").is_host)
        self.assertFalse(self.repository.get_player("A").is_host)

    def test_transfer_host(self):
        self.start(["A", "B"])
        self.assertEqual(self.coordinator.transfer_host("B", "A").result, ActionResult.NOT_HOST)
        self.assertTrue(self.coordinator.transfer_host("A", "A").is_noop)
        self.assertTrue(self.coordinator.transfer_host("A", "B").valid)
        self.assertEqual(self.repository.get_room(self.room_id).host_id, "B")


class TestRemoveOneCoordinator(CoordinatorTestCase):

    def start(self, names: list[str], settings: dict | None = None):
        self.seat(names, GameType.REMOVE_ONE, settings)
        result = self.coordinator.start_game(names[0])
        self.assertTrue(result.valid, result.message)
        self.assertEqual(self.state()["gamePhase"], RemoveOnePhase.CARD_SELECTION.value)

    def play_round(self, picks: dict[str, tuple[list[int], str]]) -> None:
        """Run selection and final choice for every player in ``picks``."""
        for pid, (cards, _) in picks.items():
            result = self.coordinator.select_cards(pid, cards)
            self.assertTrue(result.valid, result.message)
        self.assertTrue(self.coordinator.tick())
        self.assertEqual(self.state()["gamePhase"], RemoveOnePhase.FINAL_CHOICE.value)
        for pid, (_, side) in picks.items():
            result = self.coordinator.submit_final_choice(pid, side)
            self.assertTrue(result.valid, result.message)
        self.assertTrue(self.coordinator.tick())

    def test_unique_minimum_round(self):
        self.start(["A", "B", "C"])
        self.play_round({"A": ([3, 4], "left"), "B": ([5, 6], "left"), "C": ([3, 7], "left")})

        state = self.state()
        self.assertEqual(state["gamePhase"], RemoveOnePhase.ROUND_END.value)
        self.assertEqual(state["roundWinner"], "B")
        self.assertEqual(state["winningCard"], 5)

        b = self.data("B")
        self.assertEqual((b["points"], b["victoryTokens"]), (5, 1))
        a = self.data("A")
        self.assertEqual((a["points"], a["victoryTokens"]), (0, 0))
        self.assertEqual(a["holdingBox"], [3])
        self.assertEqual(a["tempUnavailable"], [4])

        self.assertTrue(self.coordinator.continue_to_next_round("A").valid)
        self.assertEqual(self.state()["currentRound"], 2)
        a = self.data("A")
        self.assertEqual(a["selectedCards"], [])
        self.assertFalse(a["hasSubmittedCards"])
        self.assertFalse(a["hasSubmittedFinalChoice"])

        # The kept-back 4 sits out exactly this round
        self.assertEqual(self.coordinator.select_cards("A", [4, 5]).result, ActionResult.INVALID_ACTION)
        self.assertTrue(self.coordinator.select_cards("A", [5, 6]).valid)

    def test_round_scored_once(self):
        self.start(["A", "B", "C"])
        for pid, cards in (("A", [3, 4]), ("B", [5, 6]), ("C", [3, 7])):
            self.coordinator.select_cards(pid, cards)
        self.coordinator.tick()
        for pid in ("A", "B", "C"):
            self.coordinator.submit_final_choice(pid, "left")

        # A timer pass and a callback both saw the round before it was scored
        stale = self.coordinator.snapshot()
        self.assertTrue(self.coordinator._resolve(self.coordinator.snapshot()))
        self.assertFalse(self.coordinator._resolve(stale))
        self.assertFalse(self.coordinator.tick())

        b = self.data("B")
        self.assertEqual((b["points"], b["victoryTokens"]), (5, 1))
        self.assertEqual(b["holdingBox"], [5])
        self.assertEqual(self.data("A")["holdingBox"], [3])
        self.assertEqual(len(self.repository.get_actions(self.room_id, ActionType.ROUND_RESULT.value)), 1)

    def test_round_end_deadline_comes_from_config(self):
        self.start(["A", "B"])
        with patch.object(config, "ROUND_END_TIMEOUT_MS", 4321):
            self.play_round({"A": ([1, 2], "left"), "B": ([3, 4], "left")})
        self.assertEqual(self.state()["phaseTimeout"], self.clock.now + 4321)

        self.clock.advance(4322)
        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.tick())
        self.assertEqual(self.state()["currentRound"], 2)

    def test_selection_rules(self):
        self.start(["A", "B"])
        self.assertEqual(self.coordinator.select_cards("A", [1]).result, ActionResult.INVALID_ACTION)
        self.assertEqual(self.coordinator.select_cards("A", [2, 2]).result, ActionResult.INVALID_ACTION)
        self.assertEqual(self.coordinator.select_cards("A", [1, 9]).result, ActionResult.INVALID_ACTION)
        self.assertEqual(self.coordinator.submit_final_choice("A", "left").result, ActionResult.INVALID_PHASE)
        self.assertTrue(self.coordinator.select_cards("A", [1, 2]).valid)
        self.assertTrue(self.coordinator.select_cards("A", [3, 4]).is_noop)
        self.assertEqual(self.data("A")["selectedCards"], [1, 2])

    def test_final_choice_rules(self):
        self.start(["A", "B"])
        self.coordinator.select_cards("A", [1, 2])
        self.coordinator.select_cards("B", [1, 2])
        self.coordinator.tick()
        self.assertEqual(self.coordinator.submit_final_choice("A", "middle").result, ActionResult.INVALID_ACTION)
        self.assertTrue(self.coordinator.submit_final_choice("A", "right").valid)
        self.assertTrue(self.coordinator.submit_final_choice("A", "left").is_noop)
        self.assertEqual(self.data("A")["finalCard"], 2)

    def test_final_choice_timeout_resolves_with_submitted(self):
        self.start(["A", "B"])
        self.coordinator.select_cards("A", [1, 2])
        self.coordinator.select_cards("B", [1, 2])
        self.coordinator.tick()
        self.coordinator.submit_final_choice("A", "left")
        self.assertFalse(self.coordinator.tick())

        self.clock.advance(config.FINAL_CHOICE_TIMEOUT_MS + 1)
        self.heartbeat_all(["A", "B"])
        self.assertTrue(self.coordinator.tick())
        self.assertEqual(self.state()["roundWinner"], "A")
        self.assertEqual(self.data("B")["holdingBox"], [])

    def test_survival_round_with_deck_reset(self):
        self.start(["A", "B", "C"], {"totalRounds": 2, "survivalRounds": [2], "deckResetRounds": [2]})
        self.play_round({"A": ([1, 2], "left"), "B": ([3, 4], "left"), "C": ([5, 6], "left")})
        self.assertEqual(self.data("A")["points"], 1)
        self.coordinator.continue_to_next_round("A")

        self.play_round({"A": ([3, 4], "left"), "B": ([1, 2], "right"), "C": ([7, 8], "left")})
        state = self.state()
        self.assertEqual(state["gamePhase"], RemoveOnePhase.SURVIVAL.value)
        self.assertEqual(state["roundWinner"], "B")
        self.assertEqual(state["eliminatedPlayer"], "C")
        self.assertEqual(state["winningCard"], 2)
        self.assertTrue(state["deckWasReset"])

        for name in ("A", "B"):
            data = self.data(name)
            self.assertEqual(data["deck"], [1, 2, 3, 4, 5, 6, 7, 8])
            self.assertEqual(data["holdingBox"], [])
            self.assertEqual(data["tempUnavailable"], [])
        self.assertTrue(self.data("C")["isEliminated"])

        self.assertTrue(self.coordinator.continue_to_next_round("A").valid)
        self.assertEqual(self.state()["gamePhase"], RemoveOnePhase.GAME_OVER.value)
        self.assertEqual([s["player_id"] for s in self.coordinator.standings()], ["B", "A", "C"])

    def test_last_survivor_ends_game(self):
        self.start(["A", "B"], {"totalRounds": 5, "survivalRounds": [1], "deckResetRounds": []})
        self.play_round({"A": ([1, 2], "left"), "B": ([3, 4], "left")})
        self.assertEqual(self.state()["eliminatedPlayer"], "B")
        self.coordinator.continue_to_next_round("A")
        self.assertEqual(self.state()["gamePhase"], RemoveOnePhase.GAME_OVER.value)

    def test_survival_tie_keeps_everyone(self):
        self.start(["A", "B", "C"], {"totalRounds": 5, "survivalRounds": [1], "deckResetRounds": []})
        self.play_round({"A": ([1, 2], "left"), "B": ([3, 4], "left"), "C": ([5, 6], "left")})
        # B and C tie on (0, 0): nobody goes
        self.assertIsNone(self.state()["eliminatedPlayer"])
        self.coordinator.continue_to_next_round("A")
        self.assertEqual(self.state()["currentRound"], 2)


if __name__ == "__main__":
    unittest.main()
