"""
Tests for the persistence layer.

Run with: python3 tests/test_persistence/test_persistence.py
"""

import sys
import tempfile
import unittest
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from server.persistence import (
    init_database,
    RecordStore,
    RoomRepository,
    RoomRecord,
    ChangeEvent,
)
from shared.enums import ChangeType


class PersistenceTestCase(unittest.TestCase):
    """Base test case with database setup/teardown."""

    def setUp(self):
        """Create a temporary database for each test."""
        self.temp_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
        self.db_path = self.temp_file.name
        self.temp_file.close()

        self.db = init_database(self.db_path)
        self.store = RecordStore(self.db)
        self.repository = RoomRepository(self.store)

    def tearDown(self):
        """Clean up the temporary database."""
        self.db.close_connection()
        Path(self.db_path).unlink(missing_ok=True)

    def create_sample_room(self, code: str = "ABC123") -> RoomRecord:
        return self.repository.create_room(
            room_code=code,
            host_id="host",
            game_type="timeAuction",
            game_settings={"totalRounds": 3},
            game_state={"gamePhase": "lobby", "currentRound": 1},
        )


class TestDatabase(PersistenceTestCase):
    """Test database connection and schema."""

    def test_database_creation(self):
        """Test that database file is created."""
        self.assertTrue(Path(self.db_path).exists())

    def test_tables_created(self):
        """Test that all tables are created."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = {row["name"] for row in cursor.fetchall()}

        self.assertEqual(tables, {"rooms", "players", "game_actions"})

    def test_foreign_keys_enabled(self):
        """Test that foreign keys are enforced."""
        with self.db.get_connection() as conn:
            cursor = conn.execute("PRAGMA foreign_keys")
            self.assertEqual(cursor.fetchone()[0], 1)

    def test_reset_database(self):
        self.create_sample_room()
        self.db.reset_database()
        self.assertEqual(self.store.query("rooms"), [])


class TestRecordStore(PersistenceTestCase):
    """Generic CRUD, versions and subscriptions."""

    def test_create_and_get_decodes_columns(self):
        room = self.store.create("rooms", {
            "room_code": "XYZ789",
            "host_id": "p1",
            "game_type": "removeOne",
            "game_settings": {"totalRounds": 18},
            "game_state": {},
            "is_active": True,
        })
        self.assertIsInstance(room["id"], int)
        self.assertEqual(room["version"], 1)

        loaded = self.store.get("rooms", room["id"])
        self.assertEqual(loaded["game_settings"], {"totalRounds": 18})
        self.assertIs(loaded["is_active"], True)

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get("rooms", 999))

    def test_update_bumps_version(self):
        room = self.create_sample_room()
        self.assertTrue(self.store.update("rooms", room.id, {"host_id": "other"}))
        self.assertEqual(self.store.get("rooms", room.id)["version"], 2)

    def test_update_missing_row(self):
        self.assertFalse(self.store.update("rooms", 999, {"host_id": "x"}))

    def test_compare_and_swap(self):
        room = self.create_sample_room()
        first = self.store.update("rooms", room.id, {"game_state": {"gamePhase": "waiting"}}, expected_version=1)
        second = self.store.update("rooms", room.id, {"game_state": {"gamePhase": "countdown"}}, expected_version=1)

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(self.store.get("rooms", room.id)["game_state"], {"gamePhase": "waiting"})

    def test_version_guard_needs_versioned_table(self):
        room = self.create_sample_room()
        self.repository.log_action(room.id, None, "join", {}, 1)
        action_id = self.store.query("game_actions")[0]["id"]
        with self.assertRaises(ValueError):
            self.store.update("game_actions", action_id, {"action_type": "leave"}, expected_version=1)

    def test_unknown_column_rejected(self):
        with self.assertRaises(ValueError):
            self.store.query("rooms", {"colour": "red"})
        with self.assertRaises(ValueError):
            self.store.query("rooms", order_by="colour")
        with self.assertRaises(ValueError):
            self.store.get("nowhere", 1)

    def test_query_order_and_filters(self):
        for code in ("AAA111", "BBB222", "CCC333"):
            self.create_sample_room(code)
        codes = [row["room_code"] for row in self.store.query("rooms", order_by="id DESC")]
        self.assertEqual(codes, ["CCC333", "BBB222", "AAA111"])
        self.assertEqual(len(self.store.query("rooms", {"room_code": "BBB222"})), 1)

    def test_delete(self):
        room = self.create_sample_room()
        self.assertTrue(self.store.delete("rooms", room.id))
        self.assertFalse(self.store.delete("rooms", room.id))
        self.assertIsNone(self.store.get("rooms", room.id))

    def test_subscription_receives_changes_in_order(self):
        events: list[ChangeEvent] = []
        self.store.subscribe("rooms", events.append)

        room = self.create_sample_room()
        self.store.update("rooms", room.id, {"host_id": "next"})
        self.store.delete("rooms", room.id)

        self.assertEqual(
            [e.change_type for e in events],
            [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
        )
        self.assertEqual(events[1].row["host_id"], "next")
        self.assertEqual(events[1].row["version"], 2)

    def test_subscription_filters(self):
        first = self.create_sample_room("AAA111")
        second = self.create_sample_room("BBB222")
        events: list[ChangeEvent] = []
        self.store.subscribe("rooms", events.append, {"id": second.id})

        self.store.update("rooms", first.id, {"host_id": "x"})
        self.store.update("rooms", second.id, {"host_id": "y"})

        self.assertEqual([e.row["id"] for e in events], [second.id])

    def test_failed_write_notifies_nobody(self):
        room = self.create_sample_room()
        events: list[ChangeEvent] = []
        self.store.subscribe("rooms", events.append)
        self.store.update("rooms", room.id, {"host_id": "x"}, expected_version=7)
        self.assertEqual(events, [])

    def test_unsubscribe(self):
        events: list[ChangeEvent] = []
        subscription = self.store.subscribe("rooms", events.append)
        self.store.unsubscribe(subscription)
        self.create_sample_room()
        self.assertEqual(events, [])

    def test_subscriber_errors_do_not_break_writes(self):
        def explode(event):
            raise RuntimeError("boom")

        received: list[ChangeEvent] = []
        self.store.subscribe("rooms", explode)
        self.store.subscribe("rooms", received.append)

        room = self.create_sample_room()
        self.assertIsNotNone(self.store.get("rooms", room.id))
        self.assertEqual(len(received), 1)


class TestRoomRepository(PersistenceTestCase):
    """Test room, player and action log operations."""

    def test_find_active_room(self):
        room = self.create_sample_room()
        self.assertEqual(self.repository.find_active_room("ABC123").id, room.id)
        self.assertTrue(self.repository.room_code_in_use("ABC123"))
        self.assertIsNone(self.repository.find_active_room("NOPE00"))

    def test_deactivate_room_is_soft_delete(self):
        room = self.create_sample_room()
        self.assertTrue(self.repository.deactivate_room(room.id))

        self.assertIsNone(self.repository.find_active_room("ABC123"))
        self.assertEqual(self.repository.list_active_rooms(), [])
        # The row itself is still there
        self.assertFalse(self.repository.get_room(room.id).is_active)

    def test_update_game_state_with_version(self):
        room = self.create_sample_room()
        self.assertTrue(self.repository.update_game_state(room.id, {"gamePhase": "waiting"}, room.version))
        self.assertFalse(self.repository.update_game_state(room.id, {"gamePhase": "auction"}, room.version))

        loaded = self.repository.get_room(room.id)
        self.assertEqual(loaded.game_state["gamePhase"], "waiting")
        self.assertEqual(loaded.version, room.version + 1)

    def test_players_in_join_order(self):
        room = self.create_sample_room()
        self.repository.create_player("late", room.id, "Late", {}, now=300)
        self.repository.create_player("early", room.id, "Early", {}, now=100, is_host=True)
        self.repository.create_player("middle", room.id, "Middle", {}, now=200)

        players = self.repository.get_players(room.id)
        self.assertEqual([p.id for p in players], ["early", "middle", "late"])
        self.assertTrue(players[0].is_host)
        self.assertTrue(players[0].is_connected)
        self.assertEqual(players[0].last_heartbeat, 100)

    def test_player_data_round_trip(self):
        room = self.create_sample_room()
        player = self.repository.create_player("p1", room.id, "One", {"timeBank": 600000}, now=1)

        self.assertTrue(self.repository.update_player_data("p1", {"timeBank": 595300}, player.version))
        self.assertFalse(self.repository.update_player_data("p1", {"timeBank": 0}, player.version))
        self.assertEqual(self.repository.get_player("p1").player_data, {"timeBank": 595300})

    def test_heartbeat_reconnects(self):
        room = self.create_sample_room()
        self.repository.create_player("p1", room.id, "One", {}, now=1)
        self.repository.set_connected("p1", False)
        self.assertFalse(self.repository.get_player("p1").is_connected)

        self.repository.touch_heartbeat("p1", 5000)
        player = self.repository.get_player("p1")
        self.assertTrue(player.is_connected)
        self.assertEqual(player.last_heartbeat, 5000)

    def test_delete_player(self):
        room = self.create_sample_room()
        self.repository.create_player("p1", room.id, "One", {}, now=1)
        self.assertTrue(self.repository.delete_player("p1"))
        self.assertIsNone(self.repository.get_player("p1"))
        self.assertEqual(self.repository.get_players(room.id), [])

    def test_action_log(self):
        room = self.create_sample_room()
        self.repository.log_action(room.id, "p1", "button_press", {"phase": "waiting"}, 10)
        self.repository.log_action(room.id, None, "round_result", {"winner": "p1"}, 20)

        self.assertEqual(len(self.repository.get_actions(room.id)), 2)
        results = self.repository.get_actions(room.id, "round_result")
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].action_data, {"winner": "p1"})
        self.assertIsNone(results[0].player_id)

    def test_action_log_failure_is_swallowed(self):
        # No such room: the foreign key rejects the row
        self.repository.log_action(999, "p1", "join", {}, 1)
        self.assertEqual(self.repository.get_actions(999), [])

    def test_subscribe_players_by_room(self):
        first = self.create_sample_room("AAA111")
        second = self.create_sample_room("BBB222")
        events: list[ChangeEvent] = []
        self.repository.subscribe_players(events.append, room_id=first.id)

        self.repository.create_player("a", first.id, "A", {}, now=1)
        self.repository.create_player("b", second.id, "B", {}, now=2)
        self.repository.delete_player("a")

        self.assertEqual([(e.change_type, e.row["id"]) for e in events], [
            (ChangeType.INSERT, "a"),
            (ChangeType.DELETE, "a"),
        ])


if __name__ == "__main__":
    unittest.main()
