"""
Database connection management and initialization.
"""

import sqlite3
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import Generator

from server.config import settings


class Database:
    """
    Thread-safe SQLite database manager.

    Each thread gets its own connection; the schema is created on first use.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = str(db_path or settings.DATABASE_PATH)
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._ensure_directory()
        self._ensure_schema()

    def _ensure_directory(self) -> None:
        """Create database directory if it doesn't exist."""
        db_file = Path(self.db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

    def _ensure_schema(self) -> None:
        """Initialize database schema (once per instance)."""
        with self._init_lock:
            if not self._initialized:
                with self.get_connection() as conn:
                    self._create_tables(conn)
                self._initialized = True

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a thread-local database connection.

        The transaction is committed when the block exits normally and
        rolled back if it raises.

        Usage:
            with db.get_connection() as conn:
                cursor = conn.execute("SELECT ...")
        """
        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._create_connection()

        conn = self._local.connection
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection with optimal settings."""
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )

        # Enable foreign keys
        conn.execute("PRAGMA foreign_keys = ON")

        # Use WAL mode for better concurrent access
        conn.execute("PRAGMA journal_mode = WAL")

        # Return rows as dictionaries
        conn.row_factory = sqlite3.Row

        return conn

    def _create_tables(self, conn: sqlite3.Connection) -> None:
        """Create all database tables."""
        conn.executescript(SCHEMA_SQL)

    def close_connection(self) -> None:
        """Close the current thread's connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None

    def reset_database(self) -> None:
        """Drop and recreate all tables. USE WITH CAUTION."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = [row['name'] for row in cursor.fetchall()]

            for table in tables:
                conn.execute(f"DROP TABLE IF EXISTS {table}")

            self._create_tables(conn)


SCHEMA_SQL = """
-- Rooms: one row per game room, game_state is the mutable phase record
CREATE TABLE IF NOT EXISTS rooms (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_code TEXT NOT NULL,
    host_id TEXT NOT NULL,
    game_type TEXT NOT NULL,
    game_settings TEXT NOT NULL DEFAULT '{}',
    game_state TEXT NOT NULL DEFAULT '{}',
    is_active INTEGER NOT NULL DEFAULT 1,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Players: id is generated by the client before the row exists
CREATE TABLE IF NOT EXISTS players (
    id TEXT PRIMARY KEY,
    room_id INTEGER NOT NULL,
    player_name TEXT NOT NULL,
    is_host INTEGER NOT NULL DEFAULT 0,
    is_connected INTEGER NOT NULL DEFAULT 1,
    last_heartbeat INTEGER NOT NULL DEFAULT 0,
    player_data TEXT NOT NULL DEFAULT '{}',
    joined_at INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 1,

    FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE CASCADE
);

-- Action log: append-only, diagnostics only
CREATE TABLE IF NOT EXISTS game_actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL,
    player_id TEXT,
    action_type TEXT NOT NULL,
    action_data TEXT NOT NULL DEFAULT '{}',
    created_at INTEGER NOT NULL DEFAULT 0,

    FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE CASCADE
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_rooms_code_active ON rooms(room_code, is_active);
CREATE INDEX IF NOT EXISTS idx_players_room_id ON players(room_id);
CREATE INDEX IF NOT EXISTS idx_game_actions_room_id ON game_actions(room_id);
"""


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


def init_database(db_path: str | None = None) -> Database:
    """Initialize the database with optional custom path."""
    global _db
    _db = Database(db_path)
    return _db
