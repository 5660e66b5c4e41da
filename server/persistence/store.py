"""
Generic record store over SQLite with row-level change subscriptions.

Every write commits first and then notifies the subscribers whose filters
match the affected row. Versioned tables carry an integer ``version`` that
is bumped on every update and can be used for compare-and-swap writes.
"""

import itertools
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from server.persistence.database import Database
from shared.enums import ChangeType


logger = logging.getLogger(__name__)


TABLE_COLUMNS: dict[str, set[str]] = {
    "rooms": {
        "id", "room_code", "host_id", "game_type", "game_settings",
        "game_state", "is_active", "version", "created_at", "updated_at",
    },
    "players": {
        "id", "room_id", "player_name", "is_host", "is_connected",
        "last_heartbeat", "player_data", "joined_at", "version",
    },
    "game_actions": {
        "id", "room_id", "player_id", "action_type", "action_data", "created_at",
    },
}

JSON_COLUMNS = {"game_settings", "game_state", "player_data", "action_data"}
BOOL_COLUMNS = {"is_active", "is_host", "is_connected"}
VERSIONED_TABLES = {"rooms", "players"}


class StoreWriteFailure(Exception):
    """A write to the record store did not go through."""

    def __init__(self, table: str, operation: str, cause: Exception | None = None):
        self.table = table
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation} {table}: {cause}")


@dataclass
class ChangeEvent:
    """A committed change pushed to subscribers."""
    change_type: ChangeType
    table: str
    row: dict[str, Any]


@dataclass
class Subscription:
    """Handle returned by RecordStore.subscribe."""
    id: int
    table: str
    callback: Callable[[ChangeEvent], None]
    filters: dict[str, Any] = field(default_factory=dict)

    def matches(self, table: str, row: dict[str, Any]) -> bool:
        if table != self.table:
            return False
        return all(row.get(key) == value for key, value in self.filters.items())


class RecordStore:
    """
    Row storage with create/get/update/delete/query and subscriptions.

    Rows are returned as plain dicts with JSON columns decoded and flag
    columns converted to bool.
    """

    def __init__(self, db: Database):
        self.db = db
        self._subscriptions: dict[int, Subscription] = {}
        self._sub_lock = threading.Lock()
        self._sub_ids = itertools.count(1)

    # =========================================================================
    # Encoding helpers
    # =========================================================================

    def _check_table(self, table: str) -> set[str]:
        columns = TABLE_COLUMNS.get(table)
        if columns is None:
            raise ValueError(f"Unknown table: {table}")
        return columns

    def _check_columns(self, table: str, keys) -> None:
        columns = self._check_table(table)
        unknown = [key for key in keys if key not in columns]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}")

    def _encode(self, record: dict[str, Any]) -> dict[str, Any]:
        encoded = {}
        for key, value in record.items():
            if key in JSON_COLUMNS and not isinstance(value, str):
                value = json.dumps(value)
            elif key in BOOL_COLUMNS:
                value = 1 if value else 0
            encoded[key] = value
        return encoded

    def _decode(self, row: sqlite3.Row) -> dict[str, Any]:
        decoded = dict(row)
        for key in JSON_COLUMNS & decoded.keys():
            raw = decoded[key]
            decoded[key] = json.loads(raw) if raw else {}
        for key in BOOL_COLUMNS & decoded.keys():
            decoded[key] = bool(decoded[key])
        return decoded

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, table: str, record_id: Any) -> dict[str, Any] | None:
        """Fetch one row by primary key."""
        self._check_table(table)
        with self.db.get_connection() as conn:
            cursor = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,))
            row = cursor.fetchone()
        return self._decode(row) if row else None

    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None
    ) -> list[dict[str, Any]]:
        """
        Fetch rows matching all equality filters.

        Args:
            table: Table name
            filters: Column -> value equality conditions
            order_by: Column to sort by, optionally suffixed with " DESC"

        Returns:
            List of decoded rows
        """
        filters = filters or {}
        self._check_columns(table, filters.keys())

        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        if filters:
            clauses = []
            for key, value in self._encode(filters).items():
                clauses.append(f"{key} = ?")
                params.append(value)
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            column, _, direction = order_by.partition(" ")
            self._check_columns(table, [column])
            direction = "DESC" if direction.strip().upper() == "DESC" else "ASC"
            sql += f" ORDER BY {column} {direction}"

        with self.db.get_connection() as conn:
            cursor = conn.execute(sql, params)
            rows = cursor.fetchall()
        return [self._decode(row) for row in rows]

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a row and return it as stored, including its id.

        Raises:
            StoreWriteFailure: If the insert fails
        """
        self._check_columns(table, record.keys())
        encoded = self._encode(record)
        columns = ", ".join(encoded.keys())
        placeholders = ", ".join("?" for _ in encoded)

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    list(encoded.values())
                )
                record_id = record.get("id", cursor.lastrowid)
                row = conn.execute(
                    f"SELECT * FROM {table} WHERE id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Insert into {table} failed: {e}")
            raise StoreWriteFailure(table, "create", e) from e

        created = self._decode(row)
        self._notify(ChangeEvent(ChangeType.INSERT, table, created))
        return created

    def update(
        self,
        table: str,
        record_id: Any,
        partial: dict[str, Any],
        expected_version: int | None = None
    ) -> bool:
        """
        Apply a partial update to one row.

        With ``expected_version`` the write only happens if the row still
        has that version.

        Returns:
            True if a row was written, False if it was missing or stale

        Raises:
            StoreWriteFailure: If the update fails
        """
        self._check_columns(table, partial.keys())
        encoded = self._encode({k: v for k, v in partial.items() if k not in ("id", "version")})

        assignments = [f"{key} = ?" for key in encoded]
        params: list[Any] = list(encoded.values())
        if table in VERSIONED_TABLES:
            assignments.append("version = version + 1")
        if table == "rooms":
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        if not assignments:
            return False

        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?"
        params.append(record_id)
        if expected_version is not None:
            if table not in VERSIONED_TABLES:
                raise ValueError(f"Table {table} is not versioned")
            sql += " AND version = ?"
            params.append(expected_version)

        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(sql, params)
                if cursor.rowcount == 0:
                    return False
                row = conn.execute(
                    f"SELECT * FROM {table} WHERE id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Update of {table} {record_id} failed: {e}")
            raise StoreWriteFailure(table, "update", e) from e

        self._notify(ChangeEvent(ChangeType.UPDATE, table, self._decode(row)))
        return True

    def delete(self, table: str, record_id: Any) -> bool:
        """
        Delete one row by primary key.

        Returns:
            True if the row existed

        Raises:
            StoreWriteFailure: If the delete fails
        """
        self._check_table(table)
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    f"SELECT * FROM {table} WHERE id = ?", (record_id,)
                ).fetchone()
                if row is None:
                    return False
                conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        except sqlite3.Error as e:
            logger.error(f"Delete from {table} {record_id} failed: {e}")
            raise StoreWriteFailure(table, "delete", e) from e

        self._notify(ChangeEvent(ChangeType.DELETE, table, self._decode(row)))
        return True

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: dict[str, Any] | None = None
    ) -> Subscription:
        """Register a callback for changes to rows of ``table`` matching ``filters``."""
        self._check_columns(table, (filters or {}).keys())
        with self._sub_lock:
            subscription = Subscription(
                id=next(self._sub_ids),
                table=table,
                callback=callback,
                filters=dict(filters or {}),
            )
            self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} on {table} {subscription.filters}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._sub_lock:
            self._subscriptions.pop(subscription.id, None)

    def _notify(self, event: ChangeEvent) -> None:
        with self._sub_lock:
            targets = [
                sub for sub in self._subscriptions.values()
                if sub.matches(event.table, event.row)
            ]
        for sub in targets:
            try:
                sub.callback(event)
            except Exception as e:
                logger.exception(f"Subscriber {sub.id} failed on {event.table} change: {e}")
