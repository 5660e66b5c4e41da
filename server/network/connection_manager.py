"""
Connection manager for WebSocket clients.

Tracks connected clients, their player IDs, and room associations.
Handles sending messages to individual players or fanning out to a room,
optionally building a different message per recipient.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from websockets.asyncio.server import ServerConnection

from shared.protocol import Message


logger = logging.getLogger(__name__)


@dataclass
class PlayerConnection:
    """Tracks a connected player's socket."""
    player_id: str
    player_name: str
    websocket: ServerConnection
    room_id: int | None = None
    connected_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)

    def update_activity(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = datetime.now()


class ConnectionManager:
    """
    Manages WebSocket connections and player-to-room mappings.

    A player that drops keeps their room association so that a reconnect
    on a new socket picks up where it left off.
    """

    def __init__(self):
        # websocket -> PlayerConnection
        self._connections: dict[ServerConnection, PlayerConnection] = {}

        # player_id -> websocket (for quick lookup)
        self._player_to_socket: dict[str, ServerConnection] = {}

        # room_id -> set of player_ids
        self._room_players: dict[int, set[str]] = {}

        # Disconnected players awaiting reconnection: player_id -> PlayerConnection
        self._disconnected_players: dict[str, PlayerConnection] = {}

        self._lock = asyncio.Lock()

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(
        self,
        websocket: ServerConnection,
        player_id: str,
        player_name: str
    ) -> PlayerConnection:
        """
        Register a new player connection.

        If the player was previously disconnected, restores their room association.
        """
        async with self._lock:
            previous = self._player_to_socket.get(player_id)
            if previous is not None and previous is not websocket:
                # Same player on a new socket (second tab): the new one wins
                stale = self._connections.pop(previous, None)
                if stale:
                    self._disconnected_players[player_id] = stale

            if player_id in self._disconnected_players:
                connection = self._disconnected_players.pop(player_id)
                connection.websocket = websocket
                connection.player_name = player_name
                connection.connected_at = datetime.now()
                connection.update_activity()
                logger.info(f"Player {player_name} ({player_id}) reconnected")
            else:
                connection = PlayerConnection(
                    player_id=player_id,
                    player_name=player_name,
                    websocket=websocket,
                )
                logger.info(f"Player {player_name} ({player_id}) connected")

            self._connections[websocket] = connection
            self._player_to_socket[player_id] = websocket
            return connection

    async def disconnect(self, websocket: ServerConnection) -> PlayerConnection | None:
        """
        Handle a socket closing.

        Returns:
            The PlayerConnection if this socket was still the player's current one
        """
        async with self._lock:
            connection = self._connections.pop(websocket, None)
            if connection is None:
                return None

            if self._player_to_socket.get(connection.player_id) is websocket:
                self._player_to_socket.pop(connection.player_id, None)

            if connection.room_id is not None:
                self._disconnected_players[connection.player_id] = connection
                logger.info(
                    f"Player {connection.player_name} ({connection.player_id}) "
                    f"disconnected from room {connection.room_id}, awaiting reconnection"
                )
            else:
                logger.info(f"Player {connection.player_name} ({connection.player_id}) disconnected")
            return connection

    # =========================================================================
    # Room Association
    # =========================================================================

    async def join_room(self, player_id: str, room_id: int) -> bool:
        """
        Associate a player with a room.

        Returns:
            True if successful, False if player not connected
        """
        async with self._lock:
            connection = self._connection_for(player_id)
            if connection is None:
                return False

            if connection.room_id is not None and connection.room_id != room_id:
                self._remove_from_room(player_id, connection.room_id)

            connection.room_id = room_id
            self._room_players.setdefault(room_id, set()).add(player_id)
            logger.debug(f"Player {player_id} attached to room {room_id}")
            return True

    async def leave_room(self, player_id: str) -> int | None:
        """
        Remove a player from their current room.

        Returns:
            The room_id they left, or None if not in a room
        """
        async with self._lock:
            connection = self._connection_for(player_id)
            if connection is None:
                connection = self._disconnected_players.pop(player_id, None)
            if connection is None or connection.room_id is None:
                return None

            room_id = connection.room_id
            self._remove_from_room(player_id, room_id)
            connection.room_id = None
            return room_id

    def _connection_for(self, player_id: str) -> PlayerConnection | None:
        websocket = self._player_to_socket.get(player_id)
        return self._connections.get(websocket) if websocket else None

    def _remove_from_room(self, player_id: str, room_id: int) -> None:
        """Internal helper to remove player from room tracking (no lock)."""
        if room_id in self._room_players:
            self._room_players[room_id].discard(player_id)
            if not self._room_players[room_id]:
                del self._room_players[room_id]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_room_id(self, player_id: str) -> int | None:
        """Get room ID for a player, connected or not."""
        connection = self._connection_for(player_id)
        if connection:
            return connection.room_id
        disconnected = self._disconnected_players.get(player_id)
        return disconnected.room_id if disconnected else None

    def get_connected_players_in_room(self, room_id: int) -> list[PlayerConnection]:
        """Get all currently connected players in a room."""
        connections = []
        for player_id in self._room_players.get(room_id, set()):
            conn = self._connection_for(player_id)
            if conn:
                connections.append(conn)
        return connections

    def get_room_ids(self) -> list[int]:
        return list(self._room_players.keys())

    def is_player_connected(self, player_id: str) -> bool:
        """Check if a player is currently connected."""
        return player_id in self._player_to_socket

    # =========================================================================
    # Messaging
    # =========================================================================

    async def send_to_player(self, player_id: str, message: Message | dict | str) -> bool:
        """
        Send a message to a specific player.

        Returns:
            True if sent successfully, False if player not connected
        """
        websocket = self._player_to_socket.get(player_id)
        if not websocket:
            return False
        return await self._send_to_websocket(websocket, message)

    async def broadcast_to_room(
        self,
        room_id: int,
        message: Message | Callable[[str], Message | None],
        exclude_player_id: str | None = None
    ) -> int:
        """
        Send to every connected player in a room.

        Args:
            room_id: The room to broadcast to
            message: A message, or a callable building one per recipient id
                (returning None skips that recipient)
            exclude_player_id: Optional player to leave out

        Returns:
            Number of players the message was sent to
        """
        sent_count = 0
        for conn in self.get_connected_players_in_room(room_id):
            if exclude_player_id and conn.player_id == exclude_player_id:
                continue
            outgoing = message(conn.player_id) if callable(message) else message
            if outgoing is None:
                continue
            if await self._send_to_websocket(conn.websocket, outgoing):
                sent_count += 1
        return sent_count

    async def _send_to_websocket(
        self,
        websocket: ServerConnection,
        message: Message | dict | str
    ) -> bool:
        """Internal helper to send a message to a websocket."""
        try:
            if isinstance(message, Message):
                data = message.to_json()
            elif isinstance(message, dict):
                data = json.dumps(message)
            else:
                data = message

            await websocket.send(data)

            connection = self._connections.get(websocket)
            if connection:
                connection.update_activity()
            return True

        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            return False

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "total_players": len(self._player_to_socket),
            "active_rooms": len(self._room_players),
            "disconnected_awaiting_reconnect": len(self._disconnected_players),
            "players_per_room": {
                room_id: len(players)
                for room_id, players in self._room_players.items()
            },
        }
