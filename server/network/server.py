"""
WebSocket server for the party games.

Main entry point that ties together connection management, room
management, the per-room scheduler and message handling. Row changes in
the record store are pushed to the clients of the affected room, redacted
for each recipient.
"""

import asyncio
import json
import logging
import signal
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection, serve

from server.config import settings
from server.game_engine import PresenceTracker, redact_player, now_ms
from server.network.connection_manager import ConnectionManager
from server.network.game_manager import RoomManager
from server.network.message_handler import MessageHandler, HandleResult, build_room_state
from server.network.scheduler import RoomScheduler
from server.persistence import init_database, RecordStore, RoomRepository, ChangeEvent
from shared.enums import MessageType, ChangeType, GameType
from shared.protocol import (
    ErrorMessage,
    RoomUpdatedMessage,
    PlayerUpdatedMessage,
    PlayerRemovedMessage,
)


logger = logging.getLogger(__name__)


class PartyServer:
    """
    WebSocket server for party game rooms.

    Handles client connections, routes messages, and keeps every client's
    view of its room in sync with the store.
    """

    def __init__(
        self,
        host: str = None,
        port: int = None,
        db_path: str = None
    ):
        self.host = host or settings.HOST
        self.port = port or settings.PORT

        # Initialize storage
        db = init_database(db_path)
        self._repository = RoomRepository(RecordStore(db))

        # Initialize managers
        presence = PresenceTracker(settings.HEARTBEAT_INTERVAL, settings.PRESENCE_STALE_AFTER)
        self._connections = ConnectionManager()
        self._rooms = RoomManager(self._repository, presence)
        self._scheduler = RoomScheduler(self._rooms)
        self._handler = MessageHandler(self._rooms)

        # Change fan-out
        self._subscriptions = []
        self._outbox: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._room_cache: dict[int, dict] = {}
        self._background: list[asyncio.Task] = []

        # Server state
        self._server = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def rooms(self) -> RoomManager:
        return self._rooms

    async def start(self) -> None:
        """Start the WebSocket server and wait until it is stopped."""
        await self.open()
        await self._shutdown_event.wait()

    async def open(self) -> None:
        """Bind the socket and start the background loops."""
        self._running = True
        self._shutdown_event.clear()
        self._loop = asyncio.get_running_loop()
        self._outbox = asyncio.Queue()

        self._rooms.load_active_rooms()
        self._subscriptions = [
            self._repository.subscribe_rooms(self._on_store_change),
            self._repository.subscribe_players(self._on_store_change),
        ]

        await self._scheduler.start()
        self._background = [
            asyncio.create_task(self._dispatch_loop()),
            asyncio.create_task(self._reconcile_loop()),
        ]

        self._server = await serve(
            self._handle_client,
            self.host,
            self.port,
            ping_interval=30,
            ping_timeout=10,
        )

        logger.info(f"Party server started on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Shutting down server...")
        self._running = False

        for subscription in self._subscriptions:
            self._repository.unsubscribe(subscription)
        self._subscriptions = []

        await self._scheduler.stop()
        for task in self._background:
            task.cancel()
        for task in self._background:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._background = []

        if self._server:
            self._server.close()
            await self._server.wait_closed()

        self._shutdown_event.set()
        logger.info("Server stopped")

    def request_shutdown(self) -> None:
        """Request server shutdown (can be called from signal handler)."""
        asyncio.create_task(self.stop())

    # =========================================================================
    # Client lifecycle
    # =========================================================================

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """
        Handle a client connection.

        The first message must be a CONNECT message with player_id and player_name.
        After that, messages are routed through the message handler.
        """
        player_id = None

        try:
            player_id = await self._handle_connect(websocket)

            if not player_id:
                return

            async for raw_message in websocket:
                if not self._running:
                    break

                await self._handle_message(websocket, player_id, raw_message)

        except websockets.ConnectionClosed:
            logger.debug(f"Connection closed for player {player_id}")
        except Exception as e:
            logger.exception(f"Error handling client {player_id}: {e}")
        finally:
            if player_id:
                await self._handle_disconnect(websocket, player_id)

    async def _handle_connect(self, websocket: ServerConnection) -> str | None:
        """
        Handle the CONNECT handshake.

        Returns player_id if successful, None otherwise.
        """
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=30.0)
            data = json.loads(raw)

            if data.get("type") != MessageType.CONNECT.value:
                await self._send_error(websocket, "First message must be CONNECT", "CONNECT_REQUIRED")
                return None

            player_id = data.get("data", {}).get("player_id")
            player_name = data.get("data", {}).get("player_name", "Player")

            if not player_id:
                await self._send_error(websocket, "player_id is required", "MISSING_PLAYER_ID")
                return None

            await self._connections.connect(websocket, player_id, player_name)

            # Reattach to a room the player is still seated in
            managed = self._rooms.get_room_for_player(player_id)
            room_id = managed.room_id if managed else None
            if managed:
                await self._connections.join_room(player_id, managed.room_id)
                self._rooms.heartbeat(player_id)
                self._scheduler.ensure_room(managed.room_id)

            await websocket.send(json.dumps({
                "type": MessageType.CONNECT.value,
                "data": {
                    "success": True,
                    "player_id": player_id,
                    "player_name": player_name,
                    "room_id": room_id,
                    "room_code": managed.room_code if managed else None,
                    "server_time": now_ms(),
                }
            }))

            if managed:
                state = build_room_state(self._rooms, managed.room_id, player_id)
                if state:
                    await websocket.send(state.to_json())
                logger.info(f"Player {player_name} ({player_id}) back in room {managed.room_code}")

            return player_id

        except asyncio.TimeoutError:
            await self._send_error(websocket, "Connection timeout", "TIMEOUT")
            return None
        except json.JSONDecodeError:
            await self._send_error(websocket, "Invalid JSON", "PARSE_ERROR")
            return None
        except websockets.ConnectionClosed:
            return None
        except Exception as e:
            logger.exception(f"Error during connect: {e}")
            await self._send_error(websocket, str(e), "CONNECT_ERROR")
            return None

    async def _handle_message(
        self,
        websocket: ServerConnection,
        player_id: str,
        raw_message: str
    ) -> None:
        """Handle an incoming message from a connected player."""
        try:
            result = await self._handler.handle_message(player_id, raw_message)
            await self._apply_result(websocket, player_id, result)
        except websockets.ConnectionClosed:
            raise
        except Exception as e:
            logger.exception(f"Error handling message from {player_id}: {e}")
            await self._send_error(websocket, f"Internal error: {e}", "INTERNAL_ERROR")

    async def _apply_result(
        self,
        websocket: ServerConnection,
        player_id: str,
        result: HandleResult
    ) -> None:
        if result.left_room_id is not None:
            await self._connections.leave_room(player_id)
        if result.joined_room_id is not None:
            await self._connections.join_room(player_id, result.joined_room_id)
            self._scheduler.ensure_room(result.joined_room_id)

        if result.response:
            await websocket.send(result.response.to_json())

        if result.send_state:
            room_id = self._connections.get_room_id(player_id)
            state = build_room_state(self._rooms, room_id, player_id) if room_id else None
            if state:
                await websocket.send(state.to_json())

        if result.evaluate_room_id is not None:
            self._scheduler.request_evaluation(result.evaluate_room_id)

    async def _handle_disconnect(self, websocket: ServerConnection, player_id: str) -> None:
        """Handle a socket closing."""
        connection = await self._connections.disconnect(websocket)
        if connection is None or self._connections.is_player_connected(player_id):
            # A newer socket for the same player is live
            return
        if connection.room_id is not None:
            try:
                self._rooms.mark_disconnected(player_id)
            except Exception as e:
                logger.warning(f"Could not mark {player_id} disconnected: {e}")

    # =========================================================================
    # Store change fan-out
    # =========================================================================

    def _on_store_change(self, event: ChangeEvent) -> None:
        """Store callback; hands the event to the dispatch loop in order."""
        if not self._running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, event)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._outbox.get()
            try:
                await self._fan_out(event)
            except Exception as e:
                logger.exception(f"Failed to push {event.table} change: {e}")

    async def _fan_out(self, event: ChangeEvent) -> None:
        row = event.row
        if event.table == "rooms":
            self._room_cache[row["id"]] = row
            await self._connections.broadcast_to_room(
                row["id"], RoomUpdatedMessage.create(row, now_ms())
            )
            return

        room_id = row["room_id"]
        if event.change_type == ChangeType.DELETE:
            await self._connections.broadcast_to_room(room_id, PlayerRemovedMessage.create(row["id"]))
            return

        room = self._room_cache.get(room_id)
        if room is None:
            record = self._repository.get_room(room_id)
            if record is None:
                return
            room = self._room_cache[room_id] = record.to_dict()
        game_type = GameType(room["game_type"])
        game_phase = (room.get("game_state") or {}).get("gamePhase", "")

        await self._connections.broadcast_to_room(
            room_id,
            lambda viewer_id: PlayerUpdatedMessage.create(
                redact_player(row, viewer_id, game_type, game_phase), event.change_type.value
            ),
        )

    async def _reconcile_loop(self) -> None:
        """Periodically resend full snapshots so missed pushes heal."""
        while True:
            await asyncio.sleep(settings.RECONCILE_INTERVAL)
            for room_id in self._connections.get_room_ids():
                await self._connections.broadcast_to_room(
                    room_id,
                    lambda viewer_id, room_id=room_id: build_room_state(self._rooms, room_id, viewer_id),
                )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _send_error(self, websocket: ServerConnection, message: str, code: str) -> None:
        """Send an error message to a websocket."""
        try:
            await websocket.send(ErrorMessage.create(message, code).to_json())
        except websockets.ConnectionClosed:
            logger.debug(f"Could not send {code}: connection closed")

    def get_stats(self) -> dict[str, Any]:
        """Get server statistics."""
        return {
            "running": self._running,
            "connections": self._connections.get_stats(),
            "rooms": self._rooms.get_stats(),
            "scheduler": self._scheduler.get_stats(),
        }


async def run_server(host: str = None, port: int = None, db_path: str = None) -> None:
    """
    Run the party server.

    Sets up signal handlers for graceful shutdown.
    """
    server = PartyServer(host, port, db_path)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, server.request_shutdown)

    try:
        await server.start()
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


def main():
    """Entry point for running the server."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    settings.ensure_directories()

    print(f"Starting party server on ws://{settings.HOST}:{settings.PORT}")
    print("Press Ctrl+C to stop")

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    main()
