"""
WebSocket client for connecting to the party games server.

Handles connection, reconnection, and message passing. Interested parties
register listeners for connection changes, pushed messages and errors.
"""

import asyncio
import json
import logging
import uuid
from enum import Enum, auto
from typing import Any, Callable, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from client.config import ClientSettings, settings as default_settings
from shared.enums import MessageType
from shared.protocol import (
    Message,
    ConnectRequest,
    HeartbeatRequest,
    CreateRoomRequest,
    JoinRoomRequest,
    LeaveRoomRequest,
    StartGameRequest,
    TransferHostRequest,
    GetStateRequest,
    PressControlRequest,
    ReleaseControlRequest,
    SelectCardsRequest,
    FinalChoiceRequest,
    ContinueRoundRequest,
)


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    RECONNECTING = auto()
    FAILED = auto()


class PartyClient:
    """
    WebSocket client for party server communication.

    Listeners:
    - connection listeners: called with the new ConnectionState
    - message listeners: called with every pushed message dict
    - error listeners: called with an error string
    """

    def __init__(self, settings: ClientSettings | None = None, url: str | None = None):
        self._settings = settings or default_settings
        self._url = url or self._settings.server_url

        self._websocket: Optional[ClientConnection] = None
        self._state = ConnectionState.DISCONNECTED
        self._player_id: Optional[str] = None
        self._player_name: Optional[str] = None
        self._room_code: Optional[str] = None
        self._room_id: Optional[int] = None

        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._should_reconnect = True

        # Pending requests waiting for responses
        self._pending_requests: dict[str, asyncio.Future] = {}

        self._connection_listeners: list[Callable[[ConnectionState], None]] = []
        self._message_listeners: list[Callable[[dict], None]] = []
        self._error_listeners: list[Callable[[str], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def player_id(self) -> Optional[str]:
        return self._player_id

    @property
    def player_name(self) -> Optional[str]:
        return self._player_name

    @property
    def room_code(self) -> Optional[str]:
        return self._room_code

    @property
    def room_id(self) -> Optional[int]:
        return self._room_id

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_connection_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        self._connection_listeners.append(callback)

    def add_message_listener(self, callback: Callable[[dict], None]) -> None:
        self._message_listeners.append(callback)

    def remove_message_listener(self, callback: Callable[[dict], None]) -> None:
        if callback in self._message_listeners:
            self._message_listeners.remove(callback)

    def add_error_listener(self, callback: Callable[[str], None]) -> None:
        self._error_listeners.append(callback)

    def _emit(self, listeners: list[Callable], value: Any) -> None:
        for callback in list(listeners):
            try:
                callback(value)
            except Exception as e:
                logger.exception(f"Listener {callback} failed: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        """Update connection state and notify listeners."""
        if self._state != state:
            self._state = state
            self._emit(self._connection_listeners, state)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self, player_name: str, player_id: Optional[str] = None) -> bool:
        """
        Connect to the server.

        Args:
            player_name: Display name for this player
            player_id: Optional player ID for reconnection

        Returns:
            True if connection successful
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return self._state == ConnectionState.CONNECTED

        self._player_name = player_name
        self._player_id = player_id or str(uuid.uuid4())
        self._should_reconnect = True

        return await self._do_connect()

    async def _do_connect(self) -> bool:
        """Perform the actual connection."""
        self._set_state(ConnectionState.CONNECTING)

        try:
            self._websocket = await connect(self._url, ping_interval=30, ping_timeout=10)

            await self._websocket.send(
                ConnectRequest.create(self._player_id, self._player_name).to_json()
            )

            response = await asyncio.wait_for(self._websocket.recv(), timeout=10.0)
            data = json.loads(response)

            if data.get("type") == MessageType.CONNECT.value and data.get("data", {}).get("success"):
                self._set_state(ConnectionState.CONNECTED)

                # Still seated in a room from a previous connection
                self._room_id = data["data"].get("room_id")
                self._room_code = data["data"].get("room_code")
                if self._room_code:
                    logger.info(f"Reattached to room {self._room_code}")

                self._receive_task = asyncio.create_task(self._receive_loop())
                logger.info(f"Connected as {self._player_name} ({self._player_id})")
                return True

            error = data.get("data", {}).get("message", "Connection rejected")
            self._emit(self._error_listeners, error)
            self._set_state(ConnectionState.FAILED)
            return False

        except asyncio.TimeoutError:
            self._emit(self._error_listeners, "Connection timeout")
            self._set_state(ConnectionState.FAILED)
            return False
        except (OSError, websockets.WebSocketException) as e:
            logger.warning(f"Connection failed: {e}")
            self._emit(self._error_listeners, f"Connection failed: {e}")
            self._set_state(ConnectionState.FAILED)
            return False

    async def disconnect(self) -> None:
        """Disconnect from the server."""
        self._should_reconnect = False

        for task in (self._receive_task, self._reconnect_task):
            if task and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._reconnect_task = None

        if self._websocket:
            await self._websocket.close()
            self._websocket = None

        for future in self._pending_requests.values():
            if not future.done():
                future.cancel()
        self._pending_requests.clear()

        self._room_code = None
        self._room_id = None
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected from server")

    async def _receive_loop(self) -> None:
        """Receive messages from server."""
        try:
            async for raw_message in self._websocket:
                try:
                    data = json.loads(raw_message)
                    self._handle_message(data)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse message: {e}")

        except websockets.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            if self._should_reconnect:
                self._reconnect_task = asyncio.create_task(self._reconnect())
            else:
                self._set_state(ConnectionState.DISCONNECTED)

    def _handle_message(self, data: dict) -> None:
        """Handle an incoming message."""
        msg_type = data.get("type")
        request_id = data.get("request_id")

        if msg_type == MessageType.ROOM_JOINED.value:
            self._room_code = data.get("data", {}).get("room_code")
            self._room_id = data.get("data", {}).get("room_id")
        elif msg_type == MessageType.ROOM_LEFT.value:
            self._room_code = None
            self._room_id = None
        elif msg_type == MessageType.ERROR.value and not request_id:
            self._emit(self._error_listeners, data.get("data", {}).get("message", "Unknown error"))

        # Responses to pending requests resolve their future; everything is
        # still offered to listeners so views stay current
        if request_id and request_id in self._pending_requests:
            future = self._pending_requests.pop(request_id)
            if not future.done():
                future.set_result(data)

        self._emit(self._message_listeners, data)

    async def _reconnect(self) -> None:
        """Attempt to reconnect to the server."""
        self._set_state(ConnectionState.RECONNECTING)

        for attempt in range(self._settings.reconnect_attempts):
            logger.info(f"Reconnection attempt {attempt + 1}/{self._settings.reconnect_attempts}")

            await asyncio.sleep(self._settings.reconnect_delay)

            if not self._should_reconnect:
                break

            if await self._do_connect():
                return

        self._set_state(ConnectionState.FAILED)
        self._emit(self._error_listeners, "Failed to reconnect to server")

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, message: Message | dict) -> bool:
        """
        Send a message to the server.

        Returns:
            True if the message was written to the socket
        """
        if not self._websocket or self._state != ConnectionState.CONNECTED:
            self._emit(self._error_listeners, "Not connected to server")
            return False

        data = message.to_json() if isinstance(message, Message) else json.dumps(message)
        try:
            await self._websocket.send(data)
            return True
        except websockets.ConnectionClosed as e:
            logger.warning(f"Failed to send message: {e}")
            self._emit(self._error_listeners, f"Failed to send: {e}")
            return False

    async def send_and_wait(
        self,
        message: Message,
        timeout: float | None = None
    ) -> Optional[dict]:
        """
        Send a message and wait for the response carrying its request id.

        Returns:
            Response data or None on timeout/error
        """
        if not message.request_id:
            message.request_id = str(uuid.uuid4())
        request_id = message.request_id

        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            if not await self.send(message):
                self._pending_requests.pop(request_id, None)
                return None
            return await asyncio.wait_for(future, timeout=timeout or self._settings.request_timeout)
        except asyncio.TimeoutError:
            self._pending_requests.pop(request_id, None)
            self._emit(self._error_listeners, "Request timed out")
            return None
        except asyncio.CancelledError:
            self._pending_requests.pop(request_id, None)
            raise

    # =========================================================================
    # Convenience methods for room operations
    # =========================================================================

    async def create_room(self, game_type: str, room_settings: dict | None = None) -> Optional[dict]:
        """Create a room; returns the ROOM_JOINED or ERROR message."""
        return await self.send_and_wait(
            CreateRoomRequest.create(self._player_name, game_type, room_settings)
        )

    async def join_room(self, room_code: str) -> Optional[dict]:
        """Join a room by code."""
        return await self.send_and_wait(JoinRoomRequest.create(room_code, self._player_name))

    async def leave_room(self) -> bool:
        """Leave the current room."""
        response = await self.send_and_wait(LeaveRoomRequest.create())
        return bool(response and response.get("type") == MessageType.ROOM_LEFT.value)

    async def start_game(self) -> Optional[dict]:
        """Start the game (host only)."""
        return await self.send_and_wait(StartGameRequest.create())

    async def transfer_host(self, new_host_id: str) -> Optional[dict]:
        return await self.send_and_wait(TransferHostRequest.create(new_host_id))

    async def get_state(self) -> Optional[dict]:
        """Request a full room snapshot."""
        return await self.send_and_wait(GetStateRequest.create())

    async def heartbeat(self) -> bool:
        """Send a heartbeat; the server only answers on error."""
        return await self.send(HeartbeatRequest.create())

    async def press_control(self) -> Optional[dict]:
        return await self.send_and_wait(PressControlRequest.create())

    async def release_control(self) -> Optional[dict]:
        return await self.send_and_wait(ReleaseControlRequest.create())

    async def select_cards(self, cards: list[int]) -> Optional[dict]:
        return await self.send_and_wait(SelectCardsRequest.create(cards))

    async def final_choice(self, choice: str) -> Optional[dict]:
        return await self.send_and_wait(FinalChoiceRequest.create(choice))

    async def continue_round(self) -> Optional[dict]:
        """Leave the results phase (host only)."""
        return await self.send_and_wait(ContinueRoundRequest.create())
