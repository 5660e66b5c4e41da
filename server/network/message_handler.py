"""
Message handler for routing client messages to room operations.

Parses incoming messages, calls the room manager or the room's coordinator,
and turns the outcome into a response for the acting client. Other clients
learn about changes through the store subscriptions, not from here.
"""

import logging
from dataclasses import dataclass

from server.game_engine import (
    AuctionCoordinator,
    RemoveOneCoordinator,
    ValidationResult,
    ActionResult,
    redact_room,
    now_ms,
)
from server.network.game_manager import RoomManager, ManagedRoom
from server.persistence import StoreWriteFailure
from shared.protocol import (
    Message,
    ErrorMessage,
    ActionAckMessage,
    RoomJoinedMessage,
    RoomLeftMessage,
    RoomStateMessage,
    parse_message,
)
from shared.enums import MessageType


logger = logging.getLogger(__name__)


@dataclass
class HandleResult:
    """Result of handling a message."""
    # Response to send back to the requesting player (None if no response needed)
    response: Message | None = None
    # Room the player is now attached to
    joined_room_id: int | None = None
    # Room the player just left
    left_room_id: int | None = None
    # Ask the scheduler for a settle-delayed evaluation of the player's room
    evaluate_room_id: int | None = None
    # Follow up with a full ROOM_STATE snapshot to the requester
    send_state: bool = False


def build_room_state(manager: RoomManager, room_id: int, viewer_id: str | None) -> RoomStateMessage | None:
    """Full snapshot of a room, redacted for ``viewer_id``."""
    repository = manager.repository
    room = repository.get_room(room_id)
    if room is None:
        return None
    players = [p.to_dict() for p in repository.get_players(room_id)]
    room_dict = room.to_dict()
    return RoomStateMessage.create(room_dict, redact_room(room_dict, players, viewer_id), now_ms())


class MessageHandler:
    """
    Routes incoming messages to room operations.

    Each handler method returns a HandleResult; store failures are caught
    here, at the action boundary, and reported to the acting client only.
    """

    def __init__(self, room_manager: RoomManager):
        self._rooms = room_manager

    async def handle_message(
        self,
        player_id: str,
        message: Message | str | dict
    ) -> HandleResult:
        """
        Handle an incoming message from a player.

        Args:
            player_id: ID of the player sending the message
            message: The message (Message object, JSON string, or dict)

        Returns:
            HandleResult with the response and follow-up flags
        """
        if isinstance(message, str):
            try:
                message = parse_message(message)
            except Exception as e:
                logger.error(f"Failed to parse message: {e}")
                return HandleResult(
                    response=ErrorMessage.create(f"Invalid message format: {e}", "PARSE_ERROR")
                )
        elif isinstance(message, dict):
            try:
                message = Message.from_dict(message)
            except Exception as e:
                logger.error(f"Failed to parse message dict: {e}")
                return HandleResult(
                    response=ErrorMessage.create(f"Invalid message format: {e}", "PARSE_ERROR")
                )

        handler = self._get_handler(message.type)
        if not handler:
            return HandleResult(
                response=ErrorMessage.create(
                    f"Unknown message type: {message.type.value}",
                    "UNKNOWN_MESSAGE_TYPE",
                    message.request_id
                )
            )

        try:
            result = await handler(player_id, message)
        except StoreWriteFailure as e:
            logger.warning(f"Store write failed for {message.type.value} from {player_id}: {e}")
            result = HandleResult(
                response=ErrorMessage.create(
                    "Could not save your action, please try again",
                    ActionResult.STORE_WRITE_FAILURE.name,
                )
            )
        except Exception as e:
            logger.exception(f"Error handling message {message.type}: {e}")
            result = HandleResult(
                response=ErrorMessage.create(f"Internal error: {e}", "INTERNAL_ERROR")
            )

        # Preserve request_id in response
        if result.response and message.request_id:
            result.response.request_id = message.request_id
        return result

    def _get_handler(self, message_type: MessageType):
        """Get the handler method for a message type."""
        handlers = {
            # Room lifecycle
            MessageType.CREATE_ROOM: self._handle_create_room,
            MessageType.JOIN_ROOM: self._handle_join_room,
            MessageType.LEAVE_ROOM: self._handle_leave_room,
            MessageType.START_GAME: self._handle_start_game,
            MessageType.TRANSFER_HOST: self._handle_transfer_host,
            MessageType.GET_STATE: self._handle_get_state,
            MessageType.HEARTBEAT: self._handle_heartbeat,

            # Round actions
            MessageType.PRESS_CONTROL: self._handle_press,
            MessageType.RELEASE_CONTROL: self._handle_release,
            MessageType.SELECT_CARDS: self._handle_select_cards,
            MessageType.FINAL_CHOICE: self._handle_final_choice,
            MessageType.CONTINUE_ROUND: self._handle_continue,
        }
        return handlers.get(message_type)

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _get_player_room(self, player_id: str) -> tuple[ManagedRoom | None, HandleResult | None]:
        """Get the room a player is in, or an error result."""
        managed = self._rooms.get_room_for_player(player_id)
        if not managed:
            return None, HandleResult(
                response=ErrorMessage.create("You are not in a room", ActionResult.NOT_IN_ROOM.name)
            )
        return managed, None

    def _action_result(
        self,
        action: MessageType,
        managed: ManagedRoom,
        result: ValidationResult
    ) -> HandleResult:
        """Translate a coordinator outcome into a response."""
        if result.valid:
            return HandleResult(
                response=ActionAckMessage.create(action.value, result.message),
                evaluate_room_id=managed.room_id if result.data.get("evaluate") else None,
            )
        if result.is_noop:
            return HandleResult(
                response=ActionAckMessage.create(action.value, result.message, noop=True),
                send_state=True,
            )
        return HandleResult(response=ErrorMessage.create(result.message, result.result.name))

    def _unsupported(self, managed: ManagedRoom, action: MessageType) -> HandleResult:
        return HandleResult(
            response=ErrorMessage.create(
                f"{action.value} is not part of {managed.game_type.value}",
                ActionResult.INVALID_ACTION.name,
            )
        )

    # =========================================================================
    # Room Handlers
    # =========================================================================

    async def _handle_create_room(self, player_id: str, message: Message) -> HandleResult:
        """Handle CREATE_ROOM request."""
        player_name = (message.data.get("player_name") or "").strip()
        if not player_name:
            return HandleResult(response=ErrorMessage.create("player_name is required", "INVALID_ACTION"))

        result, managed = self._rooms.create_room(
            player_id,
            player_name,
            message.data.get("game_type", ""),
            message.data.get("settings") or {},
        )
        if not result.valid:
            return HandleResult(response=ErrorMessage.create(result.message, result.result.name))

        return HandleResult(
            response=RoomJoinedMessage.create(managed.room_code, player_id, managed.room_id),
            joined_room_id=managed.room_id,
            send_state=True,
        )

    async def _handle_join_room(self, player_id: str, message: Message) -> HandleResult:
        """Handle JOIN_ROOM request."""
        player_name = (message.data.get("player_name") or "").strip()
        room_code = message.data.get("room_code") or ""
        if not player_name or not room_code:
            return HandleResult(
                response=ErrorMessage.create("room_code and player_name are required", "INVALID_ACTION")
            )

        result, managed = self._rooms.join_room(player_id, room_code, player_name)
        if not result.valid:
            return HandleResult(response=ErrorMessage.create(result.message, result.result.name))

        return HandleResult(
            response=RoomJoinedMessage.create(managed.room_code, player_id, managed.room_id),
            joined_room_id=managed.room_id,
            send_state=True,
        )

    async def _handle_leave_room(self, player_id: str, message: Message) -> HandleResult:
        """Handle LEAVE_ROOM request."""
        result, managed = self._rooms.leave_room(player_id)
        if not result.valid:
            return HandleResult(response=ErrorMessage.create(result.message, result.result.name))
        return HandleResult(
            response=RoomLeftMessage.create(managed.room_code),
            left_room_id=managed.room_id,
        )

    async def _handle_start_game(self, player_id: str, message: Message) -> HandleResult:
        """Handle START_GAME request (host only)."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        result = managed.coordinator.start_game(player_id)
        return self._action_result(MessageType.START_GAME, managed, result)

    async def _handle_transfer_host(self, player_id: str, message: Message) -> HandleResult:
        """Handle TRANSFER_HOST request (host only)."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        new_host_id = message.data.get("new_host_id")
        if not new_host_id:
            return HandleResult(response=ErrorMessage.create("new_host_id is required", "INVALID_ACTION"))
        result = managed.coordinator.transfer_host(player_id, new_host_id)
        return self._action_result(MessageType.TRANSFER_HOST, managed, result)

    async def _handle_get_state(self, player_id: str, message: Message) -> HandleResult:
        """Handle GET_STATE request."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        return HandleResult(response=build_room_state(self._rooms, managed.room_id, player_id))

    async def _handle_heartbeat(self, player_id: str, message: Message) -> HandleResult:
        """Handle HEARTBEAT; no response on success."""
        result = self._rooms.heartbeat(player_id)
        if not result.valid:
            return HandleResult(response=ErrorMessage.create(result.message, result.result.name))
        return HandleResult()

    # =========================================================================
    # Round Action Handlers
    # =========================================================================

    async def _handle_press(self, player_id: str, message: Message) -> HandleResult:
        """Handle PRESS_CONTROL."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        if not isinstance(managed.coordinator, AuctionCoordinator):
            return self._unsupported(managed, MessageType.PRESS_CONTROL)
        result = managed.coordinator.press(player_id)
        return self._action_result(MessageType.PRESS_CONTROL, managed, result)

    async def _handle_release(self, player_id: str, message: Message) -> HandleResult:
        """Handle RELEASE_CONTROL."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        if not isinstance(managed.coordinator, AuctionCoordinator):
            return self._unsupported(managed, MessageType.RELEASE_CONTROL)
        result = managed.coordinator.release(player_id)
        return self._action_result(MessageType.RELEASE_CONTROL, managed, result)

    async def _handle_select_cards(self, player_id: str, message: Message) -> HandleResult:
        """Handle SELECT_CARDS."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        if not isinstance(managed.coordinator, RemoveOneCoordinator):
            return self._unsupported(managed, MessageType.SELECT_CARDS)
        cards = message.data.get("cards")
        if not isinstance(cards, list):
            return HandleResult(response=ErrorMessage.create("cards must be a list", "INVALID_ACTION"))
        result = managed.coordinator.select_cards(player_id, cards)
        return self._action_result(MessageType.SELECT_CARDS, managed, result)

    async def _handle_final_choice(self, player_id: str, message: Message) -> HandleResult:
        """Handle FINAL_CHOICE."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        if not isinstance(managed.coordinator, RemoveOneCoordinator):
            return self._unsupported(managed, MessageType.FINAL_CHOICE)
        result = managed.coordinator.submit_final_choice(player_id, message.data.get("choice", ""))
        return self._action_result(MessageType.FINAL_CHOICE, managed, result)

    async def _handle_continue(self, player_id: str, message: Message) -> HandleResult:
        """Handle CONTINUE_ROUND (host only)."""
        managed, error = self._get_player_room(player_id)
        if error:
            return error
        result = managed.coordinator.continue_to_next_round(player_id)
        return self._action_result(MessageType.CONTINUE_ROUND, managed, result)
