"""
Message protocol for client-server communication.

All messages are JSON objects with a "type" field and optional "data" field.
Row payloads (rooms and players) travel in their store shape so clients can
reconcile them by version.
"""

from dataclasses import dataclass, field
from typing import Any
import json

from shared.enums import MessageType


@dataclass
class Message:
    """Base message structure for all client-server communication."""
    type: MessageType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None  # Optional, for matching requests to responses

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps(self.to_dict())

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "data": self.data,
            "request_id": self.request_id,
        }

    @classmethod
    def from_json(cls, json_str: str) -> "Message":
        """Deserialize message from JSON string."""
        raw = json.loads(json_str)
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "Message":
        """Create message from dictionary."""
        return cls(
            type=MessageType(raw["type"]),
            data=raw.get("data") or {},
            request_id=raw.get("request_id"),
        )


@dataclass
class ErrorMessage(Message):
    """Error response message, sent to the acting client only."""
    type: MessageType = MessageType.ERROR

    @classmethod
    def create(cls, message: str, code: str = "ERROR", request_id: str | None = None) -> "ErrorMessage":
        """Create an error message."""
        return cls(
            data={"message": message, "code": code},
            request_id=request_id,
        )


# =============================================================================
# Connection Messages (Client -> Server)
# =============================================================================

@dataclass
class ConnectRequest(Message):
    """First message on every connection; identifies the player."""
    type: MessageType = MessageType.CONNECT

    @classmethod
    def create(cls, player_id: str, player_name: str, request_id: str | None = None) -> "ConnectRequest":
        return cls(
            data={"player_id": player_id, "player_name": player_name},
            request_id=request_id,
        )


@dataclass
class HeartbeatRequest(Message):
    """Periodic liveness signal while attached to a room."""
    type: MessageType = MessageType.HEARTBEAT

    @classmethod
    def create(cls, request_id: str | None = None) -> "HeartbeatRequest":
        return cls(request_id=request_id)


# =============================================================================
# Room Messages (Client -> Server)
# =============================================================================

@dataclass
class CreateRoomRequest(Message):
    """Request to create a new room; the sender becomes host."""
    type: MessageType = MessageType.CREATE_ROOM

    @classmethod
    def create(
        cls,
        player_name: str,
        game_type: str,
        settings: dict | None = None,
        request_id: str | None = None
    ) -> "CreateRoomRequest":
        return cls(
            data={
                "player_name": player_name,
                "game_type": game_type,
                "settings": settings or {},
            },
            request_id=request_id,
        )


@dataclass
class JoinRoomRequest(Message):
    """Request to join a room by its shareable code."""
    type: MessageType = MessageType.JOIN_ROOM

    @classmethod
    def create(cls, room_code: str, player_name: str, request_id: str | None = None) -> "JoinRoomRequest":
        return cls(
            data={"room_code": room_code, "player_name": player_name},
            request_id=request_id,
        )


@dataclass
class LeaveRoomRequest(Message):
    """Request to leave the current room."""
    type: MessageType = MessageType.LEAVE_ROOM

    @classmethod
    def create(cls, request_id: str | None = None) -> "LeaveRoomRequest":
        return cls(request_id=request_id)


@dataclass
class StartGameRequest(Message):
    """Request to start the game (host only)."""
    type: MessageType = MessageType.START_GAME

    @classmethod
    def create(cls, request_id: str | None = None) -> "StartGameRequest":
        return cls(request_id=request_id)


@dataclass
class TransferHostRequest(Message):
    """Request to hand host duties to another player (host only)."""
    type: MessageType = MessageType.TRANSFER_HOST

    @classmethod
    def create(cls, new_host_id: str, request_id: str | None = None) -> "TransferHostRequest":
        return cls(data={"new_host_id": new_host_id}, request_id=request_id)


@dataclass
class GetStateRequest(Message):
    """Request a full reconciliation snapshot."""
    type: MessageType = MessageType.GET_STATE

    @classmethod
    def create(cls, request_id: str | None = None) -> "GetStateRequest":
        return cls(request_id=request_id)


# =============================================================================
# Round Action Messages (Client -> Server)
# =============================================================================

@dataclass
class PressControlRequest(Message):
    """Press (and hold) the bid button."""
    type: MessageType = MessageType.PRESS_CONTROL

    @classmethod
    def create(cls, request_id: str | None = None) -> "PressControlRequest":
        return cls(request_id=request_id)


@dataclass
class ReleaseControlRequest(Message):
    """Release the bid button."""
    type: MessageType = MessageType.RELEASE_CONTROL

    @classmethod
    def create(cls, request_id: str | None = None) -> "ReleaseControlRequest":
        return cls(request_id=request_id)


@dataclass
class SelectCardsRequest(Message):
    """Submit the two cards picked for this round."""
    type: MessageType = MessageType.SELECT_CARDS

    @classmethod
    def create(cls, cards: list[int], request_id: str | None = None) -> "SelectCardsRequest":
        return cls(data={"cards": list(cards)}, request_id=request_id)


@dataclass
class FinalChoiceRequest(Message):
    """Pick which of the selected cards to play."""
    type: MessageType = MessageType.FINAL_CHOICE

    @classmethod
    def create(cls, choice: str, request_id: str | None = None) -> "FinalChoiceRequest":
        return cls(data={"choice": choice}, request_id=request_id)


@dataclass
class ContinueRoundRequest(Message):
    """Advance out of the results phase (host only)."""
    type: MessageType = MessageType.CONTINUE_ROUND

    @classmethod
    def create(cls, request_id: str | None = None) -> "ContinueRoundRequest":
        return cls(request_id=request_id)


# =============================================================================
# Server -> Client Messages
# =============================================================================

@dataclass
class RoomJoinedMessage(Message):
    """Response to a successful create or join."""
    type: MessageType = MessageType.ROOM_JOINED

    @classmethod
    def create(cls, room_code: str, player_id: str, room_id: int) -> "RoomJoinedMessage":
        return cls(data={
            "room_code": room_code,
            "player_id": player_id,
            "room_id": room_id,
        })


@dataclass
class RoomLeftMessage(Message):
    """Response to a leave request."""
    type: MessageType = MessageType.ROOM_LEFT

    @classmethod
    def create(cls, room_code: str) -> "RoomLeftMessage":
        return cls(data={"room_code": room_code})


@dataclass
class ActionAckMessage(Message):
    """Acknowledges a round action; noop marks a duplicate submission."""
    type: MessageType = MessageType.ACTION_ACK

    @classmethod
    def create(cls, action: str, message: str = "", noop: bool = False) -> "ActionAckMessage":
        return cls(data={"action": action, "message": message, "noop": noop})


@dataclass
class RoomStateMessage(Message):
    """Full snapshot of a room and its players, redacted for the viewer."""
    type: MessageType = MessageType.ROOM_STATE

    @classmethod
    def create(cls, room: dict, players: list[dict], server_time: int) -> "RoomStateMessage":
        return cls(data={
            "room": room,
            "players": players,
            "server_time": server_time,
        })


@dataclass
class RoomUpdatedMessage(Message):
    """Pushed after a room row changes."""
    type: MessageType = MessageType.ROOM_UPDATED

    @classmethod
    def create(cls, room: dict, server_time: int) -> "RoomUpdatedMessage":
        return cls(data={"room": room, "server_time": server_time})


@dataclass
class PlayerUpdatedMessage(Message):
    """Pushed after a player row is inserted or updated."""
    type: MessageType = MessageType.PLAYER_UPDATED

    @classmethod
    def create(cls, player: dict, event_type: str) -> "PlayerUpdatedMessage":
        return cls(data={"player": player, "event_type": event_type})


@dataclass
class PlayerRemovedMessage(Message):
    """Pushed after a player row is deleted."""
    type: MessageType = MessageType.PLAYER_REMOVED

    @classmethod
    def create(cls, player_id: str) -> "PlayerRemovedMessage":
        return cls(data={"player_id": player_id})


# =============================================================================
# Helper function for parsing incoming messages
# =============================================================================

def parse_message(json_str: str) -> Message:
    """
    Parse a JSON string into a Message.

    Returns the base Message class; the message handler uses the type
    field to decide how to process it.
    """
    return Message.from_json(json_str)
