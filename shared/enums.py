"""
Enumerations used throughout the games.
"""
from enum import Enum


class GameType(str, Enum):
    """Game variant stored on a room; selects the payload schemas."""
    TIME_AUCTION = "timeAuction"
    TIME_AUCTION_2 = "timeAuction2"
    REMOVE_ONE = "removeOne"

    @property
    def is_auction(self) -> bool:
        return self in (GameType.TIME_AUCTION, GameType.TIME_AUCTION_2)


class AuctionPhase(str, Enum):
    """Phases of a time-auction round."""
    LOBBY = "lobby"
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    AUCTION = "auction"
    ROUND_RESULTS = "roundResults"
    GAME_OVER = "gameOver"


class RemoveOnePhase(str, Enum):
    """Phases of a card-elimination round."""
    LOBBY = "lobby"
    CARD_SELECTION = "cardSelection"
    FINAL_CHOICE = "finalChoice"
    ROUND_END = "roundEnd"
    SURVIVAL = "survival"
    GAME_OVER = "gameOver"


class FinalChoice(str, Enum):
    """Which of the two selected cards a player plays."""
    LEFT = "left"
    RIGHT = "right"


class ChangeType(str, Enum):
    """Kind of row change delivered to store subscribers."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ActionType(str, Enum):
    """Entries written to the action log."""
    BUTTON_PRESS = "button_press"
    BUTTON_RELEASE = "button_release"
    HEARTBEAT = "heartbeat"
    PHASE_CHANGE = "phase_change"
    CARD_SELECTION = "card_selection"
    FINAL_CHOICE = "final_choice"
    ROUND_RESULT = "round_result"
    HOST_CHANGE = "host_change"
    JOIN = "join"
    LEAVE = "leave"


class MessageType(str, Enum):
    """Types of messages exchanged between client and server."""
    # Connection
    CONNECT = "CONNECT"
    DISCONNECT = "DISCONNECT"
    HEARTBEAT = "HEARTBEAT"
    ERROR = "ERROR"

    # Room lifecycle (client -> server)
    CREATE_ROOM = "CREATE_ROOM"
    JOIN_ROOM = "JOIN_ROOM"
    LEAVE_ROOM = "LEAVE_ROOM"
    START_GAME = "START_GAME"
    TRANSFER_HOST = "TRANSFER_HOST"
    GET_STATE = "GET_STATE"

    # Round actions (client -> server)
    PRESS_CONTROL = "PRESS_CONTROL"
    RELEASE_CONTROL = "RELEASE_CONTROL"
    SELECT_CARDS = "SELECT_CARDS"
    FINAL_CHOICE = "FINAL_CHOICE"
    CONTINUE_ROUND = "CONTINUE_ROUND"

    # Server -> client
    ROOM_JOINED = "ROOM_JOINED"
    ROOM_LEFT = "ROOM_LEFT"
    ACTION_ACK = "ACTION_ACK"
    ROOM_STATE = "ROOM_STATE"
    ROOM_UPDATED = "ROOM_UPDATED"
    PLAYER_UPDATED = "PLAYER_UPDATED"
    PLAYER_REMOVED = "PLAYER_REMOVED"
