"""
Network layer for the party games server.

Provides WebSocket server, connection management, room scheduling and
message handling.
"""

from server.network.connection_manager import ConnectionManager, PlayerConnection
from server.network.game_manager import RoomManager, ManagedRoom, generate_room_code
from server.network.message_handler import MessageHandler, HandleResult, build_room_state
from server.network.scheduler import RoomScheduler
from server.network.server import PartyServer, run_server


__all__ = [
    "ConnectionManager",
    "PlayerConnection",
    "RoomManager",
    "ManagedRoom",
    "generate_room_code",
    "MessageHandler",
    "HandleResult",
    "build_room_state",
    "RoomScheduler",
    "PartyServer",
    "run_server",
]
