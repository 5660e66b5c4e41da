"""
Client configuration settings.
"""

import os
from dataclasses import dataclass

from shared import constants


@dataclass
class ClientSettings:
    """Client configuration."""

    # Server connection
    server_host: str = "localhost"
    server_port: int = 8765

    # Reconnection settings
    reconnect_attempts: int = 5
    reconnect_delay: float = 2.0

    # Requests
    request_timeout: float = 10.0

    # Session loops (seconds)
    heartbeat_interval: float = constants.HEARTBEAT_INTERVAL
    tick_interval: float = constants.LOCAL_TICK_INTERVAL

    @property
    def server_url(self) -> str:
        return f"ws://{self.server_host}:{self.server_port}"


def load_settings() -> ClientSettings:
    """Load settings from environment variables."""
    return ClientSettings(
        server_host=os.getenv("PARTY_SERVER_HOST", "localhost"),
        server_port=int(os.getenv("PARTY_SERVER_PORT", "8765")),
        reconnect_attempts=int(os.getenv("PARTY_RECONNECT_ATTEMPTS", "5")),
        reconnect_delay=float(os.getenv("PARTY_RECONNECT_DELAY", "2.0")),
        request_timeout=float(os.getenv("PARTY_REQUEST_TIMEOUT", "10.0")),
        heartbeat_interval=float(
            os.getenv("PARTY_HEARTBEAT_INTERVAL", str(constants.HEARTBEAT_INTERVAL))
        ),
        tick_interval=float(os.getenv("PARTY_TICK_INTERVAL", str(constants.LOCAL_TICK_INTERVAL))),
    )


settings = load_settings()
