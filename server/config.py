"""
Server configuration loaded from environment variables.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

from shared import constants

load_dotenv()


class Config:
    """Server configuration."""

    # Server settings
    HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("SERVER_PORT", "8765"))

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/party_games.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Coordinator loop (seconds)
    POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", str(constants.POLL_INTERVAL)))
    POLL_JITTER: float = float(os.getenv("POLL_JITTER", str(constants.POLL_JITTER)))
    SETTLE_DELAY: float = float(os.getenv("SETTLE_DELAY", str(constants.SETTLE_DELAY)))
    RECONCILE_INTERVAL: float = float(
        os.getenv("RECONCILE_INTERVAL", str(constants.RECONCILE_INTERVAL))
    )

    # Presence (seconds)
    HEARTBEAT_INTERVAL: float = float(
        os.getenv("HEARTBEAT_INTERVAL", str(constants.HEARTBEAT_INTERVAL))
    )
    PRESENCE_STALE_AFTER: float = float(
        os.getenv("PRESENCE_STALE_AFTER", str(constants.PRESENCE_STALE_AFTER))
    )

    # Game timing (milliseconds)
    COUNTDOWN_DURATION_MS: int = int(
        os.getenv("COUNTDOWN_DURATION_MS", str(constants.COUNTDOWN_DURATION_MS))
    )
    TIE_TOLERANCE_MS: int = int(os.getenv("TIE_TOLERANCE_MS", str(constants.TIE_TOLERANCE_MS)))
    WAITING_TIMEOUT_MS: int = int(
        os.getenv("WAITING_TIMEOUT_MS", str(constants.WAITING_TIMEOUT_MS))
    )
    RESULTS_TIMEOUT_MS: int = int(
        os.getenv("RESULTS_TIMEOUT_MS", str(constants.RESULTS_TIMEOUT_MS))
    )
    CARD_SELECTION_TIMEOUT_MS: int = int(
        os.getenv("CARD_SELECTION_TIMEOUT_MS", str(constants.CARD_SELECTION_TIMEOUT_MS))
    )
    FINAL_CHOICE_TIMEOUT_MS: int = int(
        os.getenv("FINAL_CHOICE_TIMEOUT_MS", str(constants.FINAL_CHOICE_TIMEOUT_MS))
    )
    ROUND_END_TIMEOUT_MS: int = int(
        os.getenv("ROUND_END_TIMEOUT_MS", str(constants.ROUND_END_TIMEOUT_MS))
    )

    # Room limits
    MIN_PLAYERS: int = constants.MIN_PLAYERS
    MAX_PLAYERS: int = constants.MAX_PLAYERS

    @classmethod
    def ensure_directories(cls) -> None:
        """Create necessary directories if they don't exist."""
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)


config = Config()
settings = config  # Alias used by most modules
