"""
Game session: the explicit lifecycle of a client's room attachment.

While attached the session sends heartbeats, keeps a ClientGameView fed
from the client's pushes, and runs a short local ticker that releases the
control when the local time bank runs out.
"""

import asyncio
import logging
from typing import Callable, Optional

from client.config import ClientSettings, settings as default_settings
from client.game_view import ClientGameView
from client.network.client import PartyClient
from shared.enums import MessageType


logger = logging.getLogger(__name__)


def is_error(response: Optional[dict]) -> bool:
    """True for a missing response or an ERROR message."""
    return response is None or response.get("type") == MessageType.ERROR.value


class GameSession:
    """Owns the per-room background tasks of one client."""

    def __init__(
        self,
        client: PartyClient,
        view: ClientGameView | None = None,
        settings: ClientSettings | None = None,
        on_tick: Callable[[ClientGameView], None] | None = None
    ):
        self.client = client
        self.view = view or ClientGameView(client.player_id)
        self._settings = settings or default_settings
        self._on_tick = on_tick

        self._heartbeat_task: Optional[asyncio.Task] = None
        self._ticker_task: Optional[asyncio.Task] = None
        self._releasing = False

    @property
    def is_attached(self) -> bool:
        return self._heartbeat_task is not None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def attach(self) -> None:
        """Start following the client's room."""
        if self.is_attached:
            return
        self.client.add_message_listener(self.view.apply_message)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._ticker_task = asyncio.create_task(self._ticker_loop())
        logger.info(f"Session attached for {self.client.player_id}")

        response = await self.client.get_state()
        if is_error(response):
            logger.warning("Initial room state unavailable")

    async def detach(self) -> None:
        """Stop the background tasks and forget the room."""
        if not self.is_attached:
            return
        self.client.remove_message_listener(self.view.apply_message)
        for task in (self._heartbeat_task, self._ticker_task):
            task.cancel()
        for task in (self._heartbeat_task, self._ticker_task):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None
        self._ticker_task = None
        self.view.clear()
        logger.info(f"Session detached for {self.client.player_id}")

    async def _heartbeat_loop(self) -> None:
        while True:
            if self.client.is_connected:
                await self.client.heartbeat()
            await asyncio.sleep(self._settings.heartbeat_interval)

    async def _ticker_loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._settings.tick_interval)

    async def tick(self) -> None:
        """One pass of the local ticker."""
        if self.view.should_auto_release() and not self._releasing:
            logger.info("Time bank exhausted, releasing")
            await self.release()
        if self._on_tick:
            self._on_tick(self.view)

    # =========================================================================
    # Optimistic actions
    # =========================================================================

    async def press(self) -> Optional[dict]:
        self.view.set_pressed(True)
        response = await self.client.press_control()
        if is_error(response):
            self.view.revert()
        return response

    async def release(self) -> Optional[dict]:
        self._releasing = True
        try:
            self.view.set_pressed(False)
            response = await self.client.release_control()
            if is_error(response):
                self.view.revert()
            return response
        finally:
            self._releasing = False

    async def select_cards(self, cards: list[int]) -> Optional[dict]:
        return await self.client.select_cards(cards)

    async def final_choice(self, choice: str) -> Optional[dict]:
        return await self.client.final_choice(choice)
