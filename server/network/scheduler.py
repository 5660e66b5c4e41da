"""
Polling scheduler for room coordinators.

Each live room gets its own asyncio task that calls the coordinator's
``tick`` at a short, jittered interval. Actions can also request a single
extra evaluation after a settle delay, so readiness is judged on rows that
have had time to land rather than on the notification that triggered it.
"""

import asyncio
import logging
import random
from typing import Optional

from server.config import settings
from server.network.game_manager import RoomManager
from server.persistence import StoreWriteFailure


logger = logging.getLogger(__name__)


class RoomScheduler:
    """Owns the per-room polling tasks."""

    def __init__(
        self,
        rooms: RoomManager,
        poll_interval: float | None = None,
        jitter: float | None = None,
        settle_delay: float | None = None,
        supervise_interval: float = 1.0
    ):
        self._rooms = rooms
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL
        self.jitter = jitter if jitter is not None else settings.POLL_JITTER
        self.settle_delay = settle_delay if settle_delay is not None else settings.SETTLE_DELAY
        self.supervise_interval = supervise_interval

        self.is_running = False
        self._supervisor: Optional[asyncio.Task] = None
        self._room_tasks: dict[int, asyncio.Task] = {}
        self._pending: set[asyncio.Task] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Room scheduler already running")
            return
        self.is_running = True
        self._supervisor = asyncio.create_task(self._supervise_loop())
        logger.info(
            f"Room scheduler started, poll every {self.poll_interval}s "
            f"(+{self.jitter}s jitter), settle {self.settle_delay}s"
        )

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.is_running = False

        tasks = list(self._room_tasks.values()) + list(self._pending)
        if self._supervisor:
            tasks.append(self._supervisor)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._room_tasks.clear()
        self._pending.clear()
        self._supervisor = None
        logger.info("Room scheduler stopped")

    # =========================================================================
    # Scheduling
    # =========================================================================

    def ensure_room(self, room_id: int) -> None:
        """Start polling a room if it is not polled yet."""
        if not self.is_running:
            return
        task = self._room_tasks.get(room_id)
        if task is None or task.done():
            self._room_tasks[room_id] = asyncio.create_task(self._room_loop(room_id))
            logger.debug(f"Polling room {room_id}")

    def request_evaluation(self, room_id: int, delay: float | None = None) -> None:
        """Run one extra tick for a room after ``delay`` seconds."""
        if not self.is_running:
            return
        delay = self.settle_delay if delay is None else delay
        task = asyncio.create_task(self._delayed_tick(room_id, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def tick_room(self, room_id: int) -> bool:
        """Evaluate one room now. Failures are logged, never raised."""
        managed = self._rooms.get_room(room_id)
        if managed is None:
            return False
        try:
            return managed.coordinator.tick()
        except StoreWriteFailure as e:
            logger.warning(f"Room {managed.room_code}: tick write failed: {e}")
        except Exception as e:
            logger.exception(f"Room {managed.room_code}: tick failed: {e}")
        return False

    # =========================================================================
    # Loops
    # =========================================================================

    async def _supervise_loop(self) -> None:
        """Keep exactly one polling task per live room."""
        while self.is_running:
            live = {managed.room_id for managed in self._rooms.list_rooms()}
            for room_id in live:
                self.ensure_room(room_id)
            for room_id in list(self._room_tasks):
                if room_id not in live:
                    self._room_tasks.pop(room_id).cancel()
            await asyncio.sleep(self.supervise_interval)

    async def _room_loop(self, room_id: int) -> None:
        while self.is_running:
            if self._rooms.get_room(room_id) is None:
                break
            self.tick_room(room_id)
            await asyncio.sleep(self.poll_interval + random.uniform(0, self.jitter))
        self._room_tasks.pop(room_id, None)

    async def _delayed_tick(self, room_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self.tick_room(room_id)

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "polled_rooms": len(self._room_tasks),
            "pending_evaluations": len(self._pending),
        }
