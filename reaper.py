import asyncio
from typing import List

from backend import PunchStore, RoomStore
from constants import PUNCH_REAP_INTERVAL, ROOM_REAP_INTERVAL
from logging_config import get_logger

logger = get_logger(__name__)


class Reaper:
    """Periodically purges expired rooms and punch entries.

    Started and stopped by the application lifespan; ``sweep`` can be called
    directly to purge both stores once.
    """

    def __init__(self, rooms: RoomStore, punches: PunchStore,
                 room_interval: float = ROOM_REAP_INTERVAL, punch_interval: float = PUNCH_REAP_INTERVAL):
        self.rooms = rooms
        self.punches = punches
        self.room_interval = room_interval
        self.punch_interval = punch_interval
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def sweep(self) -> tuple:
        return self.rooms.purge_expired(), self.punches.purge_expired()

    async def _loop(self, name: str, interval: float, purge):
        while True:
            await asyncio.sleep(interval)
            try:
                removed = purge()
                if removed:
                    logger.info(f"Reaper removed {removed} expired {name}")
            except Exception as e:
                logger.error(f"Reaper failed purging {name}: {e}", exc_info=True)

    def start(self):
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._loop("rooms", self.room_interval, self.rooms.purge_expired)),
            asyncio.create_task(self._loop("punch entries", self.punch_interval, self.punches.purge_expired)),
        ]
        logger.info(f"Reaper started (rooms every {self.room_interval}s, punch entries every {self.punch_interval}s)")

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Reaper stopped")
