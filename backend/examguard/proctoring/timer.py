import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SessionTimer:
    """Cancellable once-per-interval countdown owned by a single session"""

    def __init__(self, session_id: str, on_tick: Callable[[], Awaitable[None]], interval: float = 1.0):
        self.session_id = session_id
        self.on_tick = on_tick
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"exam-timer-{self.session_id}")
        logger.debug(f"Timer started for session {self.session_id}")

    def cancel(self):
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.debug(f"Timer cancelled for session {self.session_id}")
        self._task = None

    async def _run(self):
        try:
            while True:
                await asyncio.sleep(self.interval)
                await self.on_tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer for session {self.session_id} stopped: {e}", exc_info=True)
