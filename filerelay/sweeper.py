import asyncio
import logging
from typing import List, Optional

from .downloads import DownloadTracker
from .models import SessionStore
from .storage import FileStorage

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically drops sessions older than ``max_age`` seconds, files included."""

    def __init__(self, store: SessionStore, storage: FileStorage, tracker: DownloadTracker,
                 max_age: float, interval: float):
        self.store = store
        self.storage = storage
        self.tracker = tracker
        self.max_age = max_age
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: Optional[float] = None) -> List[str]:
        # in-flight downloads of a removed session fail on their own
        expired = self.store.garbage_collect(self.max_age, now)
        for session_id in expired:
            self.storage.delete_namespace(session_id)
            self.tracker.discard_session(session_id)
        if expired:
            logger.info("expired %d session(s): %s", len(expired), ", ".join(expired))
        return expired

    async def run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("session sweep failed")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
