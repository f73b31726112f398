"""Range-aware file streaming with per-file download statistics.

Every download attempt moves a ``DownloadStat`` through exactly one
transition at a time; the new counters are pushed to the owning session's
connections after each step so the sender sees progress live.
"""
import asyncio
import logging
import os
import re
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Tuple
from urllib.parse import quote

import aiofiles

from .errors import FileNotFound, RangeNotSatisfiable, StorageIOError
from .hub import ConnectionHub
from .models import SessionStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*")

# characters encodeURIComponent leaves as-is besides alphanumerics and "-_."
_FILENAME_SAFE = "!~*'()"


class Transition(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    # failed before a single byte was streamed (object missing on disk)
    REJECTED = "rejected"


@dataclass(frozen=True)
class DownloadStat:
    session_id: str
    file_id: str
    started: int = 0
    completed: int = 0
    failed: int = 0
    active: int = 0

    def advance(self, transition: Transition) -> "DownloadStat":
        """Return the counters after ``transition``; active == started - completed - failed."""
        if transition is Transition.STARTED:
            return replace(self, started=self.started + 1, active=self.active + 1)
        if transition is Transition.REJECTED:
            return replace(self, started=self.started + 1, failed=self.failed + 1)
        if self.active == 0:
            raise ValueError(f"no active download of {self.file_id} to mark {transition.value}")
        if transition is Transition.COMPLETED:
            return replace(self, completed=self.completed + 1, active=self.active - 1)
        return replace(self, failed=self.failed + 1, active=self.active - 1)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "fileId": self.file_id,
            "started": self.started,
            "completed": self.completed,
            "failed": self.failed,
            "active": self.active,
        }


def parse_range(header: Optional[str], total: int) -> Optional[Tuple[int, int]]:
    """Resolve a single ``bytes=`` range against ``total`` bytes.

    Returns the inclusive ``(start, end)`` window, or None when the whole
    object should be sent (no header, or one we don't understand).
    """
    if not header:
        return None
    m = _RANGE_RE.fullmatch(header)
    if not m or (not m.group(1) and not m.group(2)):
        return None
    first, last = m.groups()
    if not first:
        # suffix form: the final N bytes
        suffix = int(last)
        if suffix == 0 or total == 0:
            raise RangeNotSatisfiable(total)
        return max(0, total - suffix), total - 1
    start = int(first)
    end = int(last) if last else total - 1
    if start >= total or end < start:
        raise RangeNotSatisfiable(total)
    return start, min(end, total - 1)


@dataclass
class Download:
    status_code: int
    headers: Dict[str, str]
    media_type: str
    body: AsyncIterator[bytes]


class DownloadTracker:
    def __init__(self, store: SessionStore, hub: ConnectionHub, chunk_size: int = CHUNK_SIZE):
        self.store = store
        self.hub = hub
        self.chunk_size = chunk_size
        self.stats: Dict[Tuple[str, str], DownloadStat] = {}
        self.lock = threading.Lock()
        self._pending = set()

    def get(self, session_id: str, file_id: str) -> Optional[DownloadStat]:
        with self.lock:
            return self.stats.get((session_id, file_id))

    def transition(self, session_id: str, file_id: str, transition: Transition) -> Optional[DownloadStat]:
        """Apply one transition atomically.

        Returns None when a stream settles after its session's stats were
        discarded (session closed or expired mid-download).
        """
        key = (session_id, file_id)
        with self.lock:
            current = self.stats.get(key)
            if current is None:
                if transition in (Transition.COMPLETED, Transition.FAILED):
                    return None
                current = DownloadStat(session_id, file_id)
            updated = current.advance(transition)
            self.stats[key] = updated
        return updated

    async def record(self, session_id: str, file_id: str, transition: Transition,
                     error: Optional[str] = None) -> Optional[DownloadStat]:
        stat = self.transition(session_id, file_id, transition)
        if stat is None:
            self._log_orphan(session_id, file_id, transition, error)
            return None
        self._log(stat, transition, error)
        await self._publish(stat, transition, error)
        return stat

    def record_nowait(self, session_id: str, file_id: str, transition: Transition,
                      error: Optional[str] = None) -> Optional[DownloadStat]:
        """Apply a transition now and publish it in the background.

        Used where awaiting is not possible, e.g. while a stream is being
        cancelled.
        """
        stat = self.transition(session_id, file_id, transition)
        if stat is None:
            self._log_orphan(session_id, file_id, transition, error)
            return None
        self._log(stat, transition, error)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # finalized outside the event loop; counters are still correct
            return stat
        task = loop.create_task(self._publish(stat, transition, error))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return stat

    def discard_session(self, session_id: str):
        with self.lock:
            for key in [k for k in self.stats if k[0] == session_id]:
                del self.stats[key]

    def _log_orphan(self, session_id: str, file_id: str, transition: Transition, error: Optional[str]):
        logger.info("download %s/%s %s after its session was removed%s", session_id, file_id,
                    transition.value, f": {error}" if error else "")

    def _log(self, stat: DownloadStat, transition: Transition, error: Optional[str]):
        if error:
            logger.info("download %s/%s %s: %s (%s)", stat.session_id, stat.file_id,
                        transition.value, error, stat.to_dict())
        else:
            logger.info("download %s/%s %s (%s)", stat.session_id, stat.file_id,
                        transition.value, stat.to_dict())

    async def _publish(self, stat: DownloadStat, transition: Transition, error: Optional[str]):
        if transition in (Transition.FAILED, Transition.REJECTED):
            message = {"type": "download_failed", "fileId": stat.file_id,
                       "error": error or "Unknown error", "stats": stat.to_dict()}
        else:
            message = {"type": "download_stats", "fileId": stat.file_id, "stats": stat.to_dict()}
        await self.hub.broadcast(stat.session_id, message)

    async def serve(self, session_id: str, file_id: str, client_id: Optional[str] = None,
                    range_header: Optional[str] = None) -> Download:
        session = self.store.get(session_id)
        record = session.find_file(file_id)
        if record is None:
            raise FileNotFound()
        try:
            total = os.stat(record.path).st_size
        except OSError:
            logger.warning("download of %s/%s: %s missing on disk", session_id, file_id, record.path)
            await self.record(session_id, file_id, Transition.REJECTED, "File not found on server")
            raise StorageIOError("File not found on server", status_code=404)

        window = parse_range(range_header, total)
        headers = {
            "Accept-Ranges": "bytes",
            "Content-Disposition": f'attachment; filename="{quote(record.name, safe=_FILENAME_SAFE)}"',
        }
        if window is None:
            start, length, status = 0, total, 200
        else:
            start, end = window
            length, status = end - start + 1, 206
            headers["Content-Range"] = f"bytes {start}-{end}/{total}"
        headers["Content-Length"] = str(length)

        body = self._stream(session_id, file_id, client_id or "unknown", record.path, start, length)
        return Download(status, headers, record.content_type or "application/octet-stream", body)

    async def _stream(self, session_id: str, file_id: str, client_id: str,
                      path: str, start: int, length: int):
        sent = 0
        try:
            await self.record(session_id, file_id, Transition.STARTED)
            logger.info("streaming %d bytes of %s from offset %d to client %s", length, file_id, start, client_id)
            async with aiofiles.open(path, "rb") as f:
                await f.seek(start)
                while sent < length:
                    chunk = await f.read(min(self.chunk_size, length - sent))
                    if not chunk:
                        raise OSError(f"unexpected end of file after {sent} of {length} bytes")
                    sent += len(chunk)
                    yield chunk
        except OSError as exc:
            message = str(exc) or exc.__class__.__name__
            await self.record(session_id, file_id, Transition.FAILED, message)
            raise StorageIOError(message) from exc
        except (asyncio.CancelledError, GeneratorExit):
            self.record_nowait(session_id, file_id, Transition.FAILED, "Client disconnected")
            raise
        await self.record(session_id, file_id, Transition.COMPLETED)
