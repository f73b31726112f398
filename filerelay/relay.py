import asyncio
import logging
from typing import List, Optional

from .config import Settings
from .downloads import Download, DownloadTracker
from .errors import InactiveSession, NoFilesUploaded, RelayError
from .hub import ConnectionHub
from .models import FileRecord, Session, SessionStore
from .storage import FileStorage
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class Relay:
    """All process state of one relay instance.

    Built once per application (and once per test), started and stopped
    with it.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store = SessionStore()
        self.storage = FileStorage(settings.upload_dir, settings.max_file_size)
        self.hub = ConnectionHub(self.store)
        self.tracker = DownloadTracker(self.store, self.hub)
        self.sweeper = ExpirySweeper(self.store, self.storage, self.tracker,
                                     settings.session_max_age, settings.sweep_interval)

    def start(self):
        self.sweeper.start()

    async def stop(self):
        await self.sweeper.stop()

    def create_session(self, password: str = "", sender_name: str = "Anonymous") -> Session:
        s = self.store.create(password, sender_name)
        logger.info("created session %s for %s", s.id, s.sender_name)
        return s

    def session_info(self, session_id: str) -> dict:
        return self.store.get(session_id).to_info()

    def verify_password(self, session_id: str, attempt: Optional[str]) -> bool:
        return self.store.verify_password(session_id, attempt)

    def list_files(self, session_id: str) -> List[dict]:
        return self.store.get(session_id).public_files()

    async def upload_files(self, session_id: str, uploads) -> List[FileRecord]:
        """Store every upload and publish the new file list; all-or-nothing."""
        session = self.store.get(session_id)
        if not session.active:
            raise InactiveSession()
        if not uploads:
            raise NoFilesUploaded()
        saved: List[FileRecord] = []
        try:
            for upload in uploads:
                saved.append(await self.storage.save(session_id, upload))
            session = self.store.append_files(session_id, saved)
        except (RelayError, asyncio.CancelledError):
            for record in saved:
                self.storage.discard(record)
            if session_id not in self.store:
                # closed mid-upload; save() may have recreated the namespace
                self.storage.delete_namespace(session_id)
            raise
        logger.info("uploaded %d file(s) to session %s", len(saved), session_id)
        await self.hub.broadcast(session_id, {"type": "files_updated", "files": session.public_files()})
        return saved

    async def download(self, session_id: str, file_id: str, client_id: Optional[str] = None,
                       range_header: Optional[str] = None) -> Download:
        return await self.tracker.serve(session_id, file_id, client_id, range_header)

    async def close_session(self, session_id: str):
        self.store.close(session_id)
        await self.hub.broadcast(session_id, {"type": "session_closed"})
        self.storage.delete_namespace(session_id)
        self.tracker.discard_session(session_id)
        self.store.delete(session_id)
        logger.info("closed session %s", session_id)
