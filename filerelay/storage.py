import asyncio
import logging
import os
import shutil
import time
import uuid

import aiofiles

from .errors import SizeLimitExceeded, StorageIOError
from .models import FileRecord

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class FileStorage:
    """Session-scoped upload namespaces under a single base directory."""

    def __init__(self, base_dir: str, max_file_size: int):
        self.base_dir = base_dir
        self.max_file_size = max_file_size
        os.makedirs(self.base_dir, exist_ok=True)

    def namespace(self, session_id: str) -> str:
        return os.path.join(self.base_dir, session_id)

    async def save(self, session_id: str, upload) -> FileRecord:
        """Stream an UploadFile-like object into the session's namespace.

        Anything over ``max_file_size`` is rejected and the partial file is
        removed.
        """
        name = os.path.basename(upload.filename or "") or "file"
        try:
            path = self._reserve(self.namespace(session_id), name)
        except OSError as exc:
            raise StorageIOError(f"Failed to store {name}: {exc}") from exc
        size = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_file_size:
                        raise SizeLimitExceeded(f"{name} exceeds the {self.max_file_size} byte limit")
                    await f.write(chunk)
        except (SizeLimitExceeded, asyncio.CancelledError):
            self._discard(path)
            raise
        except OSError as exc:
            self._discard(path)
            raise StorageIOError(f"Failed to store {name}: {exc}") from exc
        return FileRecord(
            id=str(uuid.uuid4()),
            name=name,
            path=path,
            stored_name=os.path.basename(path),
            size=size,
            content_type=upload.content_type or "application/octet-stream",
            uploaded_at=time.time(),
        )

    def _reserve(self, directory: str, name: str) -> str:
        """Atomically claim a timestamp-prefixed filename inside ``directory``."""
        os.makedirs(directory, exist_ok=True)
        stamp = int(time.time() * 1000)
        while True:
            path = os.path.join(directory, f"{stamp}-{name}")
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                stamp += 1
                continue
            os.close(fd)
            return path

    def discard(self, record: FileRecord):
        self._discard(record.path)

    def _discard(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("could not remove partial upload %s", path, exc_info=True)

    def delete_namespace(self, session_id: str) -> bool:
        """Remove every stored file of a session. Returns False if there was nothing to remove."""
        directory = self.namespace(session_id)
        if not os.path.isdir(directory):
            return False
        shutil.rmtree(directory, ignore_errors=True)
        logger.info("deleted upload namespace for session %s", session_id)
        return True
