import secrets
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import InactiveSession, InvalidPassword, SessionNotFound

SESSION_ID_LENGTH = 8


@dataclass(frozen=True)
class FileRecord:
    id: str
    name: str
    path: str
    stored_name: str
    size: int
    content_type: str
    uploaded_at: float

    def to_public(self) -> dict:
        # the storage path never leaves the server
        return {"id": self.id, "name": self.name, "size": self.size, "type": self.content_type}


class Session:
    def __init__(self, session_id: str, password: str = "", sender_name: str = "Anonymous"):
        self._id = session_id
        self.password = password or ""
        self.sender_name = sender_name or "Anonymous"
        self.created_at = time.time()
        self.active = True
        self.files: List[FileRecord] = []
        self.connected = 0

    @property
    def id(self) -> str:
        return self._id

    @property
    def requires_password(self) -> bool:
        return bool(self.password)

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.created_at

    def find_file(self, file_id: str) -> Optional[FileRecord]:
        for f in self.files:
            if f.id == file_id:
                return f
        return None

    def public_files(self) -> List[dict]:
        return [f.to_public() for f in self.files]

    def to_info(self) -> dict:
        return {
            "sessionId": self.id,
            "senderName": self.sender_name,
            "fileCount": len(self.files),
            "connectedClients": self.connected,
            "requiresPassword": self.requires_password,
        }


class SessionStore:
    """In-memory registry of live sessions.

    Every operation runs under one lock, so the registry stays consistent
    even when called from worker threads.
    """

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self.lock = threading.Lock()

    def __len__(self):
        with self.lock:
            return len(self.sessions)

    def __contains__(self, session_id):
        with self.lock:
            return session_id in self.sessions

    def _new_id(self) -> str:
        while True:
            candidate = secrets.token_hex(SESSION_ID_LENGTH // 2)
            if candidate not in self.sessions:
                return candidate

    def _require(self, session_id: str) -> Session:
        s = self.sessions.get(session_id)
        if s is None:
            raise SessionNotFound()
        return s

    def create(self, password: str = "", sender_name: str = "Anonymous") -> Session:
        with self.lock:
            s = Session(self._new_id(), password, sender_name)
            self.sessions[s.id] = s
            return s

    def get(self, session_id: str) -> Session:
        with self.lock:
            return self._require(session_id)

    def verify_password(self, session_id: str, attempt: Optional[str]) -> bool:
        # plaintext, case-sensitive comparison; the secret is a convenience gate only
        with self.lock:
            s = self._require(session_id)
            if s.password and s.password != attempt:
                raise InvalidPassword()
            return True

    def close(self, session_id: str) -> Session:
        with self.lock:
            s = self._require(session_id)
            s.active = False
            return s

    def append_files(self, session_id: str, records: Iterable[FileRecord]) -> Session:
        with self.lock:
            s = self._require(session_id)
            if not s.active:
                raise InactiveSession()
            s.files.extend(records)
            return s

    def connect(self, session_id: str) -> Session:
        with self.lock:
            s = self._require(session_id)
            s.connected += 1
            return s

    def disconnect(self, session_id: str) -> Optional[Session]:
        """Release one connection slot; returns None if the session is already gone."""
        with self.lock:
            s = self.sessions.get(session_id)
            if s is None:
                return None
            s.connected = max(0, s.connected - 1)
            return s

    def delete(self, session_id: str) -> Optional[Session]:
        with self.lock:
            return self.sessions.pop(session_id, None)

    def garbage_collect(self, max_age: float, now: Optional[float] = None) -> List[str]:
        now = now if now is not None else time.time()
        with self.lock:
            expired = [k for k, s in self.sessions.items() if s.age(now) > max_age]
            for k in expired:
                del self.sessions[k]
        return expired
