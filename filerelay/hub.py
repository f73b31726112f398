import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

from fastapi.websockets import WebSocketState
from pydantic import ValidationError

from .models import SessionStore
from .schemas import SignalEnvelope, SignalType

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHED = "detached"


@dataclass
class Connection:
    session_id: str
    websocket: object
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ConnectionState = ConnectionState.ATTACHING

    @property
    def writable(self) -> bool:
        if self.state is not ConnectionState.ATTACHED:
            return False
        ws = self.websocket
        return (
            ws.client_state == WebSocketState.CONNECTED
            and ws.application_state == WebSocketState.CONNECTED
        )


@dataclass(frozen=True)
class Signal:
    kind: SignalType
    target_id: Optional[str]
    payload: dict


@dataclass(frozen=True)
class Unrecognized:
    reason: str


def parse_signal(raw: Union[str, bytes]) -> Union[Signal, Unrecognized]:
    """Decode a client frame into one of the allowed signaling kinds."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return Unrecognized("invalid json")
    if not isinstance(data, dict):
        return Unrecognized("not an object")
    try:
        envelope = SignalEnvelope.model_validate(data)
    except ValidationError:
        return Unrecognized(f"disallowed message type {data.get('type')!r}")
    return Signal(kind=envelope.type, target_id=envelope.target_id, payload=data)


class ConnectionHub:
    """Directory of live realtime connections and per-session fan-out."""

    def __init__(self, store: SessionStore):
        self.store = store
        self.connections: Dict[str, Connection] = {}
        self.lock = asyncio.Lock()

    async def attach(self, session_id: str, websocket) -> Connection:
        """Bind a socket to an existing session. Raises SessionNotFound otherwise."""
        conn = Connection(session_id=session_id, websocket=websocket)
        session = self.store.connect(session_id)
        async with self.lock:
            conn.state = ConnectionState.ATTACHED
            self.connections[conn.id] = conn
        info = session.to_info()
        logger.info("client %s joined session %s (%d connected)", conn.id, session_id, session.connected)
        await self.send_to(conn.id, {
            "type": "connected",
            "clientId": conn.id,
            "sessionInfo": {k: info[k] for k in ("sessionId", "senderName", "fileCount", "connectedClients")},
        })
        await self.broadcast(session_id, {
            "type": "client_connected",
            "clientId": conn.id,
            "connectedClients": session.connected,
        })
        return conn

    async def detach(self, connection_id: str):
        async with self.lock:
            conn = self.connections.pop(connection_id, None)
        if conn is None:
            return
        conn.state = ConnectionState.DETACHED
        session = self.store.disconnect(conn.session_id)
        if session is None:
            logger.debug("client %s left already removed session %s", conn.id, conn.session_id)
            return
        logger.info("client %s left session %s (%d connected)", conn.id, conn.session_id, session.connected)
        await self.broadcast(conn.session_id, {
            "type": "client_disconnected",
            "clientId": conn.id,
            "connectedClients": session.connected,
        })

    def session_connections(self, session_id: str):
        return [c for c in self.connections.values() if c.session_id == session_id]

    async def broadcast(self, session_id: str, message: dict, exclude: Optional[str] = None) -> int:
        text = json.dumps(message)
        async with self.lock:
            targets = [c for c in self.session_connections(session_id) if c.id != exclude]
        delivered = 0
        for conn in targets:
            if await self._deliver(conn, text):
                delivered += 1
        return delivered

    async def send_to(self, connection_id: str, message: dict) -> bool:
        async with self.lock:
            conn = self.connections.get(connection_id)
        if conn is None:
            return False
        return await self._deliver(conn, json.dumps(message))

    async def _deliver(self, conn: Connection, text: str) -> bool:
        if not conn.writable:
            return False
        try:
            await conn.websocket.send_text(text)
            return True
        except Exception:
            # the socket's own receive loop detaches it
            logger.debug("send to %s failed", conn.id, exc_info=True)
            return False

    async def on_message(self, connection_id: str, raw: Union[str, bytes]):
        async with self.lock:
            sender = self.connections.get(connection_id)
        if sender is None:
            return
        signal = parse_signal(raw)
        if isinstance(signal, Unrecognized):
            logger.debug("dropping message from %s: %s", connection_id, signal.reason)
            return
        outgoing = dict(signal.payload, senderId=sender.id)
        if signal.target_id is not None:
            async with self.lock:
                target = self.connections.get(signal.target_id)
            if target is None or target.session_id != sender.session_id:
                logger.debug("dropping %s from %s: unknown target %s", signal.kind.value, sender.id, signal.target_id)
                return
            await self.send_to(target.id, outgoing)
        else:
            await self.broadcast(sender.session_id, outgoing, exclude=sender.id)
