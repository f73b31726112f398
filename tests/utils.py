import io
import json

from fastapi.websockets import WebSocketState


class FakeSocket:
    """Stands in for a starlette WebSocket; records every frame sent to it."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket went away")
        self.sent.append(json.loads(text))

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]

    def hang_up(self):
        self.client_state = WebSocketState.DISCONNECTED


class FakeUpload:
    """Minimal UploadFile: async chunked read over in-memory bytes."""

    def __init__(self, filename, data, content_type="application/octet-stream"):
        self.filename = filename
        self.content_type = content_type
        self._buf = io.BytesIO(data)

    async def read(self, size=-1):
        return self._buf.read(size)


async def drain(body):
    return b"".join([chunk async for chunk in body])
