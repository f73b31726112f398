import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import (APIRouter, Depends, FastAPI, File, Header, Query, Request, UploadFile,
                     WebSocket, WebSocketDisconnect, status)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .config import Settings
from .errors import RangeNotSatisfiable, RelayError, SessionNotFound
from .relay import Relay
from .schemas import CreateSessionRequest, VerifyPasswordRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def get_relay(request: Request) -> Relay:
    return request.app.state.relay


@router.get("/")
def root():
    return {"status": "filerelay backend running"}


@router.get("/health", response_class=PlainTextResponse)
def health():
    return "OK"


@router.post("/api/create-session")
def create_session(request: Request, body: Optional[CreateSessionRequest] = None,
                   relay: Relay = Depends(get_relay)):
    body = body or CreateSessionRequest()
    s = relay.create_session(body.password, body.sender_name)
    settings = relay.settings
    join_link = f"{settings.client_url.rstrip('/')}/join/{s.id}"
    return {
        "sessionId": s.id,
        "joinLink": join_link,
        "serverUrl": settings.server_url or str(request.base_url).rstrip("/"),
    }


@router.get("/api/session/{session_id}")
def get_session(session_id: str, relay: Relay = Depends(get_relay)):
    return relay.session_info(session_id)


@router.post("/api/session/{session_id}/verify")
def verify_password(session_id: str, body: Optional[VerifyPasswordRequest] = None,
                    relay: Relay = Depends(get_relay)):
    relay.verify_password(session_id, body.password if body else None)
    return {"verified": True}


@router.get("/api/session/{session_id}/files")
def list_files(session_id: str, relay: Relay = Depends(get_relay)):
    return {"files": relay.list_files(session_id)}


@router.post("/api/upload/{session_id}")
async def upload_files(session_id: str, files: Optional[List[UploadFile]] = File(None),
                       relay: Relay = Depends(get_relay)):
    saved = await relay.upload_files(session_id, files or [])
    return {
        "message": "Files uploaded successfully",
        "files": [{"id": f.id, "name": f.name, "size": f.size} for f in saved],
    }


@router.get("/api/download/{session_id}/{file_id}")
async def download_file(session_id: str, file_id: str,
                        client_id: Optional[str] = Query(None, alias="clientId"),
                        range_header: Optional[str] = Header(None, alias="range"),
                        relay: Relay = Depends(get_relay)):
    download = await relay.download(session_id, file_id, client_id, range_header)
    return StreamingResponse(
        download.body,
        status_code=download.status_code,
        headers=download.headers,
        media_type=download.media_type,
    )


@router.post("/api/session/{session_id}/close")
async def close_session(session_id: str, relay: Relay = Depends(get_relay)):
    await relay.close_session(session_id)
    return {"message": "Session closed successfully"}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, session_id: Optional[str] = Query(None, alias="sessionId")):
    relay: Relay = websocket.app.state.relay
    await websocket.accept()
    try:
        conn = await relay.hub.attach(session_id or "", websocket)
    except SessionNotFound:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid session")
        return
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            await relay.hub.on_message(conn.id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.hub.detach(conn.id)


async def relay_error_handler(request: Request, exc: RelayError):
    headers = None
    if isinstance(exc, RangeNotSatisfiable):
        headers = {"Content-Range": f"bytes */{exc.total}"}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    relay = Relay(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay.start()
        yield
        await relay.stop()

    app = FastAPI(title="filerelay - backend", lifespan=lifespan)
    app.state.relay = relay
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RelayError, relay_error_handler)
    app.include_router(router)
    return app


app = create_app()


def run():
    settings = app.state.relay.settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
