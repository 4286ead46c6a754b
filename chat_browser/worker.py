"""Chat browser worker.

FastAPI server that exposes the browser service to a chat transport.
Each request carries a session key (one per remote chat/user) and either a
slash command or button callback data; the reply is the list of outbound
events the chat side should show (status updates, text, media).

Endpoints:
- GET /health: Health check
- GET /errors: Standardized error definitions
- POST /sessions/{key}/commands: Run one command, return its events
- DELETE /sessions/{key}: Close a session
- WS /ws/{key}: Persistent connection; events are pushed as they happen
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import asyncio
import base64
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from itertools import count
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chat_browser.commands import Button, CloseSession
from chat_browser.config import API_TOKEN
from chat_browser.errors import UsageError, get_error_registry
from chat_browser.render import StatusUpdate
from chat_browser.service import BrowserService

logger = logging.getLogger("chat_browser.worker")
ws_logger = logging.getLogger("chat_browser.websocket")

TOKEN_HEADER = "X-Api-Token"


# =============================================================================
# Outbound delivery
# =============================================================================


class MessageBoard:
    """Tracks which status message each session may still edit.

    Only the most recent status message of a session is editable, the way
    a chat client only lets a bot edit messages it still knows about.
    """

    def __init__(self) -> None:
        self._ids = count(1)
        self._latest: dict[str, int] = {}

    def post(self, key: str) -> int:
        ref = next(self._ids)
        self._latest[key] = ref
        return ref

    def is_editable(self, key: str, ref: Any) -> bool:
        return self._latest.get(key) == ref

    def forget(self, key: str) -> None:
        self._latest.pop(key, None)


class BoardDelivery:
    """Delivery that turns service output into JSON events.

    Events are collected in ``events``; subclasses may also push them
    somewhere as they are produced.
    """

    def __init__(self, board: MessageBoard, key: str):
        self.board = board
        self.key = key
        self.events: list[dict[str, Any]] = []

    async def _emit(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    async def send(self, update: StatusUpdate) -> int:
        ref = self.board.post(self.key)
        await self._emit({**update.to_dict(), "ref": ref, "edited": False})
        return ref

    async def edit(self, ref: Any, update: StatusUpdate) -> None:
        if not self.board.is_editable(self.key, ref):
            raise LookupError(f"Message {ref} can no longer be edited")
        await self._emit({**update.to_dict(), "ref": ref, "edited": True})

    async def send_text(self, text: str, buttons: list[list[Button]] | None = None) -> None:
        await self._emit({
            "type": "text",
            "text": text,
            "buttons": [[button.to_dict() for button in row] for row in buttons or []],
        })

    async def send_media(self, path: str, kind: str, caption: str, as_document: bool = False) -> None:
        data = await asyncio.to_thread(Path(path).read_bytes)
        await self._emit({
            "type": "media",
            "kind": kind,
            "caption": caption,
            "as_document": as_document,
            "filename": Path(path).name,
            "data": base64.b64encode(data).decode("ascii"),
        })


class WebSocketDelivery(BoardDelivery):
    """Pushes each event to the connected client immediately."""

    def __init__(self, board: MessageBoard, key: str, websocket: WebSocket, request_id: str):
        super().__init__(board, key)
        self.websocket = websocket
        self.request_id = request_id

    async def _emit(self, event: dict[str, Any]) -> None:
        await super()._emit(event)
        await self.websocket.send_json({**event, "id": self.request_id})


# =============================================================================
# Request/Response Models
# =============================================================================


class CommandRequest(BaseModel):
    text: str | None = None
    callback: str | None = None


class CommandResponse(BaseModel):
    ok: bool
    session: str
    events: list[dict[str, Any]]


# =============================================================================
# App
# =============================================================================


def create_app(service: BrowserService | None = None, token: str | None = None) -> FastAPI:
    """Build the FastAPI app around ``service`` (a new one by default)."""
    service = service or BrowserService()
    token = API_TOKEN if token is None else token
    board = MessageBoard()
    service.registry.on_close.append(board.forget)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Launch the shared browser before accepting commands; close it on shutdown."""
        await service.start()
        try:
            yield
        finally:
            try:
                await service.stop()
            except Exception as e:
                logger.error(f"Error stopping browser service: {e}")

    app = FastAPI(title="chat-browser", lifespan=lifespan)
    app.state.service = service
    app.state.board = board

    @app.middleware("http")
    async def verify_api_token(request: Request, call_next):
        """Verify X-Api-Token header on session endpoints."""
        if token and request.url.path.startswith("/sessions/"):
            if request.headers.get(TOKEN_HEADER, "") != token:
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Invalid or missing API token"},
                )
        return await call_next(request)

    # =========================================================================
    # Endpoints
    # =========================================================================

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"ok": True, "name": "chat-browser", **service.health()}

    @app.get("/errors")
    def get_errors():
        """Get all standardized error definitions."""
        definitions = get_error_registry().get_all_definitions()
        return {
            "ok": True,
            "errors": {
                code: {
                    "code": defn.code,
                    "message": defn.message,
                    "http_status": defn.http_status,
                    "retryable": defn.retryable,
                }
                for code, defn in definitions.items()
            },
        }

    @app.post("/sessions/{key}/commands", response_model=CommandResponse)
    async def run_command(key: str, body: CommandRequest):
        """Run one chat command or button callback for a session."""
        delivery = BoardDelivery(board, key)
        try:
            command = service.parse(text=body.text, callback=body.callback)
        except UsageError as e:
            if body.text is None and body.callback is None:
                return JSONResponse(status_code=e.http_status, content=e.to_dict())
            await delivery.send_text(f"❌ {e}")
            return CommandResponse(ok=True, session=key, events=delivery.events)

        await service.handle(key, command, delivery)
        return CommandResponse(ok=True, session=key, events=delivery.events)

    @app.delete("/sessions/{key}")
    async def close_session(key: str):
        """Close a session and its browser context."""
        if key not in service.registry:
            raise HTTPException(status_code=404, detail=f"Session '{key}' not found")
        delivery = BoardDelivery(board, key)
        await service.handle(key, CloseSession(), delivery)
        return {"ok": True, "session": key, "events": delivery.events}

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    pending_tasks: set[asyncio.Task] = set()

    async def _run_ws_command(websocket: WebSocket, request_id: str, key: str, data: dict) -> None:
        delivery = WebSocketDelivery(board, key, websocket, request_id)
        try:
            try:
                command = service.parse(text=data.get("text"), callback=data.get("data"))
            except UsageError as e:
                await delivery.send_text(f"❌ {e}")
            else:
                await service.handle(key, command, delivery)
            await websocket.send_json({"type": "done", "id": request_id})
        except Exception as e:
            ws_logger.debug(f"Could not deliver result for {request_id[:8]}: {e}")

    @app.websocket("/ws/{key}")
    async def websocket_endpoint(websocket: WebSocket, key: str):
        """Persistent connection for one session.

        Message protocol:
        - Client sends: {"type": "command", "text": "/go ..."} or
          {"type": "callback", "data": "nav:down"} or {"type": "ping"}
        - Server sends: the events of each command tagged with its "id",
          then {"type": "done", "id": ...}
        """
        supplied = websocket.headers.get(TOKEN_HEADER, "") or websocket.query_params.get("token", "")
        if token and supplied != token:
            ws_logger.warning("WebSocket connection rejected: invalid token")
            await websocket.close(code=4001, reason="Invalid or missing API token")
            return

        await websocket.accept()
        ws_logger.info(f"WebSocket connected for session {key}")

        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except json.JSONDecodeError as e:
                    await websocket.send_json({"type": "error", "error": f"Invalid JSON: {e}"})
                    continue

                msg_type = data.get("type")
                request_id = str(data.get("id") or uuid.uuid4())

                if msg_type == "ping":
                    await websocket.send_json({"type": "pong", "id": request_id})
                elif msg_type in ("command", "callback"):
                    task = asyncio.create_task(_run_ws_command(websocket, request_id, key, data))
                    pending_tasks.add(task)
                    task.add_done_callback(pending_tasks.discard)
                else:
                    await websocket.send_json({
                        "type": "error",
                        "id": request_id,
                        "error": f"Unknown message type: {msg_type}",
                    })
        except WebSocketDisconnect:
            ws_logger.info(f"WebSocket disconnected for session {key}")
        except Exception as e:
            ws_logger.error(f"WebSocket error: {e}")

    return app


def main():
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("CHAT_BROWSER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(),
        host=os.environ.get("CHAT_BROWSER_HOST", "127.0.0.1"),
        port=int(os.environ.get("CHAT_BROWSER_PORT", "18791")),
    )


if __name__ == "__main__":
    main()
