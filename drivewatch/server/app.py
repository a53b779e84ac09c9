"""
FastAPI application for Drive Watch.

Endpoints:
- POST /api/monitor                 start watching one file
- POST /api/monitor/folder          start watching a folder
- POST /api/monitor/renew           renew a file channel
- POST /api/monitor/stop            stop watching a file
- POST /api/monitor/folder/stop     stop watching the folder
- POST /api/monitor/notifications   Drive push notifications (always 200)
- GET  /health
- WS   /ws                          subscribers; join-file / leave-file rooms
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config import MonitorSettings
from ..drive import (
    CredentialTokenSource,
    DriveClient,
    DriveClientConfig,
    FileCredentialProvider,
    parse_drive_file_url,
    parse_drive_folder_url,
)
from ..errors import AuthError, FetchError, MonitorError, RegistrationError
from ..monitor import (
    ChangeReconciler,
    ChannelHandle,
    ContentNormalizer,
    ModificationLedger,
    NotificationDispatcher,
    SubscriberHub,
    WatchRegistry,
)
from .renewal import ChannelRenewer

logger = logging.getLogger(__name__)


def _resolve_id(parse, value: str) -> str:
    """Accept a raw id or a share link; 400 if neither."""
    target_id, error = parse(value)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return target_id


class FileRequest(BaseModel):
    file_id: str = Field(..., alias="fileId", min_length=1)

    def resolved_file_id(self) -> str:
        return _resolve_id(parse_drive_file_url, self.file_id)


class FolderRequest(BaseModel):
    folder_id: str = Field(..., alias="folderId", min_length=1)

    def resolved_folder_id(self) -> str:
        return _resolve_id(parse_drive_folder_url, self.folder_id)


class WebSocketSubscriber:
    """
    Hub subscriber that forwards messages to a WebSocket from any thread.

    Sends complete on the socket's event loop, after emit() has returned;
    a send that fails there drops the subscriber from the hub.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop, hub: SubscriberHub):
        self.websocket = websocket
        self.loop = loop
        self.hub = hub

    def send(self, message: dict):
        future = asyncio.run_coroutine_threadsafe(self.websocket.send_json(message), self.loop)
        future.add_done_callback(self._on_sent)

    def _on_sent(self, future):
        if future.cancelled():
            error = "send cancelled"
        elif future.exception() is not None:
            error = future.exception()
        else:
            return
        logger.warning("Dropping WebSocket subscriber after failed send: %s", error)
        self.hub.unsubscribe(self)


def build_reconciler(settings: MonitorSettings, hub: SubscriberHub) -> ChangeReconciler:
    """Wire the monitor components for settings."""
    provider = FileCredentialProvider(Path(settings.token_path))
    client = DriveClient(
        DriveClientConfig(timeout=settings.request_timeout),
        token_source=CredentialTokenSource(provider),
    )
    registry = WatchRegistry(client, settings.callback_address, settings.channel_ttl_seconds)
    return ChangeReconciler(
        client,
        registry,
        ModificationLedger(),
        ContentNormalizer(client),
        NotificationDispatcher(hub),
        max_workers=settings.max_workers,
    )


def _channel_response(message: str, key: str, target_id: str, handle: ChannelHandle) -> dict:
    expires = handle.expiration_datetime
    return {
        "message": message,
        key: target_id,
        "channelExpiration": handle.expiration,
        "expirationDate": expires.isoformat() if expires else None,
    }


def create_app(
    reconciler: ChangeReconciler,
    hub: SubscriberHub,
    renewer: Optional[ChannelRenewer] = None,
) -> FastAPI:
    """Create the HTTP app around an already wired reconciler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if renewer is not None:
            renewer.start()
        logger.info("Drive Watch %s started", __version__)
        yield
        if renewer is not None:
            renewer.stop()
        logger.info("Drive Watch stopped")

    app = FastAPI(title="Drive Watch", version=__version__, lifespan=lifespan)

    @app.exception_handler(AuthError)
    async def auth_error(request: Request, exc: AuthError):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(RegistrationError)
    async def registration_error(request: Request, exc: RegistrationError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(FetchError)
    async def fetch_error(request: Request, exc: FetchError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(MonitorError)
    async def monitor_error(request: Request, exc: MonitorError):
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        watch = reconciler.registry.folder_watch()
        return {
            "status": "healthy",
            "folder": watch.folder_id if watch else None,
            "fileWatches": len(reconciler.registry.file_watches()),
            "sequence": reconciler.dispatcher.sequence,
        }

    @app.post("/api/monitor")
    def setup_file_monitoring(body: FileRequest):
        file_id = body.resolved_file_id()
        handle = reconciler.setup_file_monitoring(file_id)
        return _channel_response("Monitoring started for file", "fileId", file_id, handle)

    @app.post("/api/monitor/folder")
    def setup_folder_monitoring(body: FolderRequest):
        folder_id = body.resolved_folder_id()
        handle, _ = reconciler.setup_folder_monitoring(folder_id)
        return _channel_response("Monitoring started for folder", "folderId", folder_id, handle)

    @app.post("/api/monitor/renew")
    def renew_file_channel(body: FileRequest):
        file_id = body.resolved_file_id()
        handle = reconciler.renew_file(file_id)
        if handle is None:
            raise HTTPException(status_code=404, detail="No active channel found for this file")
        return _channel_response("Channel renewed successfully", "fileId", file_id, handle)

    @app.post("/api/monitor/stop")
    def stop_file_monitoring(body: FileRequest):
        file_id = body.resolved_file_id()
        if not reconciler.stop_file_monitoring(file_id):
            raise HTTPException(status_code=404, detail="No active channel found for this file")
        return {"message": f"Stopped monitoring for file {file_id}"}

    @app.post("/api/monitor/folder/stop")
    def stop_folder_monitoring(body: FolderRequest):
        folder_id = body.resolved_folder_id()
        if not reconciler.stop_folder_monitoring(folder_id):
            raise HTTPException(status_code=404, detail="No active channel found for this folder")
        return {"message": f"Stopped monitoring folder {folder_id}"}

    @app.post("/api/monitor/notifications")
    def handle_notification(
        background_tasks: BackgroundTasks,
        x_goog_resource_uri: str = Header(""),
        x_goog_resource_state: Optional[str] = Header(None),
    ):
        logger.info("Push notification (%s) for %s", x_goog_resource_state, x_goog_resource_uri)
        background_tasks.add_task(reconciler.handle_notification, x_goog_resource_uri, x_goog_resource_state)
        return PlainTextResponse("Notification received")

    @app.websocket("/ws")
    async def subscriber_socket(websocket: WebSocket):
        await websocket.accept()
        subscriber = WebSocketSubscriber(websocket, asyncio.get_running_loop(), hub)
        hub.subscribe(subscriber)
        try:
            while True:
                message = await websocket.receive_json()
                event = message.get("event") if isinstance(message, dict) else None
                file_id = message.get("fileId") if isinstance(message, dict) else None
                if event not in ("join-file", "leave-file"):
                    await websocket.send_json({"event": "error", "data": {"message": f"Unknown event {event!r}"}})
                    continue
                if not file_id or not isinstance(file_id, str):
                    await websocket.send_json({"event": "error", "data": {"message": f"Invalid fileId for {event}."}})
                    continue
                if event == "join-file":
                    hub.join(subscriber, file_id)
                    await websocket.send_json({"event": "joined-file", "data": {"fileId": file_id}})
                else:
                    hub.leave(subscriber, file_id)
                    await websocket.send_json({"event": "left-file", "data": {"fileId": file_id}})
        except WebSocketDisconnect:
            pass
        finally:
            hub.unsubscribe(subscriber)

    return app


def create_app_from_settings(settings: MonitorSettings) -> FastAPI:
    hub = SubscriberHub()
    reconciler = build_reconciler(settings, hub)
    renewer = ChannelRenewer(
        reconciler,
        margin_seconds=settings.renew_margin_seconds,
        interval_seconds=settings.renew_check_interval_seconds,
    )
    return create_app(reconciler, hub, renewer)
