# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the CastLadder ingest service.

The service provides:

- WebSocket capture ingest (one transcoder per session)
- HLS master playlist for the rendition ladder
- Session inspection and shutdown
- The bundled capture/player page
- Rendition files from the media root

Example Usage:
    Start the service:
    ```bash
    uvicorn castladder.service.app:app --host 0.0.0.0 --port 3000
    ```

    Push a recording:
    ```bash
    castladder-push capture.webm --url ws://localhost:3000/ingest
    ```

    Fetch the master playlist:
    ```bash
    curl http://localhost:3000/live/stream.m3u8
    ```
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.websockets import WebSocketState

from castladder import __version__
from castladder.core.ladder import LadderCoordinator, RenditionLadder
from castladder.core.manifest import MANIFEST_MIME_TYPE, synthesize_manifest
from castladder.core.session import SessionManager, SessionState, SessionStatus
from castladder.exceptions import (
    SessionConflictError,
    SessionError,
    SessionNotFoundError,
    TranscoderLaunchError,
)
from castladder.service.config import ServiceConfig, get_config
from castladder.service.models import (
    ErrorResponse,
    HealthResponse,
    RenditionListResponse,
    RenditionResponse,
    SessionListResponse,
    SessionResponse,
    SessionStopResponse,
)
from castladder.utils.logger import logger, setup_logger

BUNDLED_STATIC_DIR = Path(__file__).resolve().parent.parent / "static"
MANIFEST_PATH = "/live/stream.m3u8"

# Global state
config: ServiceConfig = None
session_manager: SessionManager = None
ladder: RenditionLadder = None
coordinator: LadderCoordinator = None
start_time: float = 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup and shutdown.

    Startup builds the ladder, the session arena and the segmenter
    coordinator from the service configuration. Shutdown stops every
    session, then the segmenters.
    """
    global config, session_manager, ladder, coordinator, start_time

    logger.info("Starting CastLadder service...")
    config = get_config()
    setup_logger(level=config.log_level)

    ladder = config.build_ladder()
    session_manager = SessionManager(
        transcoder_config=config.build_transcoder_config(),
        channel_size=config.channel_size,
        stop_timeout=config.stop_timeout,
        write_timeout=config.write_timeout,
        max_sessions=config.max_sessions,
    )
    coordinator = LadderCoordinator(
        ladder,
        source_url=config.publish_url,
        media_root=config.media_root,
        ffmpeg_path=config.transcoder.ffmpeg_path,
        hls_time=config.hls_time,
        hls_list_size=config.hls_list_size,
    )

    media_root = Path(config.media_root)
    if media_root.is_dir() and not any(getattr(r, "name", None) == "media" for r in app.routes):
        app.mount("/media", StaticFiles(directory=str(media_root)), name="media")
        logger.info(f"Serving rendition files from {media_root}")

    start_time = time.time()
    logger.info(
        f"CastLadder service started (publish: {config.publish_url}, "
        f"ladder: {', '.join(ladder.labels)})"
    )

    yield

    logger.info("Shutting down CastLadder service...")
    await session_manager.stop_all()
    await coordinator.stop(timeout=config.stop_timeout)
    logger.info("CastLadder service shut down")


app = FastAPI(
    title="CastLadder API",
    description="Live browser capture ingest with an adaptive HLS rendition ladder.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    license_info={
        "name": "Apache 2.0",
        "url": "https://www.apache.org/licenses/LICENSE-2.0.html",
    },
    openapi_tags=[
        {"name": "Health", "description": "Health check and service status"},
        {"name": "Sessions", "description": "Ingest session inspection and shutdown"},
        {"name": "Playback", "description": "Master playlist and rendition ladder"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static", StaticFiles(directory=str(BUNDLED_STATIC_DIR)), name="static")


def _error(status_code: int, exc: Exception, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            message=getattr(exc, "message", None) or str(exc),
            details=details,
        ).model_dump(),
    )


# Exception handlers
@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc, {"session_id": exc.session_id})


@app.exception_handler(SessionConflictError)
async def session_conflict_handler(request: Request, exc: SessionConflictError):
    return _error(status.HTTP_409_CONFLICT, exc, {"session_id": exc.session_id})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="InternalServerError",
            message="An unexpected error occurred",
            details={"exception": str(exc)},
        ).model_dump(),
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Health check",
)
async def health_check():
    """
    Health check endpoint.

    Returns the service version, uptime and the number of live sessions.
    """
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=uptime,
        active_sessions=session_manager.get_active_session_count(),
        system_info=session_manager.get_stats(),
    )


@app.get("/", include_in_schema=False)
async def index():
    """Serve the capture/player page."""
    static_dir = Path(config.static_dir) if config and config.static_dir else BUNDLED_STATIC_DIR
    return FileResponse(static_dir / "index.html")


@app.get(
    MANIFEST_PATH,
    tags=["Playback"],
    summary="HLS master playlist",
    response_class=Response,
)
async def master_playlist():
    """
    Master playlist listing every rendition, highest bandwidth first.

    Generated from the ladder on each request; the content is identical for
    the same ladder and base URL.
    """
    manifest = synthesize_manifest(ladder, config.playback_base_url)
    return Response(
        content=manifest.render(),
        media_type=MANIFEST_MIME_TYPE,
        headers={"Cache-Control": "no-cache"},
    )


@app.get(
    "/renditions",
    response_model=RenditionListResponse,
    tags=["Playback"],
    summary="Rendition ladder",
)
async def list_renditions():
    """Ladder as JSON with per-rendition readiness."""
    manifest = synthesize_manifest(ladder, config.playback_base_url)
    return RenditionListResponse(
        renditions=[
            RenditionResponse(
                label=entry.label,
                bandwidth=entry.bandwidth,
                resolution=entry.resolution,
                frame_rate=entry.frame_rate,
                url=entry.url,
            )
            for entry in manifest.entries
        ],
        manifest_url=MANIFEST_PATH,
        readiness=coordinator.get_status(),
        direct_stream_url=config.direct_stream_url,
    )


@app.get(
    "/sessions",
    response_model=SessionListResponse,
    tags=["Sessions"],
    summary="List ingest sessions",
)
async def list_sessions():
    sessions = [SessionResponse(**s.get_info()) for s in session_manager.list_sessions()]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@app.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    tags=["Sessions"],
    summary="Get session details",
    responses={404: {"model": ErrorResponse}},
)
async def get_session(session_id: str):
    session = session_manager.get_session(session_id)
    return SessionResponse(**session.get_info())


@app.delete(
    "/sessions/{session_id}",
    response_model=SessionStopResponse,
    tags=["Sessions"],
    summary="Stop an ingest session",
    responses={404: {"model": ErrorResponse}},
)
async def stop_session(session_id: str):
    """Stop the session: close its channel, then shut its transcoder down."""
    final = await session_manager.stop_session(session_id, reason="stopped via API")
    return SessionStopResponse(
        session_id=final.session_id,
        state=final.state.value,
        detail=final.detail,
        exit_code=final.exit_code,
    )


async def _ensure_segmenters() -> None:
    """Start the local segmenters on the first capture. Failures leave ingest running."""
    if not config.spawn_segmenters:
        return
    try:
        await coordinator.ensure_started()
    except Exception as e:
        logger.error(f"[INGEST] Segmenters could not be started: {e}", exc_info=True)


async def _push_status(websocket: WebSocket, queue: "asyncio.Queue[SessionStatus]") -> None:
    """Forward session status changes to the capture client."""
    while True:
        session_status = await queue.get()
        await websocket.send_json(session_status.to_dict())
        if session_status.state.is_terminal:
            code = (
                status.WS_1011_INTERNAL_ERROR
                if session_status.state == SessionState.FAILED
                else status.WS_1000_NORMAL_CLOSURE
            )
            await websocket.close(code=code, reason=session_status.detail[:120])
            return


@app.websocket("/ingest")
async def ingest(websocket: WebSocket, session_id: Optional[str] = Query(None)):
    """
    Capture ingest channel.

    Binary messages are media chunks, forwarded to the session transcoder in
    arrival order. The server pushes JSON status messages. Closing the
    socket ends the capture and stops the session.
    """
    await websocket.accept()

    try:
        session = await session_manager.create_session(session_id)
    except SessionConflictError as e:
        logger.warning(f"[INGEST] Rejected connection: {e.message}")
        await websocket.send_json({
            "type": "error",
            "error": "SessionConflictError",
            "session_id": e.session_id,
            "detail": e.message,
        })
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="session already live")
        return
    except (SessionError, TranscoderLaunchError) as e:
        logger.error(f"[INGEST] Session could not be started: {e.message}")
        await websocket.send_json({
            "type": "status",
            "session_id": session_id,
            "state": SessionState.FAILED.value,
            "detail": e.message,
        })
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="session failed")
        return

    logger.info(f"[INGEST] Capture connected for session {session.session_id}")

    queue: asyncio.Queue = asyncio.Queue()
    queue.put_nowait(session.status)
    unsubscribe = session.subscribe(queue.put_nowait)
    sender = asyncio.create_task(_push_status(websocket, queue))

    try:
        await _ensure_segmenters()
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            data = message.get("bytes")
            if data is not None:
                session.send(data)
            elif message.get("text"):
                logger.debug(f"[INGEST] {session.session_id}: text message ignored")
    finally:
        unsubscribe()
        if not sender.done():
            sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        if not session.state.is_terminal:
            await session.stop("capture channel closed")
        if (
            websocket.application_state == WebSocketState.CONNECTED
            and websocket.client_state == WebSocketState.CONNECTED
        ):
            await websocket.close()
        logger.info(
            f"[INGEST] Capture disconnected for session {session.session_id} "
            f"({session.state.value})"
        )
