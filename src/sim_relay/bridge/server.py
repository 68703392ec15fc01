"""Relay server application.

Provides the Starlette app exposing:
- {server.path} (WebSocket, default /ws) - one kernel session per connection
- /api/sessions - summary of open sessions

Server to viewer: one JSON text frame per event.
Viewer to server: text frames ``stop_stream`` / ``start_stream`` (UTF-8
binary frames are accepted too; anything else is ignored).
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

import uvicorn
from starlette.applications import Starlette
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.types import Message
from starlette.websockets import WebSocket

from sim_relay.core.config import RelayConfig

from .events import Event, to_wire
from .process_supervisor import ProcessSupervisor
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

# Seconds the writer may take to flush after a session closes
WRITER_DRAIN_TIMEOUT = 2.0


def _get_session_manager(conn: HTTPConnection) -> SessionManager:
    """Get session manager from app state."""
    return conn.app.state.session_manager


def _frame_text(message: Message) -> str | None:
    """Get command text from a received frame.

    Binary frames are accepted if they decode as UTF-8.

    Returns:
        Frame text, or None if the frame carries nothing usable.

    """
    text = message.get("text")
    if text is not None:
        return text

    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Ignoring binary frame that is not UTF-8 (%d bytes)", len(data))
        return None


async def relay_socket(websocket: WebSocket) -> None:
    """WebSocket endpoint: stream kernel events and accept control commands.

    The session's kernel is spawned on connect and terminated on disconnect,
    whatever state the session is in.
    """
    manager = _get_session_manager(websocket)
    await websocket.accept()

    async def send(event: Event) -> None:
        await websocket.send_json(to_wire(event))

    bridge = manager.create(send)
    writer = asyncio.create_task(bridge.run(), name=f"writer-{bridge.session_id[:8]}")

    try:
        await bridge.open()
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            command = _frame_text(message)
            if command is not None:
                await bridge.handle_command(command)
    finally:
        await manager.close(bridge.session_id)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(writer, timeout=WRITER_DRAIN_TIMEOUT)
        logger.info("Viewer for session %s disconnected", bridge.session_id[:8])


async def list_sessions(request: Request) -> JSONResponse:
    """GET /api/sessions - List open sessions.

    Returns:
        JSON with per-session state and the number of live kernels.

    """
    manager = _get_session_manager(request)
    sessions = manager.list_all()

    return JSONResponse({
        "sessions": sessions,
        "count": len(sessions),
        "live_kernels": manager.supervisor.live_count,
    })


def create_app(
    config: RelayConfig | None = None,
    supervisor: ProcessSupervisor | None = None,
) -> Starlette:
    """Build the relay application.

    Args:
        config: Relay configuration (defaults if None).
        supervisor: Process supervisor to use; built from config.kernel if None.

    Returns:
        Starlette application with session manager on app.state.

    """
    config = config or RelayConfig()
    supervisor = supervisor or ProcessSupervisor.from_config(config.kernel)
    manager = SessionManager(supervisor)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Relay listening for viewers on %s", config.server.path)
        yield
        await manager.shutdown()
        await supervisor.shutdown()

    app = Starlette(
        routes=[
            WebSocketRoute(config.server.path, relay_socket),
            Route("/api/sessions", list_sessions, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.session_manager = manager
    app.state.process_supervisor = supervisor
    return app


def run_server(config: RelayConfig) -> None:
    """Serve the relay with uvicorn until interrupted.

    Args:
        config: Relay configuration.

    """
    app = create_app(config)
    logger.info(
        "Relay running at ws://%s:%d%s",
        config.server.host,
        config.server.port,
        config.server.path,
    )
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.log_level.lower(),
    )
