"""Tests for the relay server routes.

WebSocket tests drive real kernel subprocesses through Starlette's
TestClient; the REST route is exercised with httpx's ASGI transport.
"""

import time
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from sim_relay.bridge.process_supervisor import ProcessSupervisor
from sim_relay.bridge.server import _frame_text, create_app
from sim_relay.bridge.session_manager import SessionManager
from sim_relay.core.config import RelayConfig

# =============================================================================
# Helpers
# =============================================================================


def make_config(command: tuple[str, ...], **server) -> RelayConfig:
    """Relay config running the given kernel command."""
    return RelayConfig(kernel={"command": command, "sigterm_wait": 1.0}, server=server)


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll a predicate from the test thread."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


# =============================================================================
# WebSocket route
# =============================================================================


class TestRelaySocket:
    """Tests for the /ws endpoint."""

    def test_streams_kernel_output_in_order(self, short_kernel):
        """Kernel records arrive as typed JSON frames, exit notice last."""
        app = create_app(make_config(short_kernel))

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            frames = [ws.receive_json() for _ in range(4)]

        assert frames[0] == {"type": "data", "tick": 1, "hr": 72}
        assert frames[1] == {"type": "log_entry", "message": "VitalSigns: Task started."}
        assert frames[2] == {"type": "log", "message": "plain text line"}
        assert frames[3]["type"] == "log"
        assert "KERNEL PROCESS TERMINATED (code 0)" in frames[3]["message"]

    def test_stop_and_start_stream(self, long_kernel):
        """stop_stream kills the kernel, start_stream spawns a fresh one."""
        app = create_app(make_config(long_kernel))
        supervisor: ProcessSupervisor = app.state.process_supervisor

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "log", "message": "ready"}
            first_pid = app.state.session_manager.list_all()[0]["pid"]

            ws.send_text("stop_stream")
            assert wait_until(lambda: supervisor.live_count == 0)

            ws.send_text("start_stream")
            # Exit of the stopped kernel is never relayed
            assert ws.receive_json() == {"type": "log", "message": "ready"}
            second_pid = app.state.session_manager.list_all()[0]["pid"]

        assert first_pid != second_pid

    def test_repeated_start_keeps_one_kernel(self, long_kernel):
        """start_stream while active does not spawn a second kernel."""
        app = create_app(make_config(long_kernel))
        supervisor: ProcessSupervisor = app.state.process_supervisor

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("start_stream")
            ws.send_text("start_stream")
            ws.send_text("stop_stream")
            assert wait_until(lambda: supervisor.live_count == 0)

    def test_binary_frames_do_not_end_session(self, long_kernel):
        """Binary frames are decoded as commands or ignored, never fatal."""
        app = create_app(make_config(long_kernel))
        supervisor: ProcessSupervisor = app.state.process_supervisor

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "log", "message": "ready"}

            ws.send_bytes(b"\xff\xfe not utf-8")
            ws.send_bytes(b"stop_stream")
            assert wait_until(lambda: supervisor.live_count == 0)

            ws.send_text("start_stream")
            assert ws.receive_json() == {"type": "log", "message": "ready"}
            assert supervisor.live_count == 1

    def test_disconnect_terminates_kernel(self, long_kernel):
        """Closing the socket leaves no live kernel behind."""
        app = create_app(make_config(long_kernel))
        supervisor: ProcessSupervisor = app.state.process_supervisor

        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                assert supervisor.live_count == 1

            assert wait_until(lambda: supervisor.live_count == 0)
            assert wait_until(lambda: app.state.session_manager.count == 0)

    def test_sessions_are_independent(self, long_kernel):
        """Each connection gets its own kernel."""
        app = create_app(make_config(long_kernel))
        supervisor: ProcessSupervisor = app.state.process_supervisor

        with TestClient(app) as client:
            with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
                first.receive_json()
                second.receive_json()
                assert supervisor.live_count == 2

                first.send_text("stop_stream")
                assert wait_until(lambda: supervisor.live_count == 1)

    def test_spawn_failure_reported(self, tmp_path):
        """A kernel that cannot start produces an ERROR log frame."""
        app = create_app(make_config((str(tmp_path / "missing-kernel"),)))

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            frame = ws.receive_json()

        assert frame["type"] == "log"
        assert frame["message"].startswith("ERROR: failed to start kernel")

    def test_custom_path(self, short_kernel):
        """The WebSocket route follows server.path."""
        app = create_app(make_config(short_kernel, path="/kernel"))

        with TestClient(app) as client, client.websocket_connect("/kernel") as ws:
            assert ws.receive_json()["type"] == "data"


# =============================================================================
# REST route
# =============================================================================


@pytest.fixture
def supervisor() -> MagicMock:
    mock = MagicMock(spec=ProcessSupervisor)
    mock.live_count = 0
    mock.shutdown = AsyncMock()
    return mock


class TestListSessions:
    """Tests for GET /api/sessions."""

    async def test_empty(self, supervisor):
        """No connections, no sessions."""
        app = create_app(RelayConfig(), supervisor=supervisor)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/sessions")

        assert response.status_code == 200
        assert response.json() == {"sessions": [], "count": 0, "live_kernels": 0}

    async def test_lists_open_sessions(self, supervisor):
        """Open sessions are summarised."""
        app = create_app(RelayConfig(), supervisor=supervisor)
        manager: SessionManager = app.state.session_manager
        bridge = manager.create(AsyncMock())
        supervisor.live_count = 1

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/sessions")

        data = response.json()
        assert data["count"] == 1
        assert data["live_kernels"] == 1
        assert data["sessions"][0]["session_id"] == bridge.session_id
        assert data["sessions"][0]["state"] == "stopped"

    def test_app_state(self, supervisor):
        """Shared objects are reachable through app.state."""
        config = RelayConfig()
        app = create_app(config, supervisor=supervisor)

        assert app.state.config is config
        assert app.state.process_supervisor is supervisor
        assert app.state.session_manager.supervisor is supervisor


class TestFrameText:
    """Tests for reading command text out of received frames."""

    def test_text_frame(self):
        assert _frame_text({"type": "websocket.receive", "text": "stop_stream"}) == "stop_stream"

    def test_utf8_binary_frame(self):
        assert _frame_text({"type": "websocket.receive", "bytes": b"start_stream"}) == "start_stream"

    def test_undecodable_binary_frame(self):
        assert _frame_text({"type": "websocket.receive", "bytes": b"\xff\xfe"}) is None

    def test_empty_frame(self):
        assert _frame_text({"type": "websocket.receive"}) is None
