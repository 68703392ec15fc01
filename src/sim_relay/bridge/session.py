"""Per-connection session state machine.

A SessionBridge composes the ProcessSupervisor and the event parser for one
viewer connection. Valid transitions:

    STOPPED → ACTIVE  (on connect, or start_stream)
    ACTIVE → STOPPED  (on stop_stream, or when the kernel exits)
    any → closed      (on disconnect; the live kernel is terminated first)

start_stream while ACTIVE and stop_stream while STOPPED are no-ops.

All events reach the connection through a single writer loop (``run``)
that drains the session's signal channel, so per-session output order is
exactly the order in which signals were queued.

Stopping a kernel queues a RetireHandle marker before the process is
signalled. Output the kernel produced before the stop is still delivered;
only what is queued behind the marker is discarded.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sim_relay.core.exceptions import SpawnError

from .event_parser import STDERR_PREFIX, exit_event, parse_line, parse_stderr
from .events import Event, LogEvent
from .process_supervisor import (
    ProcessExited,
    ProcessHandle,
    ProcessSignal,
    ProcessSupervisor,
    StderrChunk,
    StdoutLine,
)

logger = logging.getLogger(__name__)

EventSender = Callable[[Event], Awaitable[None]]


class SessionState(StrEnum):
    """Lifecycle state of a session's kernel feed."""

    ACTIVE = "active"
    STOPPED = "stopped"


class Command(StrEnum):
    """Control commands accepted from viewers."""

    STOP_STREAM = "stop_stream"
    START_STREAM = "start_stream"


@dataclass(frozen=True)
class BridgeNotice:
    """An event produced by the bridge itself rather than the kernel."""

    event: Event


@dataclass(frozen=True)
class RetireHandle:
    """Channel marker: signals of this handle queued after it are stale."""

    handle: ProcessHandle


SessionItem = ProcessSignal | BridgeNotice | RetireHandle | None


@dataclass
class Session:
    """State for one viewer connection.

    Attributes:
        session_id: Stable UUID for this connection.
        handle: Live kernel handle, or None while stopped.
        state: Current feed state.
        signals: Channel from kernel monitors (and the bridge) to the writer.
        created_at: Connection time.
        events_sent: Events delivered to the viewer so far.

    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    handle: ProcessHandle | None = None
    state: SessionState = SessionState.STOPPED
    signals: "asyncio.Queue[SessionItem]" = field(default_factory=asyncio.Queue)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    events_sent: int = 0

    def set_active(self, handle: ProcessHandle) -> None:
        """Transition to ACTIVE with a freshly spawned handle."""
        self.handle = handle
        self.state = SessionState.ACTIVE
        logger.info("Session %s active (PID %d)", self.session_id[:8], handle.pid)

    def set_stopped(self) -> None:
        """Transition to STOPPED, dropping the handle."""
        if self.state is SessionState.ACTIVE:
            logger.info("Session %s stopped", self.session_id[:8])
        self.handle = None
        self.state = SessionState.STOPPED

    def is_current(self, handle: ProcessHandle) -> bool:
        """Check whether a handle is the one this session currently owns."""
        return self.handle is handle


class SessionBridge:
    """Connects one session's kernel process to its viewer.

    Provides:
    - start/stop control with idempotent commands
    - stale-signal filtering after a stop
    - ordered event delivery through a single writer loop
    - kernel teardown on disconnect

    Attributes:
        session: The session this bridge drives.
        supervisor: Shared process supervisor.

    """

    def __init__(
        self,
        session: Session,
        supervisor: ProcessSupervisor,
        send: EventSender,
    ) -> None:
        """Initialize bridge.

        Args:
            session: Session to drive.
            supervisor: Supervisor that owns kernel processes.
            send: Coroutine delivering one event to the viewer.

        """
        self.session = session
        self.supervisor = supervisor
        self._send = send
        self._closed = False
        # handle_ids whose RetireHandle marker the writer has passed
        self._retired: set[str] = set()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def open(self) -> None:
        """Start the kernel feed for a newly connected viewer."""
        logger.info("Session %s connected", self.session_id[:8])
        await self.start()

    async def handle_command(self, command: str) -> bool:
        """Apply a control command received from the viewer.

        Args:
            command: Raw command text (surrounding whitespace ignored).

        Returns:
            True if the command changed the session state.

        """
        try:
            cmd = Command(command.strip())
        except ValueError:
            logger.warning("Ignoring unknown command %r from session %s", command[:50], self.session_id[:8])
            return False

        if cmd is Command.STOP_STREAM:
            return await self.stop()
        return await self.start()

    async def start(self) -> bool:
        """Spawn a kernel if the session is stopped.

        Returns:
            True if a kernel was spawned.

        """
        if self._closed or self.session.state is SessionState.ACTIVE:
            return False

        try:
            handle = await self.supervisor.spawn(self.session_id, self.session.signals)
        except SpawnError as e:
            self.session.signals.put_nowait(
                BridgeNotice(LogEvent(message=f"{STDERR_PREFIX}failed to start kernel: {e}"))
            )
            return False

        self.session.set_active(handle)
        return True

    async def stop(self) -> bool:
        """Terminate the kernel if the session is active.

        The handle is detached and retired before termination, so anything
        it emits after this point is discarded by the writer.

        Returns:
            True if a kernel was terminated.

        """
        if self.session.state is not SessionState.ACTIVE:
            return False

        handle = self.session.handle
        self._retire(handle)
        await self.supervisor.terminate(handle)
        return True

    def _retire(self, handle: ProcessHandle | None) -> None:
        self.session.set_stopped()
        if handle is not None:
            self.session.signals.put_nowait(RetireHandle(handle))

    async def close(self) -> None:
        """Tear down the session: terminate any kernel and end the writer."""
        if self._closed:
            return
        self._closed = True

        handle = self.session.handle
        self._retire(handle)
        if handle is not None:
            await self.supervisor.terminate(handle)

        self.session.signals.put_nowait(None)
        logger.info("Session %s closed", self.session_id[:8])

    def translate(self, item: ProcessSignal | BridgeNotice | RetireHandle) -> list[Event]:
        """Convert one channel item into the events to send.

        Must be called in channel order: a handle's signals are stale only
        once its RetireHandle marker has been translated.

        Args:
            item: Kernel signal, bridge notice or retire marker.

        Returns:
            Events for the viewer; empty for markers and stale signals.

        """
        if isinstance(item, BridgeNotice):
            return [item.event]

        handle_id = item.handle.handle_id
        if isinstance(item, RetireHandle):
            self._retired.add(handle_id)
            return []

        if handle_id in self._retired:
            # Exit is a handle's last signal
            if isinstance(item, ProcessExited):
                self._retired.discard(handle_id)
            logger.debug("Discarding stale signal from kernel %s", handle_id)
            return []

        if isinstance(item, StdoutLine):
            return parse_line(item.line)
        if isinstance(item, StderrChunk):
            return parse_stderr(item.chunk)
        if isinstance(item, ProcessExited):
            if self.session.is_current(item.handle):
                self.session.set_stopped()
            return [exit_event(item.returncode)]

        logger.debug("Unknown session item %r", item)
        return []

    async def run(self) -> None:
        """Writer loop: deliver events until the session closes.

        Returns when close() is called or when sending fails because the
        viewer has gone away.
        """
        signals = self.session.signals
        while True:
            item = await signals.get()
            if item is None:
                break

            for event in self.translate(item):
                try:
                    await self._send(event)
                except Exception:
                    logger.warning(
                        "Failed to send to session %s, stopping writer",
                        self.session_id[:8],
                        exc_info=True,
                    )
                    return
                self.session.events_sent += 1

    def summary(self) -> dict[str, Any]:
        """Get summary dict for API response."""
        handle = self.session.handle
        return {
            "session_id": self.session_id,
            "state": self.session.state.value,
            "pid": handle.pid if handle is not None else None,
            "kernel_id": handle.handle_id if handle is not None else None,
            "created_at": self.session.created_at.isoformat(),
            "events_sent": self.session.events_sent,
        }
