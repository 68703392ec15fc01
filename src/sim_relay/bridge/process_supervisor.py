"""Process supervisor for kernel sessions.

Provides spawning, output monitoring, and graceful shutdown of one kernel
subprocess per viewing session.

Every stdout line, stderr chunk and the final exit status is pushed onto
the session's signal channel tagged with the ProcessHandle that produced
it, so the session can discard trailing output from a handle it already
stopped.
"""

import asyncio
import codecs
import logging
import uuid
from asyncio.subprocess import DEVNULL, PIPE
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sim_relay.core.config import KernelConfig
from sim_relay.core.exceptions import ProcessAlreadyRunningError, SpawnError

logger = logging.getLogger(__name__)

# Default timeouts and limits
DEFAULT_SIGTERM_WAIT = 5.0  # seconds between SIGTERM and SIGKILL
DEFAULT_STDERR_CHUNK_SIZE = 4096
DEFAULT_LINE_LIMIT = 1024 * 1024  # longest stdout line accepted, in bytes


@dataclass(eq=False)
class ProcessHandle:
    """Reference to one running kernel process.

    A handle is dead once it has been terminated or once the process has
    exited on its own. Handles compare by identity.

    Attributes:
        session_id: Session that owns this process.
        process: Underlying asyncio subprocess.
        handle_id: Short unique id for logging.
        started_at: Spawn time.
        terminated: True once termination was requested.
        returncode: Exit status once the process has been reaped.

    """

    session_id: str
    process: asyncio.subprocess.Process = field(repr=False)
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    terminated: bool = False
    returncode: int | None = None

    @property
    def pid(self) -> int:
        """OS process id."""
        return self.process.pid

    @property
    def alive(self) -> bool:
        """True until terminated or exited."""
        return not self.terminated and self.returncode is None


@dataclass(frozen=True)
class StdoutLine:
    """One decoded stdout line, trailing newline stripped."""

    handle: ProcessHandle
    line: str


@dataclass(frozen=True)
class StderrChunk:
    """One decoded stderr read."""

    handle: ProcessHandle
    chunk: str


@dataclass(frozen=True)
class ProcessExited:
    """Final signal of a handle, sent after both output streams closed."""

    handle: ProcessHandle
    returncode: int | None


ProcessSignal = StdoutLine | StderrChunk | ProcessExited


class ProcessSupervisor:
    """Manages kernel subprocess lifecycle for all sessions.

    Provides:
    - Subprocess spawning, at most one live process per session
    - Async stdout/stderr readers feeding a per-session signal channel
    - Exit detection, reported as a ProcessExited signal
    - Graceful shutdown (SIGTERM, then SIGKILL)

    Attributes:
        command: Kernel executable and arguments.
        cwd: Working directory for the kernel.
        sigterm_wait: Seconds between SIGTERM and SIGKILL.
        stderr_chunk_size: Maximum bytes per stderr read.

    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: Path | None = None,
        sigterm_wait: float = DEFAULT_SIGTERM_WAIT,
        stderr_chunk_size: int = DEFAULT_STDERR_CHUNK_SIZE,
    ) -> None:
        """Initialize process supervisor.

        Args:
            command: Kernel executable and arguments (no shell).
            cwd: Working directory for the kernel.
            sigterm_wait: Seconds between SIGTERM and SIGKILL.
            stderr_chunk_size: Maximum bytes per stderr read.

        """
        if not command:
            raise ValueError("command must not be empty")
        self.command = tuple(command)
        self.cwd = cwd
        self.sigterm_wait = sigterm_wait
        self.stderr_chunk_size = stderr_chunk_size
        self._live: dict[str, ProcessHandle] = {}
        self._spawning: set[str] = set()
        self._monitor_tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_config(cls, config: KernelConfig) -> "ProcessSupervisor":
        """Build a supervisor from the kernel config section."""
        return cls(
            command=config.command,
            cwd=config.cwd,
            sigterm_wait=config.sigterm_wait,
            stderr_chunk_size=config.stderr_chunk_size,
        )

    @property
    def live_count(self) -> int:
        """Number of live kernel processes across all sessions."""
        return sum(1 for handle in self._live.values() if handle.alive)

    def live_handle(self, session_id: str) -> ProcessHandle | None:
        """Get the live handle of a session, if any."""
        handle = self._live.get(session_id)
        return handle if handle is not None and handle.alive else None

    async def spawn(
        self,
        session_id: str,
        signals: "asyncio.Queue[ProcessSignal]",
    ) -> ProcessHandle:
        """Spawn a kernel process for a session.

        Args:
            session_id: Session that will own the process.
            signals: Channel receiving this process's output and exit signals.

        Returns:
            Handle of the new process.

        Raises:
            ProcessAlreadyRunningError: If the session already has a live process.
            SpawnError: If the kernel executable could not be started.

        """
        if session_id in self._spawning or self.live_handle(session_id) is not None:
            raise ProcessAlreadyRunningError(session_id)

        logger.info("Spawning kernel for session %s: %s", session_id[:8], " ".join(self.command))

        self._spawning.add(session_id)
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                stdin=DEVNULL,
                stdout=PIPE,
                stderr=PIPE,
                limit=DEFAULT_LINE_LIMIT,
            )
        except OSError as e:
            logger.warning("Failed to spawn kernel for session %s: %s", session_id[:8], e)
            raise SpawnError(f"Failed to spawn kernel {self.command[0]!r}: {e}") from e
        finally:
            self._spawning.discard(session_id)

        handle = ProcessHandle(session_id=session_id, process=process)
        self._live[session_id] = handle

        task = asyncio.create_task(self._monitor(handle, signals), name=f"kernel-{handle.handle_id}")
        self._monitor_tasks[handle.handle_id] = task
        task.add_done_callback(lambda _: self._monitor_tasks.pop(handle.handle_id, None))

        logger.info("Kernel for session %s started (PID %d)", session_id[:8], handle.pid)
        return handle

    async def _monitor(
        self,
        handle: ProcessHandle,
        signals: "asyncio.Queue[ProcessSignal]",
    ) -> None:
        """Forward output until both streams close, then report the exit."""
        await asyncio.gather(
            self._read_stdout(handle, signals),
            self._read_stderr(handle, signals),
        )
        returncode = await handle.process.wait()
        handle.returncode = returncode
        self._forget(handle)

        if handle.terminated:
            logger.info("Kernel PID %d stopped (code %s)", handle.pid, returncode)
        elif returncode != 0:
            logger.warning(
                "Kernel for session %s exited with code %s",
                handle.session_id[:8],
                returncode,
            )
        else:
            logger.info("Kernel for session %s exited normally", handle.session_id[:8])

        await signals.put(ProcessExited(handle, returncode))

    async def _read_stdout(
        self,
        handle: ProcessHandle,
        signals: "asyncio.Queue[ProcessSignal]",
    ) -> None:
        stream = handle.process.stdout
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.warning("Dropping stdout line over %d bytes from PID %d", DEFAULT_LINE_LIMIT, handle.pid)
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            await signals.put(StdoutLine(handle, line))

    async def _read_stderr(
        self,
        handle: ProcessHandle,
        signals: "asyncio.Queue[ProcessSignal]",
    ) -> None:
        stream = handle.process.stderr
        if stream is None:
            return

        # Chunks may split a multi-byte character
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            raw = await stream.read(self.stderr_chunk_size)
            if not raw:
                break
            chunk = decoder.decode(raw)
            if chunk:
                await signals.put(StderrChunk(handle, chunk))

        tail = decoder.decode(b"", final=True)
        if tail:
            await signals.put(StderrChunk(handle, tail))

    def _forget(self, handle: ProcessHandle) -> None:
        if self._live.get(handle.session_id) is handle:
            del self._live[handle.session_id]

    async def terminate(self, handle: ProcessHandle | None) -> bool:
        """Terminate a kernel process.

        Idempotent: a None or already dead handle is a no-op. The handle is
        marked dead before any signal is sent, so trailing output it still
        produces can be recognised as stale.

        Follows the stop flow:
        1. SIGTERM
        2. Wait sigterm_wait for exit
        3. If still running: SIGKILL

        Args:
            handle: Handle to terminate.

        Returns:
            True if termination was requested, False if there was nothing to do.

        """
        if handle is None or not handle.alive:
            return False

        handle.terminated = True
        self._forget(handle)
        process = handle.process

        if process.returncode is not None:
            return True

        logger.info("Terminating kernel for session %s (PID %d)", handle.session_id[:8], handle.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return True

        try:
            await asyncio.wait_for(process.wait(), timeout=self.sigterm_wait)
            return True
        except TimeoutError:
            logger.warning("Sending SIGKILL to kernel PID %d", handle.pid)

        try:
            process.kill()
        except ProcessLookupError:
            return True
        await process.wait()
        return True

    async def shutdown(self) -> None:
        """Terminate every live kernel and stop monitoring."""
        handles = list(self._live.values())
        if handles:
            await asyncio.gather(*(self.terminate(h) for h in handles), return_exceptions=True)

        tasks = list(self._monitor_tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._monitor_tasks.clear()
        logger.info("Process supervisor shutdown complete")
