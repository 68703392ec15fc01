"""Terminal viewer for a relay session.

Connects to the relay WebSocket, feeds every message through a ClientRelay
and redraws a rich Live display: a sparkline of the chart window above the
visible part of the classified log.

Operator keys are read line by line from stdin:
    p pause, r resume, s stop, g start, k/j scroll, q quit
"""

import asyncio
import logging
import sys

import websockets
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from sim_relay.core.config import ClientConfig

from .log_view import LogCategory
from .relay import ClientRelay

logger = logging.getLogger(__name__)

CATEGORY_STYLES: dict[LogCategory, str] = {
    LogCategory.TICK: "bold yellow",
    LogCategory.TASK_0: "green",
    LogCategory.TASK_1: "cyan",
    LogCategory.TASK_2: "magenta",
    LogCategory.SCHEDULER: "blue",
    LogCategory.MUTEX: "red",
}

SPARK_CHARS = "▁▂▃▄▅▆▇█"
SCROLL_STEP = 5
KEY_HELP = "[p] pause  [r] resume  [s] stop  [g] start  [k/j] scroll  [q] quit"


def sparkline(values: list[float]) -> str:
    """Render values as a one-line bar chart."""
    if not values:
        return ""
    low, high = min(values), max(values)
    span = high - low
    if span == 0:
        return SPARK_CHARS[len(SPARK_CHARS) // 2] * len(values)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round((v - low) / span * top)] for v in values)


def render_relay(relay: ClientRelay) -> Group:
    """Build the rich renderable for the current relay state."""
    chart = relay.chart
    latest = chart.latest()
    if latest is None:
        chart_body = Text("waiting for data", style="dim")
    else:
        tick, value = latest
        chart_body = Text(sparkline(chart.values), style="red")
        chart_body.append(f"  {value:g} bpm @ tick {tick:g}", style="bold")

    status = Text()
    if relay.paused:
        status.append(f"PAUSED ({len(relay.event_buffer)} buffered)", style="bold yellow")
    else:
        status.append("LIVE", style="bold green")
    status.append("  kernel: ")
    status.append("running" if relay.perceived_active else "stopped")

    log_body = Text()
    for line in relay.log_view.visible_lines():
        style = CATEGORY_STYLES.get(line.category, "")
        log_body.append(line.message + "\n", style=style)

    return Group(
        status,
        Panel(chart_body, title="Heart Rate (BPM)"),
        Panel(log_body, title="Kernel Log"),
        Text(KEY_HELP, style="dim"),
    )


class Viewer:
    """WebSocket client driving a ClientRelay.

    Attributes:
        url: Relay WebSocket URL.
        relay: Client-side state.
        console: Output console.

    """

    def __init__(
        self,
        url: str,
        config: ClientConfig | None = None,
        console: Console | None = None,
        viewport_height: int = 20,
    ) -> None:
        self.url = url
        self.console = console or Console()
        self._commands: asyncio.Queue[str] = asyncio.Queue()
        self.relay = ClientRelay.from_config(
            config or ClientConfig(),
            self._commands.put_nowait,
            viewport_height=viewport_height,
        )

    def handle_key(self, key: str) -> bool:
        """Apply one operator key.

        Args:
            key: Key (first character is used).

        Returns:
            False if the viewer should quit.

        """
        key = key[:1].lower()
        if key == "q":
            return False
        if key == "p":
            self.relay.pause()
        elif key == "r":
            self.relay.resume()
        elif key == "s":
            self.relay.request_stop()
        elif key == "g":
            self.relay.request_start()
        elif key == "k":
            self.relay.log_view.scroll_by(-SCROLL_STEP)
        elif key == "j":
            self.relay.log_view.scroll_by(SCROLL_STEP)
        return True

    async def run(self) -> None:
        """Connect and render until the server closes or the operator quits.

        Raises:
            OSError: If the relay cannot be reached.
            websockets.exceptions.WebSocketException: On handshake failure.

        """
        async with websockets.connect(self.url) as ws:
            logger.info("Connected to %s", self.url)
            with Live(render_relay(self.relay), console=self.console, refresh_per_second=8) as live:
                quit_requested = asyncio.Event()
                tasks = [
                    asyncio.create_task(self._receive(ws, live)),
                    asyncio.create_task(self._send_commands(ws)),
                    asyncio.create_task(self._read_keys(live, quit_requested)),
                    asyncio.create_task(quit_requested.wait()),
                ]
                try:
                    await asyncio.wait(
                        [tasks[0], tasks[3]],
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)

    async def _receive(self, ws: "websockets.ClientConnection", live: Live) -> None:
        try:
            async for message in ws:
                self.relay.dispatch_wire(message)
                live.update(render_relay(self.relay))
        except websockets.exceptions.ConnectionClosed:
            logger.info("Relay closed the connection")

    async def _send_commands(self, ws: "websockets.ClientConnection") -> None:
        while True:
            command = await self._commands.get()
            await ws.send(command)

    async def _read_keys(self, live: Live, quit_requested: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        try:
            await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        except (OSError, ValueError):
            logger.warning("stdin is not readable, operator keys disabled")
            return

        # EOF on stdin disables keys but keeps the stream running
        while True:
            line = await reader.readline()
            if not line:
                return
            if not self.handle_key(line.decode(errors="replace").strip()):
                quit_requested.set()
                return
            live.update(render_relay(self.relay))
