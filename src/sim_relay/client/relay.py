"""Viewer-side event relay with pause buffering.

ClientRelay is the state a viewer keeps between the transport and its
rendering surfaces:

- while paused, incoming events are buffered instead of rendered
- resume renders the buffer in arrival order, then empties it
- stop/start commands are only sent on a perceived state change
- the kernel-exit notice sets the perceived state to stopped

Dispatch is strictly sequential, so an event arriving at the moment of
resume is rendered after the buffered ones.
"""

import logging
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from sim_relay.bridge.event_parser import is_exit_message, split_log_message
from sim_relay.bridge.events import EVENT_ADAPTER, DataEvent, Event, LogEntryEvent, LogEvent
from sim_relay.bridge.session import Command
from sim_relay.core.config import ClientConfig

from .chart_window import ChartWindow
from .log_view import LogView

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_BUFFER_LIMIT = 10_000

CommandSender = Callable[[str], None]


class BufferPolicy(StrEnum):
    """What to drop when the pause buffer is full."""

    OLDEST = "oldest"
    NEWEST = "newest"


class ClientRelay:
    """Pause-aware dispatcher from events to chart and log surfaces.

    Attributes:
        chart: Rolling window of data samples.
        log_view: Classified log lines.
        paused: True while events are being buffered.
        perceived_active: Whether the viewer believes the kernel feed is on.
        event_buffer: Events received while paused, oldest first.
        buffer_limit: Maximum buffered events.
        buffer_policy: Drop policy once buffer_limit is reached.
        dropped_count: Events discarded because the buffer was full.

    """

    def __init__(
        self,
        send_command: CommandSender,
        chart: ChartWindow | None = None,
        log_view: LogView | None = None,
        buffer_limit: int = DEFAULT_PAUSE_BUFFER_LIMIT,
        buffer_policy: BufferPolicy | str = BufferPolicy.OLDEST,
    ) -> None:
        """Initialize relay.

        Args:
            send_command: Delivers a control command to the server.
            chart: Chart surface (new default window if None).
            log_view: Log surface (new default view if None).
            buffer_limit: Maximum events held while paused.
            buffer_policy: "oldest" or "newest" when the buffer is full.

        """
        if buffer_limit < 1:
            raise ValueError("buffer_limit must be at least 1")
        self._send_command = send_command
        self.chart = chart if chart is not None else ChartWindow()
        self.log_view = log_view if log_view is not None else LogView()
        self.buffer_limit = buffer_limit
        self.buffer_policy = BufferPolicy(buffer_policy)

        self.paused = False
        self.perceived_active = True
        self.event_buffer: deque[Event] = deque()
        self.dropped_count = 0

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        send_command: CommandSender,
        viewport_height: int = 20,
    ) -> "ClientRelay":
        """Build a relay from the client config section."""
        return cls(
            send_command,
            chart=ChartWindow(config.chart_capacity),
            log_view=LogView(viewport_height=viewport_height, tolerance=config.scroll_tolerance),
            buffer_limit=config.pause_buffer_limit,
            buffer_policy=config.pause_buffer_policy,
        )

    # =========================================================================
    # Inbound events
    # =========================================================================

    def dispatch(self, event: Event) -> None:
        """Buffer or render one event.

        The kernel-exit notice marks the feed as stopped straight away, even
        while paused, so the next start request is sent.
        """
        if isinstance(event, LogEvent) and is_exit_message(event.message):
            self.perceived_active = False

        if self.paused:
            self._buffer(event)
        else:
            self.render(event)

    def dispatch_wire(self, payload: str | bytes | dict[str, Any]) -> Event | None:
        """Validate a wire message and dispatch it.

        Args:
            payload: JSON text or an already-decoded JSON object.

        Returns:
            The dispatched event, or None if the payload was not a known event.

        """
        try:
            if isinstance(payload, dict):
                event = EVENT_ADAPTER.validate_python(payload)
            else:
                event = EVENT_ADAPTER.validate_json(payload)
        except ValidationError as e:
            logger.debug("Ignoring unrecognized message: %s", e)
            return None

        self.dispatch(event)
        return event

    def _buffer(self, event: Event) -> None:
        if len(self.event_buffer) < self.buffer_limit:
            self.event_buffer.append(event)
            return

        self.dropped_count += 1
        if self.buffer_policy is BufferPolicy.OLDEST:
            self.event_buffer.popleft()
            self.event_buffer.append(event)

        if self.dropped_count == 1:
            logger.warning(
                "Pause buffer full (%d events), dropping %s events",
                self.buffer_limit,
                self.buffer_policy.value,
            )

    def render(self, event: Event) -> None:
        """Apply one event to the rendering surfaces."""
        if isinstance(event, DataEvent):
            self.chart.append(event.tick, event.heart_rate)
        elif isinstance(event, LogEvent):
            for piece in split_log_message(event.message):
                self.log_view.append(piece.message)
        elif isinstance(event, LogEntryEvent):
            self.log_view.append(event.message)

    # =========================================================================
    # Operator controls
    # =========================================================================

    def pause(self) -> bool:
        """Start buffering incoming events.

        Returns:
            True if the relay was not already paused.

        """
        if self.paused:
            return False
        self.paused = True
        return True

    def resume(self) -> int:
        """Render buffered events in arrival order and stop buffering.

        Returns:
            Number of events rendered from the buffer.

        """
        if not self.paused:
            return 0

        drained = 0
        while self.event_buffer:
            self.render(self.event_buffer.popleft())
            drained += 1
        self.paused = False

        if self.dropped_count:
            logger.warning("%d events were dropped while paused", self.dropped_count)
            self.dropped_count = 0
        return drained

    def request_stop(self) -> bool:
        """Ask the server to stop the kernel feed.

        Returns:
            True if the command was sent.

        """
        if not self.perceived_active:
            return False
        self._send_command(Command.STOP_STREAM.value)
        self.perceived_active = False
        return True

    def request_start(self) -> bool:
        """Ask the server to restart the kernel feed.

        Returns:
            True if the command was sent.

        """
        if self.perceived_active:
            return False
        self._send_command(Command.START_STREAM.value)
        self.perceived_active = True
        return True
