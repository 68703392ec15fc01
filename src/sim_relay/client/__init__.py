"""Viewer-side buffering and rendering.

Public API:
    ClientRelay: pause-aware dispatcher with edge-triggered commands
    ChartWindow: bounded FIFO of recent samples
    LogView: classified log lines with autoscroll
    classify: log line categorization

The terminal Viewer lives in sim_relay.client.viewer.
"""

from .chart_window import ChartWindow
from .log_view import LogCategory, LogLine, LogView, classify
from .relay import BufferPolicy, ClientRelay

__all__ = [
    "BufferPolicy",
    "ChartWindow",
    "ClientRelay",
    "LogCategory",
    "LogLine",
    "LogView",
    "classify",
]
