"""Server-side streaming bridge.

Public API:
    ProcessSupervisor: kernel spawning, monitoring and termination
    SessionBridge: per-connection start/stop state machine
    SessionManager: registry of live sessions
    parse_line: kernel stdout line to events
    create_app: Starlette application factory
"""

from .event_parser import exit_event, is_exit_message, parse_line, parse_lines, parse_stderr
from .events import EVENT_ADAPTER, DataEvent, Event, LogEntryEvent, LogEvent, to_wire
from .process_supervisor import (
    ProcessExited,
    ProcessHandle,
    ProcessSignal,
    ProcessSupervisor,
    StderrChunk,
    StdoutLine,
)
from .session import Command, Session, SessionBridge, SessionState
from .session_manager import SessionManager

__all__ = [
    "EVENT_ADAPTER",
    "Command",
    "DataEvent",
    "Event",
    "LogEntryEvent",
    "LogEvent",
    "ProcessExited",
    "ProcessHandle",
    "ProcessSignal",
    "ProcessSupervisor",
    "Session",
    "SessionBridge",
    "SessionManager",
    "SessionState",
    "StderrChunk",
    "StdoutLine",
    "exit_event",
    "is_exit_message",
    "parse_line",
    "parse_lines",
    "parse_stderr",
    "to_wire",
]
