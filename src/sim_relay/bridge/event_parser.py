"""Kernel output parser.

Turns raw kernel stdout lines and stderr chunks into typed events.

Handles three kinds of input:
1. Structured: a JSON object with ``type`` of data, log_entry or log
2. Raw output: anything else, split into one log event per logical line
3. Diagnostics: stderr chunks, always wrapped as an ``ERROR:`` log event

Malformed structured input is never an error; it falls back to raw text.
"""

import json
import logging
import re
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from .events import EVENT_ADAPTER, Event, LogEvent

logger = logging.getLogger(__name__)

# A real line break or the two-character escape "\n" left in by the kernel
NEWLINE_MARKER = re.compile(r"\r?\n|\\n")

STDERR_PREFIX = "ERROR: "

EXIT_MESSAGE = "--- KERNEL PROCESS TERMINATED (code {code}) ---"
EXIT_PATTERN = re.compile(r"--- KERNEL PROCESS TERMINATED \(code (-?\d+|None)\) ---")


def split_log_message(text: str) -> list[LogEvent]:
    """Split free text into log events.

    Args:
        text: Text possibly holding several logical lines.

    Returns:
        One LogEvent per non-blank trimmed piece, in order.

    """
    return [
        LogEvent(message=piece)
        for piece in (part.strip() for part in NEWLINE_MARKER.split(text))
        if piece
    ]


def _load_record(line: str) -> dict[str, Any] | None:
    """Decode a line as a JSON object, or None if it is not one."""
    try:
        record = json.loads(line)
    except ValueError:
        return None
    return record if isinstance(record, dict) else None


def parse_line(line: str) -> list[Event]:
    """Parse one kernel stdout line into events.

    Args:
        line: Raw line from kernel stdout (without trailing newline).

    Returns:
        Zero, one or many events, in left-to-right order.

    """
    if not line or not line.strip():
        return []

    record = _load_record(line)
    if record is not None:
        kind = record.get("type")
        if kind == "log":
            message = record.get("message")
            if isinstance(message, str):
                return split_log_message(message)
            logger.debug("Log record without string message: %s", line[:100])
        elif kind in ("data", "log_entry"):
            try:
                return [EVENT_ADAPTER.validate_python(record)]
            except ValidationError as e:
                logger.debug("Invalid %s record, treating as text: %s - %s", kind, line[:100], e)
        else:
            logger.debug("Unrecognized record type %r, treating as text", kind)

    return split_log_message(line)


def parse_lines(lines: Iterable[str]) -> list[Event]:
    """Parse several stdout lines.

    Args:
        lines: Raw stdout lines.

    Returns:
        All events, in line order.

    """
    return [event for line in lines for event in parse_line(line)]


def parse_stderr(chunk: str) -> list[Event]:
    """Wrap a stderr chunk as a single error log event.

    Args:
        chunk: Decoded stderr data, never JSON-parsed.

    Returns:
        One LogEvent, or nothing for a whitespace-only chunk.

    """
    if not chunk.strip():
        return []
    return [LogEvent(message=f"{STDERR_PREFIX}{chunk.rstrip()}")]


def exit_event(returncode: int | None) -> LogEvent:
    """Build the final diagnostic for a kernel that exited.

    Args:
        returncode: Process exit status (negative for a signal on POSIX).

    Returns:
        LogEvent noting the exit code.

    """
    return LogEvent(message=EXIT_MESSAGE.format(code=returncode))


def is_exit_message(message: str) -> bool:
    """Check whether a log message is the kernel-exit diagnostic."""
    return EXIT_PATTERN.fullmatch(message) is not None
