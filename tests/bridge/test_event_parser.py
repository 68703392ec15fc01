"""Tests for kernel output parsing.

Tests structured records, free-text fallback and stderr wrapping.
"""

import pytest

from sim_relay.bridge.event_parser import (
    exit_event,
    is_exit_message,
    parse_line,
    parse_lines,
    parse_stderr,
    split_log_message,
)
from sim_relay.bridge.events import DataEvent, LogEntryEvent, LogEvent


class TestStructuredRecords:
    """Tests for JSON records with a known type."""

    def test_data_record(self):
        """Data record yields exactly one DataEvent."""
        events = parse_line('{"type":"data","tick":5,"hr":72}')

        assert events == [DataEvent(tick=5, heart_rate=72)]

    def test_data_record_keeps_float_values(self):
        """Non-integer samples are preserved."""
        events = parse_line('{"type": "data", "tick": 2.5, "hr": 71.25}')

        assert events == [DataEvent(tick=2.5, heart_rate=71.25)]

    def test_log_entry_record(self):
        """log_entry yields one LogEntryEvent with the message verbatim."""
        events = parse_line('{"type":"log_entry","message":"hello"}')

        assert events == [LogEntryEvent(message="hello")]

    def test_log_entry_is_not_split(self):
        """Newline markers inside a log_entry message are kept."""
        events = parse_line('{"type":"log_entry","message":"a\\nb"}')

        assert len(events) == 1
        assert events[0] == LogEntryEvent(message="a\nb")

    def test_log_record_message_is_split(self):
        """A structured log message is split into separate log events."""
        events = parse_line('{"type":"log","message":"first\\n  second  \\n\\nthird"}')

        assert events == [
            LogEvent(message="first"),
            LogEvent(message="second"),
            LogEvent(message="third"),
        ]

    def test_extra_fields_are_ignored(self):
        """Unknown fields on a known record do not prevent parsing."""
        events = parse_line('{"type":"data","tick":1,"hr":60,"source":"sim"}')

        assert events == [DataEvent(tick=1, heart_rate=60)]


class TestFreeTextFallback:
    """Tests for lines treated as free text."""

    def test_not_json(self):
        """Plain text yields one LogEvent."""
        assert parse_line("not json") == [LogEvent(message="not json")]

    @pytest.mark.parametrize("line", ["", "   ", "\t"])
    def test_blank_line_yields_nothing(self, line):
        """Empty and whitespace-only lines produce no events."""
        assert parse_line(line) == []

    def test_unknown_type_falls_back_to_text(self):
        """Valid JSON with an unrecognized type is kept as raw text."""
        line = '{"type":"telemetry","value":1}'

        assert parse_line(line) == [LogEvent(message=line)]

    def test_missing_type_falls_back_to_text(self):
        """Valid JSON without a discriminant is kept as raw text."""
        line = '{"message":"orphan"}'

        assert parse_line(line) == [LogEvent(message=line)]

    def test_non_object_json_falls_back_to_text(self):
        """JSON scalars and arrays are not records."""
        assert parse_line("42") == [LogEvent(message="42")]
        assert parse_line("[1, 2]") == [LogEvent(message="[1, 2]")]

    def test_invalid_data_fields_fall_back_to_text(self):
        """A data record with non-numeric fields is not dropped."""
        line = '{"type":"data","tick":"5","hr":72}'

        assert parse_line(line) == [LogEvent(message=line)]

    def test_boolean_is_not_a_number(self):
        """Booleans are rejected as sample values."""
        line = '{"type":"data","tick":1,"hr":true}'

        assert parse_line(line) == [LogEvent(message=line)]

    def test_truncated_json_falls_back_to_text(self):
        """Partial JSON from a killed kernel is kept as text."""
        line = '{"type":"data","tick":5,'

        assert parse_line(line) == [LogEvent(message=line)]

    def test_embedded_escaped_newlines_split(self):
        """Escaped newline markers split into ordered, trimmed pieces."""
        events = parse_line("a\\nb\\n\\nc")

        assert [e.message for e in events] == ["a", "b", "c"]

    def test_real_newlines_split(self):
        """Real line breaks split the same way."""
        assert [e.message for e in split_log_message("a\nb\n\nc")] == ["a", "b", "c"]

    def test_pieces_are_trimmed(self):
        """Surrounding whitespace is removed from each piece."""
        assert [e.message for e in split_log_message("  x  \\n\ty ")] == ["x", "y"]


class TestStderrAndExit:
    """Tests for stderr chunks and exit diagnostics."""

    def test_stderr_chunk_wrapped(self):
        """stderr becomes one ERROR-prefixed log event."""
        assert parse_stderr("segfault\n") == [LogEvent(message="ERROR: segfault")]

    def test_stderr_json_is_not_parsed(self):
        """stderr is never treated as a structured record."""
        chunk = '{"type":"data","tick":1,"hr":70}'

        assert parse_stderr(chunk) == [LogEvent(message=f"ERROR: {chunk}")]

    def test_stderr_multiline_chunk_stays_one_event(self):
        """A chunk with several lines is a single event."""
        events = parse_stderr("line one\nline two\n")

        assert len(events) == 1
        assert events[0].message == "ERROR: line one\nline two"

    def test_blank_stderr_chunk_ignored(self):
        """Whitespace-only stderr produces nothing."""
        assert parse_stderr("\n") == []

    def test_exit_event_mentions_code(self):
        """Exit diagnostic carries the status code."""
        event = exit_event(3)

        assert event.type == "log"
        assert "code 3" in event.message

    @pytest.mark.parametrize("code", [0, 3, -15, None])
    def test_exit_message_recognised(self, code):
        """is_exit_message() matches every exit diagnostic."""
        assert is_exit_message(exit_event(code).message)

    @pytest.mark.parametrize(
        "message",
        ["KERNEL PROCESS TERMINATED", "--- Tick 3 ---", "x --- KERNEL PROCESS TERMINATED (code 0) ---"],
    )
    def test_other_messages_not_exit(self, message):
        assert not is_exit_message(message)


class TestParseLines:
    """Tests for multi-line parsing."""

    def test_preserves_order(self):
        """Events come out in line order."""
        events = parse_lines([
            '{"type":"data","tick":1,"hr":70}',
            "",
            "text",
            '{"type":"log_entry","message":"Scheduler: tick"}',
        ])

        assert [e.type for e in events] == ["data", "log", "log_entry"]
