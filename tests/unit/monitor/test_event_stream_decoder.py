"""Tests for the event stream framing decoder."""

from run_test_action.monitor.connection import EventStreamDecoder


def test_decodes_named_event() -> None:
    """Returns the event type and data once the blank line arrives."""
    decoder = EventStreamDecoder()

    assert decoder.feed('event: heartbeat\ndata: {"a": 1}\n') == []
    assert decoder.feed("\n") == [("heartbeat", '{"a": 1}')]


def test_decodes_events_split_across_chunks() -> None:
    """Chunk boundaries may fall anywhere, even inside a line."""
    decoder = EventStreamDecoder()
    body = 'event: test_started\ndata: {"test": 1}\n\nevent: heartbeat\ndata: {}\n\n'

    events = []
    for i in range(0, len(body), 7):
        events.extend(decoder.feed(body[i : i + 7]))

    assert events == [("test_started", '{"test": 1}'), ("heartbeat", "{}")]


def test_joins_multiple_data_lines() -> None:
    """Multiple data lines are joined with newlines."""
    decoder = EventStreamDecoder()

    assert decoder.feed("event: x\ndata: one\ndata: two\n\n") == [("x", "one\ntwo")]


def test_handles_crlf_line_endings() -> None:
    """Carriage returns before newlines are ignored."""
    decoder = EventStreamDecoder()

    assert decoder.feed("event: x\r\ndata: y\r\n\r\n") == [("x", "y")]


def test_ignores_comments_and_unknown_fields() -> None:
    """Comment lines and id/retry fields do not affect events."""
    decoder = EventStreamDecoder()

    events = decoder.feed(": keepalive\nid: 5\nretry: 1000\nevent: x\ndata: y\n\n")

    assert events == [("x", "y")]


def test_default_event_type_is_message() -> None:
    """Events without a name use the default type."""
    decoder = EventStreamDecoder()

    assert decoder.feed("data: hello\n\n") == [("message", "hello")]


def test_named_event_without_data_is_dispatched() -> None:
    """A named event with no data lines still counts."""
    decoder = EventStreamDecoder()

    assert decoder.feed("event: heartbeat\n\n") == [("heartbeat", "")]


def test_blank_lines_alone_dispatch_nothing() -> None:
    """Blank lines between events are not events."""
    decoder = EventStreamDecoder()

    assert decoder.feed("\n\n\n") == []


def test_value_without_leading_space() -> None:
    """Only a single leading space after the colon is stripped."""
    decoder = EventStreamDecoder()

    assert decoder.feed("event:x\ndata:  y\n\n") == [("x", " y")]
