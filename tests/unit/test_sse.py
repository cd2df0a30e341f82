"""Unit tests for SSE framing and the incremental decoder."""

import json

import pytest

from sentra.sse import SSEDecoder, ServerSentEvent, aiter_sse, format_event


def test_format_event():
    frame = format_event("message", {"type": "delta", "content": "hé"})
    assert frame == 'event: message\ndata: {"type": "delta", "content": "hé"}\n\n'.encode("utf-8")


def test_decoder_single_event():
    decoder = SSEDecoder()
    events = decoder.feed(b'event: start\ndata: {"type": "start"}\n\n')

    assert events == [ServerSentEvent(event="start", data='{"type": "start"}')]
    assert events[0].json() == {"type": "start"}


def test_decoder_waits_for_blank_line():
    decoder = SSEDecoder()
    assert decoder.feed(b"event: start\ndata: {}\n") == []
    assert len(decoder.feed(b"\n")) == 1


@pytest.mark.parametrize("newline", [b"\n", b"\r", b"\r\n"])
def test_decoder_accepts_any_line_ending(newline):
    payload = b"event: complete" + newline + b'data: {"a": 1}' + newline + newline
    decoder = SSEDecoder()
    events = decoder.feed(payload) + decoder.flush()

    assert [e.event for e in events] == ["complete"]


def test_decoder_byte_at_a_time():
    """Chunks may split lines, CRLF pairs and multi-byte characters."""
    stream = b"".join(
        format_event(name, data)
        for name, data in [
            ("start", {"type": "start"}),
            ("message", {"type": "delta", "content": "café ☕"}),
            ("complete", {"type": "complete", "fullContent": "café ☕"}),
        ]
    ).replace(b"\n", b"\r\n")

    decoder = SSEDecoder()
    events = []
    for i in range(len(stream)):
        events.extend(decoder.feed(stream[i : i + 1]))
    events.extend(decoder.flush())

    assert [e.event for e in events] == ["start", "message", "complete"]
    assert events[1].json()["content"] == "café ☕"


def test_decoder_joins_data_lines_and_skips_comments():
    events = SSEDecoder().feed(b": keep-alive\nid: 7\ndata: first\ndata: second\n\n")

    assert events == [ServerSentEvent(event="message", data="first\nsecond", id="7")]


def test_flush_dispatches_unterminated_event():
    decoder = SSEDecoder()
    assert decoder.feed(b'event: complete\ndata: {"x": 1}') == []

    events = decoder.flush()
    assert len(events) == 1
    assert events[0].json() == {"x": 1}


async def test_aiter_sse_over_chunks():
    frames = format_event("start", {"type": "start"}) + format_event("error", {"type": "error", "message": "boom"})

    async def chunks():
        yield frames[:10]
        yield frames[10:31]
        yield frames[31:]

    events = [event async for event in aiter_sse(chunks())]

    assert [e.event for e in events] == ["start", "error"]
    assert json.loads(events[1].data)["message"] == "boom"
