"""Server-sent event framing shared by the gateway, its client and the LLM client.

Wire format: one or more `event:` / `data:` lines followed by a blank line.
The decoder is incremental: it accepts arbitrary byte chunks (split mid-line,
mid-character or between `\\r` and `\\n`) and only emits complete events.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any


def format_event(event: str, data: dict[str, Any]) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n".encode("utf-8")


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None

    def json(self) -> Any:
        return json.loads(self.data)


class SSEDecoder:
    """Incremental decoder turning a byte stream into ServerSentEvents."""

    def __init__(self) -> None:
        self._buffer = b""
        self._event: str | None = None
        self._data: list[str] = []
        self._id: str | None = None

    def feed(self, chunk: bytes) -> list[ServerSentEvent]:
        """Consume a chunk and return every event it completed."""
        self._buffer += chunk
        events: list[ServerSentEvent] = []
        while True:
            line = self._take_line()
            if line is None:
                break
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[ServerSentEvent]:
        """Process whatever is left once the stream has ended."""
        events: list[ServerSentEvent] = []
        if self._buffer:
            remainder = self._buffer.rstrip(b"\r")
            self._buffer = b""
            event = self._process_line(remainder.decode("utf-8", errors="replace"))
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _take_line(self) -> str | None:
        buf = self._buffer
        lf = buf.find(b"\n")
        cr = buf.find(b"\r")
        if lf < 0 and cr < 0:
            return None

        if cr >= 0 and (lf < 0 or cr < lf):
            # A trailing CR may be the first half of CRLF.
            if cr == len(buf) - 1:
                return None
            end = cr
            skip = 2 if buf[cr + 1 : cr + 2] == b"\n" else 1
        else:
            end = lf
            skip = 1

        raw = buf[:end]
        self._buffer = buf[end + skip :]
        return raw.decode("utf-8", errors="replace")

    def _process_line(self, line: str) -> ServerSentEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        return None

    def _dispatch(self) -> ServerSentEvent | None:
        if not self._data and self._event is None:
            return None
        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
        )
        self._event = None
        self._data = []
        return event


async def aiter_sse(chunks: AsyncIterable[bytes]) -> AsyncIterator[ServerSentEvent]:
    """Decode an async byte stream into events as they complete."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
