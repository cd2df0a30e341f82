"""
Client-side chat state for Sentra.

Provides the immutable message type stored in a chat's serialized history and
the per-session phase machine the chat orchestrator drives:

    Idle -> Sending -> Streaming{buffer} -> Completed | Errored{reason} -> Idle
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Union

from loguru import logger

from .exceptions import ChatStateError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """
    Immutable chat message.

    Attributes:
        role: "user" or "assistant"
        content: Message text, may contain @username mentions
        timestamp: ISO-8601 creation time, absent on legacy records
    """
    role: Literal["user", "assistant"]
    content: str
    timestamp: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Invalid message role: {self.role!r}")

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content, timestamp=utc_now_iso())

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role="assistant", content=content, timestamp=utc_now_iso())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            role=data["role"],
            content=str(data.get("content", "")),
            timestamp=str(timestamp) if timestamp is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data


def dump_history(messages: list[Message]) -> str:
    """Serialize messages into the chat record's `history` string."""
    return json.dumps({"messages": [m.to_dict() for m in messages]}, ensure_ascii=False)


def load_history(raw: str | None) -> list[Message]:
    """Parse a chat record's `history` string; unreadable history reads as empty."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
        entries = data.get("messages", [])
        if not isinstance(entries, list):
            return []
        return [Message.from_dict(entry) for entry in entries]
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.error(f"Error parsing chat history: {e}")
        return []


# ============================================================================
# Chat Phases
# ============================================================================

@dataclass(frozen=True)
class Idle:
    name: str = field(default="idle", init=False)


@dataclass(frozen=True)
class Sending:
    name: str = field(default="sending", init=False)


@dataclass(frozen=True)
class Streaming:
    buffer: str = ""
    name: str = field(default="streaming", init=False)


@dataclass(frozen=True)
class Completed:
    content: str
    name: str = field(default="completed", init=False)


@dataclass(frozen=True)
class Errored:
    reason: str
    name: str = field(default="errored", init=False)


ChatPhase = Union[Idle, Sending, Streaming, Completed, Errored]
PhaseListener = Callable[[ChatPhase], None]


class ChatSessionState:
    """
    Phase machine for one chat session.

    Listeners registered with `subscribe` are called synchronously after every
    transition. Sending and streaming are busy phases: a new send or a rewind
    is rejected until the session settles.
    """

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        self._phase: ChatPhase = Idle()
        self._listeners: list[PhaseListener] = []

    @property
    def phase(self) -> ChatPhase:
        return self._phase

    @property
    def busy(self) -> bool:
        return isinstance(self._phase, (Sending, Streaming))

    def subscribe(self, listener: PhaseListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ========================================================================
    # Transitions
    # ========================================================================

    def begin_send(self, operation: str = "send a message") -> None:
        if self.busy:
            raise ChatStateError(operation, self._phase.name)
        self._transition(Sending())

    def start_stream(self) -> None:
        if isinstance(self._phase, Streaming):
            raise ChatStateError("start a stream", self._phase.name)
        self._transition(Streaming())

    def append_delta(self, text: str) -> str:
        """Add a fragment to the stream buffer and return the buffer so far."""
        if not isinstance(self._phase, Streaming):
            raise ChatStateError("receive a delta", self._phase.name)
        buffer = self._phase.buffer + text
        self._transition(Streaming(buffer=buffer))
        return buffer

    def complete(self, content: str) -> None:
        if not isinstance(self._phase, Streaming):
            raise ChatStateError("complete a stream", self._phase.name)
        self._transition(Completed(content=content))

    def fail(self, reason: str) -> None:
        self._transition(Errored(reason=reason))

    def settle(self) -> None:
        """Return to idle from any phase."""
        self._transition(Idle())

    def _transition(self, phase: ChatPhase) -> None:
        self._phase = phase
        for listener in list(self._listeners):
            try:
                listener(phase)
            except Exception as e:
                logger.warning(f"Chat phase listener failed for {self.chat_id}: {e}")

    def __repr__(self) -> str:
        return f"ChatSessionState(chat_id={self.chat_id!r}, phase={self._phase.name})"
