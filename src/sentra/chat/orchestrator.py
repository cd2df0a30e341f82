"""
Chat orchestrator: the client-side owner of a chat session.

Keeps the stored transcript consistent with what the user saw streamed:
the assistant reply is appended only after the gateway reports `complete`,
and nothing is written for an errored or aborted turn.

Message lists live in one serialized field of the chat document, so every
append or rewind is an unguarded read-modify-write; two concurrent writers
race and the last one wins.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from ..api.prompts import DEFAULT_TOKEN_LIMIT
from ..core.exceptions import (
    ChatStateError,
    ChatSyncError,
    InvalidArgumentError,
    NotFoundError,
    RewindError,
    SentraException,
    StreamError,
)
from ..core.state import ChatSessionState, Message, dump_history, utc_now_iso
from ..memory.cfm import CFMService
from ..store.documents import DocumentStore
from ..store.paths import (
    character_path,
    chat_history_collection,
    chat_history_path,
    chat_path,
    user_path,
)
from ..store.records import ChatRecord
from .gateway_client import GatewayClient


@dataclass
class ChatCallbacks:
    """Hooks for one generation.

    on_delta receives the new fragment and the text streamed so far.
    """
    on_start: Optional[Callable[[], None]] = None
    on_delta: Optional[Callable[[str, str], None]] = None
    on_complete: Optional[Callable[[Message], None]] = None
    on_error: Optional[Callable[[str], None]] = None


def _fire(callback: Optional[Callable[..., None]], *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as e:
        logger.warning(f"Chat callback {getattr(callback, '__name__', callback)} failed: {e}")


def new_chat_id(user_id: str) -> str:
    return f"chat_{user_id[:8]}_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class ChatOrchestrator:
    """Chat sessions of one signed-in user."""

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        gateway: GatewayClient,
        cfm: Optional[CFMService] = None,
        token_limit: int = DEFAULT_TOKEN_LIMIT,
    ):
        self.store = store
        self.user_id = user_id
        self.gateway = gateway
        self.cfm = cfm
        self.token_limit = token_limit
        self._sessions: dict[str, ChatSessionState] = {}
        self._streams: dict[str, asyncio.Task] = {}
        self._aborted: set[str] = set()
        self._background: set[asyncio.Task] = set()

    def session(self, chat_id: str) -> ChatSessionState:
        """Phase machine for a chat; created on first use."""
        if chat_id not in self._sessions:
            self._sessions[chat_id] = ChatSessionState(chat_id)
        return self._sessions[chat_id]

    # ========================================================================
    # Sessions
    # ========================================================================

    async def create_chat(self, character_id: str, scenario: Optional[str] = None) -> str:
        """Create a chat with a character and its entry in the user's chat list."""
        character = await self.store.get(character_path(character_id))
        if character is None:
            raise NotFoundError("Character", character_id)

        profile = await self.store.get(user_path(self.user_id)) or {}
        name = character.get("name") or "Character"
        title = f"Chat with {name}"
        chat_id = new_chat_id(self.user_id)
        now = utc_now_iso()

        record = ChatRecord(
            character_id=character_id,
            character_name=name,
            user_id=self.user_id,
            user_username=profile.get("username") or profile.get("displayName") or "User",
            history=dump_history([]),
            scenario=(scenario or "").strip(),
            title=title,
            created_at=now,
            updated_at=now,
        )
        await self.store.set(chat_path(chat_id), record.model_dump(by_alias=True, exclude_none=True))
        await self.store.set(
            chat_history_path(self.user_id, chat_id),
            {
                "title": title,
                "characterId": character_id,
                "characterName": name,
                "createdAt": now,
                "lastUpdated": now,
                "avatar": character.get("avatar") or "",
            },
        )
        logger.info(f"Created chat {chat_id} with character {character_id}")
        return chat_id

    async def get_chat(self, chat_id: str) -> ChatRecord:
        data = await self.store.get(chat_path(chat_id))
        if data is None:
            raise NotFoundError("Chat", chat_id)
        return ChatRecord.model_validate(data)

    async def get_messages(self, chat_id: str) -> list[Message]:
        return (await self.get_chat(chat_id)).messages

    async def list_recent_chats(self, limit: int = 10) -> list[dict[str, Any]]:
        """The user's chats, most recently active first."""
        snapshots = await self.store.list(
            chat_history_collection(self.user_id),
            order_by="lastUpdated",
            descending=True,
            limit=limit,
        )
        return [{"id": s.id, **s.data} for s in snapshots]

    async def _write_history(self, chat_id: str, messages: list[Message]) -> None:
        now = utc_now_iso()
        await self.store.update(chat_path(chat_id), {"history": dump_history(messages), "updatedAt": now})
        try:
            await self.store.update(chat_history_path(self.user_id, chat_id), {"lastUpdated": now})
        except SentraException as e:
            logger.warning(f"Could not touch chat list entry for {chat_id}: {e}")

    def _schedule_memory_refresh(self, chat_id: str) -> None:
        if self.cfm is None:
            return
        task = asyncio.create_task(self.cfm.refresh_in_background(chat_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for scheduled memory refreshes to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========================================================================
    # Messages
    # ========================================================================

    async def _append_user_message(self, chat_id: str, content: str) -> Message:
        if not content or not content.strip():
            raise InvalidArgumentError("Message must not be empty", field="content")

        chat = await self.get_chat(chat_id)
        message = Message.user(content)
        await self._write_history(chat_id, chat.messages + [message])

        if chat.cfm_enabled:
            self._schedule_memory_refresh(chat_id)
        return message

    async def send_message(self, chat_id: str, content: str, settle: bool = True) -> Message:
        """Append a user message.

        With settle=False the session stays in `sending` for a generate() that
        follows immediately.
        """
        state = self.session(chat_id)
        state.begin_send()
        try:
            message = await self._append_user_message(chat_id, content)
        except asyncio.CancelledError:
            state.fail("cancelled")
            state.settle()
            raise
        except Exception as e:
            state.fail(str(e))
            state.settle()
            raise
        if settle:
            state.settle()
        return message

    async def rewind(self, chat_id: str, index: int, new_text: str) -> list[Message]:
        """Replace the user message at `index` and drop everything after it.

        Only user messages can be rewound. The truncated history is written in
        a single update.
        """
        state = self.session(chat_id)
        state.begin_send("rewind")
        try:
            if not new_text or not new_text.strip():
                raise InvalidArgumentError("Message must not be empty", field="new_text")
            messages = await self.get_messages(chat_id)
            if index < 0 or index >= len(messages):
                raise RewindError(index, "no message at this position")
            if messages[index].role != "user":
                raise RewindError(index, "only user messages can be edited")

            updated = messages[:index] + [Message.user(new_text)]
            await self._write_history(chat_id, updated)
        except Exception as e:
            state.fail(str(e))
            raise
        finally:
            state.settle()

        logger.info(f"Rewound chat {chat_id} at index {index} ({len(messages) - index} messages replaced)")
        return updated

    # ========================================================================
    # Generation
    # ========================================================================

    async def _mention_memories(self, chat_id: str, chat: ChatRecord, text: str) -> list[str]:
        if self.cfm is None:
            return []
        try:
            return await self.cfm.resolve_mention_memories(text, chat.character_id)
        except Exception as e:
            logger.warning(f"Could not resolve mentions for {chat_id}: {e}")
            return []

    async def _consume(
        self,
        state: ChatSessionState,
        payload: dict[str, Any],
        callbacks: ChatCallbacks,
    ) -> str:
        """Read the gateway stream until its terminal event; returns the full text."""
        async for event in self.gateway.stream(payload):
            try:
                data = event.json()
            except ValueError:
                logger.debug(f"Skipping unreadable gateway event {event.event}")
                continue

            kind = data.get("type") or event.event
            if kind == "start":
                _fire(callbacks.on_start)
            elif kind == "delta":
                fragment = data.get("content") or ""
                if fragment:
                    buffer = state.append_delta(fragment)
                    _fire(callbacks.on_delta, fragment, buffer)
            elif kind == "complete":
                full = data.get("fullContent")
                return full if full is not None else state.phase.buffer
            elif kind == "error":
                raise StreamError(data.get("message") or "Stream failed", state.phase.buffer)

        raise StreamError("Stream ended without a result", state.phase.buffer)

    async def generate(
        self,
        chat_id: str,
        callbacks: Optional[ChatCallbacks] = None,
        token_limit: Optional[int] = None,
    ) -> Optional[Message]:
        """Stream the character's reply to the last user message and store it.

        Returns the stored assistant message, or None if the stream was
        aborted. Errors reach on_error and are then raised; the transcript is
        left as it was.
        """
        state = self.session(chat_id)
        state.begin_send("generate a reply")
        return await self._generate(chat_id, callbacks or ChatCallbacks(), token_limit)

    async def _generate(
        self,
        chat_id: str,
        callbacks: ChatCallbacks,
        token_limit: Optional[int],
    ) -> Optional[Message]:
        state = self.session(chat_id)
        try:
            chat = await self.get_chat(chat_id)
            messages = chat.messages
            if not messages or messages[-1].role != "user":
                raise InvalidArgumentError("The last message must be from the user", field="messages")

            payload = {
                "messages": [m.to_dict() for m in messages],
                "characterId": chat.character_id,
                "sessionId": chat_id,
                "customScenario": chat.scenario or None,
                "tokenLimit": token_limit or self.token_limit,
                "cfmMemories": await self._mention_memories(chat_id, chat, messages[-1].content),
            }

            state.start_stream()
            task = asyncio.create_task(self._consume(state, payload, callbacks))
            self._streams[chat_id] = task
            try:
                full_text = await task
            except asyncio.CancelledError:
                if chat_id not in self._aborted:
                    raise
                self._aborted.discard(chat_id)
                logger.info(f"Generation aborted for chat {chat_id}")
                state.fail("aborted")
                state.settle()
                return None
            finally:
                self._streams.pop(chat_id, None)

            reply = Message.assistant(full_text)
            # Re-read so the append lands on the latest stored transcript.
            current = await self.get_messages(chat_id)
            await self._write_history(chat_id, current + [reply])

        except asyncio.CancelledError:
            logger.info(f"Generation cancelled for chat {chat_id}")
            state.fail("cancelled")
            state.settle()
            raise
        except Exception as e:
            reason = e.message if isinstance(e, SentraException) else str(e)
            logger.error(f"Generation failed for chat {chat_id}: {reason}")
            state.fail(reason)
            _fire(callbacks.on_error, reason)
            state.settle()
            raise

        state.complete(reply.content)
        _fire(callbacks.on_complete, reply)
        state.settle()
        if chat.cfm_enabled:
            self._schedule_memory_refresh(chat_id)
        return reply

    async def send_and_generate(
        self,
        chat_id: str,
        content: str,
        callbacks: Optional[ChatCallbacks] = None,
        token_limit: Optional[int] = None,
    ) -> Optional[Message]:
        """Append a user message and stream the reply to it."""
        await self.send_message(chat_id, content, settle=False)
        return await self._generate(chat_id, callbacks or ChatCallbacks(), token_limit)

    def abort(self, chat_id: Optional[str] = None) -> bool:
        """Stop reading the stream for a chat (or every chat).

        Only the network read is cancelled; nothing already written is undone.
        """
        aborted = False
        for stream_chat_id, task in list(self._streams.items()):
            if chat_id is not None and stream_chat_id != chat_id:
                continue
            if not task.done():
                self._aborted.add(stream_chat_id)
                task.cancel()
                aborted = True
        return aborted

    # ========================================================================
    # Chat management
    # ========================================================================

    async def _co_update(self, chat_id: str, writes: dict[str, dict[str, Any]]) -> None:
        failures: dict[str, Exception] = {}
        for path, changes in writes.items():
            try:
                await self.store.update(path, changes)
            except Exception as e:
                failures[path] = e
        if failures:
            logger.error(f"Partial update of chat {chat_id}: {list(failures)}")
            raise ChatSyncError(chat_id, failures)

    async def update_title(self, chat_id: str, title: str) -> str:
        """Rename a chat in both the chat document and the user's chat list."""
        title = title.strip()
        if not title:
            raise InvalidArgumentError("Title must not be empty", field="title")
        await self._co_update(
            chat_id,
            {
                chat_path(chat_id): {"title": title, "updatedAt": utc_now_iso()},
                chat_history_path(self.user_id, chat_id): {"title": title},
            },
        )
        return title

    async def update_scenario(self, chat_id: str, scenario: str) -> None:
        """Set the per-chat scenario; empty falls back to the character's own."""
        await self.store.update(
            chat_path(chat_id),
            {"scenario": (scenario or "").strip(), "updatedAt": utc_now_iso()},
        )

    async def delete_chat(self, chat_id: str) -> None:
        """Delete the chat and its chat list entry, attempting both."""
        state = self.session(chat_id)
        if state.busy:
            raise ChatStateError("delete the chat", state.phase.name)

        failures: dict[str, Exception] = {}
        for path in (chat_path(chat_id), chat_history_path(self.user_id, chat_id)):
            try:
                await self.store.delete(path)
            except Exception as e:
                failures[path] = e
        self._sessions.pop(chat_id, None)
        if failures:
            logger.error(f"Partial delete of chat {chat_id}: {list(failures)}")
            raise ChatSyncError(chat_id, failures)
        logger.info(f"Deleted chat {chat_id}")
