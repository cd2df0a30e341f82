"""Cross-Friends Memory (CFM).

A chat with CFM enabled keeps a short summary of itself in the owner's ledger
for that character (`users/{uid}/CFM/{characterId}`, one slot per chat id).
When a friend mentions the owner with `@username` while chatting with the same
character, the owner's summaries are injected into the friend's prompt.

The enable flag is one-way: once `CFM_enabled` is set on a chat it is never
cleared.
"""

import re
from typing import Optional

from loguru import logger

from ..api.llm import LLMClient
from ..config import settings
from ..core.exceptions import NotFoundError, NotFriendError, PermissionDeniedError, SentraException
from ..core.state import Message, load_history, utc_now_iso
from ..store.documents import DocumentStore
from ..store.paths import USERS, cfm_path, chat_path, user_path
from .friends import FriendshipService

MENTION_PATTERN = re.compile(r"@(\w+)")

SUMMARY_PROMPT = """You are a memory summarizer. Create a concise memory summary of this chat between {user} and {character}.
Focus on key events, emotions, relationship dynamics, and important details that {character} should remember about {user}.
Keep it under 200 words and write from {character}'s perspective.

Chat history:
{history}

Memory summary:"""


class CFMService:
    """Memory ledger operations on behalf of one signed-in user."""

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        llm: Optional[LLMClient] = None,
        friends: Optional[FriendshipService] = None,
        summary_model: str = settings.LLM_SUMMARY_MODEL,
        summary_max_tokens: int = settings.LLM_SUMMARY_MAX_TOKENS,
    ):
        self.store = store
        self.user_id = user_id
        self.llm = llm
        self.friends = friends or FriendshipService(store)
        self.summary_model = summary_model
        self.summary_max_tokens = summary_max_tokens

    # ========================================================================
    # Enable flag
    # ========================================================================

    async def is_enabled(self, chat_id: str) -> bool:
        try:
            chat = await self.store.get(chat_path(chat_id))
        except SentraException as e:
            logger.error(f"Error checking CFM status for {chat_id}: {e}")
            return False
        return bool(chat) and chat.get("CFM_enabled") is True

    async def enable(self, chat_id: str) -> None:
        """Turn CFM on for a chat the user owns and write its first memory.

        Enabling an already enabled chat does nothing.
        """
        chat = await self.store.get(chat_path(chat_id))
        if chat is None:
            raise NotFoundError("Chat", chat_id)
        if chat.get("userId") != self.user_id:
            raise PermissionDeniedError("Unauthorized to modify this chat")

        if chat.get("CFM_enabled") is True:
            logger.debug(f"CFM already enabled for {chat_id}")
            return

        await self.store.update(
            chat_path(chat_id),
            {"CFM_enabled": True, "CFM_enabledAt": utc_now_iso()},
        )
        logger.info(f"CFM enabled for chat {chat_id}")
        await self.update_chat_memory(chat_id)

    # ========================================================================
    # Summaries
    # ========================================================================

    async def _user_display_name(self) -> str:
        profile = await self.store.get(user_path(self.user_id)) or {}
        return profile.get("displayName") or profile.get("username") or "User"

    async def generate_memory_summary(
        self,
        messages: list[Message],
        character_name: str,
        user_name: str,
    ) -> str:
        """Summarize a transcript; a placeholder stands in when that fails."""
        history = "\n".join(
            f"{user_name if m.role == 'user' else character_name}: {m.content}"
            for m in messages
        )
        prompt = SUMMARY_PROMPT.format(user=user_name, character=character_name, history=history)

        try:
            if self.llm is None:
                raise RuntimeError("no summarization model configured")
            memory = await self.llm.complete(
                prompt, self.summary_max_tokens, model=self.summary_model
            )
            memory = memory.strip()
            if not memory:
                raise ValueError("empty summary")
            return memory
        except Exception as e:
            logger.warning(f"Memory summary failed, using placeholder: {e}")
            return f"Had a conversation with {user_name}."

    async def update_chat_memory(self, chat_id: str) -> Optional[str]:
        """Re-summarize a chat into its ledger slot.

        Returns the stored memory, or None when CFM is off or the chat is empty.
        """
        chat = await self.store.get(chat_path(chat_id))
        if chat is None:
            raise NotFoundError("Chat", chat_id)
        if not chat.get("CFM_enabled"):
            return None

        messages = load_history(chat.get("history"))
        if not messages:
            return None

        user_name = await self._user_display_name()
        memory = await self.generate_memory_summary(
            messages, chat.get("characterName") or "Character", user_name
        )

        path = cfm_path(self.user_id, chat["characterId"])
        if await self.store.get(path) is not None:
            await self.store.update(path, {f"memories.{chat_id}": memory, "lastUpdated": utc_now_iso()})
        else:
            await self.store.set(path, {"memories": {chat_id: memory}, "lastUpdated": utc_now_iso()})
        logger.debug(f"Stored CFM memory for chat {chat_id} ({len(memory)} chars)")
        return memory

    async def refresh_in_background(self, chat_id: str) -> None:
        """update_chat_memory that logs failures instead of raising."""
        try:
            await self.update_chat_memory(chat_id)
        except Exception as e:
            logger.error(f"Error updating chat memory for {chat_id}: {e}")

    # ========================================================================
    # Mentions
    # ========================================================================

    @staticmethod
    def parse_mentions(text: str) -> list[str]:
        return MENTION_PATTERN.findall(text or "")

    async def get_user_id_from_username(self, username: str) -> Optional[str]:
        try:
            matches = await self.store.find(USERS, "username", username.lower(), limit=1)
        except SentraException as e:
            logger.error(f"Error looking up username {username}: {e}")
            return None
        return matches[0].id if matches else None

    async def get_friend_memories(self, friend_id: str, character_id: str) -> Optional[dict[str, str]]:
        """A friend's memories with a character.

        Raises NotFriendError without an accepted friendship; returns None when
        the friend has no memories with this character.
        """
        if not await self.friends.are_friends(self.user_id, friend_id):
            raise NotFriendError(friend_id)

        record = await self.store.get(cfm_path(friend_id, character_id))
        if record is None:
            return None
        return record.get("memories") or None

    @staticmethod
    def format_memories_for_system(memories: Optional[dict[str, str]], username: str) -> str:
        entries = list((memories or {}).values())
        if not entries:
            return f"System: You have no memories with {username}."
        return f"System: Your memories with {username}:\n" + "\n\n".join(entries)

    async def resolve_mention_memories(self, text: str, character_id: str) -> list[str]:
        """One memory string per @mention in `text`, in order.

        Mentions that don't lead to readable memories (unknown username, not a
        friend, nothing stored) still produce the "no memories" sentence.
        """
        resolved = []
        for username in self.parse_mentions(text):
            memories = None
            friend_id = await self.get_user_id_from_username(username)
            if friend_id is not None:
                try:
                    memories = await self.get_friend_memories(friend_id, character_id)
                except NotFriendError:
                    logger.debug(f"@{username} is not a friend of {self.user_id}")
                except SentraException as e:
                    logger.warning(f"Could not load memories for @{username}: {e}")
            resolved.append(self.format_memories_for_system(memories, username))
        return resolved
