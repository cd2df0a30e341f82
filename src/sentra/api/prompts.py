"""Prompt construction shared by the streaming and callable chat endpoints.

The system prompt always has the same shape: every character attribute is
present, with "Not specified" standing in for missing values.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from ..store.records import Character

NOT_SPECIFIED = "Not specified"
DEFAULT_TOKEN_LIMIT = 1024
ALLOWED_TOKEN_LIMITS = frozenset({256, 512, 1024})

MEMORY_HEADER = "Memories you share with the user's friends (use them when those friends are mentioned):"
EXAMPLES_HEADER = "Reference examples of the expected writing style (do not repeat them verbatim):"

DIALOGUE_EXAMPLE_FILE = "dialogue_example.txt"
NARRATION_EXAMPLE_FILE = "narration_example.txt"


@dataclass(frozen=True)
class PromptExamples:
    """In-context reference texts loaded once at startup."""
    dialogue: str = ""
    narration: str = ""

    @property
    def empty(self) -> bool:
        return not self.dialogue.strip() and not self.narration.strip()


def load_prompt_examples(directory: str | Path) -> PromptExamples:
    """Read the example files; a missing or unreadable file counts as empty."""
    base = Path(directory)

    def _read(name: str) -> str:
        path = base / name
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.debug(f"Prompt example {path} not found; skipping")
        except OSError as e:
            logger.warning(f"Could not read prompt example {path}: {e}")
        return ""

    examples = PromptExamples(
        dialogue=_read(DIALOGUE_EXAMPLE_FILE),
        narration=_read(NARRATION_EXAMPLE_FILE),
    )
    if examples.empty:
        logger.info("No prompt examples loaded; example section will be omitted")
    return examples


def clamp_token_limit(value: Any) -> int:
    """Return the requested limit if it is 256, 512 or 1024, else 1024."""
    if isinstance(value, bool):
        return DEFAULT_TOKEN_LIMIT
    if isinstance(value, (int, float, str)):
        try:
            number = float(value)
        except ValueError:
            return DEFAULT_TOKEN_LIMIT
        if number.is_integer() and int(number) in ALLOWED_TOKEN_LIMITS:
            return int(number)
    return DEFAULT_TOKEN_LIMIT


def _or_not_specified(value: Any) -> str:
    if value is None:
        return NOT_SPECIFIED
    if isinstance(value, (list, tuple, set)):
        joined = ", ".join(str(v).strip() for v in value if str(v).strip())
        return joined or NOT_SPECIFIED
    text = str(value).strip()
    return text or NOT_SPECIFIED


def dedupe_memories(memories: Optional[Iterable[str]]) -> list[str]:
    """Drop empty and repeated memory strings, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[str] = []
    for memory in memories or []:
        text = (memory or "").strip()
        if text and text not in seen:
            seen.add(text)
            unique.append(text)
    return unique


def build_system_prompt(
    character: Character,
    custom_scenario: Optional[str] = None,
    memories: Optional[Iterable[str]] = None,
    examples: Optional[PromptExamples] = None,
) -> str:
    """Build the roleplay instructions for one chat turn."""
    name = character.name.strip()

    if custom_scenario and custom_scenario.strip():
        scenario_label = "Scenario (custom scenario for this chat, replaces the character's default scenario)"
        scenario_text = custom_scenario.strip()
    else:
        scenario_label = "Scenario (character's default scenario)"
        scenario_text = _or_not_specified(character.scenario)

    sections = [
        f"You are {name}. You are roleplaying as {name} in an ongoing conversation with the user.\n"
        f"Stay in character at all times and never mention that you are an AI or a language model.\n"
        f"Write {name}'s spoken dialogue in the first person and describe {name}'s actions, "
        f"expressions and surroundings as narration in the third person.\n"
        f"Keep the personality, voice and knowledge consistent with the profile below.",
        "\n".join([
            "Character profile:",
            f"Name: {name}",
            f"Species: {_or_not_specified(character.species)}",
            f"Gender: {_or_not_specified(character.gender)}",
            f"Age: {_or_not_specified(character.age)}",
            f"Description: {_or_not_specified(character.description)}",
            f"Appearance: {_or_not_specified(character.appearance)}",
            f"Outfit: {_or_not_specified(character.outfit)}",
            f"Background: {_or_not_specified(character.background)}",
            f"Temperament: {_or_not_specified(character.temperament)}",
            f"Talking style: {_or_not_specified(character.talking_style)}",
            f"Special ability: {_or_not_specified(character.special_ability)}",
            f"Family: {_or_not_specified(character.family)}",
            f"Job: {_or_not_specified(character.job)}",
            f"Residence: {_or_not_specified(character.residence)}",
            f"Relationship status: {_or_not_specified(character.relationship_status)}",
            f"Tags: {_or_not_specified(character.tags)}",
        ]),
        f"{scenario_label}:\n{scenario_text}",
    ]

    unique_memories = dedupe_memories(memories)
    if unique_memories:
        sections.append(MEMORY_HEADER + "\n\n" + "\n\n".join(unique_memories))

    if examples is not None and not examples.empty:
        parts = [EXAMPLES_HEADER]
        if examples.dialogue.strip():
            parts.append(f"Dialogue example:\n{examples.dialogue.strip()}")
        if examples.narration.strip():
            parts.append(f"Narration example:\n{examples.narration.strip()}")
        sections.append("\n\n".join(parts))

    return "\n\n".join(sections)


def _role_and_content(message: Any) -> tuple[str, str]:
    if isinstance(message, dict):
        return str(message.get("role", "")), str(message.get("content", ""))
    return str(message.role), str(message.content)


def format_history(messages: Iterable[Any]) -> str:
    """Serialize messages as alternating `Human:` / `Assistant:` lines."""
    lines = []
    for message in messages:
        role, content = _role_and_content(message)
        speaker = "Human" if role == "user" else "Assistant"
        lines.append(f"{speaker}: {content}")
    return "\n".join(lines)


def build_prompt(
    character: Character,
    messages: list[Any],
    custom_scenario: Optional[str] = None,
    memories: Optional[Iterable[str]] = None,
    examples: Optional[PromptExamples] = None,
) -> str:
    """Full prompt: system prompt, earlier turns, then the current `Human:` turn.

    The last message is the user's current turn; it is not repeated inside the
    history block.
    """
    if not messages:
        raise ValueError("messages must not be empty")

    system_prompt = build_system_prompt(character, custom_scenario, memories, examples)
    *earlier, current = messages
    _, current_text = _role_and_content(current)

    parts = [system_prompt]
    history = format_history(earlier)
    if history:
        parts.append("Conversation so far:\n" + history)
    parts.append(f"Human: {current_text}")
    return "\n\n".join(parts)
