"""Dependency injection for FastAPI endpoints.

Shared services live on `app.state` (set up by `create_app`) so tests can swap
them per app instance.
"""

from fastapi import Request
from loguru import logger
from pydantic import ValidationError

from ..core.exceptions import InternalError, NotFoundError
from ..store.documents import DocumentStore
from ..store.paths import character_path
from ..store.records import Character
from .llm import LLMClient
from .prompts import PromptExamples


async def load_character(store: DocumentStore, character_id: str) -> Character:
    """Fetch a character record; NotFoundError when it does not exist."""
    data = await store.get(character_path(character_id))
    if data is None:
        raise NotFoundError("Character", character_id)
    try:
        return Character.model_validate(data)
    except ValidationError as e:
        logger.error(f"Malformed character record {character_id}: {e}")
        raise InternalError(f"Character {character_id} is malformed") from e


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_llm(request: Request) -> LLMClient:
    return request.app.state.llm


def get_prompt_examples(request: Request) -> PromptExamples:
    return request.app.state.prompt_examples


def get_stream_timeout(request: Request) -> float:
    return request.app.state.stream_timeout
