"""Non-streaming chat endpoint (callable protocol).

Older call sites expect a request/response function that always yields an
assistant message: provider failures are replaced by a fixed apology instead of
an error. Request and response use the callable envelope:

    request:  {"data": {...}}
    success:  {"result": {"success": true, "aiMessage": {...}}}
    failure:  {"error": {"status": "INVALID_ARGUMENT", "message": "..."}}
"""

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ..core.exceptions import (
    AuthenticationError,
    InternalError,
    InvalidArgumentError,
    SentraException,
)
from ..store.documents import DocumentStore
from .auth import get_optional_user_id
from .dependencies import get_llm, get_prompt_examples, get_store, load_character
from .llm import LLMClient
from .prompts import PromptExamples, build_prompt, clamp_token_limit
from .schemas import AIMessage, ChatCallResult

router = APIRouter(prefix="/chat", tags=["chat"])

APOLOGY_MESSAGE = (
    "I'm sorry, I'm having trouble responding right now. "
    "Please try again in a moment."
)


@dataclass(frozen=True)
class ChatCall:
    messages: list[dict[str, str]]
    character_id: str
    session_id: Optional[str]
    custom_scenario: Optional[str]
    token_limit: int


def parse_chat_call(body: Any) -> ChatCall:
    """Validate the callable payload, naming the offending field on failure."""
    if not isinstance(body, dict):
        raise InvalidArgumentError("Request body must be a JSON object")
    data = body.get("data", body)
    if not isinstance(data, dict):
        raise InvalidArgumentError("Request data must be an object", field="data")

    if "messages" not in data:
        raise InvalidArgumentError("Missing required field: messages", field="messages")
    messages = data["messages"]
    if not isinstance(messages, list):
        raise InvalidArgumentError("messages must be an array", field="messages")
    if not messages:
        raise InvalidArgumentError("messages must not be empty", field="messages")

    cleaned: list[dict[str, str]] = []
    for position, entry in enumerate(messages):
        if not isinstance(entry, dict):
            raise InvalidArgumentError(f"messages[{position}] must be an object", field="messages")
        role = entry.get("role")
        content = entry.get("content")
        if role not in ("user", "assistant"):
            raise InvalidArgumentError(
                f"messages[{position}].role must be 'user' or 'assistant'", field="messages"
            )
        if not isinstance(content, str):
            raise InvalidArgumentError(f"messages[{position}].content must be a string", field="messages")
        cleaned.append({"role": role, "content": content})

    character_id = data.get("characterId")
    if not isinstance(character_id, str) or not character_id.strip():
        raise InvalidArgumentError("Missing required field: characterId", field="characterId")

    session_id = data.get("sessionId")
    if session_id is not None and not isinstance(session_id, str):
        raise InvalidArgumentError("sessionId must be a string", field="sessionId")

    custom_scenario = data.get("customScenario")
    if custom_scenario is not None and not isinstance(custom_scenario, str):
        raise InvalidArgumentError("customScenario must be a string", field="customScenario")

    return ChatCall(
        messages=cleaned,
        character_id=character_id,
        session_id=session_id,
        custom_scenario=custom_scenario,
        token_limit=clamp_token_limit(data.get("tokenLimit")),
    )


def callable_error(exc: SentraException) -> JSONResponse:
    status_name = exc.code.upper().replace("-", "_")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"status": status_name, "message": exc.message}},
    )


@router.post("/call")
async def chat_call(
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    store: DocumentStore = Depends(get_store),
    llm: LLMClient = Depends(get_llm),
    examples: PromptExamples = Depends(get_prompt_examples),
):
    """Generate one complete assistant reply."""
    try:
        if user_id is None:
            raise AuthenticationError("The function must be called while authenticated")

        try:
            body = await request.json()
        except ValueError:
            raise InvalidArgumentError("Request body must be valid JSON")

        call = parse_chat_call(body)
        character = await load_character(store, call.character_id)
        prompt = build_prompt(
            character,
            call.messages,
            custom_scenario=call.custom_scenario,
            examples=examples,
        )

        try:
            content = await llm.complete(prompt, call.token_limit)
        except Exception as e:
            logger.error(f"Chat call to provider failed for session={call.session_id}: {e}")
            content = APOLOGY_MESSAGE

        result = ChatCallResult(ai_message=AIMessage(content=content))
        return {"result": result.model_dump(by_alias=True)}

    except SentraException as e:
        if e.status_code >= 500:
            logger.error(f"Chat call failed: {e}")
        else:
            logger.info(f"Chat call rejected ({e.code}): {e.message}")
        return callable_error(e)
    except Exception as e:
        logger.exception(f"Unexpected chat call failure: {e}")
        return callable_error(InternalError("Error while chatting with the AI service"))
