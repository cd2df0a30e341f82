"""Chat streaming gateway.

One chat turn per request, streamed back as server-sent events over a single
response:

    start -> message(delta)* -> complete | error

Nothing is persisted here; the client appends the assistant message once it
has seen `complete`.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from loguru import logger

from ..core.exceptions import SentraException
from ..sse import format_event
from ..store.documents import DocumentStore
from .auth import get_user_id
from .dependencies import (
    get_llm,
    get_prompt_examples,
    get_store,
    get_stream_timeout,
    load_character,
)
from .llm import LLMClient
from .prompts import PromptExamples, build_prompt
from .schemas import ChatStreamRequest


router = APIRouter(prefix="/chat", tags=["chat"])


async def stream_chat_events(
    tokens: AsyncIterator[str],
    budget_seconds: float,
    session_id: str = "",
) -> AsyncIterator[bytes]:
    """Frame a token stream as SSE, always ending with one terminal event."""
    yield format_event("start", {"type": "start"})

    full_text = ""
    iterator = tokens.__aiter__()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + budget_seconds

    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            try:
                delta = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                break
            if not delta:
                continue
            full_text += delta
            yield format_event("message", {"type": "delta", "content": delta})

        yield format_event("complete", {"type": "complete", "fullContent": full_text})
        logger.debug(f"Stream complete for session={session_id} ({len(full_text)} chars)")

    except asyncio.TimeoutError:
        logger.warning(f"Stream for session={session_id} exceeded {budget_seconds}s budget")
        yield format_event("error", {"type": "error", "message": "Response timed out"})
    except Exception as e:
        logger.error(f"SSE stream failed for session={session_id}: {e}")
        message = e.message if isinstance(e, SentraException) else "Stream failed"
        yield format_event("error", {"type": "error", "message": message})
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.debug(f"Closing token stream raised: {e}")


@router.post("/stream")
async def chat_stream(
    req: ChatStreamRequest,
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    llm: LLMClient = Depends(get_llm),
    examples: PromptExamples = Depends(get_prompt_examples),
    budget_seconds: float = Depends(get_stream_timeout),
):
    """Stream the character's reply to the last message as SSE."""
    character = await load_character(store, req.character_id)

    prompt = build_prompt(
        character,
        req.messages,
        custom_scenario=req.custom_scenario,
        memories=req.cfm_memories,
        examples=examples,
    )
    logger.info(
        f"Chat stream user={user_id} session={req.session_id} character={req.character_id} "
        f"messages={len(req.messages)} memories={len(req.cfm_memories)} limit={req.token_limit}"
    )

    return StreamingResponse(
        stream_chat_events(
            llm.stream(prompt, req.token_limit),
            budget_seconds,
            session_id=req.session_id,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
