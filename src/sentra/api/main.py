"""Sentra API.

- Chat streaming: SSE (POST /api/chat/stream)
- Non-streaming fallback: callable protocol (POST /api/chat/call)
- Document store: /api/documents
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .. import __version__
from ..config import settings
from ..core.exceptions import SentraException
from ..store.database import init_db
from ..store.documents import DocumentStore, SqlDocumentStore
from .llm import LLMClient, llm_client
from .prompts import PromptExamples, load_prompt_examples
from .routes_call import router as call_router
from .routes_documents import router as documents_router
from .routes_stream import router as stream_router
from .schemas import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    if app.state.init_db:
        await init_db()
    logger.info("Sentra API started")
    yield
    logger.info("Sentra API shutting down")


async def sentra_exception_handler(request: Request, exc: SentraException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(
    store: Optional[DocumentStore] = None,
    llm: Optional[LLMClient] = None,
    examples: Optional[PromptExamples] = None,
    stream_timeout: Optional[float] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Services default to the configured ones; tests pass their own.
    """
    app = FastAPI(
        title="Sentra API",
        description="Character chat streaming and cross-friend memory",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.init_db = store is None
    app.state.store = store if store is not None else SqlDocumentStore()
    app.state.llm = llm if llm is not None else llm_client
    app.state.prompt_examples = (
        examples if examples is not None else load_prompt_examples(settings.PROMPT_EXAMPLES_DIR)
    )
    app.state.stream_timeout = (
        stream_timeout if stream_timeout is not None else settings.STREAM_TIMEOUT_SECONDS
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SentraException, sentra_exception_handler)

    # Routers define their own prefixes (/chat, /documents); mount them under /api.
    app.include_router(stream_router, prefix="/api")
    app.include_router(call_router, prefix="/api")
    app.include_router(documents_router, prefix="/api")

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(version=__version__)

    return app


def run():
    """Run the server."""
    import uvicorn

    uvicorn.run(
        "sentra.api.main:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
    )


if __name__ == "__main__":
    run()
