"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Optional

import pytest
from fastapi import HTTPException, Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sentra.api.auth import get_optional_user_id, get_user_id
from sentra.api.main import create_app
from sentra.api.prompts import PromptExamples
from sentra.core.state import dump_history, Message
from sentra.store.database import init_db
from sentra.store.documents import SqlDocumentStore
from sentra.store.paths import character_path, chat_history_path, chat_path, friendship_path, user_path


# ============================================================================
# Fake LLM Provider
# ============================================================================

class FakeLLM:
    """Stand-in for LLMClient: replays fixed tokens or a fixed reply."""

    def __init__(
        self,
        tokens: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        reply: str = "A summary of our time together.",
        complete_error: Optional[Exception] = None,
    ):
        self.tokens = tokens if tokens is not None else ["Hello", ", ", "traveller."]
        self.error = error
        self.delay = delay
        self.reply = reply
        self.complete_error = complete_error
        self.prompts: list[str] = []
        self.max_tokens: list[int] = []
        self.models: list[Optional[str]] = []

    async def stream(self, prompt, max_tokens, model=None):
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        self.models.append(model)
        for token in self.tokens:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield token
        if self.error is not None:
            raise self.error

    async def complete(self, prompt, max_tokens, model=None):
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        self.models.append(model)
        if self.complete_error is not None:
            raise self.complete_error
        return self.reply


@pytest.fixture
def fake_llm():
    return FakeLLM()


# ============================================================================
# Document Store
# ============================================================================

@pytest.fixture
async def db_engine():
    """In-memory SQLite shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    return SqlDocumentStore(async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False))


async def seed_character(store, character_id="char_1", author="alice", **fields):
    data = {"name": "Mara", "authorID": author, **fields}
    await store.set(character_path(character_id), data)
    return data


async def seed_user(store, user_id, username, display_name=None):
    await store.set(user_path(user_id), {"username": username, "displayName": display_name or username})


async def seed_chat(store, chat_id, user_id="alice", character_id="char_1", messages=None, **fields):
    data = {
        "characterId": character_id,
        "characterName": "Mara",
        "userId": user_id,
        "userUsername": user_id,
        "history": dump_history(messages or []),
        "scenario": "",
        "title": "Chat with Mara",
        **fields,
    }
    await store.set(chat_path(chat_id), data)
    await store.set(
        chat_history_path(user_id, chat_id),
        {"title": data["title"], "characterId": character_id, "characterName": "Mara", "lastUpdated": "2024-01-01T00:00:00+00:00"},
    )
    return data


async def make_friends(store, user_a, user_b):
    await store.set(
        friendship_path(user_a, user_b),
        {"users": sorted([user_a, user_b]), "status": "accepted", "requestedBy": user_a},
    )


def transcript(*pairs):
    """Messages from (role, content) pairs."""
    return [Message(role=role, content=content) for role, content in pairs]


# ============================================================================
# API
# ============================================================================

def _bearer_user(request: Request) -> Optional[str]:
    """Test auth: the bearer token is the user id."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _required_bearer_user(request: Request) -> str:
    user_id = _bearer_user(request)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return user_id


@pytest.fixture
def app(store, fake_llm):
    app = create_app(store=store, llm=fake_llm, examples=PromptExamples(), stream_timeout=5.0)
    app.dependency_overrides[get_user_id] = _required_bearer_user
    app.dependency_overrides[get_optional_user_id] = _bearer_user
    return app


@pytest.fixture
async def client(app):
    """Unauthenticated HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}
