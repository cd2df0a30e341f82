"""Pydantic schemas for API request/response models."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .prompts import clamp_token_limit


# ============================================================================
# Chat Schemas
# ============================================================================

class ChatMessage(BaseModel):
    """One entry of the conversation history sent by the client."""
    role: Literal["user", "assistant"]
    content: str
    timestamp: Optional[str] = None


class ChatStreamRequest(BaseModel):
    """Body of POST /api/chat/stream."""
    messages: list[ChatMessage] = Field(..., min_length=1)
    character_id: str = Field(..., min_length=1, alias="characterId")
    session_id: str = Field(..., min_length=1, alias="sessionId")
    custom_scenario: Optional[str] = Field(None, alias="customScenario")
    token_limit: int = Field(1024, alias="tokenLimit")
    cfm_memories: list[str] = Field(default_factory=list, alias="cfmMemories")

    class Config:
        populate_by_name = True

    @field_validator("token_limit", mode="before")
    @classmethod
    def _clamp_token_limit(cls, value: Any) -> int:
        return clamp_token_limit(value)

    @field_validator("cfm_memories", mode="before")
    @classmethod
    def _none_memories(cls, value: Any) -> Any:
        return [] if value is None else value


class AIMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatCallResult(BaseModel):
    """Callable result payload: `{"success": true, "aiMessage": {...}}`."""
    success: bool = True
    ai_message: AIMessage = Field(..., alias="aiMessage")

    class Config:
        populate_by_name = True


# ============================================================================
# Document Schemas
# ============================================================================

class DocumentWrite(BaseModel):
    """Body of PUT/PATCH /api/documents/{path}."""
    data: dict[str, Any]


class DocumentResponse(BaseModel):
    path: str
    data: dict[str, Any]


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]


# ============================================================================
# Health Check
# ============================================================================

class HealthResponse(BaseModel):
    """Schema for health check response."""
    status: str = "ok"
    version: str = "1.0.0"
