"""Pydantic models for the documents Sentra keeps in the store.

Field aliases match the stored (camelCase) document keys.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from ..core.state import Message, load_history


class Character(BaseModel):
    """Character profile (`characters/{id}`)."""
    name: str = Field(..., min_length=1)
    age: Optional[Union[int, str]] = None
    gender: Optional[str] = None
    species: Optional[str] = None
    description: Optional[str] = Field(None, alias="characterDescription")
    background: Optional[str] = Field(None, alias="characterBackground")
    temperament: Optional[str] = None
    talking_style: Optional[str] = Field(None, alias="talkingStyle")
    scenario: Optional[str] = None
    outfit: Optional[str] = None
    appearance: Optional[str] = None
    special_ability: Optional[str] = Field(None, alias="specialAbility")
    family: Optional[str] = None
    job: Optional[str] = None
    residence: Optional[str] = None
    relationship_status: Optional[str] = Field(None, alias="relationshipStatus")
    tags: list[str] = Field(default_factory=list)
    author_id: Optional[str] = Field(None, alias="authorID")
    author_username: Optional[str] = Field(None, alias="authorUsername")
    avatar: Optional[str] = None
    is_public: bool = Field(True, alias="isPublic")

    class Config:
        populate_by_name = True


class ChatRecord(BaseModel):
    """Chat session (`chats/{id}`); `history` is a serialized message list."""
    character_id: str = Field(..., alias="characterId")
    character_name: str = Field("Character", alias="characterName")
    user_id: str = Field(..., alias="userId")
    user_username: str = Field("User", alias="userUsername")
    history: str = '{"messages": []}'
    scenario: str = ""
    title: str = ""
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")
    cfm_enabled: bool = Field(False, alias="CFM_enabled")
    cfm_enabled_at: Optional[str] = Field(None, alias="CFM_enabledAt")

    class Config:
        populate_by_name = True

    @property
    def messages(self) -> list[Message]:
        return load_history(self.history)


class ChatHistoryEntry(BaseModel):
    """Per-user mirror of a chat (`users/{uid}/chatHistory/{chatId}`)."""
    title: str
    character_id: str = Field(..., alias="characterId")
    character_name: str = Field(..., alias="characterName")
    created_at: Optional[str] = Field(None, alias="createdAt")
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
    avatar: str = ""

    class Config:
        populate_by_name = True


class CFMRecord(BaseModel):
    """Memory ledger for one (user, character) pair."""
    memories: dict[str, str] = Field(default_factory=dict)
    last_updated: Optional[str] = Field(None, alias="lastUpdated")

    class Config:
        populate_by_name = True
