"""Pydantic models shared by the stores, the runtime and the API."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .db.models import utcnow


# ============================================================================
# Memory Schemas
# ============================================================================

class MemoryRecord(BaseModel):
    """
    One memory as seen by application code.

    `content` is a dict carrying at least "text"; it may also carry
    "action", "attachments", "source" and similar keys.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str = "message"
    content: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    user_name: str = "guest"
    room_id: str
    agent_id: str
    is_unique: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    importance_score: float = 0.0
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[list[float]] = Field(default=None, exclude=True)
    similarity: Optional[float] = Field(default=None, exclude=True)

    @property
    def text(self) -> str:
        value = self.content.get("text")
        return value if isinstance(value, str) else ""


class MemoryCreate(BaseModel):
    """Schema for creating a memory through the registry."""
    content: dict[str, Any]
    room_id: Optional[str] = None
    type: str = "message"
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    is_unique: bool = True


class MemoryUpdate(BaseModel):
    """Partial update; `content` is merged into the stored content."""
    type: Optional[str] = None
    content: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    importance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# ============================================================================
# Goal Schemas
# ============================================================================

class GoalStatus(str, Enum):
    DONE = "DONE"
    FAILED = "FAILED"
    IN_PROGRESS = "IN_PROGRESS"


class Objective(BaseModel):
    id: Optional[str] = None
    description: str
    completed: bool = False


class GoalRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    room_id: str
    user_id: Optional[str] = None
    name: str
    status: GoalStatus = GoalStatus.IN_PROGRESS
    objectives: list[Objective] = Field(default_factory=list)


# ============================================================================
# Actor Schemas
# ============================================================================

class Actor(BaseModel):
    id: str
    name: str
    username: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class RelationshipRecord(BaseModel):
    id: Optional[int] = None
    user_a: str
    user_b: str
    status: str = "FRIENDS"
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# Character Schemas
# ============================================================================

class StyleConfig(BaseModel):
    all: list[str] = Field(default_factory=list)
    chat: list[str] = Field(default_factory=list)
    post: list[str] = Field(default_factory=list)


class ExampleMessage(BaseModel):
    user: str
    content: dict[str, Any] = Field(default_factory=dict)


class Wallet(BaseModel):
    chain: str = "ETH"
    address: str = "0x0000000000000000000000000000000000000000"


class CharacterConfig(BaseModel):
    """Full character definition as stored and as handed to the runtime."""
    id: Optional[str] = None
    author: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = None
    model_provider: str = "openai"
    bio: str | list[str] = ""
    lore: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    style: StyleConfig = Field(default_factory=StyleConfig)
    adjectives: list[str] = Field(default_factory=list)
    message_examples: list[list[ExampleMessage]] = Field(default_factory=list)
    post_examples: list[str] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
    status: str = "private"
    clients: list[str] = Field(default_factory=lambda: ["DIRECT"])
    wallets: list[Wallet] = Field(default_factory=list)
    secrets: Optional[dict[str, Any]] = Field(default=None, exclude=True)

    def public_config(self) -> dict[str, Any]:
        """Serializable config with secrets removed."""
        data = self.model_dump(mode="json")
        data.get("settings", {}).pop("secrets", None)
        return data
