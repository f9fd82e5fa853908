"""Request and response bodies of the HTTP surface."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from ..schemas import MemoryRecord


class SessionCreate(BaseModel):
    author: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    room_id: Optional[str] = None


class SessionResponse(BaseModel):
    room_id: str
    session_id: str
    nonce: str
    config: dict[str, Any]


class MessageRequest(BaseModel):
    session_id: str
    message: str = Field(..., min_length=1)
    nonce: Optional[str] = None


class MessageResponse(BaseModel):
    text: str
    nonce: Optional[str] = None
    session_id: str
    room_id: Optional[str] = None


class MemoryListResponse(BaseModel):
    memories: list[MemoryRecord]


class MemorySearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    limit: int = Field(10, ge=1, le=100)


class RoomMemoriesRequest(BaseModel):
    room_ids: list[str] = Field(..., min_length=1)
    count: int = Field(5, ge=1, le=100)


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "closed"
    active_sessions: int = 0
