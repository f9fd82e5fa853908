"""Session, message and memory endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from loguru import logger

from ..core.exceptions import EidolonError
from ..registry import CharacterRegistry
from ..runtime.templates import APOLOGY_TEXT
from ..schemas import MemoryCreate, MemoryRecord, MemoryUpdate
from .dependencies import get_author, get_bearer_token, get_registry
from .schemas import (
    MemoryListResponse,
    MemorySearchRequest,
    MessageRequest,
    MessageResponse,
    RoomMemoriesRequest,
    SessionCreate,
    SessionResponse,
)

router = APIRouter(prefix="/api", tags=["characters"])


# ============================================================================
# Sessions and messages
# ============================================================================

@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    data: SessionCreate,
    registry: CharacterRegistry = Depends(get_registry),
):
    """Open a session of a character in a room."""
    result = await registry.initialize_character_room(data.author, data.slug, data.room_id)
    return SessionResponse(**result)


@router.post("/messages", response_model=MessageResponse)
async def send_message(
    data: MessageRequest,
    token: Optional[str] = Depends(get_bearer_token),
    registry: CharacterRegistry = Depends(get_registry),
):
    """
    Send one chat message.

    Failures answer with the error body plus an in-character apology so a
    chat client always has something to display.
    """
    try:
        result = await registry.send_message(data.session_id, data.message, data.nonce, token)
    except EidolonError as e:
        logger.warning(f"Message to session {data.session_id} failed: {e}")
        return JSONResponse(
            status_code=e.status_code,
            content={
                "error": e.message,
                "details": e.context,
                "text": APOLOGY_TEXT,
                "session_id": data.session_id,
                "nonce": e.context.get("nonce"),
            },
        )
    return MessageResponse(**result)


# ============================================================================
# Character memories
# ============================================================================

@router.get("/characters/{slug}/memories", response_model=MemoryListResponse)
async def list_memories(
    slug: str,
    type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    """List a character's memories, newest first."""
    memories = await registry.list_memories_for_character(author, slug, type=type, limit=limit)
    return MemoryListResponse(memories=memories)


@router.post(
    "/characters/{slug}/memories",
    response_model=MemoryRecord,
    status_code=status.HTTP_201_CREATED,
)
async def create_memory(
    slug: str,
    data: MemoryCreate,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    return await registry.create_memory(author, slug, data)


@router.get("/characters/{slug}/rooms/{room_id}/memories", response_model=MemoryListResponse)
async def get_room_memories(
    slug: str,
    room_id: str,
    count: int = Query(10, ge=1, le=100),
    type: Optional[str] = "message",
    unique: bool = True,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    memories = await registry.get_memories(author, slug, room_id, count=count, type=type, unique=unique)
    return MemoryListResponse(memories=memories)


@router.post("/characters/{slug}/memories/rooms", response_model=MemoryListResponse)
async def get_memories_by_rooms(
    slug: str,
    data: RoomMemoriesRequest,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    memories = await registry.get_memories_by_room_ids(author, slug, data.room_ids, count=data.count)
    return MemoryListResponse(memories=memories)


@router.post("/characters/{slug}/memories/search", response_model=MemoryListResponse)
async def search_memories(
    slug: str,
    data: MemorySearchRequest,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    """Substring search topped up with semantically similar memories."""
    memories = await registry.find_memories(
        author, slug, data.query, user_id=data.user_id, limit=data.limit
    )
    return MemoryListResponse(memories=memories)


@router.patch("/memories/{memory_id}", response_model=MemoryRecord)
async def update_memory(
    memory_id: str,
    data: MemoryUpdate,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    return await registry.update_memory(author, memory_id, data)


@router.delete("/memories/{memory_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_memory(
    memory_id: str,
    author: str = Depends(get_author),
    registry: CharacterRegistry = Depends(get_registry),
):
    await registry.delete_memory(author, memory_id)
