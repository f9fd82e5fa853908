"""Durable memory storage with importance scoring."""

import json
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator, Optional, Sequence

import numpy as np
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..db.database import STORE_ERRORS, Database
from ..db.models import Memory, Room, utcnow
from ..schemas import MemoryRecord
from .embedding import Embedder, cosine_similarities, from_blob, is_zero_vector, to_blob
from .importance import build_metadata, content_to_string, importance_score

UPDATABLE_FIELDS = ("type", "content", "user_id", "user_name", "importance_score")


def parse_content(raw: Any) -> dict[str, Any]:
    """
    Decode a stored content column.

    Accepts structured JSON, doubly-encoded JSON, and legacy rows that hold
    a bare string (wrapped as {"text": raw}).
    """
    if isinstance(raw, dict):
        return raw
    if raw is None:
        return {"text": ""}

    value: Any = raw
    for _ in range(2):
        if not isinstance(value, str):
            break
        try:
            value = json.loads(value)
        except ValueError:
            break

    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        return {"text": value}
    return {"text": raw if isinstance(raw, str) else str(raw)}


class MemoryStore:
    """
    CRUD over memories scoped by room, agent and user.

    Every failure of the backing store is logged and converted into an
    empty/False result so a conversation turn degrades instead of aborting.
    Callers that need a write to be durable check the returned bool.
    """

    def __init__(
        self,
        db: Database,
        embedder: Optional[Embedder] = None,
        warn_threshold: int = config.MEMORY_WARN_THRESHOLD,
        critical_threshold: int = config.MEMORY_CRITICAL_THRESHOLD,
        similarity_threshold: float = 0.75,
        embedding_scan_limit: int = 2000,
    ):
        self.db = db
        self.embedder = embedder
        self.warn_threshold = warn_threshold
        self.critical_threshold = critical_threshold
        self.similarity_threshold = similarity_threshold
        self.embedding_scan_limit = embedding_scan_limit

        # agent_id -> known memory count, seeded from the store on first write
        self._agent_counts: dict[str, int] = {}
        self.stats: dict[str, Any] = {
            "total_memories": 0,
            "messages_processed": 0,
            "last_cleanup": None,
        }

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
        """Join the caller's transaction, or open a new one."""
        if session is not None:
            yield session
        else:
            async with self.db.transaction() as own:
                yield own

    @staticmethod
    def _to_record(row: Memory) -> MemoryRecord:
        try:
            metadata = json.loads(row.meta) if row.meta else {}
        except ValueError:
            metadata = {}
        embedding = from_blob(row.embedding)
        return MemoryRecord(
            id=row.id,
            type=row.type,
            content=parse_content(row.content),
            user_id=row.user_id,
            user_name=row.user_name,
            room_id=row.room_id,
            agent_id=row.agent_id,
            is_unique=row.is_unique,
            created_at=row.created_at,
            importance_score=row.importance_score or 0.0,
            access_count=row.access_count or 0,
            last_accessed=row.last_accessed,
            metadata=metadata if isinstance(metadata, dict) else {},
            embedding=embedding.tolist() if embedding is not None else None,
        )

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def ensure_room_exists(
        self,
        room_id: str,
        agent_id: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        try:
            async with self._session(session) as s:
                await self._ensure_room(s, room_id, agent_id)
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error ensuring room {room_id}: {e}")
            return False

    @staticmethod
    async def _ensure_room(session: AsyncSession, room_id: str, agent_id: Optional[str]) -> None:
        room = await session.get(Room, room_id)
        if room is None:
            session.add(Room(id=room_id, created_at=utcnow(), last_active=utcnow()))
            await session.flush()
            logger.debug(f"Created missing room {room_id} (agent {agent_id})")
        else:
            room.last_active = utcnow()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_memory(
        self,
        memory: MemoryRecord,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Insert a memory, creating its room first when missing.

        Pass `session` to make the insert part of a larger transaction.
        """
        if not memory.room_id:
            logger.warning("Refusing to create memory without room_id")
            return False

        embedding = memory.embedding
        if embedding is None and self.embedder is not None and memory.text:
            embedding = await self.embedder.embed(memory.text)

        try:
            async with self._session(session) as s:
                await self._ensure_room(s, memory.room_id, memory.agent_id)
                s.add(Memory(
                    id=memory.id,
                    type=memory.type,
                    content=content_to_string(memory.content),
                    embedding=None if is_zero_vector(embedding) else to_blob(embedding),
                    user_id=memory.user_id,
                    user_name=memory.user_name or "guest",
                    room_id=memory.room_id,
                    agent_id=memory.agent_id,
                    is_unique=memory.is_unique,
                    created_at=memory.created_at,
                    importance_score=importance_score(memory.content),
                    access_count=0,
                    meta=json.dumps(build_metadata(memory.content)),
                ))
                await s.flush()
                previous = self._agent_counts.get(memory.agent_id)
                if previous is None:
                    current = await s.scalar(
                        select(func.count()).select_from(Memory).where(Memory.agent_id == memory.agent_id)
                    )
                    previous = current - 1
                else:
                    current = previous + 1
                self._agent_counts[memory.agent_id] = current
        except STORE_ERRORS as e:
            logger.error(f"Error creating memory {memory.id} in room {memory.room_id}: {e}")
            return False

        self.stats["total_memories"] += 1
        self.stats["messages_processed"] += 1
        self.check_thresholds(memory.agent_id, previous, current)
        return True

    def check_thresholds(self, agent_id: str, previous: int, current: int) -> Optional[str]:
        """Emit a diagnostic when the agent's memory count crosses a threshold."""
        if previous < self.critical_threshold <= current:
            logger.critical(
                f"Memory count for agent {agent_id} ({current}) exceeded critical threshold "
                f"{self.critical_threshold}"
            )
            return "critical"
        if previous < self.warn_threshold <= current:
            logger.warning(
                f"Memory count for agent {agent_id} ({current}) exceeded warning threshold "
                f"{self.warn_threshold}"
            )
            return "warning"
        return None

    async def update_memory(self, memory_id: str, changes: dict[str, Any]) -> bool:
        """
        Apply `changes` restricted to UPDATABLE_FIELDS.

        New content replaces the stored content and is rescored unless an
        explicit importance_score is part of the same update.
        """
        fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}
        if not fields:
            return False
        try:
            async with self.db.transaction() as s:
                row = await s.get(Memory, memory_id)
                if row is None:
                    return False
                if "content" in fields:
                    content = fields["content"]
                    row.content = content_to_string(content)
                    row.meta = json.dumps(build_metadata(content))
                    if "importance_score" not in fields:
                        row.importance_score = importance_score(content)
                for key in ("type", "user_id", "user_name", "importance_score"):
                    if key in fields:
                        setattr(row, key, fields[key])
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error updating memory {memory_id}: {e}")
            return False

    async def delete_memory(self, memory_id: str) -> bool:
        try:
            async with self.db.transaction() as s:
                result = await s.execute(delete(Memory).where(Memory.id == memory_id))
            return result.rowcount > 0
        except STORE_ERRORS as e:
            logger.error(f"Error deleting memory {memory_id}: {e}")
            return False

    async def remove_all_memories(self, room_id: str, type: Optional[str] = None) -> bool:
        try:
            async with self.db.transaction() as s:
                stmt = delete(Memory).where(Memory.room_id == room_id)
                if type:
                    stmt = stmt.where(Memory.type == type)
                await s.execute(stmt)
            self._agent_counts.clear()
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error removing memories of room {room_id}: {e}")
            return False

    async def cleanup_old_memories(self, room_id: str, max_age: timedelta = timedelta(hours=24)) -> int:
        """Delete non-unique memories in the room older than `max_age`."""
        cutoff = utcnow() - max_age
        try:
            async with self.db.transaction() as s:
                result = await s.execute(
                    delete(Memory).where(
                        Memory.room_id == room_id,
                        Memory.is_unique.is_(False),
                        Memory.created_at < cutoff,
                    )
                )
            self.stats["last_cleanup"] = utcnow()
            if result.rowcount:
                self._agent_counts.clear()
                logger.info(f"Cleaned {result.rowcount} old memories from room {room_id}")
            return result.rowcount
        except STORE_ERRORS as e:
            logger.error(f"Error cleaning old memories of room {room_id}: {e}")
            return 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_memories(
        self,
        room_id: str,
        count: int = 10,
        type: Optional[str] = "message",
        unique: bool = True,
        agent_id: Optional[str] = None,
    ) -> list[MemoryRecord]:
        """Most recent memories of a room, newest first."""
        try:
            async with self.db.transaction() as s:
                stmt = select(Memory).where(Memory.room_id == room_id)
                if type:
                    stmt = stmt.where(Memory.type == type)
                if unique:
                    stmt = stmt.where(Memory.is_unique.is_(True))
                if agent_id:
                    stmt = stmt.where(Memory.agent_id == agent_id)
                stmt = stmt.order_by(Memory.created_at.desc()).limit(count)
                rows = (await s.scalars(stmt)).all()
            return [self._to_record(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error getting memories of room {room_id}: {e}")
            return []

    async def get_memories_by_room_ids(
        self,
        agent_id: str,
        room_ids: Sequence[str],
        count: int = 5,
        type: Optional[str] = None,
    ) -> list[MemoryRecord]:
        if not room_ids:
            return []
        try:
            async with self.db.transaction() as s:
                stmt = select(Memory).where(
                    Memory.agent_id == agent_id,
                    Memory.room_id.in_(list(room_ids)),
                )
                if type:
                    stmt = stmt.where(Memory.type == type)
                stmt = stmt.order_by(Memory.created_at.desc()).limit(count)
                rows = (await s.scalars(stmt)).all()
            return [self._to_record(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error getting memories by room ids: {e}")
            return []

    async def get_memory_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        """Fetch one memory and record the access."""
        try:
            async with self.db.transaction() as s:
                row = await s.get(Memory, memory_id)
                if row is None:
                    return None
                row.access_count = (row.access_count or 0) + 1
                row.last_accessed = utcnow()
                await s.flush()
                return self._to_record(row)
        except STORE_ERRORS as e:
            logger.error(f"Error getting memory {memory_id}: {e}")
            return None

    async def get_memories_by_ids(self, memory_ids: Sequence[str]) -> list[MemoryRecord]:
        if not memory_ids:
            return []
        try:
            async with self.db.transaction() as s:
                rows = (await s.scalars(
                    select(Memory).where(Memory.id.in_(list(memory_ids)))
                )).all()
            by_id = {r.id: self._to_record(r) for r in rows}
            return [by_id[i] for i in memory_ids if i in by_id]
        except STORE_ERRORS as e:
            logger.error(f"Error getting memories by ids: {e}")
            return []

    async def get_all_memories_by_character(
        self,
        character_id: str,
        type: Optional[str] = None,
        limit: int = 100,
    ) -> list[MemoryRecord]:
        try:
            async with self.db.transaction() as s:
                stmt = select(Memory).where(Memory.agent_id == str(character_id))
                if type:
                    stmt = stmt.where(Memory.type == type)
                stmt = stmt.order_by(Memory.created_at.desc()).limit(limit)
                rows = (await s.scalars(stmt)).all()
            return [self._to_record(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error listing memories of character {character_id}: {e}")
            return []

    async def count_memories(
        self,
        room_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        unique: bool = False,
    ) -> int:
        try:
            async with self.db.transaction() as s:
                stmt = select(func.count()).select_from(Memory)
                if room_id:
                    stmt = stmt.where(Memory.room_id == room_id)
                if agent_id:
                    stmt = stmt.where(Memory.agent_id == agent_id)
                if unique:
                    stmt = stmt.where(Memory.is_unique.is_(True))
                return int(await s.scalar(stmt) or 0)
        except STORE_ERRORS as e:
            logger.error(f"Error counting memories: {e}")
            return 0

    async def find_memories(
        self,
        query: str,
        agent_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 10,
        type: Optional[str] = None,
    ) -> list[MemoryRecord]:
        """
        Substring search, topped up with nearest neighbours.

        Substring hits come first; vector hits are appended only while fewer
        than `limit` results were found and never repeat an earlier hit.
        """
        if not query:
            return []
        try:
            async with self.db.transaction() as s:
                stmt = select(Memory).where(Memory.content.contains(query, autoescape=True))
                if agent_id:
                    stmt = stmt.where(Memory.agent_id == agent_id)
                if user_id:
                    stmt = stmt.where(Memory.user_id == user_id)
                if type:
                    stmt = stmt.where(Memory.type == type)
                stmt = stmt.order_by(Memory.created_at.desc()).limit(limit)
                rows = (await s.scalars(stmt)).all()
            results = [self._to_record(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error finding memories for '{query}': {e}")
            return []

        if len(results) >= limit or self.embedder is None:
            return results

        embedding = await self.embedder.embed(query)
        if is_zero_vector(embedding):
            return results

        seen = {m.id for m in results}
        similar = await self.search_memories_by_embedding(
            embedding,
            agent_id=agent_id,
            type=type,
            count=limit,
        )
        for memory in similar:
            if memory.id not in seen and len(results) < limit:
                results.append(memory)
                seen.add(memory.id)
        return results

    async def search_memories_by_embedding(
        self,
        embedding: Sequence[float],
        agent_id: Optional[str] = None,
        room_id: Optional[str] = None,
        type: Optional[str] = None,
        count: int = 10,
        threshold: Optional[float] = None,
    ) -> list[MemoryRecord]:
        """Nearest memories by cosine similarity, best first."""
        if is_zero_vector(embedding):
            return []
        threshold = self.similarity_threshold if threshold is None else threshold
        try:
            async with self.db.transaction() as s:
                stmt = select(Memory).where(Memory.embedding.is_not(None))
                if agent_id:
                    stmt = stmt.where(Memory.agent_id == agent_id)
                if room_id:
                    stmt = stmt.where(Memory.room_id == room_id)
                if type:
                    stmt = stmt.where(Memory.type == type)
                stmt = stmt.order_by(Memory.created_at.desc()).limit(self.embedding_scan_limit)
                rows = (await s.scalars(stmt)).all()
        except STORE_ERRORS as e:
            logger.error(f"Error searching memories by embedding: {e}")
            return []

        dimension = len(embedding)
        candidates = [r for r in rows if r.embedding and len(r.embedding) == dimension * 4]
        if not candidates:
            return []

        matrix = np.vstack([from_blob(r.embedding) for r in candidates])
        scores = cosine_similarities(embedding, matrix)
        order = np.argsort(-scores)

        results = []
        for idx in order[:count]:
            score = float(scores[idx])
            if score < threshold:
                break
            record = self._to_record(candidates[idx])
            record.similarity = score
            results.append(record)
        return results

    def get_stats(self) -> dict[str, Any]:
        return dict(self.stats)
