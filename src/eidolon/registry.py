"""
Character registry: sessions, message turns and owner-checked memory access.

Each character is a single writer: every durable mutation for one
character runs under that character's asyncio.Lock, so two rooms of the
same character never interleave their nonce and memory writes. Different
characters proceed concurrently and share no mutable state.

The model call of a turn runs outside the lock, bounded by
RESPONSE_TIMEOUT_SECONDS.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID, uuid4

from loguru import logger

from . import config
from .characters.repository import CharacterRepository
from .core.exceptions import (
    CharacterNotFoundError,
    EidolonError,
    LLMTimeoutError,
    MemoryNotFoundError,
    MemoryWriteError,
    NonceRejectedError,
    ResourceNotFoundError,
    ResponseTimeoutError,
    SessionNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .core.security import verify_jwt_token
from .db.database import Database
from .db.models import CharacterSession, Room, utcnow
from .memory.embedding import Embedder
from .memory.store import MemoryStore
from .runtime.actions import BUILTIN_ACTIONS
from .runtime.agent import AgentRuntime
from .runtime.templates import APOLOGY_TEXT
from .schemas import CharacterConfig, MemoryCreate, MemoryRecord, MemoryUpdate
from .services.llm import TextGenerator
from .session.nonce import NonceManager
from .session.registry import ActiveSession, SessionRegistry
from .session.secrets import SecretVault

RuntimeFactory = Callable[[CharacterConfig, dict[str, Any]], Awaitable[AgentRuntime]]


def guest_name() -> str:
    return f"guest-{uuid4().hex[:8]}"


class CharacterRegistry:
    """
    Entry point for the HTTP layer and scheduled jobs.

    Owns its SessionRegistry; cached sessions are rebuilt from the session,
    character and secrets rows whenever they are missing.
    """

    def __init__(
        self,
        db: Database,
        *,
        text_generator: Optional[TextGenerator] = None,
        embedder: Optional[Embedder] = None,
        vault: Optional[SecretVault] = None,
        nonces: Optional[NonceManager] = None,
        sessions: Optional[SessionRegistry] = None,
        runtime_factory: Optional[RuntimeFactory] = None,
        response_timeout: float = config.RESPONSE_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.text_generator = text_generator
        self.embedder = embedder
        self.characters = CharacterRepository(db, vault)
        self.nonces = nonces or NonceManager(db)
        self.sessions = sessions or SessionRegistry()
        self.memory = MemoryStore(db, embedder=embedder)
        self.response_timeout = response_timeout
        self._runtime_factory = runtime_factory or self._default_runtime
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, character_id: str) -> asyncio.Lock:
        lock = self._locks.get(character_id)
        if lock is None:
            lock = self._locks[character_id] = asyncio.Lock()
        return lock

    async def _default_runtime(self, character: CharacterConfig, secrets: dict[str, Any]) -> AgentRuntime:
        return await AgentRuntime.create(
            character,
            self.db,
            text_generator=self.text_generator,
            embedder=self.embedder,
            secrets=secrets,
            actions=BUILTIN_ACTIONS,
        )

    async def _build_session(self, character: CharacterConfig, room_id: str, session_id: str) -> ActiveSession:
        secrets = await self.characters.get_character_secrets(character.id)
        runtime = await self._runtime_factory(character, secrets)
        return ActiveSession(
            room_id=room_id,
            session_id=session_id,
            character_id=character.id,
            author=character.author,
            slug=character.slug,
            runtime=runtime,
        )

    # ============================================================================
    # Characters
    # ============================================================================

    async def create_or_update_character(self, author: str, character: CharacterConfig) -> CharacterConfig:
        saved = await self.characters.upsert_character(author, character)
        # live sessions pick up the new definition
        for entry in list(self.sessions):
            if entry.character_id == saved.id:
                await self.initialize_session(entry.session_id, saved)
        return saved

    async def get_character(self, author: str, slug: str) -> Optional[CharacterConfig]:
        return await self.characters.get_character(author, slug)

    async def get_characters_by_author(self, author: str) -> list[CharacterConfig]:
        return await self.characters.get_characters_by_author(author)

    async def delete_character(self, author: str, slug: str) -> bool:
        """
        Raises:
            CharacterNotFoundError: no such character for `author`
        """
        character = await self.characters.get_character(author, slug)
        if character is None:
            raise CharacterNotFoundError(author, slug)
        async with self._lock_for(character.id):
            await self.characters.delete_character(author, slug)
            evicted = self.sessions.evict_character(character.id)
        self._locks.pop(character.id, None)
        logger.info(f"Deleted {author}/{slug}, evicted {evicted} cached sessions")
        return True

    # ============================================================================
    # Sessions
    # ============================================================================

    async def initialize_character_room(
        self,
        author: str,
        slug: str,
        room_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Open a new session of a character in a room.

        The room is created, or repointed at the new session when it
        exists. Returns {room_id, session_id, nonce, config}; config never
        carries secrets.

        Raises:
            CharacterNotFoundError: unknown (author, slug)
        """
        character = await self.characters.get_character(author, slug)
        if character is None:
            raise CharacterNotFoundError(author, slug)

        room_id = room_id or str(uuid4())
        session_id = str(uuid4())
        character_key = UUID(character.id)

        async with self._lock_for(character.id):
            async with self.db.transaction() as s:
                s.add(CharacterSession(id=session_id, character_id=character_key, room_id=room_id))
                room = await s.get(Room, room_id)
                if room is None:
                    s.add(Room(id=room_id, character_id=character_key, current_session_id=session_id))
                else:
                    room.current_session_id = session_id
                    room.character_id = room.character_id or character_key
                    room.last_active = utcnow()

            entry = await self._build_session(character, room_id, session_id)
            nonce = await self.nonces.create_nonce(room_id, session_id)
            self.sessions.replace(entry)

        logger.info(f"Session {session_id} opened for {author}/{slug} in room {room_id}")
        return {
            "room_id": room_id,
            "session_id": session_id,
            "nonce": nonce,
            "config": character.public_config(),
        }

    async def initialize_session(
        self,
        session_id: str,
        updated_character: Optional[CharacterConfig] = None,
    ) -> ActiveSession:
        """
        Return the live session, rehydrating it from durable rows if needed.

        Raises:
            SessionNotFoundError: no session row with this id
            ResourceNotFoundError: the session's character is gone
        """
        for entry in self.sessions:
            if entry.session_id == session_id and entry.runtime is not None:
                if updated_character is not None:
                    entry.runtime.character = updated_character
                    entry.runtime.settings = dict(updated_character.settings or {})
                self.sessions.touch(entry.room_id)
                return entry

        async with self.db.transaction() as s:
            row = await s.get(CharacterSession, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            character_id, room_id = str(row.character_id), row.room_id
            row.last_active = utcnow()

        character = updated_character or await self.characters.get_character_by_id(character_id)
        if character is None:
            raise ResourceNotFoundError("Character", character_id)

        entry = await self._build_session(character, room_id, session_id)
        existing = self.sessions.get(room_id)
        if existing is not None and existing.session_id != session_id:
            logger.debug(f"Room {room_id} switched from session {existing.session_id} to {session_id}")
            return self.sessions.replace(entry)
        logger.debug(f"Rehydrated session {session_id} (room {room_id})")
        return self.sessions.put(entry)

    async def evict_idle_sessions(self) -> list[str]:
        return self.sessions.evict_idle()

    async def cleanup_expired_nonces(self) -> bool:
        return await self.nonces.cleanup_expired_nonces()

    # ============================================================================
    # Messages
    # ============================================================================

    async def _respond(self, runtime: AgentRuntime, message: MemoryRecord) -> tuple[MemoryRecord, dict[str, Any]]:
        state = await runtime.compose_state(message)
        directive = MemoryRecord(
            content={"text": "", "action": "RESPOND"},
            user_id=runtime.agent_id,
            room_id=message.room_id,
            agent_id=runtime.agent_id,
        )
        response = await runtime.process_actions(message, [directive], state)
        if not isinstance(response, MemoryRecord):
            response = MemoryRecord(
                content={"text": APOLOGY_TEXT, "action": "RESPOND"},
                user_id=runtime.agent_id,
                user_name=runtime.character.name,
                room_id=message.room_id,
                agent_id=runtime.agent_id,
            )
        return response, state

    @staticmethod
    async def _require_session_row(s, session_id: str) -> None:
        if await s.get(CharacterSession, session_id) is None:
            raise SessionNotFoundError(session_id)

    async def send_message(
        self,
        session_id: str,
        message: str,
        nonce: Optional[str] = None,
        auth_token: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Run one conversation turn.

        The user and character memories are written together once the reply
        exists, and the next nonce is issued only after that write.

        Raises:
            ValidationError: empty message
            NonceRejectedError: wrong, expired or exhausted nonce; carries
                the nonce of the re-initialized session
            SessionNotFoundError: unknown session, or its character was
                deleted before the turn was stored
            ResponseTimeoutError: no reply within the response timeout, or
                the model service timed out
            MemoryWriteError: the turn could not be stored
        """
        if not message or not message.strip():
            raise ValidationError("Message text is required", field="message")

        caller = verify_jwt_token(auth_token) if auth_token else None
        active = await self.initialize_session(session_id)
        runtime: AgentRuntime = active.runtime
        lock = self._lock_for(active.character_id)

        async with lock:
            if nonce is not None and not await self.nonces.validate_nonce(session_id, nonce):
                self.sessions.evict(active.room_id)
                active = await self.initialize_session(session_id)
                fresh = await self.nonces.create_nonce(active.room_id, session_id)
                raise NonceRejectedError(session_id, fresh)
            if caller is not None:
                await runtime.ensure_connection(caller.sub, active.room_id, caller.name or caller.sub)

        user_memory = MemoryRecord(
            type="message",
            content={"text": message.strip(), "source": "direct"},
            user_id=caller.sub if caller else None,
            user_name=(caller.name or caller.sub) if caller else guest_name(),
            room_id=active.room_id,
            agent_id=runtime.agent_id,
        )

        try:
            response, state = await asyncio.wait_for(
                self._respond(runtime, user_memory),
                timeout=self.response_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Session {session_id}: no response within {self.response_timeout}s")
            raise ResponseTimeoutError(self.response_timeout) from None
        except LLMTimeoutError as e:
            logger.error(f"Session {session_id}: model timed out after {e.timeout_seconds}s")
            raise ResponseTimeoutError(e.timeout_seconds) from e

        # the character may be deleted while the model answers
        async with lock:
            async with self.db.transaction() as s:
                await self._require_session_row(s, session_id)
                for memory in (user_memory, response):
                    if not await runtime.message_manager.create_memory(memory, session=s):
                        raise MemoryWriteError(active.room_id, f"could not store memory {memory.id}")

        try:
            state = await runtime.update_recent_message_state(state)
            await runtime.evaluate(user_memory, state, did_respond=True)
        except EidolonError as e:
            logger.warning(f"Session {session_id}: evaluation skipped: {e}")

        async with lock:
            async with self.db.transaction() as s:
                await self._require_session_row(s, session_id)
            new_nonce = await self.nonces.create_nonce(active.room_id, session_id)
        self.sessions.touch(active.room_id)

        return {
            "text": response.text,
            "nonce": new_nonce,
            "session_id": session_id,
            "room_id": active.room_id,
        }

    # ============================================================================
    # Memories
    # ============================================================================

    async def _owned_character(self, author: str, slug: str) -> CharacterConfig:
        character = await self.characters.get_character(author, slug)
        if character is None:
            raise CharacterNotFoundError(author, slug)
        return character

    async def _owned_memory(self, author: str, memory_id: str) -> MemoryRecord:
        memory = await self.memory.get_memory_by_id(memory_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)
        owner = await self.characters.get_character_by_id(memory.agent_id)
        if owner is None or owner.author != author:
            raise UnauthorizedError(f"Memory {memory_id} does not belong to {author}")
        return memory

    async def create_memory(self, author: str, slug: str, memory: MemoryCreate) -> MemoryRecord:
        character = await self._owned_character(author, slug)
        record = MemoryRecord(
            type=memory.type,
            content=memory.content,
            user_id=memory.user_id,
            user_name=memory.user_name or "guest",
            room_id=memory.room_id or character.id,
            agent_id=character.id,
            is_unique=memory.is_unique,
        )
        async with self._lock_for(character.id):
            if not await self.memory.create_memory(record):
                raise MemoryWriteError(record.room_id, "store rejected the write")
        return record

    async def get_memories(
        self,
        author: str,
        slug: str,
        room_id: str,
        count: int = 10,
        type: Optional[str] = "message",
        unique: bool = True,
    ) -> list[MemoryRecord]:
        character = await self._owned_character(author, slug)
        return await self.memory.get_memories(room_id, count=count, type=type, unique=unique, agent_id=character.id)

    async def get_memories_by_room_ids(
        self,
        author: str,
        slug: str,
        room_ids: list[str],
        count: int = 5,
    ) -> list[MemoryRecord]:
        character = await self._owned_character(author, slug)
        return await self.memory.get_memories_by_room_ids(character.id, room_ids, count=count)

    async def delete_memory(self, author: str, memory_id: str) -> bool:
        memory = await self._owned_memory(author, memory_id)
        async with self._lock_for(memory.agent_id):
            if not await self.memory.delete_memory(memory_id):
                raise MemoryWriteError(memory.room_id, f"could not delete memory {memory_id}")
        return True

    async def update_memory(self, author: str, memory_id: str, changes: MemoryUpdate) -> MemoryRecord:
        """Apply a partial update; content keys are merged into the stored content."""
        memory = await self._owned_memory(author, memory_id)
        fields = changes.model_dump(exclude_none=True)
        if "content" in fields:
            fields["content"] = {**memory.content, **fields["content"]}
        if not fields:
            return memory
        async with self._lock_for(memory.agent_id):
            if not await self.memory.update_memory(memory_id, fields):
                raise MemoryWriteError(memory.room_id, f"could not update memory {memory_id}")
        updated = await self.memory.get_memory_by_id(memory_id)
        if updated is None:
            raise MemoryNotFoundError(memory_id)
        return updated

    async def find_memories(
        self,
        author: str,
        slug: str,
        query: str,
        user_id: Optional[str] = None,
        limit: int = 10,
    ) -> list[MemoryRecord]:
        character = await self._owned_character(author, slug)
        return await self.memory.find_memories(query, agent_id=character.id, user_id=user_id, limit=limit)

    async def list_memories_for_character(
        self,
        author: str,
        slug: str,
        type: Optional[str] = None,
        limit: int = 100,
    ) -> list[MemoryRecord]:
        character = await self._owned_character(author, slug)
        return await self.memory.get_all_memories_by_character(character.id, type=type, limit=limit)
