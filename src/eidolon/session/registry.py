"""Process-local cache of active sessions, keyed by room."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from loguru import logger

from .. import config


@dataclass
class ActiveSession:
    """A live (room, session, runtime) binding rebuilt from durable rows."""
    room_id: str
    session_id: str
    character_id: str
    author: str
    slug: str
    runtime: Any
    created_at: float = field(default_factory=time.monotonic)
    last_active: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """
    Owned room -> ActiveSession map for one character registry.

    Never shared across registries. Entries are a derived view of the
    durable session rows and may be evicted at any time; eviction policy is
    an idle timeout checked by `evict_idle()`.
    """

    def __init__(
        self,
        idle_timeout: float = config.SESSION_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, ActiveSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._sessions

    def __iter__(self) -> Iterator[ActiveSession]:
        return iter(list(self._sessions.values()))

    def get(self, room_id: str) -> Optional[ActiveSession]:
        return self._sessions.get(room_id)

    def touch(self, room_id: str) -> None:
        entry = self._sessions.get(room_id)
        if entry is not None:
            entry.last_active = self._clock()

    def put(self, entry: ActiveSession) -> ActiveSession:
        """
        Cache `entry` unless the room already has a live session.

        Returns the authoritative entry: the one cached first wins when two
        rehydrations race for the same room.
        """
        existing = self._sessions.get(entry.room_id)
        if existing is not None and existing.runtime is not None:
            return existing
        entry.last_active = self._clock()
        self._sessions[entry.room_id] = entry
        return entry

    def replace(self, entry: ActiveSession) -> ActiveSession:
        """Cache `entry` unconditionally (a new session became current)."""
        entry.last_active = self._clock()
        self._sessions[entry.room_id] = entry
        return entry

    def evict(self, room_id: str) -> Optional[ActiveSession]:
        return self._sessions.pop(room_id, None)

    def evict_character(self, character_id: str) -> int:
        rooms = [e.room_id for e in self._sessions.values() if e.character_id == character_id]
        for room_id in rooms:
            del self._sessions[room_id]
        return len(rooms)

    def evict_idle(self, now: Optional[float] = None) -> list[str]:
        """Drop entries idle longer than `idle_timeout`; returns evicted room ids."""
        now = self._clock() if now is None else now
        idle = [
            room_id for room_id, entry in self._sessions.items()
            if now - entry.last_active > self.idle_timeout
        ]
        for room_id in idle:
            del self._sessions[room_id]
        if idle:
            logger.info(f"Evicted {len(idle)} idle sessions")
        return idle

    def rooms_for_character(self, character_id: str) -> list[str]:
        return [e.room_id for e in self._sessions.values() if e.character_id == character_id]
