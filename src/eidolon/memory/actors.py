"""Accounts, room participants and relationships."""

import json
from typing import Any, Optional, Sequence

from loguru import logger
from sqlalchemy import func, or_, select

from ..db.database import STORE_ERRORS, Database
from ..db.models import Account, Participant, Relationship
from ..schemas import Actor, RelationshipRecord


def _ordered_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


def format_actors(actors: Sequence[Actor]) -> str:
    lines = []
    for actor in actors:
        header = f"{actor.name}"
        summary = actor.details.get("summary") or actor.details.get("tagline")
        if summary:
            header += f": {summary}"
        lines.append(header)
    return "\n".join(lines)


class ActorDirectory:
    """Who is who, and who talks where."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account_by_id(self, user_id: str) -> Optional[Actor]:
        try:
            async with self.db.transaction() as s:
                row = await s.get(Account, user_id)
        except STORE_ERRORS as e:
            logger.error(f"Error getting account {user_id}: {e}")
            return None
        if row is None:
            return None
        return Actor(
            id=row.id,
            name=row.name,
            username=row.username,
            details=json.loads(row.details) if row.details else {},
        )

    async def create_account(
        self,
        user_id: str,
        name: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        try:
            async with self.db.transaction() as s:
                if await s.get(Account, user_id) is not None:
                    return True
                s.add(Account(
                    id=user_id,
                    name=name,
                    username=username or name,
                    email=email,
                    details=json.dumps(details or {}),
                ))
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error creating account {user_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def add_participant(self, user_id: str, room_id: str) -> bool:
        try:
            async with self.db.transaction() as s:
                existing = await s.scalar(
                    select(Participant).where(
                        Participant.user_id == user_id,
                        Participant.room_id == room_id,
                    )
                )
                if existing is None:
                    s.add(Participant(user_id=user_id, room_id=room_id))
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error adding participant {user_id} to room {room_id}: {e}")
            return False

    async def get_participants_for_room(self, room_id: str) -> list[str]:
        try:
            async with self.db.transaction() as s:
                rows = await s.scalars(
                    select(Participant.user_id)
                    .where(Participant.room_id == room_id)
                    .order_by(Participant.created_at)
                )
                return list(rows.all())
        except STORE_ERRORS as e:
            logger.error(f"Error getting participants of room {room_id}: {e}")
            return []

    async def get_participants_for_account(self, user_id: str) -> list[str]:
        try:
            async with self.db.transaction() as s:
                rows = await s.scalars(
                    select(Participant.room_id).where(Participant.user_id == user_id)
                )
                return list(rows.all())
        except STORE_ERRORS as e:
            logger.error(f"Error getting rooms of account {user_id}: {e}")
            return []

    async def get_rooms_for_participants(self, user_ids: Sequence[str]) -> list[str]:
        """Rooms in which every one of `user_ids` participates."""
        ids = sorted(set(u for u in user_ids if u))
        if not ids:
            return []
        try:
            async with self.db.transaction() as s:
                rows = await s.scalars(
                    select(Participant.room_id)
                    .where(Participant.user_id.in_(ids))
                    .group_by(Participant.room_id)
                    .having(func.count(func.distinct(Participant.user_id)) == len(ids))
                )
                return list(rows.all())
        except STORE_ERRORS as e:
            logger.error(f"Error getting shared rooms: {e}")
            return []

    async def get_actor_details(self, room_id: str) -> list[Actor]:
        user_ids = await self.get_participants_for_room(room_id)
        if not user_ids:
            return []
        try:
            async with self.db.transaction() as s:
                rows = (await s.scalars(select(Account).where(Account.id.in_(user_ids)))).all()
        except STORE_ERRORS as e:
            logger.error(f"Error getting actors of room {room_id}: {e}")
            return []
        by_id = {r.id: r for r in rows}
        actors = []
        for user_id in user_ids:
            row = by_id.get(user_id)
            if row is None:
                continue
            actors.append(Actor(
                id=row.id,
                name=row.name,
                username=row.username,
                details=json.loads(row.details) if row.details else {},
            ))
        return actors

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def create_relationship(self, user_a: str, user_b: str, status: str = "FRIENDS") -> bool:
        first, second = _ordered_pair(user_a, user_b)
        try:
            async with self.db.transaction() as s:
                existing = await s.scalar(
                    select(Relationship).where(
                        Relationship.user_a == first,
                        Relationship.user_b == second,
                    )
                )
                if existing is None:
                    s.add(Relationship(user_a=first, user_b=second, status=status))
                else:
                    existing.status = status
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error creating relationship {user_a}<->{user_b}: {e}")
            return False

    async def get_relationship(self, user_a: str, user_b: str) -> Optional[RelationshipRecord]:
        first, second = _ordered_pair(user_a, user_b)
        try:
            async with self.db.transaction() as s:
                row = await s.scalar(
                    select(Relationship).where(
                        Relationship.user_a == first,
                        Relationship.user_b == second,
                    )
                )
                return RelationshipRecord.model_validate(row) if row else None
        except STORE_ERRORS as e:
            logger.error(f"Error getting relationship {user_a}<->{user_b}: {e}")
            return None

    async def get_relationships(self, user_id: str) -> list[RelationshipRecord]:
        try:
            async with self.db.transaction() as s:
                rows = (await s.scalars(
                    select(Relationship).where(
                        or_(Relationship.user_a == user_id, Relationship.user_b == user_id)
                    )
                )).all()
                return [RelationshipRecord.model_validate(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error getting relationships of {user_id}: {e}")
            return []
