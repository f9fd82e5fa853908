"""Room-scoped goals with ordered objectives."""

import json
from typing import Optional

from loguru import logger
from sqlalchemy import delete, select

from ..db.database import STORE_ERRORS, Database
from ..db.models import Goal
from ..schemas import GoalRecord, GoalStatus, Objective


def _to_record(row: Goal) -> GoalRecord:
    try:
        objectives = json.loads(row.objectives or "[]")
    except ValueError:
        objectives = []
    return GoalRecord(
        id=row.id,
        room_id=row.room_id,
        user_id=row.user_id,
        name=row.name,
        status=GoalStatus(row.status),
        objectives=[Objective(**o) for o in objectives if isinstance(o, dict)],
    )


def format_goals(goals: list[GoalRecord]) -> str:
    """
    Render goals for the prompt.

    Example:
        Goal: Learn the user's name
        id: 5c2b...
        Objectives:
        - [x] Ask politely (DONE)
        - [ ] Remember it (IN PROGRESS)
    """
    blocks = []
    for goal in goals:
        lines = [f"Goal: {goal.name}", f"id: {goal.id}", "Objectives:"]
        for objective in goal.objectives:
            mark = "[x]" if objective.completed else "[ ]"
            state = "(DONE)" if objective.completed else "(IN PROGRESS)"
            lines.append(f"- {mark} {objective.description} {state}")
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


class GoalStore:
    def __init__(self, db: Database):
        self.db = db

    async def create_goal(self, goal: GoalRecord) -> bool:
        try:
            async with self.db.transaction() as s:
                s.add(Goal(
                    id=goal.id,
                    room_id=goal.room_id,
                    user_id=goal.user_id,
                    name=goal.name,
                    status=goal.status.value,
                    objectives=json.dumps([o.model_dump() for o in goal.objectives]),
                ))
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error creating goal '{goal.name}': {e}")
            return False

    async def get_goals(
        self,
        room_id: str,
        user_id: Optional[str] = None,
        only_in_progress: bool = True,
        count: int = 5,
    ) -> list[GoalRecord]:
        try:
            async with self.db.transaction() as s:
                stmt = select(Goal).where(Goal.room_id == room_id)
                if user_id:
                    stmt = stmt.where(Goal.user_id == user_id)
                if only_in_progress:
                    stmt = stmt.where(Goal.status == GoalStatus.IN_PROGRESS.value)
                stmt = stmt.order_by(Goal.created_at.desc()).limit(count)
                rows = (await s.scalars(stmt)).all()
            return [_to_record(r) for r in rows]
        except STORE_ERRORS as e:
            logger.error(f"Error getting goals of room {room_id}: {e}")
            return []

    async def get_goal_by_id(self, goal_id: str) -> Optional[GoalRecord]:
        try:
            async with self.db.transaction() as s:
                row = await s.get(Goal, goal_id)
                return _to_record(row) if row else None
        except STORE_ERRORS as e:
            logger.error(f"Error getting goal {goal_id}: {e}")
            return None

    async def update_goal(self, goal: GoalRecord) -> bool:
        try:
            async with self.db.transaction() as s:
                row = await s.get(Goal, goal.id)
                if row is None:
                    return False
                row.name = goal.name
                row.status = goal.status.value
                row.objectives = json.dumps([o.model_dump() for o in goal.objectives])
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error updating goal {goal.id}: {e}")
            return False

    async def remove_goal(self, goal_id: str) -> bool:
        try:
            async with self.db.transaction() as s:
                result = await s.execute(delete(Goal).where(Goal.id == goal_id))
            return result.rowcount > 0
        except STORE_ERRORS as e:
            logger.error(f"Error removing goal {goal_id}: {e}")
            return False

    async def remove_all_goals(self, room_id: str) -> bool:
        try:
            async with self.db.transaction() as s:
                await s.execute(delete(Goal).where(Goal.room_id == room_id))
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error removing goals of room {room_id}: {e}")
            return False
