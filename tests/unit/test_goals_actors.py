"""Unit tests for goals, accounts, participants and relationships."""

import pytest

from eidolon.memory.actors import ActorDirectory, format_actors
from eidolon.memory.goals import GoalStore, format_goals
from eidolon.schemas import Actor, GoalRecord, GoalStatus, Objective


@pytest.fixture
def goals(database):
    return GoalStore(database)


@pytest.fixture
def actors(database):
    return ActorDirectory(database)


# ============================================================================
# Goals
# ============================================================================

async def test_create_and_get_goals(goals):
    goal = GoalRecord(
        room_id="room-1",
        user_id="user-1",
        name="Learn the user's name",
        objectives=[Objective(description="Ask politely", completed=True), Objective(description="Remember it")],
    )
    assert await goals.create_goal(goal)

    [stored] = await goals.get_goals("room-1")
    assert stored.name == "Learn the user's name"
    assert stored.objectives[0].completed is True
    assert stored.objectives[1].description == "Remember it"


async def test_get_goals_filters_status_and_user(goals):
    await goals.create_goal(GoalRecord(room_id="room-1", user_id="u1", name="active"))
    await goals.create_goal(GoalRecord(room_id="room-1", user_id="u1", name="finished", status=GoalStatus.DONE))
    await goals.create_goal(GoalRecord(room_id="room-1", user_id="u2", name="someone else"))

    in_progress = await goals.get_goals("room-1", user_id="u1")
    everything = await goals.get_goals("room-1", only_in_progress=False, count=10)

    assert [g.name for g in in_progress] == ["active"]
    assert {g.name for g in everything} == {"active", "finished", "someone else"}


async def test_update_and_remove_goal(goals):
    goal = GoalRecord(room_id="room-1", name="draft")
    await goals.create_goal(goal)

    goal.status = GoalStatus.FAILED
    goal.name = "abandoned"
    assert await goals.update_goal(goal)
    stored = await goals.get_goal_by_id(goal.id)
    assert stored.status == GoalStatus.FAILED
    assert stored.name == "abandoned"

    assert await goals.remove_goal(goal.id)
    assert await goals.get_goal_by_id(goal.id) is None


async def test_remove_all_goals(goals):
    await goals.create_goal(GoalRecord(room_id="room-1", name="a"))
    await goals.create_goal(GoalRecord(room_id="room-1", name="b"))

    await goals.remove_all_goals("room-1")

    assert await goals.get_goals("room-1", only_in_progress=False) == []


def test_format_goals():
    goal = GoalRecord(
        id="g1",
        room_id="room-1",
        name="Befriend",
        objectives=[Objective(description="Say hi", completed=True), Objective(description="Share a game")],
    )

    assert format_goals([goal]) == (
        "Goal: Befriend\n"
        "id: g1\n"
        "Objectives:\n"
        "- [x] Say hi (DONE)\n"
        "- [ ] Share a game (IN PROGRESS)"
    )
    assert format_goals([]) == ""


# ============================================================================
# Accounts and Participants
# ============================================================================

async def test_create_account_is_idempotent(actors):
    assert await actors.create_account("user-1", "Alice", details={"summary": "likes cats"})
    assert await actors.create_account("user-1", "Someone Else")

    account = await actors.get_account_by_id("user-1")
    assert account.name == "Alice"
    assert account.username == "Alice"
    assert account.details == {"summary": "likes cats"}
    assert await actors.get_account_by_id("nobody") is None


async def test_participants(actors):
    await actors.add_participant("user-1", "room-1")
    await actors.add_participant("user-1", "room-1")
    await actors.add_participant("agent", "room-1")
    await actors.add_participant("user-1", "room-2")

    assert await actors.get_participants_for_room("room-1") == ["user-1", "agent"]
    assert set(await actors.get_participants_for_account("user-1")) == {"room-1", "room-2"}


async def test_rooms_for_participants(actors):
    """Only rooms shared by every listed user are returned."""
    await actors.add_participant("agent", "room-1")
    await actors.add_participant("user-1", "room-1")
    await actors.add_participant("agent", "room-2")
    await actors.add_participant("user-2", "room-2")

    assert await actors.get_rooms_for_participants(["agent", "user-1"]) == ["room-1"]
    assert set(await actors.get_rooms_for_participants(["agent"])) == {"room-1", "room-2"}
    assert await actors.get_rooms_for_participants([]) == []


async def test_actor_details_skip_unknown_accounts(actors):
    await actors.create_account("user-1", "Alice")
    await actors.add_participant("user-1", "room-1")
    await actors.add_participant("ghost", "room-1")

    details = await actors.get_actor_details("room-1")

    assert [a.name for a in details] == ["Alice"]


def test_format_actors():
    text = format_actors([
        Actor(id="1", name="Alice", details={"summary": "likes cats"}),
        Actor(id="2", name="Bob"),
    ])
    assert text == "Alice: likes cats\nBob"


# ============================================================================
# Relationships
# ============================================================================

async def test_relationship_is_undirected(actors):
    assert await actors.create_relationship("zed", "amy")

    forward = await actors.get_relationship("amy", "zed")
    backward = await actors.get_relationship("zed", "amy")

    assert forward is not None
    assert forward.id == backward.id
    assert (forward.user_a, forward.user_b) == ("amy", "zed")


async def test_relationship_status_update(actors):
    await actors.create_relationship("amy", "zed")
    await actors.create_relationship("zed", "amy", status="BLOCKED")

    [relationship] = await actors.get_relationships("amy")
    assert relationship.status == "BLOCKED"
    assert await actors.get_relationships("nobody") == []
