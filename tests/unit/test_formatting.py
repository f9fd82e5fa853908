"""Unit tests for prompt formatting helpers."""

import random
from datetime import datetime, timedelta

from eidolon.runtime.formatting import (
    EXAMPLE_NAMES,
    add_header,
    compose_action_examples,
    compose_context,
    format_action_names,
    format_evaluator_names,
    format_message_examples,
    format_messages,
    format_posts,
    format_timestamp,
    parse_json_array_from_text,
    parse_json_object_from_text,
)
from eidolon.runtime.types import Action, ActionExample, Evaluator
from eidolon.schemas import Actor, ExampleMessage, MemoryRecord

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def noop(*args, **kwargs):
    return None


def message(text, minutes_ago, user_id="user-12345", user_name="alice", room_id="room-1", **content):
    return MemoryRecord(
        content={"text": text, **content},
        user_id=user_id,
        user_name=user_name,
        room_id=room_id,
        agent_id="agent",
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


# ============================================================================
# Templates
# ============================================================================

def test_compose_context_replaces_placeholders():
    state = {"agentName": "Pixel", "bio": "A cat", "count": 3}
    template = "# About {{agentName}}\n{{bio}} ({{count}}) {{missing}}."

    assert compose_context(state, template) == "# About Pixel\nA cat (3) ."


def test_add_header():
    assert add_header("# Actors", "Alice") == "# Actors\nAlice\n"
    assert add_header("# Actors", "") == ""


def test_format_timestamp():
    assert format_timestamp(NOW - timedelta(seconds=30), NOW) == "just now"
    assert format_timestamp(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert format_timestamp(NOW - timedelta(minutes=5), NOW) == "5 minutes ago"
    assert format_timestamp(NOW - timedelta(hours=2), NOW) == "2 hours ago"
    assert format_timestamp(NOW - timedelta(days=1), NOW) == "1 day ago"


# ============================================================================
# Messages and Posts
# ============================================================================

def test_format_messages_oldest_first():
    """Memories arrive newest first and render oldest first."""
    newest = message("How are you?", 1, action="RESPOND")
    oldest = message("Hello", 10)
    actors = [Actor(id="user-12345", name="Alice")]

    text = format_messages([newest, oldest], actors, now=NOW)

    assert text.splitlines() == [
        "(10 minutes ago) [12345] Alice: Hello",
        "(1 minute ago) [12345] Alice: How are you? (RESPOND)",
    ]


def test_format_messages_falls_back_to_user_name_and_attachments():
    guest = message(
        "look",
        0,
        user_id=None,
        user_name="guest-abcdef12",
        attachments=[{"id": "a1", "title": "Cat", "url": "http://img"}],
    )

    text = format_messages([guest], [], now=NOW)

    assert text == "(just now) [def12] guest-abcdef12: look (Attachments: [a1 - Cat (http://img)])"


def test_format_posts_groups_rooms():
    posts = [
        message("older room post", 30, room_id="room-aaaaa"),
        message("newer room post", 5, room_id="room-bbbbb", inReplyTo="m-1"),
    ]
    actors = [Actor(id="user-12345", name="Alice", username="alice_c")]

    text = format_posts(posts, actors, now=NOW)

    assert text.index("Conversation: bbbbb") < text.index("Conversation: aaaaa")
    assert "Name: Alice (@alice_c)" in text
    assert "In reply to: m-1" in text
    assert "Conversation:" not in format_posts(posts, actors, conversation_header=False, now=NOW)


# ============================================================================
# Actions and Examples
# ============================================================================

def test_format_action_names_is_seeded():
    actions = [Action(name=n, description=n.lower(), handler=noop) for n in ("A", "B", "C", "D")]

    first = format_action_names(actions, random.Random(7))
    second = format_action_names(actions, random.Random(7))

    assert first == second
    assert sorted(first.split(", ")) == ["A", "B", "C", "D"]


def test_compose_action_examples_fills_names():
    action = Action(
        name="RESPOND",
        description="reply",
        handler=noop,
        examples=[[
            ActionExample(user="{{user1}}", content={"text": "hi"}),
            ActionExample(user="{{user2}}", content={"text": "hello {{user1}}", "action": "RESPOND"}),
        ]],
    )

    text = compose_action_examples([action], 5, random.Random(1))

    assert "{{user" not in text
    assert "(RESPOND)" in text
    assert any(name in text for name in EXAMPLE_NAMES)
    assert compose_action_examples([action], 0, random.Random(1)) == ""


def test_format_message_examples():
    conversation = [
        ExampleMessage(user="{{user1}}", content={"text": "Hi Pixel!"}),
        ExampleMessage(user="Pixel", content={"text": "Meow, hello {{user1}}!"}),
    ]

    text = format_message_examples([conversation], random.Random(3))
    first_line, second_line = text.splitlines()
    name = first_line.split(":")[0]

    assert name in EXAMPLE_NAMES
    assert second_line == f"Pixel: Meow, hello {name}!"


def test_format_evaluator_names():
    evaluators = [
        Evaluator(name="FACTS", description="extract facts", handler=noop),
        Evaluator(name="GOALS", description="track goals", handler=noop),
    ]
    assert format_evaluator_names(evaluators) == "'FACTS',\n'GOALS'"


# ============================================================================
# Parsing Model Output
# ============================================================================

def test_parse_json_array_variants():
    assert parse_json_array_from_text('```json\n["FACTS", "GOALS"]\n```') == ["FACTS", "GOALS"]
    assert parse_json_array_from_text('I pick ["FACTS"] today') == ["FACTS"]
    assert parse_json_array_from_text("['FACTS', 'GOALS']") == ["FACTS", "GOALS"]
    assert parse_json_array_from_text("no array here") is None
    assert parse_json_array_from_text("") is None


def test_parse_json_object():
    assert parse_json_object_from_text('result: {"user": "alice"}') == {"user": "alice"}
    assert parse_json_object_from_text("```json\n{\"a\": 1}\n```") == {"a": 1}
    assert parse_json_object_from_text("{broken") is None
