"""Turn stores' records into the labelled text blocks of a prompt."""

import json
import random
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from ..db.models import utcnow
from ..schemas import Actor, MemoryRecord
from .types import Action, ActionExample, Evaluator, State

# Stand-ins for {{user1}}..{{user5}} in examples
EXAMPLE_NAMES = (
    "Avery", "Blake", "Casey", "Dana", "Emery", "Finley", "Harper", "Jordan",
    "Kai", "Logan", "Morgan", "Quinn", "Riley", "Rowan", "Sage", "Taylor",
)

_PLACEHOLDER = re.compile(r"{{(\w+)}}")
_JSON_BLOCK = re.compile(r"```json\s*\n(.*?)\n?```", re.DOTALL)
_ARRAY = re.compile(r"\[.*?\]", re.DOTALL)
_QUOTED = re.compile(r"""['"]([^'"]+)['"]""")


def add_header(header: str, body: str) -> str:
    """Prefix `body` with `header`; an empty body yields an empty block."""
    if not body:
        return ""
    return f"{header}\n{body}\n" if header else f"{body}\n"


def compose_context(state: State, template: str) -> str:
    """Replace each {{key}} in `template` with state[key] (missing keys -> "")."""
    def _value(match: re.Match) -> str:
        value = state.get(match.group(1))
        return "" if value is None else str(value)
    return _PLACEHOLDER.sub(_value, template)


def format_timestamp(created_at: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    seconds = int(abs((now - created_at).total_seconds()))
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{days} day{'s' if days != 1 else ''} ago"


def _display_name(message: MemoryRecord, actors: Sequence[Actor]) -> str:
    for actor in actors:
        if message.user_id and actor.id == message.user_id:
            return actor.name
    return message.user_name or "Unknown User"


def _attachments_suffix(content: dict[str, Any]) -> str:
    attachments = content.get("attachments") or []
    if not attachments:
        return ""
    parts = [
        f"[{a.get('id')} - {a.get('title')} ({a.get('url')})]"
        for a in attachments if isinstance(a, dict)
    ]
    return f" (Attachments: {', '.join(parts)})"


def format_messages(
    messages: Sequence[MemoryRecord],
    actors: Sequence[Actor],
    now: Optional[datetime] = None,
) -> str:
    """
    Render memories (given newest first) oldest first, one per line:

        (5 minutes ago) [8f2c1] Alice: hello there (CHAT)
    """
    lines = []
    for message in reversed(list(messages)):
        content = message.content
        identity = message.user_id or message.user_name or "guest"
        action = content.get("action")
        line = (
            f"({format_timestamp(message.created_at, now)}) [{identity[-5:]}] "
            f"{_display_name(message, actors)}: {content.get('text', '')}"
            f"{_attachments_suffix(content)}"
        )
        if action and action != "null":
            line += f" ({action})"
        lines.append(line)
    return "\n".join(lines)


def format_posts(
    messages: Sequence[MemoryRecord],
    actors: Sequence[Actor],
    conversation_header: bool = True,
    now: Optional[datetime] = None,
) -> str:
    """Group by room, rooms with the latest activity first."""
    grouped: dict[str, list[MemoryRecord]] = defaultdict(list)
    for message in messages:
        grouped[message.room_id].append(message)
    for room_messages in grouped.values():
        room_messages.sort(key=lambda m: m.created_at)

    rooms = sorted(grouped.items(), key=lambda kv: kv[1][-1].created_at, reverse=True)
    blocks = []
    for room_id, room_messages in rooms:
        entries = []
        for message in room_messages:
            actor = next((a for a in actors if a.id == message.user_id), None)
            name = actor.name if actor else (message.user_name or "Unknown User")
            handle = actor.username if actor and actor.username else "unknown"
            entry = f"Name: {name} (@{handle})\nID: {message.id}"
            if message.content.get("inReplyTo"):
                entry += f"\nIn reply to: {message.content['inReplyTo']}"
            entry += (
                f"\nDate: {format_timestamp(message.created_at, now)}"
                f"\nText:\n{message.content.get('text', '')}"
            )
            entries.append(entry)
        header = f"Conversation: {room_id[-5:]}\n" if conversation_header else ""
        blocks.append(header + "\n\n".join(entries))
    return "\n\n".join(blocks)


def _fill_names(text: str, names: Sequence[str]) -> str:
    for i, name in enumerate(names):
        text = text.replace(f"{{{{user{i + 1}}}}}", name)
    return text


def _format_example_line(example: ActionExample, names: Sequence[str]) -> str:
    line = f"{example.user}: {example.content.get('text', '')}"
    if example.content.get("action"):
        line += f" ({example.content['action']})"
    return _fill_names(line, names)


def format_action_names(actions: Sequence[Action], rng: random.Random) -> str:
    shuffled = list(actions)
    rng.shuffle(shuffled)
    return ", ".join(a.name for a in shuffled)


def format_actions(actions: Sequence[Action], rng: random.Random) -> str:
    shuffled = list(actions)
    rng.shuffle(shuffled)
    return ",\n".join(f"{a.name}: {a.description}" for a in shuffled)


def compose_action_examples(actions: Sequence[Action], count: int, rng: random.Random) -> str:
    pool: list[list[ActionExample]] = []
    shuffled = list(actions)
    rng.shuffle(shuffled)
    for action in shuffled:
        examples = list(action.examples)
        rng.shuffle(examples)
        pool.extend(examples[:5])

    blocks = []
    for example in pool[:count]:
        names = rng.sample(EXAMPLE_NAMES, 5)
        blocks.append("\n" + "\n".join(_format_example_line(m, names) for m in example))
    return "\n".join(blocks)


def format_evaluator_names(evaluators: Sequence[Evaluator]) -> str:
    return ",\n".join(f"'{e.name}'" for e in evaluators)


def format_evaluators(evaluators: Sequence[Evaluator]) -> str:
    return ",\n".join(f"'{e.name}: {e.description}'" for e in evaluators)


def format_evaluator_examples(evaluators: Sequence[Evaluator], rng: random.Random) -> str:
    blocks = []
    for evaluator in evaluators:
        rendered = []
        for example in evaluator.examples:
            names = rng.sample(EXAMPLE_NAMES, 5)
            messages = "\n".join(_format_example_line(m, names) for m in example.messages)
            rendered.append(
                f"Context:\n{_fill_names(example.context, names)}\n\n"
                f"Messages:\n{messages}\n\n"
                f"Outcome:\n{_fill_names(example.outcome, names)}"
            )
        if rendered:
            blocks.append("\n\n".join(rendered))
    return "\n\n".join(blocks)


def format_message_examples(
    conversations: Iterable[Sequence[Any]],
    rng: random.Random,
) -> str:
    """Render example conversations with placeholder names filled in."""
    blocks = []
    for conversation in conversations:
        names = rng.sample(EXAMPLE_NAMES, 5)
        lines = []
        for message in conversation:
            user = message.user if hasattr(message, "user") else message.get("user", "")
            content = message.content if hasattr(message, "content") else message.get("content", {})
            lines.append(_fill_names(f"{user}: {content.get('text', '')}", names))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def parse_json_array_from_text(text: str) -> Optional[list[Any]]:
    """
    Extract a JSON array from model output.

    Tries a ```json fenced block, then the first bracketed span. Arrays of
    single-quoted strings (as the prompt's own example shows) are accepted.
    """
    if not text:
        return None
    match = _JSON_BLOCK.search(text)
    candidate = match.group(1) if match else None
    if candidate is None:
        array = _ARRAY.search(text)
        candidate = array.group(0) if array else None
    if candidate is None:
        return None

    try:
        data = json.loads(candidate)
    except ValueError:
        if candidate.strip().startswith("["):
            return _QUOTED.findall(candidate)
        return None
    return data if isinstance(data, list) else None


def parse_json_object_from_text(text: str) -> Optional[dict[str, Any]]:
    if not text:
        return None
    match = _JSON_BLOCK.search(text)
    candidate = match.group(1) if match else None
    if candidate is None:
        obj = re.search(r"{.*}", text, re.DOTALL)
        candidate = obj.group(0) if obj else None
    if candidate is None:
        return None
    try:
        data = json.loads(candidate)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
