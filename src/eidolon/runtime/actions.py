"""Built-in actions."""

from typing import Any, Optional

from loguru import logger

from ..core.exceptions import LLMException, LLMTimeoutError, RetryExhaustedError
from ..schemas import MemoryRecord
from .templates import APOLOGY_TEXT
from .types import Action, ActionExample, ResponseCallback, State

HISTORY_MESSAGES = 10


def build_system_prompt(runtime, state: State) -> str:
    """Persona prompt: identity, traits, wallets, style and retrieved context."""
    character = runtime.character
    bio = character.bio if isinstance(character.bio, str) else " ".join(character.bio)
    parts = [f"You are {character.name}. {bio}".strip()]

    if character.adjectives:
        parts.append(f"Your personality traits: {', '.join(character.adjectives)}.")
    if character.wallets:
        wallets = ", ".join(f"{w.chain}: {w.address}" for w in character.wallets)
        parts.append(f"Your wallets: {wallets}.")

    style = list(character.style.all) + list(character.style.chat)
    if style:
        parts.append("Style guidelines:\n" + "\n".join(f"- {s}" for s in style))

    if state.get("knowledge"):
        parts.append(f"Relevant knowledge:\n{state['knowledge']}")
    if state.get("recentMessageInteractions"):
        parts.append(f"Recent interactions with this user:\n{state['recentMessageInteractions']}")
    return "\n\n".join(parts)


def build_history(runtime, state: State) -> list[dict[str, str]]:
    """Last few messages of the room, oldest first, as chat roles."""
    recent: list[MemoryRecord] = state.get("recentMessagesData") or []
    history = []
    for memory in reversed(recent[:HISTORY_MESSAGES]):
        if not memory.text:
            continue
        role = "assistant" if memory.user_id == runtime.agent_id else "user"
        history.append({"role": role, "content": memory.text})
    return history


async def respond_handler(
    runtime,
    message: MemoryRecord,
    state: Optional[State] = None,
    options: Optional[dict[str, Any]] = None,
    callback: Optional[ResponseCallback] = None,
) -> MemoryRecord:
    """Generate the character's reply to `message`."""
    state = state if state is not None else await runtime.compose_state(message)

    messages = [{"role": "system", "content": build_system_prompt(runtime, state)}]
    messages.extend(build_history(runtime, state))
    messages.append({"role": "user", "content": message.text})

    text = None
    if runtime.text_generator is None:
        logger.error(f"{runtime.character.name}: no text generator configured")
    else:
        try:
            text = await runtime.text_generator.chat(
                messages,
                api_key=runtime.get_setting(runtime.model_provider.value),
                model_class="large",
                max_tokens=150,
                temperature=0.7,
                presence_penalty=0.6,
                token_budget=runtime.token_budget,
            )
        except LLMTimeoutError:
            # timeouts fail the whole turn
            raise
        except (LLMException, RetryExhaustedError) as e:
            logger.error(f"{runtime.character.name}: response generation failed: {e}")

    if not text:
        text = APOLOGY_TEXT

    response = MemoryRecord(
        type="message",
        content={"text": text.strip(), "action": "RESPOND", "inReplyTo": message.id},
        user_id=runtime.agent_id,
        user_name=runtime.character.name,
        room_id=message.room_id,
        agent_id=runtime.agent_id,
    )
    if callback is not None:
        await callback([response])
    return response


RESPOND_ACTION = Action(
    name="RESPOND",
    description="Reply to the latest message in character.",
    handler=respond_handler,
    similes=["REPLY", "CHAT", "TALK", "SAY"],
    examples=[
        [
            ActionExample(user="{{user1}}", content={"text": "Hey, how are you?"}),
            ActionExample(user="{{user2}}", content={"text": "Doing well, thanks for asking!", "action": "RESPOND"}),
        ],
    ],
)

BUILTIN_ACTIONS = (RESPOND_ACTION,)
