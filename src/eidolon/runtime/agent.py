"""
Agent runtime: state composition, action dispatch and evaluation.

One AgentRuntime serves one character in one room-bound session. It owns
no durable state of its own; everything it knows is read through the
memory, goal, actor and knowledge stores it was wired with.
"""

import asyncio
import random
import uuid
from datetime import timedelta
from typing import Any, Iterable, Optional

from loguru import logger

from .. import config
from ..core.exceptions import InvalidModelProviderError, MissingDatabaseAdapterError
from ..core.tokens import DEFAULT_TOKEN_BUDGET, TokenBudget
from ..db.database import Database
from ..memory.actors import ActorDirectory, format_actors
from ..memory.embedding import Embedder, is_zero_vector
from ..memory.goals import GoalStore, format_goals
from ..memory.knowledge import KnowledgeBase
from ..memory.store import MemoryStore
from ..schemas import Actor, CharacterConfig, MemoryRecord
from ..services.llm import TextGenerator
from .formatting import (
    add_header,
    compose_action_examples,
    compose_context,
    format_action_names,
    format_actions,
    format_evaluator_examples,
    format_evaluator_names,
    format_evaluators,
    format_message_examples,
    format_messages,
    format_posts,
    parse_json_array_from_text,
)
from .matching import ActionMatcher, normalize_name
from .templates import EVALUATION_TEMPLATE, GOALS_HEADER
from .types import Action, Evaluator, ModelProviderName, Provider, ResponseCallback, State

RECENT_INTERACTIONS_LIMIT = 20
KNOWLEDGE_COUNT = 3
GOALS_COUNT = 10


def agent_id_for(character: CharacterConfig) -> str:
    """Character id when known, else a stable id derived from the name."""
    if character.id:
        return str(character.id)
    return str(uuid.uuid5(uuid.NAMESPACE_URL, character.name))


def _format_attachments(attachments: Iterable[dict[str, Any]]) -> str:
    return "\n".join(
        f"ID: {a.get('id')}\nName: {a.get('title')}\nURL: {a.get('url')}\n"
        f"Type: {a.get('source')}\nDescription: {a.get('description')}\nText: {a.get('text')}\n"
        for a in attachments if isinstance(a, dict)
    )


def _recent_attachments(message: MemoryRecord, recent: list[MemoryRecord]) -> list[dict[str, Any]]:
    """
    Attachments of the current message plus those of recent messages.

    Attachments older than one hour before the latest message carrying any
    are kept but their text is hidden.
    """
    attachments = list(message.content.get("attachments") or [])
    latest = next((m for m in recent if m.content.get("attachments")), None)
    if latest is None:
        return attachments

    cutoff = latest.created_at - timedelta(hours=1)
    collected = []
    for memory in reversed(recent):
        for attachment in memory.content.get("attachments") or []:
            if not isinstance(attachment, dict):
                continue
            if memory.created_at < cutoff:
                attachment = {**attachment, "text": "[Hidden]"}
            collected.append(attachment)
    return collected


class AgentRuntime:
    """
    Composes conversation state and dispatches behaviours for a character.

    Use `AgentRuntime.create(...)` to also run the identity bootstrap
    (agent account, room and participant rows).
    """

    def __init__(
        self,
        character: CharacterConfig,
        database: Optional[Database],
        *,
        text_generator: Optional[TextGenerator] = None,
        embedder: Optional[Embedder] = None,
        memory_store: Optional[MemoryStore] = None,
        secrets: Optional[dict[str, Any]] = None,
        conversation_length: int = config.CONVERSATION_LENGTH,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
        actions: Iterable[Action] = (),
        evaluators: Iterable[Evaluator] = (),
        providers: Iterable[Provider] = (),
        rng: Optional[random.Random] = None,
    ):
        if database is None:
            raise MissingDatabaseAdapterError()
        try:
            self.model_provider = ModelProviderName(character.model_provider)
        except ValueError:
            raise InvalidModelProviderError(character.model_provider) from None

        self.character = character
        self.database = database
        self.agent_id = agent_id_for(character)
        self.conversation_length = conversation_length
        self.token_budget = token_budget
        self.text_generator = text_generator
        self.embedder = embedder
        self.secrets: dict[str, Any] = dict(secrets or {})
        self.settings: dict[str, Any] = dict(character.settings or {})
        self.rng = rng or random.Random()

        self.message_manager = memory_store or MemoryStore(database, embedder=embedder)
        self.goal_manager = GoalStore(database)
        self.actor_directory = ActorDirectory(database)
        self.knowledge_manager = KnowledgeBase(self.message_manager, token_budget=token_budget)

        self.actions: list[Action] = []
        self.evaluators: list[Evaluator] = []
        self.providers: list[Provider] = []
        self._action_matcher: ActionMatcher[Action] = ActionMatcher()

        for action in actions:
            self.register_action(action)
        for evaluator in evaluators:
            self.register_evaluator(evaluator)
        for provider in providers:
            self.register_provider(provider)

    @classmethod
    async def create(cls, character: CharacterConfig, database: Optional[Database], **kwargs) -> "AgentRuntime":
        runtime = cls(character, database, **kwargs)
        await runtime.initialize()
        return runtime

    async def initialize(self) -> None:
        """Guarantee the agent's own account, room and participant rows."""
        await self.ensure_room_exists(self.agent_id)
        await self.ensure_user_exists(self.agent_id, self.character.name, self.character.name)
        await self.ensure_participant_in_room(self.agent_id, self.agent_id)
        logger.info(f"Agent runtime ready: {self.character.name} ({self.agent_id})")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_action(self, action: Action) -> None:
        logger.debug(f"{self.character.name}: registering action {action.name}")
        self.actions.append(action)
        self._action_matcher.register(action.name, action.similes, action)

    def register_evaluator(self, evaluator: Evaluator) -> None:
        self.evaluators.append(evaluator)

    def register_provider(self, provider: Provider) -> None:
        self.providers.append(provider)

    def get_setting(self, key: str) -> Any:
        if key in self.secrets and self.secrets[key] is not None:
            return self.secrets[key]
        return self.settings.get(key)

    def resolve_action(self, label: Optional[str]) -> Optional[Action]:
        return self._action_matcher.resolve(label)

    # ------------------------------------------------------------------
    # Identity bootstrap
    # ------------------------------------------------------------------

    async def ensure_room_exists(self, room_id: str) -> None:
        await self.message_manager.ensure_room_exists(room_id, self.agent_id)

    async def ensure_user_exists(
        self,
        user_id: str,
        user_name: Optional[str] = None,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> None:
        if await self.actor_directory.get_account_by_id(user_id) is not None:
            return
        created = await self.actor_directory.create_account(
            user_id,
            name=name or user_name or "Unknown User",
            username=user_name or name or "Unknown",
            email=email,
            details={"summary": ""},
        )
        if created:
            logger.debug(f"Account {user_id} ({user_name}) created")

    async def ensure_participant_in_room(self, user_id: str, room_id: str) -> None:
        participants = await self.actor_directory.get_participants_for_room(room_id)
        if user_id not in participants:
            await self.actor_directory.add_participant(user_id, room_id)
            logger.debug(f"{user_id} linked to room {room_id}")

    async def ensure_connection(
        self,
        user_id: str,
        room_id: str,
        user_name: Optional[str] = None,
        user_screen_name: Optional[str] = None,
    ) -> None:
        # sequential: each ensure is its own write transaction
        await self.ensure_user_exists(self.agent_id, self.character.name, self.character.name)
        await self.ensure_user_exists(
            user_id,
            user_name or f"User{user_id}",
            user_screen_name or f"User{user_id}",
        )
        await self.ensure_room_exists(room_id)
        await self.ensure_participant_in_room(user_id, room_id)
        await self.ensure_participant_in_room(self.agent_id, room_id)

    # ------------------------------------------------------------------
    # State composition
    # ------------------------------------------------------------------

    async def _get_knowledge(self, message: MemoryRecord) -> list[str]:
        if self.embedder is None or not message.text:
            return []
        embedding = await self.embedder.embed(message.text)
        if is_zero_vector(embedding):
            return []
        fragments = await self.knowledge_manager.search(self.agent_id, embedding, count=KNOWLEDGE_COUNT)
        return [f.text for f in fragments]

    async def _get_recent_interactions(self, user_id: str, room_id: str) -> list[MemoryRecord]:
        rooms = await self.actor_directory.get_rooms_for_participants([user_id, self.agent_id])
        other_rooms = [r for r in rooms if r != room_id]
        memories = await self.message_manager.get_memories_by_room_ids(
            self.agent_id, other_rooms, count=RECENT_INTERACTIONS_LIMIT
        )
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return memories[:RECENT_INTERACTIONS_LIMIT]

    async def _format_interactions(self, interactions: list[MemoryRecord]) -> str:
        names: dict[str, str] = {}
        for memory in interactions:
            if memory.user_id and memory.user_id != self.agent_id and memory.user_id not in names:
                account = await self.actor_directory.get_account_by_id(memory.user_id)
                names[memory.user_id] = account.username if account and account.username else "unknown"

        lines = []
        for memory in interactions:
            if memory.user_id == self.agent_id:
                sender = self.character.name
            elif memory.user_id:
                sender = names.get(memory.user_id, "unknown")
            else:
                sender = memory.user_name or "unknown"
            lines.append(f"{sender}: {memory.text}")
        return "\n".join(lines)

    def _sample(self, items: list[Any], k: int) -> list[Any]:
        if not items:
            return []
        return self.rng.sample(items, min(k, len(items)))

    def _topics_sentence(self) -> str:
        topics = self._sample(self.character.topics, 5)
        if not topics:
            return ""
        if len(topics) == 1:
            listed = topics[0]
        else:
            listed = ", ".join(topics[:-1]) + " and " + topics[-1]
        return f"{self.character.name} is interested in {listed}"

    def _directions(self, category: str) -> str:
        style = self.character.style
        lines = list(style.all) + list(getattr(style, category))
        if not lines:
            return ""
        label = "Message" if category == "chat" else "Post"
        return add_header(f"# {label} Directions for {self.character.name}", "\n".join(lines))

    async def compose_state(
        self,
        message: MemoryRecord,
        additional_keys: Optional[dict[str, Any]] = None,
    ) -> State:
        """
        Gather everything a prompt may need about the current exchange.

        Reads only; calling it twice for the same message is harmless.
        """
        user_id = message.user_id
        room_id = message.room_id
        want_interactions = bool(user_id) and user_id != self.agent_id

        async def _no_interactions() -> list[MemoryRecord]:
            return []

        actors_data, recent_messages_data, goals_data, knowledge, interactions = await asyncio.gather(
            self.actor_directory.get_actor_details(room_id),
            self.message_manager.get_memories(
                room_id,
                count=self.conversation_length,
                type="message",
                unique=False,
                agent_id=self.agent_id,
            ),
            self.goal_manager.get_goals(room_id, only_in_progress=False, count=GOALS_COUNT),
            self._get_knowledge(message),
            self._get_recent_interactions(user_id, room_id) if want_interactions else _no_interactions(),
        )

        sender = next((a for a in actors_data if a.id == user_id), None)
        agent_actor = next((a for a in actors_data if a.id == self.agent_id), None)
        agent_name = agent_actor.name if agent_actor else self.character.name

        goals = format_goals(goals_data)
        actors = format_actors(actors_data)
        recent_messages = format_messages(recent_messages_data, actors_data)
        recent_posts = format_posts(recent_messages_data, actors_data, conversation_header=False)
        attachments = _format_attachments(_recent_attachments(message, recent_messages_data))

        formatted_interactions = await self._format_interactions(interactions)

        bio = self.character.bio
        if isinstance(bio, list):
            bio = " ".join(self._sample(bio, 3))

        post_examples = "\n".join(self._sample(self.character.post_examples, 50))
        message_examples = format_message_examples(
            self._sample(self.character.message_examples, 5), self.rng
        )

        state: State = {
            "agentId": self.agent_id,
            "agentName": agent_name,
            "senderName": sender.name if sender else message.user_name,
            "roomId": room_id,
            "bio": bio or "",
            "lore": "\n".join(self._sample(self.character.lore, 10)),
            "adjective": self.rng.choice(self.character.adjectives) if self.character.adjectives else "",
            "topic": self.rng.choice(self.character.topics) if self.character.topics else "",
            "topics": self._topics_sentence(),
            "knowledge": "\n".join(f"- {k}" for k in knowledge),
            "knowledgeData": knowledge,
            "recentMessageInteractions": formatted_interactions,
            "recentInteractions": formatted_interactions,
            "recentPostInteractions": format_posts(interactions, actors_data, conversation_header=True),
            "recentInteractionsData": interactions,
            "characterPostExamples": add_header(
                f"# Example Posts for {self.character.name}", post_examples
            ) if post_examples.replace("\n", "") else "",
            "characterMessageExamples": add_header(
                f"# Example Conversations for {self.character.name}", message_examples
            ) if message_examples.replace("\n", "") else "",
            "messageDirections": self._directions("chat"),
            "postDirections": self._directions("post"),
            "actors": add_header("# Actors", actors),
            "actorsData": actors_data,
            "goals": add_header(compose_context({"agentName": agent_name}, GOALS_HEADER), goals),
            "goalsData": goals_data,
            "recentMessages": add_header("# Conversation Messages", recent_messages),
            "recentPosts": add_header("# Posts in Thread", recent_posts),
            "recentMessagesData": recent_messages_data,
            "attachments": add_header("# Attachments", attachments),
        }
        if additional_keys:
            state.update(additional_keys)

        actions_data, evaluators_data, providers = await asyncio.gather(
            self._validated(self.actions, message, state),
            self._validated(self.evaluators, message, state),
            self._provider_text(message, state),
        )

        state.update({
            "actionNames": "Possible response actions: " + format_action_names(actions_data, self.rng),
            "actions": add_header("# Available Actions", format_actions(actions_data, self.rng)) if actions_data else "",
            "actionExamples": add_header(
                "# Action Examples", compose_action_examples(actions_data, 10, self.rng)
            ) if actions_data else "",
            "actionsData": actions_data,
            "evaluatorsData": evaluators_data,
            "evaluators": format_evaluators(evaluators_data) if evaluators_data else "",
            "evaluatorNames": format_evaluator_names(evaluators_data) if evaluators_data else "",
            "evaluatorExamples": format_evaluator_examples(evaluators_data, self.rng) if evaluators_data else "",
            "providers": add_header(
                f"# Additional Information About {self.character.name} and The World", providers
            ),
        })
        return state

    async def _validated(self, behaviours: list[Any], message: MemoryRecord, state: State) -> list[Any]:
        results = await asyncio.gather(
            *(b.validate(self, message, state) for b in behaviours),
            return_exceptions=True,
        )
        passed = []
        for behaviour, result in zip(behaviours, results):
            if isinstance(result, Exception):
                logger.warning(f"validate() of {behaviour.name} failed: {result}")
            elif result:
                passed.append(behaviour)
        return passed

    async def _provider_text(self, message: MemoryRecord, state: State) -> str:
        results = await asyncio.gather(
            *(p.get(self, message, state) for p in self.providers),
            return_exceptions=True,
        )
        texts = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, Exception):
                logger.warning(f"Provider {provider.name} failed: {result}")
            elif result:
                texts.append(str(result))
        return "\n".join(texts)

    async def update_recent_message_state(self, state: State) -> State:
        recent = await self.message_manager.get_memories(
            state["roomId"],
            count=self.conversation_length,
            type="message",
            unique=False,
            agent_id=self.agent_id,
        )
        actors: list[Actor] = state.get("actorsData") or []
        return {
            **state,
            "recentMessages": add_header("# Conversation Messages", format_messages(recent, actors)),
            "recentMessagesData": recent,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process_actions(
        self,
        message: MemoryRecord,
        responses: list[MemoryRecord],
        state: Optional[State] = None,
        callback: Optional[ResponseCallback] = None,
    ) -> Any:
        """
        Run the action named by the first response.

        An unmatched or missing action name ends the turn quietly; the
        handler's return value is passed through.
        """
        if not responses or not responses[0].content.get("action"):
            logger.warning("No action found in the response content")
            return None

        label = responses[0].content["action"]
        action = self.resolve_action(label)
        if action is None:
            logger.info(f"No action matched '{label}'")
            return None

        logger.debug(f"Executing handler for action {action.name} (label '{label}')")
        return await action.handler(self, message, state, {}, callback)

    async def evaluate(
        self,
        message: MemoryRecord,
        state: Optional[State] = None,
        did_respond: bool = False,
    ) -> list[str]:
        """
        Run the evaluators the model deems applicable.

        Candidates are those passing `validate` (only `always_run` ones when
        nothing was said). One small-model call picks among them.
        """
        state = state or {}
        candidates = [e for e in self.evaluators if e.handler and (did_respond or e.always_run)]
        candidates = await self._validated(candidates, message, state)
        if not candidates:
            return []
        if self.text_generator is None:
            logger.warning("Evaluation skipped: no text generator configured")
            return []

        context = compose_context(
            {
                **state,
                "evaluators": format_evaluators(candidates),
                "evaluatorNames": format_evaluator_names(candidates),
                "evaluatorExamples": format_evaluator_examples(candidates, self.rng),
            },
            self.character.settings.get("evaluation_template") or EVALUATION_TEMPLATE,
        )
        text = await self.text_generator.generate_text(
            context,
            api_key=self.get_setting(self.model_provider.value),
            model_class="small",
            token_budget=self.token_budget,
        )
        selected = parse_json_array_from_text(text) or []
        wanted = {normalize_name(str(name)) for name in selected}

        chosen = [e for e in candidates if normalize_name(e.name) in wanted]
        for evaluator in chosen:
            try:
                await evaluator.handler(self, message, state, {}, None)
            except Exception as e:
                logger.error(f"Evaluator {evaluator.name} failed: {e}")
        return [e.name for e in chosen]
