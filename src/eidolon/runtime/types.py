"""Pluggable behaviours and their call signatures."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from ..schemas import MemoryRecord

if TYPE_CHECKING:
    from .agent import AgentRuntime

State = dict[str, Any]

# Receives the response memories an action produced
ResponseCallback = Callable[[list[MemoryRecord]], Awaitable[Any]]

Validator = Callable[["AgentRuntime", MemoryRecord, Optional[State]], Awaitable[bool]]
Handler = Callable[
    ["AgentRuntime", MemoryRecord, Optional[State], Optional[dict[str, Any]], Optional[ResponseCallback]],
    Awaitable[Any],
]


class ModelProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROK = "grok"
    GROQ = "groq"
    LLAMACLOUD = "llama_cloud"
    LLAMALOCAL = "llama_local"
    GOOGLE = "google"
    CLAUDE_VERTEX = "claude_vertex"
    REDPILL = "redpill"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    HEURIST = "heurist"


async def always_valid(runtime, message, state=None) -> bool:
    return True


@dataclass
class ActionExample:
    user: str
    content: dict[str, Any]


@dataclass
class EvaluatorExample:
    context: str
    messages: list[ActionExample]
    outcome: str


@dataclass
class Action:
    """A behaviour the runtime can dispatch, addressed by name or simile."""
    name: str
    description: str
    handler: Handler
    similes: list[str] = field(default_factory=list)
    validate: Validator = always_valid
    examples: list[list[ActionExample]] = field(default_factory=list)


@dataclass
class Evaluator:
    """Post-turn analysis routine."""
    name: str
    description: str
    handler: Handler
    similes: list[str] = field(default_factory=list)
    validate: Validator = always_valid
    always_run: bool = False
    examples: list[EvaluatorExample] = field(default_factory=list)


@dataclass
class Provider:
    """Contributes a block of free text to the composed state."""
    get: Callable[["AgentRuntime", MemoryRecord, Optional[State]], Awaitable[str]]
    name: str = "provider"
