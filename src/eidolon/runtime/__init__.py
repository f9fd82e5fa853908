"""Agent runtime: state composition and behaviour dispatch."""

from .actions import BUILTIN_ACTIONS, RESPOND_ACTION
from .agent import AgentRuntime
from .matching import ActionMatcher, normalize_name
from .types import Action, ActionExample, Evaluator, EvaluatorExample, ModelProviderName, Provider

__all__ = [
    "Action",
    "ActionExample",
    "ActionMatcher",
    "AgentRuntime",
    "BUILTIN_ACTIONS",
    "Evaluator",
    "EvaluatorExample",
    "ModelProviderName",
    "Provider",
    "RESPOND_ACTION",
    "normalize_name",
]
