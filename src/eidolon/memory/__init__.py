"""Memory, goals, actors and knowledge stores."""

from .actors import ActorDirectory
from .embedding import CachedEmbedder, HttpEmbeddingClient
from .goals import GoalStore
from .knowledge import KnowledgeBase
from .store import MemoryStore

__all__ = [
    "ActorDirectory",
    "CachedEmbedder",
    "GoalStore",
    "HttpEmbeddingClient",
    "KnowledgeBase",
    "MemoryStore",
]
