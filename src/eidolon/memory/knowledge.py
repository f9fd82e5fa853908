"""Knowledge fragments searchable by embedding."""

from typing import Optional, Sequence

from loguru import logger

from ..core.tokens import DEFAULT_TOKEN_BUDGET, TokenBudget
from ..schemas import MemoryRecord
from .embedding import is_zero_vector
from .store import MemoryStore

FRAGMENT_TYPE = "fragment"


def split_chunks(
    text: str,
    chunk_tokens: int = 512,
    overlap_tokens: int = 64,
    token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
) -> list[str]:
    """Split on word boundaries into overlapping chunks of about `chunk_tokens`."""
    words = text.split()
    if not words:
        return []

    chunk_chars = chunk_tokens * token_budget.chars_per_token
    overlap_chars = overlap_tokens * token_budget.chars_per_token

    chunks: list[str] = []
    start = 0
    while start < len(words):
        size = 0
        end = start
        while end < len(words) and (size == 0 or size + len(words[end]) + 1 <= chunk_chars):
            size += len(words[end]) + 1
            end += 1
        chunks.append(" ".join(words[start:end]))
        if end >= len(words):
            break

        # step back into the previous chunk for overlap, always moving forward
        back = end
        carried = 0
        while back > start + 1 and carried + len(words[back - 1]) + 1 <= overlap_chars:
            carried += len(words[back - 1]) + 1
            back -= 1
        start = back
    return chunks


class KnowledgeBase:
    """Agent knowledge stored as embedded "fragment" memories."""

    def __init__(self, store: MemoryStore, token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET):
        self.store = store
        self.token_budget = token_budget

    async def add_knowledge(self, agent_id: str, room_id: str, text: str, source: Optional[str] = None) -> int:
        """Chunk, embed and store `text`; returns the number of fragments stored."""
        if self.store.embedder is None:
            logger.warning("Knowledge ingestion skipped: no embedding service")
            return 0

        stored = 0
        for chunk in split_chunks(text, token_budget=self.token_budget):
            embedding = await self.store.embedder.embed(chunk)
            if is_zero_vector(embedding):
                continue
            fragment = MemoryRecord(
                type=FRAGMENT_TYPE,
                content={"text": chunk, "source": source} if source else {"text": chunk},
                room_id=room_id,
                agent_id=agent_id,
                user_id=agent_id,
                embedding=embedding,
            )
            if await self.store.create_memory(fragment):
                stored += 1
        return stored

    async def search(self, agent_id: str, embedding: Sequence[float], count: int = 3) -> list[MemoryRecord]:
        return await self.store.search_memories_by_embedding(
            embedding,
            agent_id=agent_id,
            type=FRAGMENT_TYPE,
            count=count,
        )
