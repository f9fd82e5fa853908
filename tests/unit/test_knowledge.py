"""Unit tests for knowledge chunking and retrieval."""

from eidolon.memory.knowledge import FRAGMENT_TYPE, KnowledgeBase, split_chunks
from eidolon.memory.store import MemoryStore


def test_split_chunks_overlaps():
    """Consecutive chunks share trailing words of the previous chunk."""
    text = "one two three four five six seven eight"

    chunks = split_chunks(text, chunk_tokens=5, overlap_tokens=2)

    assert chunks == ["one two three four", "four five six seven", "seven eight"]


def test_split_chunks_edge_cases():
    assert split_chunks("") == []
    assert split_chunks("   ") == []
    assert split_chunks("short text") == ["short text"]
    # A word longer than a chunk still makes progress
    assert split_chunks("x" * 50 + " tail", chunk_tokens=2, overlap_tokens=1) == ["x" * 50, "tail"]


async def test_add_and_search_knowledge(database, embedder):
    store = MemoryStore(database, embedder=embedder)
    knowledge = KnowledgeBase(store)

    stored = await knowledge.add_knowledge("agent-1", "agent-1", "Pixel was born in a pixel art contest", source="lore")

    assert stored == 1
    query = await embedder.embed("Pixel was born in a pixel art contest")
    [fragment] = await knowledge.search("agent-1", query)
    assert fragment.type == FRAGMENT_TYPE
    assert fragment.content["source"] == "lore"
    assert await knowledge.search("agent-2", query) == []


async def test_add_knowledge_without_embedder(database):
    knowledge = KnowledgeBase(MemoryStore(database, embedder=None))

    assert await knowledge.add_knowledge("agent-1", "agent-1", "anything") == 0


async def test_zero_vectors_are_not_stored(database):
    class DeadEmbedder:
        dimension = 4

        async def embed(self, text):
            return [0.0] * 4

    store = MemoryStore(database, embedder=DeadEmbedder())
    knowledge = KnowledgeBase(store)

    assert await knowledge.add_knowledge("agent-1", "agent-1", "lost to the void") == 0
    assert await store.count_memories(agent_id="agent-1") == 0
