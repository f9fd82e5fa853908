"""Pytest configuration and shared fixtures."""

import asyncio
import hashlib
import random

import pytest

from eidolon.db.database import Database
from eidolon.registry import CharacterRegistry
from eidolon.schemas import CharacterConfig, ExampleMessage, StyleConfig
from eidolon.session.secrets import SecretVault

EMBEDDING_DIMENSION = 16


# ============================================================================
# Fake Collaborators
# ============================================================================

class FakeEmbedder:
    """Deterministic bag-of-words embedding: shared words -> similar vectors."""

    def __init__(self, dimension: int = EMBEDDING_DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for word in text.lower().split():
            digest = hashlib.md5(word.strip(".,!?").encode("utf-8")).digest()
            vector[digest[0] % self.dimension] += 1.0
        return vector


class FakeTextGenerator:
    """Records prompts; answers with canned text or raises `error`."""

    def __init__(self, reply: str = "Meow! Nice to meet you.", selection: str = "[]"):
        self.reply = reply
        self.selection = selection
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.chat_calls: list[dict] = []
        self.generate_calls: list[dict] = []

    async def chat(self, messages, **kwargs) -> str:
        self.chat_calls.append({"messages": messages, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    async def generate_text(self, context, **kwargs) -> str:
        self.generate_calls.append({"context": context, **kwargs})
        return self.selection


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite database with all tables created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'eidolon_test.db'}")
    await db.init()
    yield db
    await db.close()


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def vault():
    return SecretVault(master_key="test-master-key", strict=False)


@pytest.fixture
def rng():
    return random.Random(1234)


# ============================================================================
# Characters and Registry
# ============================================================================

@pytest.fixture
def pixel_config():
    """A small but fully populated character."""
    return CharacterConfig(
        name="Pixel",
        bio="A curious digital cat who lives in the browser.",
        lore=["Pixel was born in a pixel art contest.", "Pixel dislikes water."],
        topics=["retro games", "cats", "lasers"],
        style=StyleConfig(all=["short sentences"], chat=["playful"], post=["uses emoji"]),
        adjectives=["curious", "playful"],
        message_examples=[[
            ExampleMessage(user="{{user1}}", content={"text": "Hi Pixel!"}),
            ExampleMessage(user="Pixel", content={"text": "Meow, hello {{user1}}!"}),
        ]],
        post_examples=["Chasing the cursor again."],
        settings={"voice": "soft"},
    )


@pytest.fixture
def registry(database, text_generator, embedder, vault):
    return CharacterRegistry(
        database,
        text_generator=text_generator,
        embedder=embedder,
        vault=vault,
    )


@pytest.fixture
async def pixel(registry, pixel_config):
    """Pixel stored for author "author"."""
    return await registry.create_or_update_character("author", pixel_config)

