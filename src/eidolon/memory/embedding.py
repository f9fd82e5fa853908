"""Embedding service clients and vector helpers."""

import hashlib
from collections import OrderedDict
from typing import Optional, Protocol, Sequence

import httpx
import numpy as np
from loguru import logger

from .. import config
from ..core.tokens import DEFAULT_TOKEN_BUDGET, TokenBudget

MAX_EMBEDDING_INPUT_TOKENS = 8000


class Embedder(Protocol):
    """Text in, fixed-length vector out. Never raises."""

    dimension: int

    async def embed(self, text: str) -> list[float]:
        ...


def zero_vector(dimension: int) -> list[float]:
    return [0.0] * dimension


def is_zero_vector(vector: Optional[Sequence[float]]) -> bool:
    if vector is None or len(vector) == 0:
        return True
    return not np.any(np.asarray(vector, dtype=np.float32))


def to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def from_blob(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if not blob:
        return None
    return np.frombuffer(blob, dtype=np.float32)


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of `query` against each row of `matrix` (zero rows score 0)."""
    q = np.asarray(query, dtype=np.float32)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ q / denom, 0.0)
    return scores


class HttpEmbeddingClient:
    """
    OpenAI-compatible `/embeddings` client.

    Any failure (transport, status, malformed body, wrong size) is logged
    and answered with a zero vector, so callers never special-case a
    missing embedding.
    """

    def __init__(
        self,
        base_url: str = config.EMBEDDING_URL,
        model: str = config.EMBEDDING_MODEL,
        dimension: int = config.EMBEDDING_DIMENSION,
        api_key: Optional[str] = config.OPENAI_API_KEY,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimension = dimension
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._token_budget = token_budget

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            return zero_vector(self.dimension)

        payload = {
            "model": self.model,
            "input": self._token_budget.trim(text, MAX_EMBEDDING_INPUT_TOKENS),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}/embeddings"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            vector = response.json()["data"][0]["embedding"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Embedding failed, using zero vector: {e}")
            return zero_vector(self.dimension)

        if len(vector) != self.dimension:
            logger.warning(
                f"Embedding size {len(vector)} != expected {self.dimension}, using zero vector"
            )
            return zero_vector(self.dimension)
        return [float(v) for v in vector]


class CachedEmbedder:
    """Bounded LRU cache in front of another embedder."""

    def __init__(self, inner: Embedder, max_entries: int = 1024):
        self.inner = inner
        self.dimension = inner.dimension
        self.max_entries = max_entries
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    async def embed(self, text: str) -> list[float]:
        key = self._key(text)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.hits += 1
            return cached

        self.misses += 1
        vector = await self.inner.embed(text)
        # zero vectors mark failures and are never cached
        if not is_zero_vector(vector):
            self._cache[key] = vector
            if len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return vector
