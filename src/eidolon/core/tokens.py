"""Token estimation and prompt trimming.

A `TokenBudget` is handed to each generation call explicitly, so two
concurrent calls never share or overwrite each other's trimming strategy.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class TokenBudget:
    """Character-ratio token estimator (about four characters per token)."""

    chars_per_token: int = 4
    # A sentence break is only used when it keeps at least this share of the cut
    sentence_floor: float = 0.7

    def estimate(self, text: str | None) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def trim(self, text: str | None, max_tokens: int) -> str:
        """
        Cut `text` down to roughly `max_tokens`.

        Prefers ending on a sentence boundary, then on a word boundary.
        """
        if not text:
            return ""
        if max_tokens <= 0:
            return ""
        if self.estimate(text) <= max_tokens:
            return text

        target = max_tokens * self.chars_per_token
        cut = text[:target]

        last_period = cut.rfind(".")
        if last_period > target * self.sentence_floor:
            return cut[:last_period + 1]

        last_space = cut.rfind(" ")
        if last_space > 0:
            return cut[:last_space]
        return cut


DEFAULT_TOKEN_BUDGET = TokenBudget()
