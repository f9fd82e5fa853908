"""Unit tests for token estimation, trimming and importance scoring."""

import pytest

from eidolon.core.tokens import DEFAULT_TOKEN_BUDGET, TokenBudget
from eidolon.memory.importance import build_metadata, content_to_string, importance_score


# ============================================================================
# Token Budget
# ============================================================================

def test_estimate_rounds_up():
    budget = TokenBudget()
    assert budget.estimate("") == 0
    assert budget.estimate(None) == 0
    assert budget.estimate("abc") == 1
    assert budget.estimate("abcde") == 2


def test_trim_leaves_short_text_alone():
    assert DEFAULT_TOKEN_BUDGET.trim("Hello there.", 100) == "Hello there."


def test_trim_prefers_sentence_boundary():
    """A period late enough in the cut ends the text."""
    text = "The cat sat on the mat. It purred loudly at everyone nearby"
    trimmed = DEFAULT_TOKEN_BUDGET.trim(text, 7)

    assert trimmed == "The cat sat on the mat."


def test_trim_falls_back_to_word_boundary():
    text = "alpha. beta gamma delta epsilon zeta eta theta"
    trimmed = DEFAULT_TOKEN_BUDGET.trim(text, 5)

    # the period is too early to keep most of the cut
    assert trimmed == "alpha. beta gamma"
    assert len(trimmed) <= 20


def test_trim_without_spaces_hard_cuts():
    assert DEFAULT_TOKEN_BUDGET.trim("x" * 100, 2) == "xxxxxxxx"


def test_trim_nonpositive_budget():
    assert DEFAULT_TOKEN_BUDGET.trim("anything", 0) == ""


# ============================================================================
# Importance
# ============================================================================

def test_importance_grows_with_content():
    short = importance_score({"text": "hi"})
    longer = importance_score({"text": "a considerably longer message with many distinct words in it"})

    assert 0.0 < short < longer <= 1.0


def test_importance_monotonic_in_length_for_fixed_vocabulary():
    """Repeating one word adds length but no new tokens; the score never drops."""
    scores = [importance_score({"text": "a " * n}) for n in range(2, 400, 7)]

    assert all(0.0 <= s <= 1.0 for s in scores)
    assert all(later >= earlier for earlier, later in zip(scores, scores[1:]))
    assert scores[-1] > scores[0]


def test_importance_saturates():
    huge = {"text": " ".join(f"word{i}" for i in range(2000))}
    assert importance_score(huge) == 1.0


def test_importance_of_plain_string():
    # 11 chars, 2 unique tokens: (0.11 + 0.2) / 100
    assert importance_score("hello world") == pytest.approx(0.0031)


def test_build_metadata():
    content = {"text": "hello"}
    metadata = build_metadata(content)
    serialized = content_to_string(content)

    assert metadata["content_type"] == "object"
    assert metadata["size"] == len(serialized)
    assert metadata["context"]["length"] == len(serialized)
    assert metadata["context"]["summary"] == serialized[:100] + "..."
    assert isinstance(metadata["context"]["timestamp"], int)
    assert build_metadata("plain")["content_type"] == "string"
