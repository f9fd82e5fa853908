"""Importance scoring and metadata for memory content."""

import json
import time
from typing import Any


def content_to_string(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False, default=str)


def importance_score(content: Any) -> float:
    """
    Bounded relevance heuristic in [0, 1].

    Grows with serialized length and with the number of distinct
    lower-cased whitespace-separated tokens, then saturates at 1.0.
    """
    text = content_to_string(content)
    unique_tokens = len(set(text.lower().split()))
    score = (len(text) * 0.01 + unique_tokens * 0.1) / 100
    return max(0.0, min(score, 1.0))


def build_metadata(content: Any) -> dict[str, Any]:
    text = content_to_string(content)
    return {
        "content_type": "string" if isinstance(content, str) else "object",
        "size": len(text),
        "context": {
            "length": len(text),
            "timestamp": int(time.time() * 1000),
            "summary": text[:100] + "...",
        },
    }
