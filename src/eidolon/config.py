"""Environment-driven settings.

Every value is read once at import time. Components take these as defaults
and accept explicit overrides in their constructors, so tests never need to
patch the environment.
"""

import os


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Durable store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/eidolon.db")
DB_FAILURE_THRESHOLD = _get_int("DB_FAILURE_THRESHOLD", 5)
DB_RESET_TIMEOUT = _get_float("DB_RESET_TIMEOUT", 30.0)
DB_HALF_OPEN_MAX_ATTEMPTS = _get_int("DB_HALF_OPEN_MAX_ATTEMPTS", 1)

# Sessions and nonces
NONCE_TTL_SECONDS = _get_int("NONCE_TTL_SECONDS", 300)
NONCE_MAX_REQUESTS = _get_int("NONCE_MAX_REQUESTS", 5)
SESSION_IDLE_TIMEOUT_SECONDS = _get_float("SESSION_IDLE_TIMEOUT_SECONDS", 1800.0)

# Runtime
CONVERSATION_LENGTH = _get_int("CONVERSATION_LENGTH", 32)
RESPONSE_TIMEOUT_SECONDS = _get_float("RESPONSE_TIMEOUT_SECONDS", 30.0)

# Memory thresholds (per agent)
MEMORY_WARN_THRESHOLD = _get_int("MEMORY_WARN_THRESHOLD", 10000)
MEMORY_CRITICAL_THRESHOLD = _get_int("MEMORY_CRITICAL_THRESHOLD", 50000)

# Language model service (OpenAI-compatible)
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").rstrip("/")
LLM_MODEL_SMALL = os.getenv("LLM_MODEL_SMALL", "gpt-4o-mini")
LLM_MODEL_LARGE = os.getenv("LLM_MODEL_LARGE", "gpt-4o")
LLM_TIMEOUT_SECONDS = _get_float("LLM_TIMEOUT_SECONDS", 25.0)
LLM_MAX_ATTEMPTS = _get_int("LLM_MAX_ATTEMPTS", 3)

# Embedding service
EMBEDDING_URL = os.getenv("EMBEDDING_URL", "https://api.openai.com/v1").rstrip("/")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSION = _get_int("EMBEDDING_DIMENSION", 1536)

# Secrets
CHARACTER_SALT = os.getenv("CHARACTER_SALT", "dev_salt_change_in_production")
SECRETS_STRICT = _get_bool("SECRETS_STRICT", False)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_in_production")
JWT_ALGORITHM = "HS256"

# Background jobs
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
