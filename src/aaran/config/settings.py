"""Runtime configuration for the Aaran voice pipeline.

Every value can be overridden through the environment (or a ``.env`` file at
the project root).  Defaults reproduce the reference dashboard behaviour.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (3 levels up from this file)
load_dotenv(Path(__file__).resolve().parents[3] / ".env")


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


# ── Observability ───────────────────────────────────────────────────────
LANGFUSE_PUBLIC_KEY = os.getenv("LANGFUSE_PUBLIC_KEY", "")
LANGFUSE_SECRET_KEY = os.getenv("LANGFUSE_SECRET_KEY", "")
LANGFUSE_HOST = os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com")
LOG_LEVEL = os.getenv("AARAN_LOG_LEVEL", "INFO")

# ── OpenAI (embeddings for the vector memory store) ─────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
EMBEDDING_MODEL = os.getenv("AARAN_EMBEDDING_MODEL", "text-embedding-3-small")

# ── Storage backends ────────────────────────────────────────────────────
REDIS_URL = os.getenv("AARAN_REDIS_URL", "")
PROFILE_DIR = os.getenv("AARAN_PROFILE_DIR", "")
WEAVIATE_HTTP_HOST = os.getenv("WEAVIATE_HTTP_HOST", "")
WEAVIATE_API_KEY = os.getenv("WEAVIATE_API_KEY", "")
MEMORY_COLLECTION = os.getenv("AARAN_MEMORY_COLLECTION", "Aaran_conversation_turns")
TURN_RETENTION_SECONDS = _int("AARAN_TURN_RETENTION_SECONDS", 30 * 24 * 3600)

# ── Dashboard controller ────────────────────────────────────────────────
CONFIRMATION_TIMEOUT_SECONDS = _float("AARAN_CONFIRMATION_TIMEOUT_SECONDS", 5.0)
MAX_STATE_HISTORY = _int("AARAN_MAX_STATE_HISTORY", 50)

# ── Conversation context / memory caps ──────────────────────────────────
MAX_CONVERSATION_HISTORY = 10
MAX_RECENT_INTENTS = 5
SHORT_TERM_MEMORY = _int("AARAN_SHORT_TERM_MEMORY", 20)
LONG_TERM_HISTORY = _int("AARAN_LONG_TERM_HISTORY", 100)
MAX_FREQUENT_QUERIES = 50

# ── Session store ───────────────────────────────────────────────────────
SESSION_TTL_SECONDS = _float("AARAN_SESSION_TTL_SECONDS", 3600.0)
MAX_SESSIONS = _int("AARAN_MAX_SESSIONS", 1000)

# ── Thresholds ──────────────────────────────────────────────────────────
LOW_CONFIDENCE_THRESHOLD = 0.3       # below this the agent asks for clarification
KNOWLEDGE_CONFIDENCE_THRESHOLD = 0.5  # minimum KB confidence to quote an answer
KNOWLEDGE_CACHE_SIZE = _int("AARAN_KNOWLEDGE_CACHE_SIZE", 128)
