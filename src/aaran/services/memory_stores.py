"""Pluggable persistence for user profiles and conversation turns.

Every backend implements ``ConversationStore``; the memory layer never needs
to know which one is active.

- ``InMemoryConversationStore``  – process-local dicts (tests, demos)
- ``JsonFileConversationStore``  – one JSON file per user, like browser localStorage
- ``RedisConversationStore``     – shared key-value store via redis-py
- ``VectorConversationStore``    – wraps any of the above and indexes turns in
  Weaviate with OpenAI embeddings for nearest-neighbour recall

``build_conversation_store()`` picks the richest backend the environment
configures and falls back (with a warning) when one cannot connect.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from pathlib import Path
from typing import Any

import redis
import weaviate
import weaviate.classes.config as wc
from openai import OpenAI
from weaviate.auth import AuthApiKey
from weaviate.classes.query import Filter, MetadataQuery

from ..config.settings import (
    EMBEDDING_MODEL, MEMORY_COLLECTION, OPENAI_API_KEY, OPENAI_BASE_URL,
    PROFILE_DIR, REDIS_URL, SHORT_TERM_MEMORY, TURN_RETENTION_SECONDS,
    WEAVIATE_API_KEY, WEAVIATE_HTTP_HOST,
)

logger = logging.getLogger(__name__)

PROFILE_KEY = "aaran-profile-{user_id}"
TURNS_KEY = "aaran-turns-{user_id}"


class ConversationStore(ABC):
    """Read/write user profiles and append conversation turns."""

    supports_similarity = False

    @abstractmethod
    def load_profile(self, user_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def save_profile(self, user_id: str, profile: dict[str, Any]) -> None: ...

    @abstractmethod
    def append_turn(self, user_id: str, turn: dict[str, Any]) -> None: ...

    @abstractmethod
    def recent_turns(self, user_id: str, limit: int) -> list[dict[str, Any]]: ...

    def find_similar(
        self, user_id: str, text: str, limit: int = 3,
    ) -> list[tuple[dict[str, Any], float]]:
        """Nearest past turns as ``(turn, similarity)``; empty unless supported."""
        return []


# ── In-memory ───────────────────────────────────────────────────────────

class InMemoryConversationStore(ConversationStore):

    def __init__(self, max_turns: int = SHORT_TERM_MEMORY):
        self._profiles: dict[str, dict[str, Any]] = {}
        self._turns: dict[str, deque[dict[str, Any]]] = defaultdict(lambda: deque(maxlen=max_turns))

    def load_profile(self, user_id):
        profile = self._profiles.get(user_id)
        return json.loads(json.dumps(profile)) if profile is not None else None

    def save_profile(self, user_id, profile):
        self._profiles[user_id] = json.loads(json.dumps(profile))

    def append_turn(self, user_id, turn):
        self._turns[user_id].append(dict(turn))

    def recent_turns(self, user_id, limit):
        return list(self._turns[user_id])[-limit:] if limit > 0 else []


# ── JSON files ──────────────────────────────────────────────────────────

class JsonFileConversationStore(ConversationStore):
    """Stores ``aaran-profile-<user>.json`` and ``aaran-turns-<user>.json`` in a directory."""

    def __init__(self, directory: Path | str, max_turns: int = SHORT_TERM_MEMORY):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.max_turns = max_turns

    def _path(self, template: str, user_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in user_id)
        return self.directory / f"{template.format(user_id=safe)}.json"

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt store file %s: %s", path, exc)
            return None

    def load_profile(self, user_id):
        return self._read(self._path(PROFILE_KEY, user_id))

    def save_profile(self, user_id, profile):
        self._path(PROFILE_KEY, user_id).write_text(json.dumps(profile, indent=2), encoding="utf-8")

    def append_turn(self, user_id, turn):
        path = self._path(TURNS_KEY, user_id)
        turns = (self._read(path) or [])[-(self.max_turns - 1):] if self.max_turns > 1 else []
        turns.append(turn)
        path.write_text(json.dumps(turns), encoding="utf-8")

    def recent_turns(self, user_id, limit):
        turns = self._read(self._path(TURNS_KEY, user_id)) or []
        return turns[-limit:] if limit > 0 else []


# ── Redis ───────────────────────────────────────────────────────────────

class RedisConversationStore(ConversationStore):
    """Profiles as JSON strings, turns as a capped list that expires when idle."""

    def __init__(
        self,
        client: "redis.Redis",
        max_turns: int = SHORT_TERM_MEMORY,
        retention_seconds: int = TURN_RETENTION_SECONDS,
    ):
        self.client = client
        self.max_turns = max_turns
        self.retention_seconds = retention_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisConversationStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        client.ping()
        logger.info("Connected to Redis conversation store")
        return cls(client, **kwargs)

    def load_profile(self, user_id):
        raw = self.client.get(PROFILE_KEY.format(user_id=user_id))
        return json.loads(raw) if raw else None

    def save_profile(self, user_id, profile):
        self.client.set(PROFILE_KEY.format(user_id=user_id), json.dumps(profile))

    def append_turn(self, user_id, turn):
        key = TURNS_KEY.format(user_id=user_id)
        pipe = self.client.pipeline()
        pipe.rpush(key, json.dumps(turn))
        pipe.ltrim(key, -self.max_turns, -1)
        pipe.expire(key, self.retention_seconds)
        pipe.execute()

    def recent_turns(self, user_id, limit):
        if limit <= 0:
            return []
        raw = self.client.lrange(TURNS_KEY.format(user_id=user_id), -limit, -1)
        return [json.loads(item) for item in raw]


# ── Vector-augmented ────────────────────────────────────────────────────

def _get_weaviate_sync_client():
    """Create a synchronous Weaviate client from environment variables."""
    http_host = WEAVIATE_HTTP_HOST or "localhost"
    if http_host.endswith(".weaviate.cloud"):
        return weaviate.connect_to_weaviate_cloud(
            cluster_url=f"https://{http_host}",
            auth_credentials=AuthApiKey(WEAVIATE_API_KEY),
        )

    return weaviate.connect_to_custom(
        http_host=http_host,
        http_port=int(os.getenv("WEAVIATE_HTTP_PORT", "8080")),
        http_secure=os.getenv("WEAVIATE_HTTP_SECURE", "false").lower() == "true",
        grpc_host=os.getenv("WEAVIATE_GRPC_HOST", "localhost"),
        grpc_port=int(os.getenv("WEAVIATE_GRPC_PORT", "50051")),
        grpc_secure=os.getenv("WEAVIATE_GRPC_SECURE", "false").lower() == "true",
        auth_credentials=AuthApiKey(WEAVIATE_API_KEY),
    )


def _create_or_get_collection(client: Any, name: str) -> Any:
    if client.collections.exists(name):
        return client.collections.get(name)
    logger.info("Creating Weaviate collection '%s'", name)
    return client.collections.create(
        name,
        properties=[
            wc.Property(name="user_id", data_type=wc.DataType.TEXT, skip_vectorization=True),
            wc.Property(name="turn_id", data_type=wc.DataType.TEXT, skip_vectorization=True),
            wc.Property(name="user_input", data_type=wc.DataType.TEXT),
            wc.Property(name="intent", data_type=wc.DataType.TEXT, skip_vectorization=True),
            wc.Property(name="aaran_response", data_type=wc.DataType.TEXT, skip_vectorization=True),
            wc.Property(name="timestamp", data_type=wc.DataType.TEXT, skip_vectorization=True),
        ],
        vectorizer_config=wc.Configure.Vectorizer.none(),
    )


class OpenAIEmbedder:
    """Single-text embeddings through the OpenAI embeddings endpoint."""

    def __init__(self, client: OpenAI | None = None, model: str = EMBEDDING_MODEL):
        self.client = client or OpenAI(base_url=OPENAI_BASE_URL, api_key=OPENAI_API_KEY)
        self.model = model

    def embed(self, text: str) -> list[float]:
        response = self.client.embeddings.create(input=[text], model=self.model)
        return response.data[0].embedding


class VectorConversationStore(ConversationStore):
    """Delegates storage to ``base`` and mirrors each turn into a vector index."""

    supports_similarity = True

    def __init__(self, base: ConversationStore, collection: Any, embedder: OpenAIEmbedder):
        self.base = base
        self.collection = collection
        self.embedder = embedder

    @classmethod
    def connect(cls, base: ConversationStore) -> "VectorConversationStore":
        client = _get_weaviate_sync_client()
        collection = _create_or_get_collection(client, MEMORY_COLLECTION)
        logger.info("Vector memory enabled (collection=%s)", MEMORY_COLLECTION)
        return cls(base, collection, OpenAIEmbedder())

    def load_profile(self, user_id):
        return self.base.load_profile(user_id)

    def save_profile(self, user_id, profile):
        self.base.save_profile(user_id, profile)

    def recent_turns(self, user_id, limit):
        return self.base.recent_turns(user_id, limit)

    def append_turn(self, user_id, turn):
        self.base.append_turn(user_id, turn)
        try:
            vector = self.embedder.embed(f"{turn['intent']}: {turn['user_input']}")
            self.collection.data.insert(
                properties={
                    "user_id": user_id,
                    "turn_id": turn.get("id", ""),
                    "user_input": turn["user_input"],
                    "intent": turn["intent"],
                    "aaran_response": turn.get("aaran_response", ""),
                    "timestamp": turn.get("timestamp", ""),
                },
                vector=vector,
            )
        except Exception as exc:
            logger.warning("Vector indexing failed for turn %s: %s", turn.get("id"), exc)

    def find_similar(self, user_id, text, limit=3):
        try:
            vector = self.embedder.embed(text)
            response = self.collection.query.near_vector(
                near_vector=vector,
                limit=limit,
                filters=Filter.by_property("user_id").equal(user_id),
                return_metadata=MetadataQuery(distance=True),
            )
        except Exception as exc:
            logger.warning("Vector similarity search failed: %s", exc)
            return []

        matches = []
        for obj in response.objects:
            distance = obj.metadata.distance if obj.metadata.distance is not None else 1.0
            matches.append((dict(obj.properties), 1.0 - distance))
        return sorted(matches, key=lambda m: m[1], reverse=True)


# ── Factory ─────────────────────────────────────────────────────────────

def build_conversation_store() -> ConversationStore:
    """Pick a backend from configuration, falling back when one is unreachable."""
    store: ConversationStore | None = None

    if REDIS_URL:
        try:
            store = RedisConversationStore.from_url(REDIS_URL)
        except (redis.RedisError, OSError) as exc:
            logger.warning("Redis unavailable (%s) – falling back", exc)

    if store is None and PROFILE_DIR:
        store = JsonFileConversationStore(PROFILE_DIR)
        logger.info("Using JSON-file conversation store in %s", PROFILE_DIR)

    if store is None:
        store = InMemoryConversationStore()
        logger.info("Using in-memory conversation store")

    if WEAVIATE_HTTP_HOST and OPENAI_API_KEY:
        try:
            store = VectorConversationStore.connect(store)
        except Exception as exc:
            logger.warning("Vector memory unavailable (%s) – continuing without it", exc)

    return store
