"""User profile models persisted by the conversation stores.

Profiles round-trip through plain JSON dicts (``to_dict`` / ``from_dict``) so
any key-value backend can hold them.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from .schemas import utc_now

RESPONSE_STYLES = ("brief", "detailed", "explanatory")
CONVERSATION_FLOWS = ("single_command", "continuous", "guided")
FINANCIAL_FOCI = ("revenue", "risk", "sustainability", "balanced")
DETAIL_LEVELS = ("basic", "intermediate", "advanced")


@dataclass
class UserPreferences:
    response_style: str = "detailed"
    favorite_metrics: list[str] = field(default_factory=lambda: ["revenue", "risk"])
    preferred_scenarios: list[str] = field(default_factory=lambda: ["current"])
    conversation_flow: str = "continuous"
    financial_focus: str = "balanced"
    detail_level: str = "intermediate"

    def is_valid(self) -> bool:
        return (
            self.response_style in RESPONSE_STYLES
            and self.conversation_flow in CONVERSATION_FLOWS
            and self.financial_focus in FINANCIAL_FOCI
            and self.detail_level in DETAIL_LEVELS
            and isinstance(self.favorite_metrics, list)
            and isinstance(self.preferred_scenarios, list)
        )


@dataclass
class PrivacySettings:
    enable_learning: bool = True
    retain_history: bool = True
    share_insights: bool = False


@dataclass
class LearningData:
    """Frequency counters keyed by query text, action tag and metric name."""

    frequent_queries: dict[str, int] = field(default_factory=dict)
    successful_actions: dict[str, int] = field(default_factory=dict)
    financial_interests: dict[str, int] = field(default_factory=dict)


@dataclass
class ConversationTurn:
    user_input: str
    intent: str
    aaran_response: str
    action_taken: str | None = None
    new_position: int | None = None
    new_scenario: str | None = None
    id: str = field(default_factory=lambda: f"turn-{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ConversationTurn":
        known = {k: raw[k] for k in cls.__dataclass_fields__ if k in raw}
        return cls(**known)


@dataclass
class UserProfile:
    id: str
    preferences: UserPreferences = field(default_factory=UserPreferences)
    interaction_history: list[ConversationTurn] = field(default_factory=list)
    learning_data: LearningData = field(default_factory=LearningData)
    privacy: PrivacySettings = field(default_factory=PrivacySettings)
    created_at: str = field(default_factory=utc_now)
    last_active: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "UserProfile":
        """Rebuild a profile from JSON; raises ``KeyError``/``TypeError`` on bad shape."""
        if not isinstance(raw.get("id"), str):
            raise TypeError("profile id must be a string")
        history = raw.get("interaction_history", [])
        if not isinstance(history, list):
            raise TypeError("interaction_history must be a list")
        return cls(
            id=raw["id"],
            preferences=UserPreferences(**raw["preferences"]),
            interaction_history=[ConversationTurn.from_dict(t) for t in history],
            learning_data=LearningData(**raw["learning_data"]),
            privacy=PrivacySettings(**raw["privacy"]),
            created_at=raw.get("created_at", utc_now()),
            last_active=raw.get("last_active", utc_now()),
        )
