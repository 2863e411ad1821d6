"""Shared data models for the Aaran voice-command pipeline.

All models are plain dataclasses – no heavy framework dependency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .dashboard import ActionResult

MIN_POSITION = 1
MAX_POSITION = 24
DEFAULT_POSITION = 12
SCENARIOS = ("current", "optimistic", "pessimistic")
METRICS = ("revenue", "risk", "cashflow", "wages", "ratio", "sustainability")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def clamp_position(position: int) -> int:
    return max(MIN_POSITION, min(MAX_POSITION, position))


# ── Intent taxonomy ──────────────────────────────────────────────────────

class IntentType(str, Enum):
    POSITION_CHANGE = "POSITION_CHANGE"
    SCENARIO_CHANGE = "SCENARIO_CHANGE"
    FINANCIAL_QUERY = "FINANCIAL_QUERY"
    HELP_REQUEST = "HELP_REQUEST"
    GENERAL_CHAT = "GENERAL_CHAT"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class IntentParameters:
    """Sparse parameter bag extracted from one utterance."""

    position: int | None = None     # 1–24
    scenario: str | None = None     # one of SCENARIOS
    metric: str | None = None       # one of METRICS
    direction: str | None = None    # "up" | "down" | "to"
    comparison: bool = False


@dataclass(frozen=True)
class Intent:
    """Classification result for a single utterance.

    Immutable: context adjustments produce a new instance via
    ``dataclasses.replace``.
    """

    type: IntentType = IntentType.UNKNOWN
    confidence: float = 0.0
    parameters: IntentParameters = field(default_factory=IntentParameters)
    original_text: str = ""
    reasoning: str = ""

    def describe(self) -> str:
        """Readable one-line description, used in logs and traces."""
        p = self.parameters
        if self.type is IntentType.POSITION_CHANGE:
            text = "Position change"
            if p.position is not None:
                text += f" to {p.position}"
            if p.direction:
                text += f" ({p.direction})"
            return text
        if self.type is IntentType.SCENARIO_CHANGE:
            return "Scenario change" + (f" to {p.scenario}" if p.scenario else "")
        if self.type is IntentType.FINANCIAL_QUERY:
            text = "Financial query" + (f" about {p.metric}" if p.metric else "")
            return text + (" (comparison)" if p.comparison else "")
        if self.type is IntentType.HELP_REQUEST:
            return "Help request"
        if self.type is IntentType.GENERAL_CHAT:
            return "General conversation"
        return "Unknown intent"


@dataclass
class ClassificationContext:
    """Ephemeral input to the classifier, rebuilt on every turn."""

    current_position: int = DEFAULT_POSITION
    current_scenario: str = "current"
    recent_intents: list[Intent] = field(default_factory=list)
    conversation_history: list[str] = field(default_factory=list)


# ── Dashboard data ──────────────────────────────────────────────────────

@dataclass
class FinancialData:
    """Live figures computed by the dashboard; the pipeline treats them as opaque."""

    total_revenue: float = 0.0
    monthly_cash_flow: float = 0.0
    wage_ratio: float = 0.0
    risk_score: float = 0.0
    position_risk: str = "Medium"
    sustainability_days: float = 0.0


@dataclass
class DashboardSnapshot:
    """Cached view of the UI state; the UI remains the source of truth."""

    selected_position: int = DEFAULT_POSITION
    scenario: str = "current"
    last_revenue: float = 0.0
    last_risk_score: float = 0.0


# ── Conversation state ──────────────────────────────────────────────────

class ConversationFocus(str, Enum):
    POSITION_ANALYSIS = "position_analysis"
    SCENARIO_PLANNING = "scenario_planning"
    FINANCIAL_QUERY = "financial_query"
    HELP_REQUEST = "help_request"
    GENERAL_CHAT = "general_chat"

    @classmethod
    def for_intent(cls, intent_type: IntentType) -> "ConversationFocus":
        return {
            IntentType.POSITION_CHANGE: cls.POSITION_ANALYSIS,
            IntentType.SCENARIO_CHANGE: cls.SCENARIO_PLANNING,
            IntentType.FINANCIAL_QUERY: cls.FINANCIAL_QUERY,
            IntentType.HELP_REQUEST: cls.HELP_REQUEST,
        }.get(intent_type, cls.GENERAL_CHAT)


@dataclass(frozen=True)
class Idle:
    """No question is outstanding; the next turn is classified normally."""


@dataclass(frozen=True)
class AwaitingFollowup:
    """The previous reply asked a question about ``topic``.

    ``suggested_scenario`` is what an affirmative answer should switch to,
    when the question proposed one.
    """

    topic: IntentType
    suggested_scenario: str | None = None


ConversationState = Union[Idle, AwaitingFollowup]


@dataclass(frozen=True)
class FollowupQuestion:
    """A question appended to a reply and the state its answer is read against."""

    text: str
    topic: IntentType
    suggested_scenario: str | None = None

    def state(self) -> AwaitingFollowup:
        return AwaitingFollowup(self.topic, self.suggested_scenario)


@dataclass
class ConversationContext:
    """Per-session working state owned by the agent."""

    current_focus: ConversationFocus = ConversationFocus.POSITION_ANALYSIS
    dashboard_state: DashboardSnapshot = field(default_factory=DashboardSnapshot)
    conversation_history: list[str] = field(default_factory=list)   # max 10
    recent_intents: list[Intent] = field(default_factory=list)      # max 5
    user_intent: Intent | None = None
    last_action: str = ""          # diagnostic tag only, never used for control flow
    state: ConversationState = field(default_factory=Idle)
    timestamp: str = field(default_factory=utc_now)

    @property
    def expects_followup(self) -> bool:
        return isinstance(self.state, AwaitingFollowup)

    def remember(self, transcript: str, intent: Intent,
                 max_history: int, max_intents: int) -> None:
        """Append the turn to the bounded history lists."""
        self.conversation_history.append(transcript.lower())
        del self.conversation_history[:-max_history]
        self.recent_intents.append(intent)
        del self.recent_intents[:-max_intents]


# ── Knowledge base ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class KnowledgeEntry:
    """Static domain fact loaded from the knowledge data file."""

    id: str
    concept: str
    definition: str
    context: str                   # financial | dashboard | regulatory | case_study | general
    category: str
    related_terms: tuple[str, ...] = ()
    key_facts: tuple[str, ...] = ()
    examples: tuple[str, ...] = ()
    significance: str = "medium"   # high | medium | low

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "KnowledgeEntry":
        return cls(
            id=raw["id"],
            concept=raw["concept"],
            definition=raw["definition"],
            context=raw.get("context", "general"),
            category=raw.get("category", ""),
            related_terms=tuple(raw.get("related_terms", ())),
            key_facts=tuple(raw.get("key_facts", ())),
            examples=tuple(raw.get("examples", ())),
            significance=raw.get("significance", "medium"),
        )


@dataclass
class KnowledgeSearchResult:
    entry: KnowledgeEntry
    relevance_score: float
    match_type: str                # concept | definition | related_terms | key_facts | examples
    matched_text: str = ""


@dataclass
class KnowledgeResponse:
    """Answer assembled from the knowledge base for one query."""

    answer: str
    sources: list[KnowledgeEntry] = field(default_factory=list)
    confidence: float = 0.0
    suggestions: list[str] = field(default_factory=list)
    contextual_data: str | None = None
    top_match: str | None = None   # match type of the best-ranked entry


# ── Response generation ─────────────────────────────────────────────────

@dataclass
class ResponseContext:
    intent: Intent
    dashboard_data: FinancialData
    current_position: int = DEFAULT_POSITION
    scenario: str = "current"
    knowledge_results: list[KnowledgeEntry] = field(default_factory=list)
    knowledge_answer: str | None = None
    knowledge_match: str | None = None
    conversation_history: list[str] = field(default_factory=list)
    style: str = "conversational"


@dataclass
class GeneratedResponse:
    text: str
    confidence: float = 0.85
    style: str = "conversational"
    follow_up_questions: list[str] = field(default_factory=list)
    contextual_insights: list[str] = field(default_factory=list)
    data_points: list[str] = field(default_factory=list)


# ── Agent output ────────────────────────────────────────────────────────

@dataclass
class AgentResult:
    """What the transport layer receives for one voice turn."""

    response: str
    intent: Intent
    context: ConversationContext
    new_position: int | None = None
    new_scenario: str | None = None
    should_speak: bool = True
    action_result: ActionResult | None = None
