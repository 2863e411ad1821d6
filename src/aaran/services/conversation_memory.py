"""Conversation Memory – per-user preferences, learning and personalisation.

Backed by any ``ConversationStore``.  The memory keeps a short-term window of
recent turns for the classifier, a bounded long-term history on the profile
(only when the user allows history retention), and frequency counters used
to infer preferences.  Learning is skipped when the user's privacy
settings disable it.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import Counter
from dataclasses import asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from ..config.settings import LONG_TERM_HISTORY, MAX_FREQUENT_QUERIES, SHORT_TERM_MEMORY
from ..models.profile import ConversationTurn, PrivacySettings, UserPreferences, UserProfile
from ..models.schemas import FinancialData, FollowupQuestion, IntentType, utc_now
from .memory_stores import ConversationStore, InMemoryConversationStore
from .phrasing import has_followup, insert_before_question, make_brief

logger = logging.getLogger(__name__)

PROFILE_EXPORT_VERSION = "1.0"
SIMILARITY_THRESHOLD = 0.8
SIMILARITY_WINDOW = timedelta(hours=24)
EXPLANATORY_SENTENCE = "This helps you understand the financial implications better."
_TRACKED_METRICS = ("revenue", "risk", "cash", "sustainability", "wages")


def _millions(amount: float) -> str:
    return f"{amount / 1_000_000:.1f}"


class ConversationMemory:
    """Stateful memory for one user id."""

    def __init__(
        self,
        user_id: str = "default-user",
        store: ConversationStore | None = None,
        *,
        short_term_size: int = SHORT_TERM_MEMORY,
        long_term_size: int = LONG_TERM_HISTORY,
    ):
        self.user_id = user_id
        self.store = store or InMemoryConversationStore()
        self.short_term_size = short_term_size
        self.long_term_size = long_term_size

        self.profile = self._load_or_create_profile()
        self.short_term: list[ConversationTurn] = self._load_recent_turns()

        self.session_id = f"session-{uuid.uuid4().hex[:8]}"
        self.session_started = utc_now()
        self.session_turns = 0
        self.financial_insights: list[str] = []

    # ── learning ────────────────────────────────────────────────────────

    def learn_from_interaction(self, turn: ConversationTurn) -> None:
        """Record *turn* and update counters and inferred preferences.

        The session turn count always advances; everything else is skipped
        when learning is disabled.
        """
        self.session_turns += 1
        if not self.profile.privacy.enable_learning:
            return

        self.short_term.append(turn)
        del self.short_term[:-self.short_term_size]

        if self.profile.privacy.retain_history:
            self.profile.interaction_history.append(turn)
            del self.profile.interaction_history[:-self.long_term_size]

        self._update_learning_data(turn)
        self._update_preferences(turn)
        self.profile.last_active = utc_now()

        self._save_profile()
        if self.profile.privacy.retain_history:
            try:
                self.store.append_turn(self.user_id, turn.to_dict())
            except Exception as exc:
                logger.warning("Could not persist turn for %s: %s", self.user_id, exc)

    def _update_learning_data(self, turn: ConversationTurn) -> None:
        data = self.profile.learning_data

        queries = Counter(data.frequent_queries)
        queries[turn.user_input.lower().strip()] += 1
        data.frequent_queries = dict(queries.most_common(MAX_FREQUENT_QUERIES))

        if turn.action_taken:
            data.successful_actions[turn.action_taken] = data.successful_actions.get(turn.action_taken, 0) + 1

        metric = self._metric_in(turn.user_input)
        if metric:
            data.financial_interests[metric] = data.financial_interests.get(metric, 0) + 1

    def _update_preferences(self, turn: ConversationTurn) -> None:
        prefs = self.profile.preferences
        if turn.intent == IntentType.FINANCIAL_QUERY.value and turn.action_taken:
            metric = self._metric_in(turn.user_input)
            if metric and metric not in prefs.favorite_metrics:
                prefs.favorite_metrics.append(metric)
        if turn.new_scenario and turn.new_scenario not in prefs.preferred_scenarios:
            prefs.preferred_scenarios.append(turn.new_scenario)

    @staticmethod
    def _metric_in(text: str) -> str | None:
        lowered = text.lower()
        return next((m for m in _TRACKED_METRICS if m in lowered), None)

    # ── personalisation ─────────────────────────────────────────────────

    def personalize(
        self,
        base_text: str,
        *,
        intent_type: IntentType,
        financial_data: FinancialData | None = None,
        position: int | None = None,
        query: str | None = None,
    ) -> tuple[str, FollowupQuestion | None]:
        """Apply style, financial focus and continuity transforms in that order.

        Returns the text and the continuity question appended to it, if any,
        so the caller can expect an answer to that question.
        """
        prefs = self.profile.preferences
        text = self._apply_style(base_text, prefs)

        if financial_data is not None and position and self._should_add_insight():
            text = insert_before_question(text, self._focus_clause(text, financial_data, position))

        question: FollowupQuestion | None = None
        if prefs.conversation_flow != "single_command" and not has_followup(text):
            suggestions = self._follow_up_suggestions(intent_type, position)
            if suggestions:
                question = suggestions[0]
                text = f"{text} {question.text}"

        if query and self.store.supports_similarity:
            text = self._relate_to_earlier(text, query)
        return text, question

    def personalize_response(self, base_text: str, **options: Any) -> str:
        """Text-only form of ``personalize``."""
        return self.personalize(base_text, **options)[0]

    @staticmethod
    def _apply_style(text: str, prefs: UserPreferences) -> str:
        style = prefs.response_style
        if prefs.detail_level == "basic":
            style = "brief"
        elif prefs.detail_level == "advanced" and style != "brief":
            style = "explanatory"

        if style == "brief":
            return make_brief(text)
        if style == "explanatory" and EXPLANATORY_SENTENCE not in text:
            return insert_before_question(text, EXPLANATORY_SENTENCE)
        return text

    def _should_add_insight(self) -> bool:
        return self.session_turns >= 1 and self.profile.preferences.detail_level != "basic"

    def _focus_clause(self, text: str, data: FinancialData, position: int) -> str:
        focus = self.profile.preferences.financial_focus
        if focus == "revenue":
            clause = f"Revenue at position {position} is £{_millions(data.total_revenue)}M"
            previous = next((t.new_position for t in reversed(self.short_term) if t.new_position), None)
            if previous and previous != position:
                clause += f", {'up' if position < previous else 'down'} from position {previous}"
            return clause + "."
        if focus == "risk":
            return f"Risk score: {round(data.risk_score)}/100 ({data.position_risk})."
        if focus == "sustainability":
            return f"Sustainability: {round(data.sustainability_days)} days of cash flow."
        # balanced: only when the reply quotes no figures of its own
        if "£" in text:
            return ""
        return f"Revenue: £{_millions(data.total_revenue)}M, Risk: {round(data.risk_score)}/100."

    def _follow_up_suggestions(
        self, intent_type: IntentType, position: int | None,
    ) -> list[FollowupQuestion]:
        recent_topics = [t.intent.lower() for t in self.short_term[-3:]]
        suggestions: list[FollowupQuestion] = []
        if intent_type is IntentType.POSITION_CHANGE:
            if not any("scenario" in topic for topic in recent_topics):
                # relegation places open on the downside, everything else on the upside
                scenario = "pessimistic" if position and position >= 18 else "optimistic"
                suggestions.append(FollowupQuestion(
                    "Would you like to explore different scenarios for this position?",
                    IntentType.POSITION_CHANGE, scenario,
                ))
            suggestions.append(FollowupQuestion(
                "Shall I explain the revenue implications?", IntentType.FINANCIAL_QUERY,
            ))
        elif intent_type is IntentType.FINANCIAL_QUERY:
            suggestions.append(FollowupQuestion(
                "Would you like me to compare this with other positions?", IntentType.POSITION_CHANGE,
            ))
        return suggestions

    def _relate_to_earlier(self, text: str, query: str) -> str:
        cutoff = datetime.now(timezone.utc) - SIMILARITY_WINDOW
        for turn, similarity in self.store.find_similar(self.user_id, query, 3):
            if similarity <= SIMILARITY_THRESHOLD:
                continue
            try:
                when = datetime.fromisoformat(turn.get("timestamp", ""))
            except ValueError:
                continue
            if when >= cutoff:
                topic = str(turn.get("intent", "")).lower().replace("_", " ")
                return insert_before_question(text, f"(This relates to our earlier discussion about {topic}.)")
        return text

    # ── context for the classifier ──────────────────────────────────────

    def get_recent_context(self, n: int = 3) -> list[str]:
        if n <= 0:
            return []
        return [f"{t.intent}: {t.user_input}" for t in self.short_term[-n:]]

    # ── profile management ──────────────────────────────────────────────

    def get_user_preferences(self) -> UserPreferences:
        prefs = self.profile.preferences
        return replace(
            prefs,
            favorite_metrics=list(prefs.favorite_metrics),
            preferred_scenarios=list(prefs.preferred_scenarios),
        )

    def update_user_preferences(self, **updates: Any) -> bool:
        """Apply validated preference changes; returns ``False`` and changes nothing if invalid."""
        try:
            candidate = replace(self.profile.preferences, **updates)
        except TypeError as exc:
            logger.warning("Rejected preference update %s: %s", updates, exc)
            return False
        if not candidate.is_valid():
            logger.warning("Rejected invalid preference update %s", updates)
            return False
        self.profile.preferences = candidate
        self.profile.last_active = utc_now()
        self._save_profile()
        return True

    def update_privacy_settings(self, **settings: Any) -> bool:
        try:
            self.profile.privacy = replace(self.profile.privacy, **settings)
        except TypeError as exc:
            logger.warning("Rejected privacy update %s: %s", settings, exc)
            return False
        self.profile.last_active = utc_now()
        self._save_profile()
        return True

    def reset_profile(self, keep_privacy: bool = True) -> None:
        old = self.profile
        self.profile = UserProfile(
            id=old.id,
            created_at=old.created_at,
            privacy=old.privacy if keep_privacy else PrivacySettings(),
            interaction_history=old.interaction_history if keep_privacy else [],
        )
        self._save_profile()

    def export_profile(self) -> str:
        payload = self.profile.to_dict()
        payload["export_date"] = utc_now()
        payload["version"] = PROFILE_EXPORT_VERSION
        return json.dumps(payload, indent=2)

    def import_profile(self, profile_json: str) -> bool:
        """Replace the profile from an export; learning stays off until re-enabled."""
        try:
            imported = UserProfile.from_dict(json.loads(profile_json))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Profile import rejected: %s", exc)
            return False
        if not imported.preferences.is_valid():
            logger.warning("Profile import rejected: invalid preferences")
            return False

        imported.id = self.profile.id
        imported.last_active = utc_now()
        imported.privacy = replace(imported.privacy, enable_learning=False)
        self.profile = imported
        self._save_profile()
        return True

    def get_conversation_summary(self) -> dict[str, Any]:
        turns = self.short_term
        return {
            "session_id": self.session_id,
            "started_at": self.session_started,
            "turns": self.session_turns,
            "topics_discussed": list(dict.fromkeys(t.intent for t in turns)),
            "positions_explored": list(dict.fromkeys(t.new_position for t in turns if t.new_position)),
            "scenarios_used": list(dict.fromkeys(t.new_scenario for t in turns if t.new_scenario)),
            "successful_actions": [t.action_taken for t in turns if t.action_taken],
            "key_insights": list(self.financial_insights),
            "preferences": asdict(self.profile.preferences),
        }

    # ── persistence ─────────────────────────────────────────────────────

    def _load_or_create_profile(self) -> UserProfile:
        try:
            raw = self.store.load_profile(self.user_id)
        except Exception as exc:
            logger.warning("Profile store unavailable for %s: %s", self.user_id, exc)
            raw = None

        if raw:
            try:
                profile = UserProfile.from_dict(raw)
                profile.last_active = utc_now()
                return profile
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Stored profile for %s is invalid, starting fresh: %s", self.user_id, exc)

        logger.info("Creating new profile for %s", self.user_id)
        return UserProfile(id=self.user_id)

    def _load_recent_turns(self) -> list[ConversationTurn]:
        try:
            raw = self.store.recent_turns(self.user_id, self.short_term_size)
        except Exception as exc:
            logger.warning("Could not load recent turns for %s: %s", self.user_id, exc)
            return []
        return [ConversationTurn.from_dict(t) for t in raw]

    def _save_profile(self) -> None:
        if not self.profile.privacy.retain_history:
            return
        try:
            self.store.save_profile(self.user_id, self.profile.to_dict())
        except Exception as exc:
            logger.warning("Could not save profile for %s: %s", self.user_id, exc)
