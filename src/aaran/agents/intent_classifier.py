"""Intent Classifier – turns a raw transcript into a typed ``Intent``.

Five independent scorers (position, scenario, financial, help, chat) each
produce a confidence in [0, 1] plus extracted parameters and a reasoning
trace.  The highest-confidence candidate wins (earlier scorers win ties),
then confidence is adjusted for recent context and input length.

The classifier is pure: no I/O, no randomness, and it never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from ..data.vocabulary import (
    DOWN_WORDS, FINANCIAL_KEYWORDS, HELP_KEYWORDS, METRIC_PATTERNS,
    NAMED_POSITIONS, POSITION_KEYWORDS, SCENARIO_KEYWORDS, SCENARIO_PHRASES,
    UP_WORDS, WEAK_SCENARIO_PHRASES, contains_phrase, count_keywords,
    find_phrase,
)
from ..models.schemas import (
    MAX_POSITION, MIN_POSITION, ClassificationContext, Intent,
    IntentParameters, IntentType, clamp_position,
)

logger = logging.getLogger(__name__)

# ── Patterns ─────────────────────────────────────────────────────────────

_EXPLICIT_POSITION = re.compile(r"\b(?:position|place|spot|rank)\s*(\d+)\b")
# Bare numbers and ordinals ("6", "6th"), excluding money/percent amounts.
_ORDINAL_POSITION = re.compile(
    r"(?<![£$\d.])\b(\d+)(?:st|nd|rd|th)?\b"
    r"(?!\s*(?:%|percent|m\b|million|k\b|thousand|pounds|days))"
)
_MOVE_UP = re.compile(r"\b(?:move|go)\s*(?:up|higher)\b")
_MOVE_DOWN = re.compile(r"\b(?:move|go)\s*(?:down|lower)\b")
_QUESTION_FORM = re.compile(r"^(?:what|why|how|who|when|tell me|explain|describe)\b")

_FINANCIAL_QUESTIONS = (
    re.compile(r"\bwhat\b.*\b(?:revenue|risk|cash|money)"),
    re.compile(r"\bhow much\b.*\b(?:money|revenue|cash)"),
    re.compile(r"\bshow me\b.*\b(?:data|numbers|financial)"),
    re.compile(r"\btell me\b.*\b(?:about|financial)"),
    re.compile(r"^(?:what(?:'s| is| are)|explain|describe)\b"),
)
_COMPARISON = re.compile(r"\b(?:compare|versus|vs|difference)\b")
_METRICS = tuple((re.compile(p), name) for p, name in METRIC_PATTERNS)

_HELP_PATTERNS = (
    re.compile(r"\bhelp\b"),
    re.compile(r"\bhow do i\b"),
    re.compile(r"\bwhat does\b.*\bdo\b"),
    re.compile(r"\bexplain (?:how|what)\b"),
    re.compile(r"\bguide\b"),
    re.compile(r"\btutorial\b"),
    re.compile(r"\bshow me how\b"),
)
_CHAT_PATTERNS = (
    re.compile(r"\b(?:hello|hi|hey)\b"),
    re.compile(r"\b(?:thank you|thanks)\b"),
    re.compile(r"\b(?:goodbye|bye)\b"),
    re.compile(r"\bhow are you\b"),
    re.compile(r"\b(?:good job|well done|great)\b"),
)


def _join(reasons: list[str], fallback: str) -> str:
    return "; ".join(reasons) if reasons else fallback


class IntentClassifier:
    """Rule-based classifier for dashboard voice commands."""

    def __init__(self, floor: float = 0.1):
        self.floor = floor

    # ── public API ──────────────────────────────────────────────────────

    def classify(self, text: str, context: ClassificationContext | None = None) -> Intent:
        """Classify *text*; worst case is ``UNKNOWN`` with confidence 0."""
        try:
            return self._classify(text or "", context or ClassificationContext())
        except Exception as exc:
            logger.warning("Intent classification failed for %r: %s", text, exc)
            return Intent(original_text=text or "", reasoning=f"Classifier error: {exc}")

    # ── internals ───────────────────────────────────────────────────────

    def _classify(self, text: str, context: ClassificationContext) -> Intent:
        normalized = text.lower().strip()
        candidates = [
            self._score_position(normalized, context),
            self._score_scenario(normalized),
            self._score_financial(normalized),
            self._score_help(normalized),
            self._score_chat(normalized),
        ]

        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate.confidence > best.confidence:
                best = candidate

        if best.confidence < self.floor:
            return Intent(
                type=IntentType.UNKNOWN,
                confidence=0.0,
                original_text=text.strip(),
                reasoning="No clear intent detected",
            )

        best = replace(best, original_text=text.strip())
        return self._adjust_with_context(best, normalized, context)

    def _score_position(self, text: str, context: ClassificationContext) -> Intent:
        confidence = 0.0
        position: int | None = None
        direction: str | None = None
        reasons: list[str] = []

        match = _EXPLICIT_POSITION.search(text) or _ORDINAL_POSITION.search(text)
        if match:
            number = int(match.group(1))
            if MIN_POSITION <= number <= MAX_POSITION:
                position, direction, confidence = number, "to", 0.95
                reasons.append(f"Explicit position number {number}")

        if position is None:
            named = find_phrase(text, NAMED_POSITIONS)
            if named:
                phrase, position = named
                direction = "to"
                # "what is the championship paradox" is a question, not a move
                confidence = 0.6 if _QUESTION_FORM.search(text) else 0.85
                reasons.append(f'Named position "{phrase}" → {position}')

        # A concrete target beats relative movement
        if position is None:
            current = context.current_position
            if _MOVE_UP.search(text):
                direction, position = "up", clamp_position(current - 5)
                confidence = 0.9
                reasons.append(f"Move up 5: {current} → {position}")
            elif _MOVE_DOWN.search(text):
                direction, position = "down", clamp_position(current + 5)
                confidence = 0.9
                reasons.append(f"Move down 5: {current} → {position}")
            else:
                if any(contains_phrase(text, w) for w in UP_WORDS):
                    direction = "up"
                    confidence = max(confidence, 0.6)
                    reasons.append("Directional movement (up)")
                elif any(contains_phrase(text, w) for w in DOWN_WORDS):
                    direction = "down"
                    confidence = max(confidence, 0.6)
                    reasons.append("Directional movement (down)")

        keyword_count = count_keywords(text, POSITION_KEYWORDS)
        if keyword_count:
            confidence = max(confidence, 0.3 + keyword_count * 0.15)
            reasons.append(f"Position keywords: {keyword_count}")

        return Intent(
            type=IntentType.POSITION_CHANGE,
            confidence=min(confidence, 1.0),
            parameters=IntentParameters(position=position, direction=direction),
            reasoning=_join(reasons, "No position indicators"),
        )

    def _score_scenario(self, text: str) -> Intent:
        confidence = 0.0
        scenario: str | None = None
        reasons: list[str] = []

        found = find_phrase(text, SCENARIO_PHRASES)
        if found:
            phrase, scenario = found
            confidence = 0.7 if phrase in WEAK_SCENARIO_PHRASES else 0.9
            reasons.append(f'Scenario "{phrase}" → {scenario}')

        keyword_count = count_keywords(text, SCENARIO_KEYWORDS)
        if keyword_count:
            confidence = max(confidence, 0.4 + keyword_count * 0.2)
            reasons.append(f"Scenario keywords: {keyword_count}")

        return Intent(
            type=IntentType.SCENARIO_CHANGE,
            confidence=min(confidence, 1.0),
            parameters=IntentParameters(scenario=scenario),
            reasoning=_join(reasons, "No scenario indicators"),
        )

    def _score_financial(self, text: str) -> Intent:
        confidence = 0.0
        metric: str | None = None
        reasons: list[str] = []

        for pattern, name in _METRICS:
            if pattern.search(text):
                metric, confidence = name, 0.8
                reasons.append(f'Financial metric "{name}"')
                break

        if any(p.search(text) for p in _FINANCIAL_QUESTIONS):
            confidence = max(confidence, 0.75)
            reasons.append("Question pattern")

        comparison = bool(_COMPARISON.search(text))
        if comparison:
            confidence = max(confidence, 0.7)
            reasons.append("Comparison request")

        keyword_count = count_keywords(text, FINANCIAL_KEYWORDS)
        if keyword_count:
            confidence = max(confidence, 0.3 + keyword_count * 0.1)
            reasons.append(f"Financial keywords: {keyword_count}")

        return Intent(
            type=IntentType.FINANCIAL_QUERY,
            confidence=min(confidence, 1.0),
            parameters=IntentParameters(metric=metric, comparison=comparison),
            reasoning=_join(reasons, "No financial indicators"),
        )

    def _score_help(self, text: str) -> Intent:
        confidence = 0.0
        reasons: list[str] = []

        if any(p.search(text) for p in _HELP_PATTERNS):
            confidence = 0.85
            reasons.append("Direct help request")

        keyword_count = count_keywords(text, HELP_KEYWORDS)
        if keyword_count:
            confidence = max(confidence, 0.4 + keyword_count * 0.15)
            reasons.append(f"Help keywords: {keyword_count}")

        return Intent(
            type=IntentType.HELP_REQUEST,
            confidence=min(confidence, 1.0),
            reasoning=_join(reasons, "No help indicators"),
        )

    def _score_chat(self, text: str) -> Intent:
        confidence = 0.0
        reasoning = "No conversational indicators"

        if any(p.search(text) for p in _CHAT_PATTERNS):
            confidence, reasoning = 0.8, "Conversational pattern"
        elif 3 < len(text) < 30:
            confidence, reasoning = 0.3, "Short free-form utterance"

        return Intent(type=IntentType.GENERAL_CHAT, confidence=confidence, reasoning=reasoning)

    def _adjust_with_context(
        self, intent: Intent, normalized: str, context: ClassificationContext,
    ) -> Intent:
        confidence = intent.confidence
        notes: list[str] = []

        similar = sum(1 for recent in context.recent_intents if recent.type is intent.type)
        if similar:
            confidence = min(1.0, confidence + similar * 0.05)
            notes.append(f"context boost ×{similar}")

        if len(normalized) < 3:
            confidence *= 0.5
            notes.append("penalty: very short input")
        elif len(normalized) > 100:
            confidence *= 0.7
            notes.append("penalty: very long input")

        if not notes:
            return intent
        return replace(
            intent,
            confidence=confidence,
            reasoning=f"{intent.reasoning}; {'; '.join(notes)}",
        )
