"""Phrase tables for the voice grammar.

This module is the single place where spoken phrases are mapped to dashboard
values.  The classifier, the agent's position narration and the follow-up
handler all read from here.

Matching is always whole-word and longest-phrase-first, so "top six" wins
over "top" and "show the cliff" wins over "cliff".
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Mapping, TypeVar

V = TypeVar("V")

# ── Named league positions ──────────────────────────────────────────────

NAMED_POSITIONS: dict[str, int] = {
    # Top of the table
    "champions": 1,
    "championship": 1,
    "top of the league": 1,
    "first place": 1,
    "number one": 1,
    "first": 1,
    "top": 1,
    "winner": 1,
    # Automatic promotion
    "title race": 2,
    "automatic promotion": 2,
    "second place": 2,
    "runners up": 2,
    "promotion": 2,
    # Playoffs
    "playoffs": 6,
    "playoff": 6,
    "top six": 6,
    "playoff final": 6,
    "playoff qualification": 6,
    # Mid-table
    "mid-table": 12,
    "mid table": 12,
    "midtable": 12,
    "safe": 12,
    "comfortable": 12,
    "middle": 12,
    # Survival
    "survival": 17,
    "just safe": 17,
    "above relegation": 17,
    # Relegation boundary
    "show the cliff": 18,
    "financial cliff": 18,
    "the drop": 18,
    "cliff edge": 18,
    "relegation boundary": 18,
    "the cliff": 18,
    "cliff": 18,
    # Relegation battle
    "relegation battle": 22,
    "bottom three": 22,
    "danger zone": 22,
    "fighting relegation": 22,
    "relegation zone": 22,
    # Bottom
    "relegation": 24,
    "bottom": 24,
    "last place": 24,
    "relegated": 24,
    "bottom of the league": 24,
    "last": 24,
}

# How the agent names a position when the user used a phrase for it.
SEMANTIC_TRIGGERS: dict[str, str] = {
    "champions": "champions",
    "championship": "championship",
    "title race": "title race",
    "playoffs": "playoffs",
    "playoff": "playoffs",
    "promotion": "promotion",
    "mid-table": "mid-table",
    "safe": "safe position",
    "survival": "survival position",
    "cliff": "the financial cliff",
    "financial cliff": "the financial cliff",
    "show the cliff": "the cliff",
    "relegation battle": "relegation battle",
    "bottom three": "bottom three",
    "danger zone": "danger zone",
    "relegation": "relegation",
    "bottom": "bottom position",
    "move up": "moving up the table",
    "go up": "moving up the table",
    "move down": "moving down the table",
    "go down": "moving down the table",
}

# ── Scenarios ───────────────────────────────────────────────────────────

SCENARIO_PHRASES: dict[str, str] = {
    "optimistic": "optimistic",
    "best case": "optimistic",
    "best": "optimistic",
    "promotion case": "optimistic",
    "pessimistic": "pessimistic",
    "worst case": "pessimistic",
    "worst": "pessimistic",
    "relegation case": "pessimistic",
    "current": "current",
    "baseline": "current",
    "realistic": "current",
}

# Bare adjectives that often describe something other than a scenario
# ("the current revenue"); they score lower than an explicit scenario name.
WEAK_SCENARIO_PHRASES = frozenset({"best", "worst", "current"})

# ── Scorer keywords ─────────────────────────────────────────────────────

POSITION_KEYWORDS = (
    "position", "place", "spot", "rank", "table", "league",
    "move", "go", "switch", "change",
)
SCENARIO_KEYWORDS = (
    "scenario", "case", "optimistic", "pessimistic", "best", "worst",
    "current", "baseline", "projection",
)
FINANCIAL_KEYWORDS = (
    "revenue", "money", "income", "profit", "cash", "risk", "score", "ratio",
    "wages", "cost", "million", "pounds", "sustainability", "flow",
    "analysis", "what", "how much", "show me",
)
HELP_KEYWORDS = (
    "help", "how", "what does", "explain", "tell me", "guide", "tutorial",
    "show", "demonstrate",
)

UP_WORDS = ("up", "higher", "improve")
DOWN_WORDS = ("down", "lower", "drop", "fall")

# Ordered: the first matching pattern names the metric.
METRIC_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"\b(?:revenue|income)\b", "revenue"),
    (r"\b(?:risk|score)\b", "risk"),
    (r"\b(?:cash|flow)\b", "cashflow"),
    (r"\b(?:wages?|salary|salaries)\b", "wages"),
    (r"\bratio\b", "ratio"),
    (r"\bsustainability\b", "sustainability"),
)


# ── Matching helpers ────────────────────────────────────────────────────

@lru_cache(maxsize=512)
def phrase_pattern(phrase: str) -> re.Pattern[str]:
    """Whole-word pattern for *phrase* (hyphens and spaces are literal)."""
    return re.compile(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])")


def contains_phrase(text: str, phrase: str) -> bool:
    return phrase_pattern(phrase).search(text) is not None


def find_phrase(text: str, table: Mapping[str, V]) -> tuple[str, V] | None:
    """Return the longest phrase of *table* found in *text*, with its value."""
    for phrase in sorted(table, key=len, reverse=True):
        if contains_phrase(text, phrase):
            return phrase, table[phrase]
    return None


def count_keywords(text: str, keywords: tuple[str, ...]) -> int:
    return sum(1 for kw in keywords if contains_phrase(text, kw))
