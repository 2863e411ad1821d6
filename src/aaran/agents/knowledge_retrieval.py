"""Knowledge Retrieval – ranked answers from the static EFL knowledge base.

Each entry is scored five ways against the query (concept name, definition,
related terms, key facts, examples).  Scores are weighted by match type, the
best weighted score is kept per entry, and entries below the relevance floor
are dropped.  The top entry supplies the answer; secondary high-significance
entries add supporting context.

Responses are cached without live data, so a cache hit can be re-augmented
with the caller's current figures without re-running the search.
"""

from __future__ import annotations

import json
import logging
import re
from collections import OrderedDict
from dataclasses import replace
from functools import lru_cache
from pathlib import Path

from ..config.settings import KNOWLEDGE_CACHE_SIZE
from ..models.schemas import (
    ConversationContext, FinancialData, KnowledgeEntry, KnowledgeResponse,
    KnowledgeSearchResult,
)

logger = logging.getLogger(__name__)

KNOWLEDGE_FILE = Path(__file__).resolve().parents[1] / "data" / "financial_knowledge.json"

MATCH_WEIGHTS = {
    "concept": 1.0,
    "definition": 0.9,
    "related_terms": 0.8,
    "key_facts": 0.7,
    "examples": 0.6,
}
RELEVANCE_FLOOR = 0.3
CACHE_CONFIDENCE = 0.7
_SIGNIFICANCE_RANK = {"high": 2, "medium": 1, "low": 0}

_TOKEN = re.compile(r"[a-z0-9£%]+")
_STOPWORDS = frozenset("""
    a about an and are as at be by can could do does explain for from how i
    in is it its me my of on or our please show tell that the their them
    this to us was we what whats which who why will with would you your
""".split())

FALLBACK_ANSWER = (
    "I don't have specific information about that topic in my knowledge base. "
    "Try asking about league positions, financial metrics, or regulatory rules."
)
FALLBACK_SUGGESTIONS = [
    "What's the revenue impact of league position?",
    "Explain parachute payments",
    "How do wage ratios work?",
    "Tell me about PSR rules",
]
_CATEGORY_SUGGESTIONS = {
    "position-analysis": ["What happens in the playoff positions?", "Show me relegation zone impact"],
    "revenue-streams": ["How do parachute payments work?", "What's the broadcasting revenue split?"],
    "cost-management": ["What are healthy wage ratios?", "Tell me about agent fees"],
    "compliance": ["What are PSR rules?", "Explain SCMP regulations"],
}
_DEFAULT_SUGGESTIONS = [
    "What's the financial impact of promotion?",
    "How do league positions affect revenue?",
    "Tell me about financial regulations",
]


# ── Knowledge base loading ──────────────────────────────────────────────

def load_knowledge_base(path: Path | str | None = None) -> tuple[KnowledgeEntry, ...]:
    """Read the versioned knowledge file and return its entries."""
    source = Path(path) if path else KNOWLEDGE_FILE
    with source.open(encoding="utf-8") as fh:
        payload = json.load(fh)
    entries = tuple(KnowledgeEntry.from_dict(raw) for raw in payload["entries"])
    logger.info("Loaded %d knowledge entries (version %s) from %s",
                len(entries), payload.get("version", "?"), source.name)
    return entries


@lru_cache(maxsize=1)
def default_knowledge_base() -> tuple[KnowledgeEntry, ...]:
    return load_knowledge_base()


# ── Scoring helpers ─────────────────────────────────────────────────────

def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN.findall(text.lower().replace("'", "")) if t not in _STOPWORDS]


def _term_matches(term: str, word: str) -> bool:
    if term == word:
        return True
    # Prefix match ("ratio" ~ "ratios", "relegat" ~ "relegation") for real words only
    if len(term) >= 4 and len(word) >= 4:
        return word.startswith(term) or term.startswith(word)
    return False


def _overlap(terms: list[str], words: list[str]) -> float:
    if not terms or not words:
        return 0.0
    hits = sum(1 for term in terms if any(_term_matches(term, w) for w in words))
    return hits / len(terms)


def _concept_similarity(terms: list[str], concept: str) -> float:
    concept_terms = tokenize(concept)
    if not terms or not concept_terms:
        return 0.0
    query_text, concept_text = " ".join(terms), " ".join(concept_terms)
    if query_text == concept_text:
        return 1.0
    if concept_text in query_text or query_text in concept_text:
        return 0.85
    hits = sum(1 for term in terms if any(_term_matches(term, w) for w in concept_terms))
    return hits / max(len(terms), len(concept_terms))


def _fmt_millions(amount: float) -> str:
    return f"{amount / 1_000_000:.1f}"


# ── Retrieval ───────────────────────────────────────────────────────────

class FinancialKnowledgeRetrieval:
    """Search the knowledge base and compose voice-friendly answers."""

    def __init__(
        self,
        entries: tuple[KnowledgeEntry, ...] | list[KnowledgeEntry] | None = None,
        cache_size: int = KNOWLEDGE_CACHE_SIZE,
    ):
        self.entries = tuple(entries) if entries is not None else default_knowledge_base()
        self.cache_size = cache_size
        self._cache: OrderedDict[tuple[str, str, int], KnowledgeResponse] = OrderedDict()

    # ── public API ──────────────────────────────────────────────────────

    def find_relevant_knowledge(
        self,
        query: str,
        context: ConversationContext,
        financial_data: FinancialData | None = None,
    ) -> KnowledgeResponse:
        """Answer *query*; returns the fixed fallback rather than raising."""
        position = context.dashboard_state.selected_position
        key = (" ".join((query or "").lower().split()), context.current_focus.value, position)

        try:
            base = self._cache.get(key)
            if base is not None:
                self._cache.move_to_end(key)
                logger.debug("Knowledge cache hit for %r", query)
            else:
                results = self.search(query)
                base = self._compose(results)
                if base.confidence > CACHE_CONFIDENCE:
                    self._remember(key, base)
            return self._with_live_data(base, financial_data, position)
        except Exception as exc:
            logger.warning("Knowledge retrieval failed for %r: %s", query, exc)
            return self._fallback()

    def search(self, query: str) -> list[KnowledgeSearchResult]:
        """Rank entries for *query*, best first."""
        terms = tokenize(query or "")
        if not terms:
            return []

        results: list[KnowledgeSearchResult] = []
        for entry in self.entries:
            candidates = [
                ("concept", _concept_similarity(terms, entry.concept), entry.concept),
                ("definition", _overlap(terms, tokenize(entry.definition)), entry.definition),
                ("related_terms", _overlap(terms, tokenize(" ".join(entry.related_terms))),
                 ", ".join(entry.related_terms)),
                ("key_facts", _overlap(terms, tokenize(" ".join(entry.key_facts))),
                 "; ".join(entry.key_facts)),
                ("examples", _overlap(terms, tokenize(" ".join(entry.examples))),
                 "; ".join(entry.examples)),
            ]
            match_type, score, text = max(
                ((kind, raw * MATCH_WEIGHTS[kind], text) for kind, raw, text in candidates),
                key=lambda c: c[1],
            )
            if score >= RELEVANCE_FLOOR:
                results.append(KnowledgeSearchResult(entry, score, match_type, text))

        results.sort(
            key=lambda r: (r.relevance_score, _SIGNIFICANCE_RANK.get(r.entry.significance, 0)),
            reverse=True,
        )
        return results

    def clear_cache(self) -> None:
        self._cache.clear()

    def dashboard_help(self) -> list[KnowledgeEntry]:
        return [e for e in self.entries if e.context == "dashboard"]

    def critical_concepts(self) -> list[KnowledgeEntry]:
        return [e for e in self.entries if e.significance == "high"]

    def financial_concepts(self) -> list[KnowledgeEntry]:
        return [e for e in self.entries if e.context == "financial"]

    # ── composition ─────────────────────────────────────────────────────

    def _compose(self, results: list[KnowledgeSearchResult]) -> KnowledgeResponse:
        if not results:
            return self._fallback()

        top, secondary = results[0], results[1:3]
        answer = self._main_answer(top)

        related = [r.entry.concept for r in secondary if r.entry.significance == "high"][:2]
        if related:
            answer += f" This is also related to {' and '.join(related)}."

        return KnowledgeResponse(
            answer=answer,
            sources=[top.entry, *(r.entry for r in secondary)],
            confidence=min(top.relevance_score, 0.95),
            suggestions=self._suggestions(top.entry, results),
            top_match=top.match_type,
        )

    @staticmethod
    def _main_answer(result: KnowledgeSearchResult) -> str:
        entry = result.entry
        definition = entry.definition.rstrip(".")
        facts = f". Key facts: {', '.join(entry.key_facts[:3])}" if entry.key_facts else ""

        if result.match_type == "concept":
            return f"{definition}{facts}."
        if result.match_type == "definition":
            return f"{entry.concept}: {definition}{facts}."
        if result.match_type == "related_terms":
            return f"Regarding {entry.concept}: {definition}{facts}."
        if result.match_type == "key_facts":
            return f"About {entry.concept}: {definition}{facts}."
        examples = f". Examples include: {', '.join(entry.examples[:2])}" if entry.examples else ""
        return f"{entry.concept} - {definition}{examples}."

    @staticmethod
    def _suggestions(top: KnowledgeEntry, results: list[KnowledgeSearchResult]) -> list[str]:
        suggestions = [f"Tell me about {r.entry.concept.lower()}" for r in results[1:4]]
        suggestions.extend(_CATEGORY_SUGGESTIONS.get(top.category, []))
        if not suggestions:
            suggestions = list(_DEFAULT_SUGGESTIONS)
        return suggestions[:4]

    @staticmethod
    def live_data_sentence(
        entry: KnowledgeEntry, data: FinancialData, position: int,
    ) -> str | None:
        """Sentence tying *entry* to the dashboard's current figures, if any applies."""
        if entry.id == "league-position-modeling":
            return (f"At your current position {position}, this translates to approximately "
                    f"£{_fmt_millions(data.total_revenue)} million in annual revenue.")
        if entry.id == "wage-ratios" and data.wage_ratio:
            ratio = round(data.wage_ratio)
            verdict = "concerning" if ratio > 70 else "healthy"
            return (f"Your current wage ratio is {ratio}%, which is {verdict} "
                    f"compared to Championship averages.")
        if entry.id == "championship-paradox":
            if position <= 6:
                standing = "in the promotion chase"
            elif position >= 18:
                standing = "in a relegation battle"
            else:
                standing = "in the mid-table financial squeeze"
            return f"At position {position}, your club is {standing}."
        if entry.id == "season-ticket-renewals":
            rate = "85-90%" if position <= 6 else "75-85%" if position <= 15 else "65-75%"
            return (f"At position {position}, you can expect approximately {rate} "
                    f"season ticket renewal rates.")
        return None

    def _with_live_data(
        self, base: KnowledgeResponse, data: FinancialData | None, position: int,
    ) -> KnowledgeResponse:
        # always a fresh object: ``base`` may be the cached instance
        fresh = replace(base, sources=list(base.sources), suggestions=list(base.suggestions))
        if data is None or not fresh.sources:
            return fresh
        sentence = self.live_data_sentence(fresh.sources[0], data, position)
        if sentence is None:
            return fresh
        return replace(fresh, answer=f"{fresh.answer} {sentence}", contextual_data=sentence)

    def _remember(self, key: tuple[str, str, int], response: KnowledgeResponse) -> None:
        self._cache[key] = response
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    @staticmethod
    def _fallback() -> KnowledgeResponse:
        return KnowledgeResponse(
            answer=FALLBACK_ANSWER,
            sources=[],
            confidence=0.1,
            suggestions=list(FALLBACK_SUGGESTIONS),
        )
