"""Small text helpers shared by the agent and the memory layer.

Replies are built from independently produced clauses; these helpers keep
a trailing question at the end so two questions never get stacked.
"""

from __future__ import annotations

import re

# A last sentence starting with one of these already invites a reply.
FOLLOWUP_OPENERS = (
    "Try", "Want to", "Would you like", "Shall I", "Should I", "What",
    "Explore", "Check", "Compare", "See",
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_KEY_FIGURES = re.compile(r"£[\d,.]+[MK]?|\d+(?:\.\d+)?%|\b\d+(?:st|nd|rd|th)\b|\b\d+/100\b")


def split_sentences(text: str) -> list[str]:
    text = text.strip()
    return _SENTENCE_SPLIT.split(text) if text else []


def has_followup(text: str) -> bool:
    """True if *text* already asks something or ends on a suggestion."""
    if "?" in text:
        return True
    sentences = split_sentences(text)
    return bool(sentences) and sentences[-1].startswith(FOLLOWUP_OPENERS)


def insert_before_question(text: str, clause: str) -> str:
    """Add *clause* to *text*, ahead of any trailing question sentences."""
    if not clause:
        return text
    sentences = split_sentences(text)
    if not sentences:
        return clause
    index = len(sentences)
    while index > 0 and sentences[index - 1].endswith("?"):
        index -= 1
    return " ".join(sentences[:index] + [clause] + sentences[index:])


def make_brief(text: str) -> str:
    """First sentence plus up to two key figures from the rest."""
    sentences = split_sentences(text)
    if not sentences:
        return text
    first = sentences[0]
    if len(sentences) == 1:
        return first
    figures = [f for f in _KEY_FIGURES.findall(" ".join(sentences[1:])) if f not in first]
    if not figures:
        return first
    return f"{first.rstrip('.!?')}. Key figures: {', '.join(figures[:2])}."
