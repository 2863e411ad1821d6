"""Follow-up questions and the replies to them.

When a reply ends in a question the agent stores ``AwaitingFollowup`` with
the question's topic (and the scenario an affirmative answer should switch
to).  On the next turn ``interpret_followup`` reads short answers such as
"yes", "no thanks" or "tell me more" against that state.

Reply patterns are anchored or word-bounded, and any utterance that is
itself a confident, concrete command ("position 3", "worst case",
"what's the revenue") is left to normal intent dispatch.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass

from ..models.schemas import (
    AwaitingFollowup, ConversationState, FinancialData, FollowupQuestion, Idle,
    Intent, IntentType,
)

logger = logging.getLogger(__name__)

CONCRETE_CONFIDENCE = 0.7

_AFFIRMATIVE = re.compile(
    r"^(?:yes|yeah|yep|yup|sure|ok|okay|please|go ahead|absolutely|definitely"
    r"|of course|why not|sounds good|let'?s do it|do it)\b"
)
_NEGATIVE = re.compile(
    r"^(?:no|nope|nah|not now|not really|no thanks|never mind|nevermind|skip"
    r"|pass|maybe later)\b"
)
_MORE_DETAIL = re.compile(
    r"^(?:tell me more|more|explain (?:that|this|it|more)|elaborate|details"
    r"|go on|break (?:it|that|this) down)\b"
)
_OPTIMISTIC_REDIRECT = re.compile(r"\b(?:best|optimistic|promotion|positive|up)\b")
_PESSIMISTIC_REDIRECT = re.compile(r"\b(?:worst|pessimistic|relegation|negative|down)\b")
_POSITION_REDIRECT = re.compile(r"\b(?:position|place|spot|different|other|another)\b")
_COMPARISON_REDIRECT = re.compile(r"\b(?:compare|comparison|versus|vs|against|difference)\b")

POSITION_PROMPT = (
    "Which position would you like to explore? Just say a number between 1 and 24, "
    "or try 'move up' or 'move down'."
)
DECLINED = "No problem! Is there anything else about our financial position you'd like to analyze?"
COMPARISON_PROMPT = "I can compare positions, scenarios, or financial metrics. What would you like to compare?"

_SCENARIO_SWITCH = {
    "optimistic": (
        "Switching to the best case scenario. This shows promotion push benefits with higher "
        "commercial multipliers, increased attendance, and potential playoff bonuses. "
        "Want to compare with the worst case?",
        "pessimistic",
    ),
    "pessimistic": (
        "Switching to worst case scenario. This shows relegation battle impact with reduced "
        "commercial income, lower attendance, and financial penalties. "
        "Shall I show the optimistic view instead?",
        "optimistic",
    ),
    "current": (
        "Switching back to the current scenario. This is your baseline financial path based on "
        "existing performance and market conditions. Want to compare with the best case?",
        "optimistic",
    ),
}
# After a position change the scenario suggestion is phrased as a next step.
_AFTER_POSITION = {
    "optimistic": (
        "Excellent! Let me show you the best case scenario first. This represents a promotion "
        "push with increased commercial revenue, higher attendance, and playoff bonuses. "
        "Would you like to see the worst case scenario next?",
        "pessimistic",
    ),
    "pessimistic": (
        "Okay! Let me show you the worst case scenario first. This models relegation pressure "
        "with reduced commercial income, lower attendance, and financial penalties. "
        "Would you like to see the best case scenario next?",
        "optimistic",
    ),
}

GENERAL_FOLLOWUPS = (
    "What else would you like to see?",
    "Shall we look at something else?",
    "Want to explore more?",
    "What's next on your mind?",
    "Anything else to analyze?",
)


@dataclass
class FollowupReply:
    """Outcome of reading a short answer against ``AwaitingFollowup``."""

    kind: str                      # accepted | declined | more_info | scenario | position | comparison
    response: str
    new_scenario: str | None = None
    next_state: ConversationState = Idle()


def is_concrete_command(intent: Intent) -> bool:
    """True when *intent* names its own target with enough confidence."""
    if intent.confidence < CONCRETE_CONFIDENCE:
        return False
    p = intent.parameters
    if intent.type is IntentType.POSITION_CHANGE:
        return p.position is not None
    if intent.type is IntentType.SCENARIO_CHANGE:
        return p.scenario is not None
    if intent.type is IntentType.FINANCIAL_QUERY:
        return p.metric is not None
    return False


# ── Reading answers ─────────────────────────────────────────────────────

def interpret_followup(
    transcript: str,
    intent: Intent,
    state: AwaitingFollowup,
    *,
    position: int,
    financial_data: FinancialData,
) -> FollowupReply | None:
    """Interpret *transcript* as an answer to the outstanding question.

    Returns ``None`` when it is not an answer, so the turn is dispatched
    normally.
    """
    text = transcript.lower().strip()
    if not text or is_concrete_command(intent):
        return None

    logger.debug("Reading %r as an answer about %s", text, state.topic.value)
    if _AFFIRMATIVE.search(text):
        return _accept(state, position, financial_data)
    if _NEGATIVE.search(text):
        return FollowupReply("declined", DECLINED, next_state=AwaitingFollowup(IntentType.GENERAL_CHAT))
    if _MORE_DETAIL.search(text):
        return _more_info(position, financial_data)

    if _OPTIMISTIC_REDIRECT.search(text):
        return _switch("optimistic", _SCENARIO_SWITCH, "scenario")
    if _PESSIMISTIC_REDIRECT.search(text):
        return _switch("pessimistic", _SCENARIO_SWITCH, "scenario")
    if _POSITION_REDIRECT.search(text):
        return FollowupReply("position", POSITION_PROMPT,
                             next_state=AwaitingFollowup(IntentType.POSITION_CHANGE))
    if _COMPARISON_REDIRECT.search(text):
        return FollowupReply("comparison", COMPARISON_PROMPT,
                             next_state=AwaitingFollowup(IntentType.FINANCIAL_QUERY))
    return None


def _switch(scenario: str, texts: dict[str, tuple[str, str]], kind: str) -> FollowupReply:
    response, next_suggestion = texts[scenario]
    return FollowupReply(
        kind,
        response,
        new_scenario=scenario,
        next_state=AwaitingFollowup(IntentType.SCENARIO_CHANGE, next_suggestion),
    )


def _accept(state: AwaitingFollowup, position: int, data: FinancialData) -> FollowupReply:
    suggested = state.suggested_scenario
    if suggested:
        if state.topic is IntentType.POSITION_CHANGE and suggested in _AFTER_POSITION:
            return _switch(suggested, _AFTER_POSITION, "accepted")
        return _switch(suggested, _SCENARIO_SWITCH, "accepted")

    if state.topic is IntentType.POSITION_CHANGE:
        return FollowupReply("accepted", POSITION_PROMPT,
                             next_state=AwaitingFollowup(IntentType.POSITION_CHANGE))
    if state.topic is IntentType.FINANCIAL_QUERY:
        reply = _more_info(position, data)
        reply.kind = "accepted"
        return reply

    if position <= 6:
        return FollowupReply(
            "accepted",
            "Great! Since we're in playoff territory, shall I show you the promotion bonuses "
            "and commercial benefits?",
            new_scenario="optimistic",
            next_state=AwaitingFollowup(IntentType.FINANCIAL_QUERY),
        )
    if position >= 18:
        return FollowupReply(
            "accepted",
            "Okay! Let's look at relegation scenarios and how they affect our finances. "
            "Want to see the worst case impact?",
            new_scenario="pessimistic",
            next_state=AwaitingFollowup(IntentType.FINANCIAL_QUERY),
        )
    return FollowupReply(
        "accepted",
        "Perfect! I can show you different league positions or scenario outcomes. "
        "What interests you most?",
        next_state=AwaitingFollowup(IntentType.GENERAL_CHAT),
    )


def _more_info(position: int, data: FinancialData) -> FollowupReply:
    wage = f"{data.wage_ratio:.1f}" if data.wage_ratio else "95"
    category = "high" if data.risk_score > 70 else "medium"
    return FollowupReply(
        "more_info",
        f"Here are the detailed financials for position {position}: Annual revenue is "
        f"£{data.total_revenue / 1_000_000:.1f}M, which includes TV money, commercial deals, "
        f"and matchday income. Our wage ratio is currently {wage}%, putting us in the "
        f"{category} risk category. Want to see how different positions change this?",
        next_state=AwaitingFollowup(IntentType.POSITION_CHANGE),
    )


# ── Asking questions ────────────────────────────────────────────────────

def contextual_followup(
    intent_type: IntentType,
    *,
    position: int,
    scenario: str,
    financial_data: FinancialData | None,
    rng: random.Random,
) -> FollowupQuestion:
    """Short question to close a reply, chosen by intent and dashboard state."""
    if intent_type is IntentType.POSITION_CHANGE:
        if position <= 6:
            return FollowupQuestion("Want to see the playoff bonuses?", intent_type, "optimistic")
        if position >= 18:
            return FollowupQuestion("Should I show relegation impact?", intent_type, "pessimistic")
        return FollowupQuestion("Try a different position?", intent_type)

    if intent_type is IntentType.FINANCIAL_QUERY:
        if financial_data is not None and financial_data.wage_ratio > 90:
            return FollowupQuestion("Want to see how position affects this?", IntentType.POSITION_CHANGE)
        other = "pessimistic" if scenario == "optimistic" else "optimistic"
        return FollowupQuestion("Check other scenarios?", intent_type, other)

    if intent_type is IntentType.SCENARIO_CHANGE:
        if scenario == "optimistic":
            return FollowupQuestion("Compare with worst case?", intent_type, "pessimistic")
        if scenario == "pessimistic":
            return FollowupQuestion("See the optimistic view?", intent_type, "optimistic")
        return FollowupQuestion("Try different scenarios?", intent_type)

    if intent_type is IntentType.HELP_REQUEST:
        return FollowupQuestion("What would you like to explore?", intent_type)

    return FollowupQuestion(rng.choice(GENERAL_FOLLOWUPS), IntentType.GENERAL_CHAT)

