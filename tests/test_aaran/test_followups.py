"""Tests for follow-up questions and the short answers given to them."""

import random
from unittest.mock import MagicMock

import pytest
from src.aaran.agents.followups import (
    COMPARISON_PROMPT, DECLINED, GENERAL_FOLLOWUPS, POSITION_PROMPT,
    FollowupQuestion, contextual_followup, interpret_followup,
    is_concrete_command,
)
from src.aaran.models.schemas import (
    AwaitingFollowup, FinancialData, Idle, Intent, IntentParameters, IntentType,
)

DATA = FinancialData(total_revenue=22_000_000, monthly_cash_flow=200_000, wage_ratio=75,
                     risk_score=50, position_risk="Medium", sustainability_days=180)


def _answer(text, state, *, intent=None, position=12, data=DATA):
    return interpret_followup(text, intent or Intent(original_text=text), state,
                              position=position, financial_data=data)


# ── Affirmative answers ─────────────────────────────────────────────────


class TestAffirmative:

    def test_after_position_switches_to_suggested_scenario(self):
        reply = _answer("yes", AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic"))
        assert reply.kind == "accepted"
        assert reply.new_scenario == "optimistic"
        assert reply.response.startswith("Excellent! Let me show you the best case scenario first.")
        assert reply.next_state == AwaitingFollowup(IntentType.SCENARIO_CHANGE, "pessimistic")

    def test_after_scenario_switches_to_the_other_one(self):
        reply = _answer("sure", AwaitingFollowup(IntentType.SCENARIO_CHANGE, "pessimistic"))
        assert reply.new_scenario == "pessimistic"
        assert reply.response.startswith("Switching to worst case scenario.")
        assert reply.next_state == AwaitingFollowup(IntentType.SCENARIO_CHANGE, "optimistic")

    def test_position_topic_without_suggestion_asks_for_a_number(self):
        reply = _answer("ok", AwaitingFollowup(IntentType.POSITION_CHANGE))
        assert reply.response == POSITION_PROMPT
        assert reply.new_scenario is None

    def test_financial_topic_gives_detailed_financials(self):
        reply = _answer("yeah", AwaitingFollowup(IntentType.FINANCIAL_QUERY), position=8)
        assert reply.kind == "accepted"
        assert "detailed financials for position 8" in reply.response
        assert "£22.0M" in reply.response
        assert "75.0%" in reply.response

    @pytest.mark.parametrize("position, scenario", [(3, "optimistic"), (20, "pessimistic"), (12, None)])
    def test_general_topic_depends_on_position(self, position, scenario):
        reply = _answer("yes please", AwaitingFollowup(IntentType.GENERAL_CHAT), position=position)
        assert reply.new_scenario == scenario


# ── Other answers ───────────────────────────────────────────────────────


class TestOtherAnswers:

    def test_negative(self):
        reply = _answer("no thanks", AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic"))
        assert reply.kind == "declined"
        assert reply.response == DECLINED
        assert reply.new_scenario is None

    def test_more_detail_uses_default_wage_ratio_when_missing(self):
        data = FinancialData(total_revenue=30_000_000, risk_score=80)
        reply = _answer("tell me more", AwaitingFollowup(IntentType.SCENARIO_CHANGE), data=data)
        assert reply.kind == "more_info"
        assert "95%" in reply.response
        assert "high risk category" in reply.response

    def test_pessimistic_redirect(self):
        reply = _answer("show me the worst", AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic"))
        assert reply.kind == "scenario"
        assert reply.new_scenario == "pessimistic"

    def test_position_redirect(self):
        reply = _answer("another position", AwaitingFollowup(IntentType.SCENARIO_CHANGE))
        assert reply.kind == "position"
        assert reply.response == POSITION_PROMPT

    def test_comparison_redirect(self):
        reply = _answer("compare them", AwaitingFollowup(IntentType.FINANCIAL_QUERY))
        assert reply.kind == "comparison"
        assert reply.response == COMPARISON_PROMPT


# ── Things that are not answers ─────────────────────────────────────────


class TestNotAnswers:

    def test_words_that_merely_start_with_yes(self):
        assert _answer("yesterday's numbers", AwaitingFollowup(IntentType.POSITION_CHANGE)) is None

    def test_redirect_words_must_be_whole_words(self):
        assert _answer("uptown funk", AwaitingFollowup(IntentType.SCENARIO_CHANGE)) is None

    def test_concrete_command_is_left_for_dispatch(self):
        intent = Intent(type=IntentType.POSITION_CHANGE, confidence=0.95,
                        parameters=IntentParameters(position=3))
        reply = _answer("yes position 3", AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic"),
                        intent=intent)
        assert reply is None

    def test_empty_transcript(self):
        assert _answer("   ", AwaitingFollowup(IntentType.POSITION_CHANGE)) is None


class TestIsConcreteCommand:

    def test_position_with_target(self):
        intent = Intent(type=IntentType.POSITION_CHANGE, confidence=0.9,
                        parameters=IntentParameters(position=5))
        assert is_concrete_command(intent)

    def test_low_confidence(self):
        intent = Intent(type=IntentType.SCENARIO_CHANGE, confidence=0.5,
                        parameters=IntentParameters(scenario="optimistic"))
        assert not is_concrete_command(intent)

    def test_financial_needs_a_metric(self):
        vague = Intent(type=IntentType.FINANCIAL_QUERY, confidence=0.75)
        metric = Intent(type=IntentType.FINANCIAL_QUERY, confidence=0.8,
                        parameters=IntentParameters(metric="revenue"))
        assert not is_concrete_command(vague)
        assert is_concrete_command(metric)

    def test_chat_is_never_concrete(self):
        assert not is_concrete_command(Intent(type=IntentType.GENERAL_CHAT, confidence=0.8))


# ── Asking questions ────────────────────────────────────────────────────


class TestContextualFollowup:

    def _ask(self, intent_type, *, position=12, scenario="current", data=DATA, rng=None):
        return contextual_followup(intent_type, position=position, scenario=scenario,
                                   financial_data=data, rng=rng or random.Random(0))

    def test_position_near_the_top(self):
        question = self._ask(IntentType.POSITION_CHANGE, position=4)
        assert question.text == "Want to see the playoff bonuses?"
        assert question.state() == AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic")

    def test_position_near_the_bottom(self):
        question = self._ask(IntentType.POSITION_CHANGE, position=20)
        assert question.suggested_scenario == "pessimistic"

    def test_mid_table_has_no_suggested_scenario(self):
        assert self._ask(IntentType.POSITION_CHANGE).suggested_scenario is None

    def test_high_wage_ratio_points_at_position(self):
        data = FinancialData(wage_ratio=95)
        question = self._ask(IntentType.FINANCIAL_QUERY, data=data)
        assert question.topic is IntentType.POSITION_CHANGE

    def test_scenario_suggests_the_opposite(self):
        question = self._ask(IntentType.SCENARIO_CHANGE, scenario="optimistic")
        assert question.text == "Compare with worst case?"
        assert question.suggested_scenario == "pessimistic"

    def test_general_uses_rng(self):
        rng = MagicMock()
        rng.choice.return_value = GENERAL_FOLLOWUPS[2]
        question = self._ask(IntentType.GENERAL_CHAT, rng=rng)
        rng.choice.assert_called_once_with(GENERAL_FOLLOWUPS)
        assert question.text == GENERAL_FOLLOWUPS[2]

    def test_every_question_asks(self):
        for intent_type in IntentType:
            assert self._ask(intent_type).text.endswith("?")


def test_followup_question_state():
    question = FollowupQuestion("Try a different position?", IntentType.POSITION_CHANGE)
    assert question.state() == AwaitingFollowup(IntentType.POSITION_CHANGE)
    assert Idle() == Idle()
