"""Tests for ConversationMemory: learning, personalisation and profile management."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from src.aaran.models.profile import ConversationTurn
from src.aaran.models.schemas import AwaitingFollowup, FinancialData, IntentType, utc_now
from src.aaran.services.conversation_memory import EXPLANATORY_SENTENCE, ConversationMemory
from src.aaran.services.memory_stores import ConversationStore, InMemoryConversationStore

DATA = FinancialData(total_revenue=22_000_000, monthly_cash_flow=200_000, wage_ratio=75,
                     risk_score=50, position_risk="Medium", sustainability_days=180)


def _turn(user_input="position 6", intent="POSITION_CHANGE", **kwargs) -> ConversationTurn:
    return ConversationTurn(user_input=user_input, intent=intent,
                            aaran_response="ok", **kwargs)


def _mock_store(similar=None):
    store = MagicMock(spec=ConversationStore)
    store.load_profile.return_value = None
    store.recent_turns.return_value = []
    store.supports_similarity = similar is not None
    store.find_similar.return_value = similar or []
    return store


@pytest.fixture
def memory():
    return ConversationMemory("user-1")


# ── Learning ────────────────────────────────────────────────────────────


class TestLearning:

    def test_learning_disabled_only_counts_the_turn(self, memory):
        memory.update_privacy_settings(enable_learning=False)
        memory.learn_from_interaction(_turn())
        assert memory.short_term == []
        assert memory.session_turns == 1
        assert memory.profile.learning_data.frequent_queries == {}
        assert memory.profile.interaction_history == []

    def test_short_term_window_is_capped(self):
        memory = ConversationMemory("user-1", short_term_size=2)
        for text in ("one", "two", "three"):
            memory.learn_from_interaction(_turn(text))
        assert [t.user_input for t in memory.short_term] == ["two", "three"]
        assert memory.session_turns == 3

    def test_long_term_history_is_capped(self):
        memory = ConversationMemory("user-1", long_term_size=2)
        for text in ("one", "two", "three"):
            memory.learn_from_interaction(_turn(text))
        assert len(memory.profile.interaction_history) == 2

    def test_counters(self, memory):
        memory.learn_from_interaction(_turn("What's the revenue?", "FINANCIAL_QUERY"))
        memory.learn_from_interaction(_turn("what's the revenue? ", "FINANCIAL_QUERY",
                                            action_taken="dashboard_action"))
        data = memory.profile.learning_data
        assert data.frequent_queries == {"what's the revenue?": 2}
        assert data.financial_interests == {"revenue": 2}
        assert data.successful_actions == {"dashboard_action": 1}

    def test_favourite_metric_needs_an_action(self, memory):
        memory.learn_from_interaction(_turn("show cash position", "FINANCIAL_QUERY"))
        assert "cash" not in memory.profile.preferences.favorite_metrics
        memory.learn_from_interaction(_turn("show cash position", "FINANCIAL_QUERY",
                                            action_taken="dashboard_action"))
        assert "cash" in memory.profile.preferences.favorite_metrics

    def test_preferred_scenarios(self, memory):
        memory.learn_from_interaction(_turn("worst case", "SCENARIO_CHANGE", new_scenario="pessimistic"))
        assert memory.profile.preferences.preferred_scenarios == ["current", "pessimistic"]

    def test_no_retention_writes_nothing(self):
        store = _mock_store()
        memory = ConversationMemory("user-1", store=store)
        memory.update_privacy_settings(retain_history=False)
        store.reset_mock()

        memory.learn_from_interaction(_turn())

        store.save_profile.assert_not_called()
        store.append_turn.assert_not_called()
        assert memory.profile.interaction_history == []
        assert len(memory.short_term) == 1

    def test_store_failure_is_not_raised(self):
        store = _mock_store()
        store.append_turn.side_effect = ConnectionError("down")
        store.save_profile.side_effect = ConnectionError("down")
        memory = ConversationMemory("user-1", store=store)
        memory.learn_from_interaction(_turn())
        assert memory.session_turns == 1

    def test_unreachable_store_starts_a_fresh_profile(self):
        store = _mock_store()
        store.load_profile.side_effect = ConnectionError("down")
        memory = ConversationMemory("user-1", store=store)
        assert memory.profile.id == "user-1"

    def test_recent_turns_are_loaded_from_the_store(self):
        store = InMemoryConversationStore()
        first = ConversationMemory("user-1", store=store)
        first.learn_from_interaction(_turn("position 6"))
        second = ConversationMemory("user-1", store=store)
        assert [t.user_input for t in second.short_term] == ["position 6"]


# ── Personalisation ─────────────────────────────────────────────────────


class TestPersonalisation:

    def test_brief_style(self, memory):
        memory.update_user_preferences(response_style="brief")
        text = memory.personalize_response(
            "Position 3 keeps you in the playoff chase. With £22.0 million in revenue, you compete.",
            intent_type=IntentType.GENERAL_CHAT,
        )
        assert text == "Position 3 keeps you in the playoff chase. Key figures: £22.0."

    def test_basic_detail_level_forces_brief(self, memory):
        memory.update_user_preferences(detail_level="basic")
        text = memory.personalize_response("First point. Second point.",
                                           intent_type=IntentType.GENERAL_CHAT)
        assert text == "First point."

    def test_explanatory_sentence_goes_before_the_question(self, memory):
        memory.update_user_preferences(detail_level="advanced")
        text = memory.personalize_response("Revenue is steady. Want to compare?",
                                           intent_type=IntentType.GENERAL_CHAT)
        assert text == f"Revenue is steady. {EXPLANATORY_SENTENCE} Want to compare?"

    def test_continuity_suggestion_for_position(self, memory):
        text = memory.personalize_response("Moving to position 8.",
                                           intent_type=IntentType.POSITION_CHANGE)
        assert text == ("Moving to position 8. Would you like to explore different "
                        "scenarios for this position?")

    def test_recent_scenario_talk_changes_the_suggestion(self, memory):
        memory.learn_from_interaction(_turn("best case", "SCENARIO_CHANGE"))
        text = memory.personalize_response("Moving to position 8.",
                                           intent_type=IntentType.POSITION_CHANGE)
        assert text.endswith("Shall I explain the revenue implications?")

    def test_continuity_suggestion_for_financial_query(self, memory):
        text = memory.personalize_response("Revenue is £22.0M.",
                                           intent_type=IntentType.FINANCIAL_QUERY)
        assert text.endswith("Would you like me to compare this with other positions?")

    def test_never_stacks_a_second_question(self, memory):
        text = memory.personalize_response("Moving to position 8. Want to see more?",
                                           intent_type=IntentType.POSITION_CHANGE)
        assert text == "Moving to position 8. Want to see more?"

    def test_single_command_flow_adds_nothing(self, memory):
        memory.update_user_preferences(conversation_flow="single_command")
        text = memory.personalize_response("Moving to position 8.",
                                           intent_type=IntentType.POSITION_CHANGE)
        assert text == "Moving to position 8."

    def test_no_focus_clause_on_the_first_turn(self, memory):
        text = memory.personalize_response("Done.", intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=DATA, position=12)
        assert text == "Done."

    def test_risk_focus(self, memory):
        memory.learn_from_interaction(_turn())
        memory.update_user_preferences(financial_focus="risk")
        data = FinancialData(risk_score=62, position_risk="High")
        text = memory.personalize_response("Moving to position 20.",
                                           intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=data, position=20)
        assert text == "Moving to position 20. Risk score: 62/100 (High)."

    def test_revenue_focus_compares_with_previous_position(self, memory):
        memory.learn_from_interaction(_turn(new_position=12))
        memory.update_user_preferences(financial_focus="revenue")
        text = memory.personalize_response("Moved.", intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=DATA, position=6)
        assert text == "Moved. Revenue at position 6 is £22.0M, up from position 12."

    def test_balanced_focus_skips_replies_with_figures(self, memory):
        memory.learn_from_interaction(_turn())
        text = memory.personalize_response("Revenue is £22.0M.", intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=DATA, position=12)
        assert text == "Revenue is £22.0M."

    def test_balanced_focus_adds_summary(self, memory):
        memory.learn_from_interaction(_turn())
        text = memory.personalize_response("Done.", intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=DATA, position=12)
        assert text == "Done. Revenue: £22.0M, Risk: 50/100."

    def test_focus_clause_without_learning(self, memory):
        memory.update_privacy_settings(enable_learning=False)
        memory.learn_from_interaction(_turn())
        text = memory.personalize_response("Done.", intent_type=IntentType.GENERAL_CHAT,
                                           financial_data=DATA, position=12)
        assert text == "Done. Revenue: £22.0M, Risk: 50/100."


class TestContinuityQuestion:

    def test_scenario_question_suggests_the_upside(self, memory):
        text, question = memory.personalize("Moving to position 8.",
                                            intent_type=IntentType.POSITION_CHANGE, position=8)
        assert text.endswith(question.text)
        assert question.state() == AwaitingFollowup(IntentType.POSITION_CHANGE, "optimistic")

    def test_scenario_question_in_the_relegation_zone(self, memory):
        _, question = memory.personalize("Moving to position 20.",
                                         intent_type=IntentType.POSITION_CHANGE, position=20)
        assert question.suggested_scenario == "pessimistic"

    def test_revenue_question_is_a_financial_topic(self, memory):
        memory.learn_from_interaction(_turn("best case", "SCENARIO_CHANGE"))
        _, question = memory.personalize("Moving to position 8.",
                                         intent_type=IntentType.POSITION_CHANGE, position=8)
        assert question.text == "Shall I explain the revenue implications?"
        assert question.state() == AwaitingFollowup(IntentType.FINANCIAL_QUERY)

    def test_compare_question_is_a_position_topic(self, memory):
        _, question = memory.personalize("Revenue is £22.0M.",
                                         intent_type=IntentType.FINANCIAL_QUERY)
        assert question.state() == AwaitingFollowup(IntentType.POSITION_CHANGE)

    def test_no_question_when_the_reply_already_asks_one(self, memory):
        text, question = memory.personalize("Moving to position 8. Want to see more?",
                                            intent_type=IntentType.POSITION_CHANGE, position=8)
        assert question is None
        assert text == "Moving to position 8. Want to see more?"


class TestSimilarity:

    def test_recent_similar_turn_is_mentioned(self):
        store = _mock_store(similar=[({"intent": "FINANCIAL_QUERY", "timestamp": utc_now()}, 0.92)])
        memory = ConversationMemory("user-1", store=store)
        text = memory.personalize_response("Revenue is steady.", intent_type=IntentType.GENERAL_CHAT,
                                           query="how is revenue")
        assert text == ("Revenue is steady. (This relates to our earlier discussion "
                        "about financial query.)")

    def test_old_turns_are_ignored(self):
        old = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
        store = _mock_store(similar=[({"intent": "FINANCIAL_QUERY", "timestamp": old}, 0.95)])
        memory = ConversationMemory("user-1", store=store)
        text = memory.personalize_response("Revenue is steady.", intent_type=IntentType.GENERAL_CHAT,
                                           query="how is revenue")
        assert text == "Revenue is steady."

    def test_weak_matches_are_ignored(self):
        store = _mock_store(similar=[({"intent": "FINANCIAL_QUERY", "timestamp": utc_now()}, 0.5)])
        memory = ConversationMemory("user-1", store=store)
        text = memory.personalize_response("Revenue is steady.", intent_type=IntentType.GENERAL_CHAT,
                                           query="how is revenue")
        assert text == "Revenue is steady."


# ── Profile management ──────────────────────────────────────────────────


class TestProfile:

    def test_recent_context(self, memory):
        memory.learn_from_interaction(_turn("position 6"))
        memory.learn_from_interaction(_turn("worst case", "SCENARIO_CHANGE"))
        assert memory.get_recent_context(3) == ["POSITION_CHANGE: position 6",
                                                "SCENARIO_CHANGE: worst case"]
        assert memory.get_recent_context(0) == []

    def test_preferences_are_returned_as_a_copy(self, memory):
        prefs = memory.get_user_preferences()
        prefs.favorite_metrics.append("wages")
        assert "wages" not in memory.profile.preferences.favorite_metrics

    @pytest.mark.parametrize("updates", [{"response_style": "shouty"}, {"colour": "red"}])
    def test_invalid_preference_update(self, memory, updates):
        assert memory.update_user_preferences(**updates) is False
        assert memory.profile.preferences.response_style == "detailed"

    def test_preferences_persist_in_the_store(self):
        store = InMemoryConversationStore()
        ConversationMemory("user-1", store=store).update_user_preferences(response_style="brief")
        assert ConversationMemory("user-1", store=store).profile.preferences.response_style == "brief"

    def test_export_then_import(self):
        source = ConversationMemory("user-1")
        source.update_user_preferences(financial_focus="risk")
        exported = source.export_profile()
        payload = json.loads(exported)
        assert payload["version"] == "1.0"
        assert "export_date" in payload

        target = ConversationMemory("user-2")
        assert target.import_profile(exported) is True
        assert target.profile.id == "user-2"
        assert target.profile.preferences.financial_focus == "risk"
        assert target.profile.privacy.enable_learning is False

    def test_import_rejects_bad_json(self, memory):
        assert memory.import_profile("{not json") is False

    def test_import_rejects_invalid_preferences(self, memory):
        payload = json.loads(memory.export_profile())
        payload["preferences"]["response_style"] = "shouty"
        assert memory.import_profile(json.dumps(payload)) is False

    def test_import_rejects_missing_sections(self, memory):
        assert memory.import_profile(json.dumps({"id": "x"})) is False

    def test_reset_keeps_privacy(self, memory):
        memory.update_user_preferences(response_style="brief")
        memory.update_privacy_settings(share_insights=True)
        memory.reset_profile()
        assert memory.profile.preferences.response_style == "detailed"
        assert memory.profile.privacy.share_insights is True

    def test_summary(self, memory):
        memory.learn_from_interaction(_turn("position 6", new_position=6,
                                            action_taken="dashboard_action"))
        memory.learn_from_interaction(_turn("best case", "SCENARIO_CHANGE", new_scenario="optimistic"))
        summary = memory.get_conversation_summary()
        assert summary["turns"] == 2
        assert summary["topics_discussed"] == ["POSITION_CHANGE", "SCENARIO_CHANGE"]
        assert summary["positions_explored"] == [6]
        assert summary["scenarios_used"] == ["optimistic"]
        assert summary["successful_actions"] == ["dashboard_action"]
