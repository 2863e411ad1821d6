"""Aaran agent – turns one voice transcript into a reply and dashboard changes.

Per turn:

1. **Refresh** a working copy of the session's ``ConversationContext`` from
   the dashboard state the caller reports
2. **Classify** the transcript with recent history and memory context
3. **Intercept** short answers ("yes", "no thanks", "tell me more") when
   the previous reply asked a question
4. **Advanced commands** (compare, export, undo, reset, analysis,
   "confirm <code>") go straight to the dashboard controller
5. **Dispatch** by intent type to build the reply
6. **Enrich** with a revenue-impact clause and one contextual follow-up
7. **Personalise** through conversation memory, arm ``AwaitingFollowup``
   only if the final reply asks something, record the turn and commit the
   context

The stored context is replaced only after a turn succeeds; any failure is
logged and answered with an apology.

Usage::

    agent = AaranAgent("session-1")
    result = agent.process_voice_command("move to position 6",
                                         {"selected_position": 12, "scenario": "current"})
    print(result.response, result.new_position)
"""

from __future__ import annotations

import copy
import logging
import random
import re
from dataclasses import dataclass, replace
from typing import Any, Mapping

from ..config.settings import (
    KNOWLEDGE_CONFIDENCE_THRESHOLD, LOW_CONFIDENCE_THRESHOLD,
    MAX_CONVERSATION_HISTORY, MAX_RECENT_INTENTS,
)
from ..data.vocabulary import SEMANTIC_TRIGGERS, contains_phrase, find_phrase
from ..models.dashboard import ActionResult, ActionType, DashboardAction
from ..models.profile import ConversationTurn, UserPreferences
from ..models.schemas import (
    DEFAULT_POSITION, MAX_POSITION, MIN_POSITION, SCENARIOS, AgentResult,
    AwaitingFollowup, ClassificationContext, ConversationContext,
    ConversationFocus, ConversationState, DashboardSnapshot, FinancialData,
    FollowupQuestion, Idle, Intent, IntentType, ResponseContext,
    clamp_position, utc_now,
)
from ..services.conversation_memory import ConversationMemory
from ..services.dashboard_controller import DashboardController, DashboardPort
from ..services.phrasing import has_followup, insert_before_question
from ..services.session_store import InMemorySessionStore, SessionStore
from ..services.tracing import Tracer
from .followups import contextual_followup, interpret_followup
from .intent_classifier import IntentClassifier
from .knowledge_retrieval import FinancialKnowledgeRetrieval
from .response_generator import ResponseGenerator, millions

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I ran into a problem processing that command. Please try again."
CLARIFICATION = "I'm not sure what you meant. Try saying something like 'position 5' or 'best case scenario'"
HELP_TEXT = (
    "I can help you navigate the financial dashboard. Try saying 'position 6' to change league "
    "position, 'best case scenario' to change projections, or ask 'what's the revenue?' for "
    "financial data."
)
UNKNOWN_TEXT = (
    "I understand you want to interact with the dashboard, but I'm not sure exactly what to do. "
    "Try being more specific."
)
REVENUE_PER_PLACE = 450_000
MIN_IMPACT_PLACES = 3
MIN_REPORTED_IMPACT = 1_000_000

_NUMBER = re.compile(r"\b\d+\b")
_CONFIRM = re.compile(r"^confirm\b(?:\s+([a-z0-9]+))?")
_EXPORT_FORMAT = re.compile(r"\b(csv|json|pdf|xml|xlsx|excel)\b")
_STEP_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5}
_COUNT = r"(\d+|one|two|three|four|five)"
_UNDO_STEPS = re.compile(
    rf"\b{_COUNT}\s+(?:steps?|changes?|actions?)\b|^(?:undo|roll ?back|go back)\s+{_COUNT}[.!]?$"
)


@dataclass(frozen=True)
class PositionContext:
    description: str
    follow_up: str
    suggested_scenario: str


_NAMED_CONTEXTS = {
    1: PositionContext(
        "the top of the league! Champions territory with maximum revenue and prestige",
        "Want to see how title-winning finances look in the best case scenario?", "optimistic"),
    2: PositionContext(
        "title race position! Automatic promotion with massive commercial benefits",
        "Shall I show you the best case promotion scenario?", "optimistic"),
    6: PositionContext(
        "playoff qualification! The crucial cut-off for promotion opportunities",
        "Want to see the playoff bonuses in the best case scenario?", "optimistic"),
    12: PositionContext(
        "safe mid-table territory with steady, predictable finances",
        "Would you like to see the best case scenario for this position?", "optimistic"),
    17: PositionContext(
        "survival mode - just above the relegation battle with increasing pressure",
        "Want to see the worst case scenario at this position?", "pessimistic"),
    18: PositionContext(
        "the financial cliff! This is where relegation panic begins and revenues plummet",
        "Shall I show you the worst case scenario at the cliff?", "pessimistic"),
    22: PositionContext(
        "relegation battle! Bottom three territory with severe financial consequences",
        "Want to see the worst case impact?", "pessimistic"),
    24: PositionContext(
        "bottom of the league - relegated with devastating financial impact",
        "Shall I show you the worst case scenario down here?", "pessimistic"),
}


def position_context(position: int) -> PositionContext:
    """Football meaning of *position*, with a scenario-oriented follow-up."""
    if position in _NAMED_CONTEXTS:
        return _NAMED_CONTEXTS[position]
    if position <= 6:
        return PositionContext("in the promotion race with enhanced commercial appeal",
                               "Want to explore the best case promotion scenario?", "optimistic")
    if position >= 18:
        return PositionContext("in the relegation zone with reduced revenue and high risk",
                               "Shall I show you the worst case scenario for this position?",
                               "pessimistic")
    return PositionContext("mid-table with moderate financial stability",
                           "Want to see how the best case scenario changes this?", "optimistic")


@dataclass
class _Outcome:
    """Reply under construction for one turn."""

    response: str
    new_position: int | None = None
    new_scenario: str | None = None
    should_speak: bool = True
    action_result: ActionResult | None = None
    question: FollowupQuestion | None = None
    allow_followup: bool = True


class AaranAgent:
    """Conversational front end of the dashboard for one session."""

    def __init__(
        self,
        session_id: str = "default-session",
        *,
        session_store: SessionStore | None = None,
        classifier: IntentClassifier | None = None,
        knowledge: FinancialKnowledgeRetrieval | None = None,
        responder: ResponseGenerator | None = None,
        memory: ConversationMemory | None = None,
        controller: DashboardController | None = None,
        rng: random.Random | None = None,
    ):
        self.session_id = session_id
        self.session_store = session_store or InMemorySessionStore()
        self.classifier = classifier or IntentClassifier()
        self.knowledge = knowledge or FinancialKnowledgeRetrieval()
        self.responder = responder or ResponseGenerator()
        self.memory = memory or ConversationMemory(user_id=session_id)
        self.controller = controller or DashboardController()
        self._rng = rng or random.Random()

    # ── public API ──────────────────────────────────────────────────────

    def process_voice_command(
        self,
        transcript: str,
        current_dashboard_state: Mapping[str, Any] | DashboardSnapshot,
        financial_data: FinancialData | None = None,
    ) -> AgentResult:
        """Handle one transcript; never raises."""
        tracer = Tracer.start(
            "aaran_turn",
            user_id=self.memory.user_id,
            session_id=self.session_id,
            metadata={"transcript": transcript},
        )
        stored = self._load_context()
        working = copy.deepcopy(stored)

        try:
            result = self._process(working, transcript or "", current_dashboard_state,
                                   financial_data, tracer)
        except Exception:
            logger.exception("Voice command failed for session %s: %r", self.session_id, transcript)
            tracer.end(output={"error": APOLOGY})
            return AgentResult(
                response=APOLOGY,
                intent=Intent(original_text=(transcript or "").strip(),
                              reasoning="Processing error"),
                context=copy.deepcopy(stored),
            )

        self.session_store.set(self.session_id, working)
        tracer.end(output=result.response)
        return result

    def initialize_dashboard(
        self,
        port: DashboardPort | None = None,
        *,
        on_position_change=None,
        on_scenario_change=None,
    ) -> None:
        self.controller.initialize(
            port,
            on_position_change=on_position_change,
            on_scenario_change=on_scenario_change,
        )

    def get_context(self) -> ConversationContext:
        return copy.deepcopy(self._load_context())

    def clear_context(self) -> None:
        self.session_store.delete(self.session_id)

    def set_response_style(self, style: str) -> bool:
        return self.memory.update_user_preferences(response_style=style)

    def set_financial_focus(self, focus: str) -> bool:
        return self.memory.update_user_preferences(financial_focus=focus)

    def enable_continuous_conversation(self, enable: bool = True) -> bool:
        flow = "continuous" if enable else "single_command"
        return self.memory.update_user_preferences(conversation_flow=flow)

    def get_user_preferences(self) -> UserPreferences:
        return self.memory.get_user_preferences()

    def get_conversation_summary(self) -> dict[str, Any]:
        return self.memory.get_conversation_summary()

    # ── turn pipeline ───────────────────────────────────────────────────

    def _load_context(self) -> ConversationContext:
        return self.session_store.get(self.session_id) or ConversationContext()

    def _process(
        self,
        ctx: ConversationContext,
        transcript: str,
        dashboard_state: Mapping[str, Any] | DashboardSnapshot,
        financial_data: FinancialData | None,
        tracer: Tracer,
    ) -> AgentResult:
        # ── STEP 1: Refresh dashboard snapshot ──────────────────────────
        position, scenario = _read_dashboard_state(dashboard_state)
        previous = ctx.dashboard_state
        ctx.dashboard_state = DashboardSnapshot(
            selected_position=position,
            scenario=scenario,
            last_revenue=financial_data.total_revenue if financial_data else previous.last_revenue,
            last_risk_score=financial_data.risk_score if financial_data else previous.last_risk_score,
        )
        ctx.timestamp = utc_now()
        self.controller.sync_state(position, scenario)
        data = financial_data or self._default_financial_data(ctx)

        # ── STEP 2: Classify ────────────────────────────────────────────
        with tracer.span("classify") as sp:
            classification = ClassificationContext(
                current_position=position,
                current_scenario=scenario,
                recent_intents=list(ctx.recent_intents),
                conversation_history=[*ctx.conversation_history,
                                      *self.memory.get_recent_context(3)],
            )
            intent = self.classifier.classify(transcript, classification)
            ctx.user_intent = intent
            sp.update(output={"intent": intent.type.value, "confidence": intent.confidence,
                              "reasoning": intent.reasoning})
        logger.info("Intent %s (%.2f): %s", intent.type.value, intent.confidence, intent.reasoning)

        # ── STEP 3: Follow-up interception ──────────────────────────────
        if isinstance(ctx.state, AwaitingFollowup):
            with tracer.span("followup") as sp:
                reply = interpret_followup(transcript, intent, ctx.state,
                                           position=position, financial_data=data)
                sp.update(output={"topic": ctx.state.topic.value,
                                  "kind": reply.kind if reply else None})
            if reply is not None:
                outcome = _Outcome(reply.response, new_scenario=reply.new_scenario)
                self._apply_changes(outcome, position, scenario)
                ctx.last_action = f"followup_{reply.kind}"
                if reply.new_scenario:
                    ctx.current_focus = ConversationFocus.SCENARIO_PLANNING
                next_state = reply.next_state if "?" in outcome.response else Idle()
                return self._finish(ctx, transcript, intent, outcome, next_state)
            logger.debug("Not a follow-up answer, dispatching normally")
            ctx.state = Idle()

        # ── STEP 4: Advanced commands ───────────────────────────────────
        with tracer.span("advanced_commands") as sp:
            outcome = self._advanced_command(transcript, position)
            sp.update(output={"handled": outcome is not None})
        if outcome is not None:
            ctx.current_focus = ConversationFocus.for_intent(intent.type)
            if outcome.new_position is not None or outcome.new_scenario is not None:
                self._report_changes(outcome, position, scenario)
            return self._finish(ctx, transcript, intent, outcome, Idle())

        # ── STEP 5: Dispatch by intent ──────────────────────────────────
        with tracer.span("dispatch") as sp:
            outcome = self._dispatch(ctx, intent, data, position, scenario)
            ctx.current_focus = ConversationFocus.for_intent(intent.type)
            self._apply_changes(outcome, position, scenario)
            sp.update(output={"last_action": ctx.last_action,
                              "new_position": outcome.new_position,
                              "new_scenario": outcome.new_scenario})

        # ── STEP 6: Enrich ──────────────────────────────────────────────
        text = outcome.response
        if outcome.new_position is not None and financial_data is not None:
            text = insert_before_question(text, _revenue_impact(position, outcome.new_position))

        question = outcome.question
        flow = self.memory.get_user_preferences().conversation_flow
        if outcome.allow_followup and not has_followup(text) and flow != "single_command":
            question = contextual_followup(
                intent.type,
                position=outcome.new_position or position,
                scenario=outcome.new_scenario or scenario,
                financial_data=financial_data,
                rng=self._rng,
            )
            text = f"{text} {question.text}"

        # ── STEP 7: Personalise ─────────────────────────────────────────
        with tracer.span("personalise") as sp:
            text, suggestion = self.memory.personalize(
                text,
                intent_type=intent.type,
                financial_data=financial_data,
                position=outcome.new_position or position,
                query=transcript,
            )
            sp.update(output=text)
        outcome.response = text
        if suggestion is not None:
            question = suggestion

        next_state: ConversationState = Idle()
        if "?" in text:
            next_state = question.state() if question else AwaitingFollowup(intent.type)
        return self._finish(ctx, transcript, intent, outcome, next_state)

    def _finish(
        self,
        ctx: ConversationContext,
        transcript: str,
        intent: Intent,
        outcome: _Outcome,
        next_state: ConversationState,
    ) -> AgentResult:
        ctx.state = next_state
        ctx.remember(transcript, intent, MAX_CONVERSATION_HISTORY, MAX_RECENT_INTENTS)
        if outcome.new_position is not None or outcome.new_scenario is not None:
            ctx.dashboard_state = replace(
                ctx.dashboard_state,
                selected_position=outcome.new_position or ctx.dashboard_state.selected_position,
                scenario=outcome.new_scenario or ctx.dashboard_state.scenario,
            )

        acted = outcome.action_result is not None and outcome.action_result.success
        self.memory.learn_from_interaction(ConversationTurn(
            user_input=transcript,
            intent=intent.type.value,
            aaran_response=outcome.response,
            action_taken="dashboard_action" if acted else None,
            new_position=outcome.new_position,
            new_scenario=outcome.new_scenario,
        ))
        logger.info("Aaran reply (state=%s): %s", type(next_state).__name__, outcome.response)

        return AgentResult(
            response=outcome.response,
            intent=intent,
            context=copy.deepcopy(ctx),
            new_position=outcome.new_position,
            new_scenario=outcome.new_scenario,
            should_speak=outcome.should_speak,
            action_result=outcome.action_result,
        )

    # ── dispatch ────────────────────────────────────────────────────────

    def _dispatch(
        self,
        ctx: ConversationContext,
        intent: Intent,
        data: FinancialData,
        position: int,
        scenario: str,
    ) -> _Outcome:
        if intent.confidence < LOW_CONFIDENCE_THRESHOLD:
            ctx.last_action = "low_confidence_response"
            return _Outcome(CLARIFICATION, allow_followup=False)

        if intent.type is IntentType.POSITION_CHANGE:
            return self._handle_position(ctx, intent, data, position, scenario)

        if intent.type is IntentType.SCENARIO_CHANGE:
            target = intent.parameters.scenario
            if not target:
                ctx.last_action = "scenario_clarification_needed"
                return _Outcome("Which scenario? Say 'best case', 'worst case', or 'current'",
                                question=FollowupQuestion("", IntentType.SCENARIO_CHANGE),
                                allow_followup=False)
            ctx.last_action = f"scenario_change_to_{target}"
            generated = self.responder.generate(ResponseContext(
                intent=intent, dashboard_data=data, current_position=position,
                scenario=target, conversation_history=list(ctx.conversation_history),
            ))
            return _Outcome(generated.text, new_scenario=target)

        if intent.type is IntentType.FINANCIAL_QUERY:
            ctx.last_action = f"financial_query_{intent.parameters.metric or 'knowledge_based'}"
            return _Outcome(self._financial_answer(ctx, intent, data, position, scenario))

        if intent.type is IntentType.HELP_REQUEST:
            ctx.last_action = "help_provided"
            return _Outcome(HELP_TEXT)

        if intent.type is IntentType.GENERAL_CHAT:
            ctx.last_action = "general_chat"
            return _Outcome(_chat_reply(intent.original_text))

        ctx.last_action = "unknown_intent"
        return _Outcome(UNKNOWN_TEXT)

    def _handle_position(
        self,
        ctx: ConversationContext,
        intent: Intent,
        data: FinancialData,
        position: int,
        scenario: str,
    ) -> _Outcome:
        params = intent.parameters
        if params.position is not None:
            target = clamp_position(params.position)
            ctx.last_action = f"position_change_to_{target}"
            text, question = self._describe_position(intent, target, data, ctx)
            return _Outcome(text, new_position=target, question=question)

        if params.direction in ("up", "down"):
            ctx.last_action = f"position_move_{params.direction}"
            step = -1 if params.direction == "up" else 1
            target = position + step
            if not MIN_POSITION <= target <= MAX_POSITION:
                limit = "the top" if params.direction == "up" else "the bottom"
                return _Outcome(f"Already at {limit} position.", allow_followup=False)
            generated = self.responder.generate(ResponseContext(
                intent=replace(intent, parameters=replace(params, position=target)),
                dashboard_data=data, current_position=target, scenario=scenario,
                conversation_history=list(ctx.conversation_history),
            ))
            return _Outcome(generated.text, new_position=target)

        ctx.last_action = "position_clarification_needed"
        return _Outcome(
            "Which position would you like to move to? Try 'champions', 'playoffs', "
            "'relegation battle', or 'show the cliff'.",
            question=FollowupQuestion("", IntentType.POSITION_CHANGE),
            allow_followup=False,
        )

    def _describe_position(
        self, intent: Intent, target: int, data: FinancialData, ctx: ConversationContext,
    ) -> tuple[str, FollowupQuestion]:
        meaning = position_context(target)
        found = find_phrase(intent.original_text.lower(), SEMANTIC_TRIGGERS)

        if found and found[1].startswith("moving"):
            lead = f"{found[1].capitalize()} to position {target} - that's {meaning.description}."
        elif found:
            lead = f"Moving to {found[1]} - that's {meaning.description}."
        else:
            lead = f"Moving to position {target} - {meaning.description}."

        text = f"{lead} {_financial_impact(target, data, ctx)} {meaning.follow_up}"
        question = FollowupQuestion(meaning.follow_up, IntentType.POSITION_CHANGE,
                                    meaning.suggested_scenario)
        return text, question

    def _financial_answer(
        self,
        ctx: ConversationContext,
        intent: Intent,
        data: FinancialData,
        position: int,
        scenario: str,
    ) -> str:
        try:
            knowledge = self.knowledge.find_relevant_knowledge(intent.original_text, ctx, data)
            response_ctx = ResponseContext(
                intent=intent, dashboard_data=data, current_position=position,
                scenario=scenario, conversation_history=list(ctx.conversation_history),
            )
            if knowledge.confidence > KNOWLEDGE_CONFIDENCE_THRESHOLD:
                logger.debug("Knowledge answer at %.2f confidence", knowledge.confidence)
                response_ctx.knowledge_results = list(knowledge.sources)
                response_ctx.knowledge_answer = knowledge.answer
                response_ctx.knowledge_match = knowledge.top_match
            generated = self.responder.generate(response_ctx)
        except Exception as exc:
            logger.warning("Financial answer generation failed, using summary: %s", exc)
            return (f"At position {position}: Revenue is {millions(data.total_revenue)} million "
                    f"pounds, risk score is {round(data.risk_score)}. What specific financial "
                    f"data would you like to know more about?")

        for insight in generated.contextual_insights:
            if insight not in self.memory.financial_insights:
                self.memory.financial_insights.append(insight)
        return generated.text

    # ── advanced commands ───────────────────────────────────────────────

    def _advanced_command(self, transcript: str, position: int) -> _Outcome | None:
        text = transcript.lower().strip()

        def has(*words: str) -> bool:
            return any(contains_phrase(text, w) for w in words)

        if _CONFIRM.match(text):
            return self._confirm(text)
        if has("compare") and has("positions", "multiple"):
            return self._bulk_compare(text, position)
        if has("export", "download"):
            return self._export(text)
        if has("undo", "go back", "rollback", "roll back"):
            return self._undo(text)
        if has("reset", "clear", "default"):
            return self._reset()
        if has("analyze", "analyse", "analysis", "run analysis"):
            return self._analysis(text, position)
        return None

    def _bulk_compare(self, text: str, position: int) -> _Outcome:
        numbers = [int(n) for n in _NUMBER.findall(text)]
        positions = [n for n in numbers if MIN_POSITION <= n <= MAX_POSITION][:6]
        if not positions:
            positions = list(dict.fromkeys(
                [position, max(MIN_POSITION, position - 3), min(MAX_POSITION, position + 3)]
            ))
        analysis_type = next(
            (t for t in ("revenue", "risk", "sustainability") if t in text), "all"
        )
        result = self.controller.execute_action(DashboardAction(
            type=ActionType.BULK_COMPARE,
            parameters={"positions": positions, "scenarios": list(SCENARIOS),
                        "analysis_type": analysis_type},
            requires_confirmation=len(positions) > 4,
            is_reversible=False,
        ))
        listed = ", ".join(str(p) for p in positions)
        if result.success:
            response = (f"I've compared positions {listed} across all scenarios. {result.message}. "
                        f"The analysis shows significant variation in {analysis_type} metrics "
                        f"between positions.")
        else:
            response = f"I couldn't complete the bulk comparison: {result.message}"
        return _Outcome(response, action_result=result)

    def _export(self, text: str) -> _Outcome:
        match = _EXPORT_FORMAT.search(text)
        result = self.controller.execute_action(DashboardAction(
            type=ActionType.EXPORT_DATA,
            parameters={
                "format": match.group(1) if match else "json",
                "include_charts": "charts" in text or "graphs" in text,
                "selected_data": ["revenue", "risk", "sustainability", "position"],
            },
            requires_confirmation=True,
            is_reversible=False,
        ))
        response = result.message if result.success else f"Export request: {result.message}"
        return _Outcome(response, action_result=result)

    def _undo(self, text: str) -> _Outcome:
        # a number only counts when it is a step count, not "back to position 5"
        steps = 1
        match = _UNDO_STEPS.search(text)
        if match:
            count = match.group(1) or match.group(2)
            steps = int(count) if count.isdigit() else _STEP_WORDS[count]
        result = self.controller.rollback(steps)
        if not result.success:
            return _Outcome(f"I couldn't undo the action: {result.message}", action_result=result)
        target = result.data["target_state"]
        return _Outcome(
            f"{result.message}. The dashboard has been restored to the previous state.",
            new_position=target["selected_position"],
            new_scenario=target["scenario"],
            action_result=result,
        )

    def _reset(self) -> _Outcome:
        result = self.controller.execute_action(DashboardAction(
            type=ActionType.RESET_VIEW, requires_confirmation=True,
        ))
        if not result.success:
            return _Outcome(f"Reset request: {result.message}", action_result=result)
        return _Outcome(
            f"{result.message}. We're now viewing the mid-table position with current "
            f"scenario data.",
            new_position=DEFAULT_POSITION,
            new_scenario="current",
            action_result=result,
        )

    def _analysis(self, text: str, position: int) -> _Outcome:
        analysis_type = next(
            (t for t in ("comprehensive", "risk", "revenue") if t in text), "quick"
        )
        result = self.controller.execute_action(DashboardAction(
            type=ActionType.RUN_ANALYSIS,
            parameters={"type": analysis_type, "position": position},
            is_reversible=False,
        ))
        if not result.success:
            return _Outcome(f"Analysis failed: {result.message}", action_result=result)
        return _Outcome(
            f"{result.message}. Based on position {position}, I've identified key financial "
            f"insights and risk factors for your current scenario.",
            action_result=result,
        )

    def _confirm(self, text: str) -> _Outcome:
        code = _CONFIRM.match(text).group(1)
        if not code:
            return _Outcome("I didn't understand which action to confirm. "
                            "Please include the confirmation code.")
        result = self.controller.confirm_action(code)
        if not result.success:
            return _Outcome(f"Confirmation failed: {result.message}", action_result=result)
        return _Outcome(
            f"Action confirmed! {result.message}",
            new_position=result.data.get("position"),
            new_scenario=result.data.get("scenario"),
            action_result=result,
        )

    # ── dashboard changes ───────────────────────────────────────────────

    @staticmethod
    def _report_changes(outcome: _Outcome, position: int, scenario: str) -> None:
        if outcome.new_position == position:
            outcome.new_position = None
        if outcome.new_scenario == scenario:
            outcome.new_scenario = None

    def _apply_changes(self, outcome: _Outcome, position: int, scenario: str) -> None:
        """Route changes through the controller when a port is attached.

        Changes stay on the result either way so the caller can apply them.
        """
        self._report_changes(outcome, position, scenario)
        if not self.controller.has_port:
            return

        actions = []
        if outcome.new_position is not None:
            actions.append(DashboardAction(ActionType.SET_POSITION,
                                           {"position": outcome.new_position, "animated": True}))
        if outcome.new_scenario is not None:
            actions.append(DashboardAction(ActionType.SET_SCENARIO,
                                           {"scenario": outcome.new_scenario}))
        for action in actions:
            result = self.controller.execute_action(action)
            if not result.success:
                logger.warning("Dashboard rejected %s: %s", action.type, result.message)
            outcome.action_result = result

    @staticmethod
    def _default_financial_data(ctx: ConversationContext) -> FinancialData:
        return FinancialData(
            total_revenue=ctx.dashboard_state.last_revenue or 22_000_000,
            monthly_cash_flow=200_000,
            wage_ratio=75,
            risk_score=ctx.dashboard_state.last_risk_score or 50,
            position_risk="Medium",
            sustainability_days=180,
        )


# ── Helpers ─────────────────────────────────────────────────────────────

def _read_dashboard_state(state: Mapping[str, Any] | DashboardSnapshot) -> tuple[int, str]:
    if isinstance(state, Mapping):
        position = state.get("selected_position", DEFAULT_POSITION)
        scenario = state.get("scenario", "current")
    else:
        position, scenario = state.selected_position, state.scenario
    return clamp_position(int(position)), scenario if scenario in SCENARIOS else "current"


def _financial_impact(position: int, data: FinancialData, ctx: ConversationContext) -> str:
    revenue = millions(data.total_revenue or ctx.dashboard_state.last_revenue or 30_000_000)
    risk = round(data.risk_score or ctx.dashboard_state.last_risk_score or 50)
    if position <= 2:
        return f"Revenue spikes to £{revenue}M with championship bonuses and maximum commercial appeal."
    if position <= 6:
        return f"Strong revenue of £{revenue}M with playoff bonuses and increased sponsorship value."
    if position <= 17:
        return f"Steady revenue of £{revenue}M with risk score {risk}/100."
    return f"Revenue drops to £{revenue}M with high risk score of {risk}/100 due to relegation threat."


def _revenue_impact(current: int, target: int) -> str:
    """Clause for big moves; positive when moving up the table."""
    if abs(target - current) < MIN_IMPACT_PLACES:
        return ""
    impact = (current - target) * REVENUE_PER_PLACE
    if abs(impact) <= MIN_REPORTED_IMPACT:
        return ""
    verb = "increases" if impact > 0 else "decreases"
    return f"This {verb} revenue by £{abs(impact) / 1_000_000:.1f}M."


def _chat_reply(text: str) -> str:
    lowered = text.lower()
    if any(contains_phrase(lowered, w) for w in ("hello", "hi", "hey")):
        return ("Hello! I'm Aaran, your voice assistant for the financial dashboard. "
                "How can I help you today?")
    if "thank" in lowered:
        return ("You're welcome! Is there anything else you'd like to know about the club's "
                "financial position?")
    if any(contains_phrase(lowered, w) for w in ("good", "great", "well done")):
        return ("I'm glad you're finding the dashboard useful! Feel free to ask me about any "
                "financial metrics or change positions.")
    return ("I'm here to help with the financial dashboard. Try asking about positions, "
            "scenarios, or financial data.")
