"""Response Generator – templated, data-filled replies for one intent.

Side-effect free: it reads a ``ResponseContext`` and returns a
``GeneratedResponse``; nothing it receives is mutated.
"""

from __future__ import annotations

import logging

from ..models.schemas import (
    FinancialData, GeneratedResponse, IntentType, ResponseContext,
)

logger = logging.getLogger(__name__)

_POSITION_FOLLOWUPS_TOP = [
    "What would promotion mean financially?",
    "How much investment is needed for promotion?",
    "What are the playoff financial dynamics?",
]
_POSITION_FOLLOWUPS_REST = [
    "How can we improve our league position?",
    "What are healthy financial benchmarks?",
    "Show me different scenario outcomes",
]
_FINANCIAL_FOLLOWUPS = [
    "How is revenue distributed across streams?",
    "What are the main financial risks?",
    "Compare with other Championship clubs",
]
_DEFAULT_FOLLOWUPS = [
    "Show me different league positions",
    "Explain the scenario modeling",
    "What financial metrics can I track?",
]


def millions(amount: float) -> str:
    """Format a pound amount as millions with one decimal (22_000_000 -> "22.0")."""
    return f"{amount / 1_000_000:.1f}"


class ResponseGenerator:
    """Builds reply text, follow-up questions, insights and data points."""

    def generate(self, context: ResponseContext) -> GeneratedResponse:
        text = self._text(context)
        logger.debug("Generated %s response: %s", context.intent.type.value, text)
        return GeneratedResponse(
            text=text,
            confidence=0.85,
            style=context.style,
            follow_up_questions=self._follow_ups(context),
            contextual_insights=self._insights(context),
            data_points=self._data_points(context.dashboard_data),
        )

    # ── text ────────────────────────────────────────────────────────────

    def _text(self, ctx: ResponseContext) -> str:
        intent_type = ctx.intent.type
        revenue = millions(ctx.dashboard_data.total_revenue)

        if intent_type is IntentType.POSITION_CHANGE:
            return self._position_text(ctx.intent.parameters.position or ctx.current_position, revenue)
        if intent_type is IntentType.SCENARIO_CHANGE:
            return self._scenario_text(ctx.intent.parameters.scenario or ctx.scenario)
        if intent_type is IntentType.FINANCIAL_QUERY:
            return self._financial_text(ctx, revenue)
        return (f"I understand you want to interact with the financial dashboard. "
                f"At position {ctx.current_position}, your revenue is £{revenue} million. "
                f"How can I help you explore the data?")

    @staticmethod
    def _position_text(position: int, revenue: str) -> str:
        if position <= 2:
            return (f"Moving to position {position} puts you in automatic promotion territory. "
                    f"At £{revenue} million revenue, you're positioned for the Premier League "
                    f"prize worth over £200 million.")
        if position <= 6:
            return (f"Position {position} keeps you in the playoff chase. With £{revenue} million "
                    f"in revenue, you're competing for that £200 million promotion opportunity.")
        if position >= 18:
            return (f"Position {position} puts you in relegation danger. With £{revenue} million "
                    f"revenue, financial sustainability becomes critical.")
        return (f"At position {position}, you're in Championship mid-table. Your £{revenue} million "
                f"revenue provides stability, but you're missing the playoff premium.")

    @staticmethod
    def _scenario_text(scenario: str) -> str:
        if scenario == "optimistic":
            return ("Switching to best case scenario shows your promotion potential. This models "
                    "maximum revenue optimization and successful recruitment.")
        if scenario == "pessimistic":
            return ("Worst case scenario reveals your downside risks. This models poor performance, "
                    "reduced revenue, and potential financial distress.")
        return ("Current trajectory shows your baseline financial path based on existing "
                "performance and market conditions.")

    def _financial_text(self, ctx: ResponseContext, revenue: str) -> str:
        metric = ctx.intent.parameters.metric
        parts: list[str] = []

        # A concept-level knowledge hit answers the question even if a metric word appeared
        if ctx.knowledge_answer and (metric is None or ctx.knowledge_match == "concept"):
            parts.append(ctx.knowledge_answer)

        metric_text = self._metric_text(metric, ctx, revenue)
        if metric_text:
            parts.append(metric_text)

        if parts:
            return " ".join(parts)
        return (f"Your financial metrics show important insights for position {ctx.current_position}. "
                f"Revenue is £{revenue} million with a risk score of "
                f"{round(ctx.dashboard_data.risk_score)}.")

    @staticmethod
    def _metric_text(metric: str | None, ctx: ResponseContext, revenue: str) -> str | None:
        data, position = ctx.dashboard_data, ctx.current_position
        if metric == "revenue":
            return (f"At position {position}, your club generates £{revenue} million annually. "
                    f"This includes broadcasting revenue, matchday income, and commercial partnerships.")
        if metric == "risk":
            return (f"Your financial risk score is {round(data.risk_score)} out of 100. This reflects "
                    f"wage ratios, cash flow stability, and regulatory compliance at position {position}.")
        if metric == "cashflow":
            if not data.monthly_cash_flow:
                return "Cash flow data is being calculated."
            sign = "positive" if data.monthly_cash_flow > 0 else "negative"
            return f"Monthly cash flow is {sign} £{millions(abs(data.monthly_cash_flow))} million."
        if metric in ("wages", "ratio"):
            if not data.wage_ratio:
                return "Wage ratio data is being calculated."
            return f"Wage ratio is {round(data.wage_ratio)}% of revenue."
        if metric == "sustainability":
            if not data.sustainability_days:
                return "Sustainability analysis is being calculated."
            return f"The club can sustain current operations for {round(data.sustainability_days)} days."
        return None

    # ── extras ──────────────────────────────────────────────────────────

    @staticmethod
    def _follow_ups(ctx: ResponseContext) -> list[str]:
        if ctx.intent.type is IntentType.POSITION_CHANGE:
            position = ctx.intent.parameters.position or ctx.current_position
            return list(_POSITION_FOLLOWUPS_TOP if position <= 6 else _POSITION_FOLLOWUPS_REST)
        if ctx.intent.type is IntentType.FINANCIAL_QUERY:
            return list(_FINANCIAL_FOLLOWUPS)
        return list(_DEFAULT_FOLLOWUPS)

    @staticmethod
    def _insights(ctx: ResponseContext) -> list[str]:
        insights: list[str] = []
        data = ctx.dashboard_data
        if 2 < ctx.current_position <= 6:
            insights.append("You're in the playoff zone where every position matters for promotion chances")
        if data.wage_ratio > 80:
            insights.append("Your wage ratio exceeds sustainable levels, creating regulatory risk")
        if data.risk_score > 70:
            insights.append("High financial risk score suggests need for immediate cost management")
        return insights[:2]

    @staticmethod
    def _data_points(data: FinancialData) -> list[str]:
        return [
            f"Revenue: £{millions(data.total_revenue)}M",
            f"Risk Score: {round(data.risk_score)}/100",
            f"Wage Ratio: {round(data.wage_ratio)}%",
        ]
