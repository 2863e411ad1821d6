"""Dashboard Controller – validated, confirmable, undoable dashboard actions.

Lifecycle of one action::

    received → validated → (parked for confirmation → confirmed) → performed → recorded

The controller never touches UI state itself.  Every mutation goes through a
``DashboardPort`` (``set_position`` / ``set_scenario``); without a port,
mutating actions fail with ``"Action failed: ..."`` and nothing is recorded.

Pending confirmations are held under short codes and purged lazily against
an injectable clock, so there are no background timers.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict
from typing import Any, Callable, Protocol
from urllib.parse import quote

from ..config.settings import CONFIRMATION_TIMEOUT_SECONDS, MAX_STATE_HISTORY
from ..models.dashboard import ActionResult, ActionType, DashboardAction, DashboardState
from ..models.schemas import DEFAULT_POSITION, MAX_POSITION, MIN_POSITION, SCENARIOS, utc_now

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json", "pdf")
MAX_BULK_POSITIONS = 6
ANALYSIS_TYPES = ("revenue", "risk", "sustainability", "all")
_SCENARIO_MULTIPLIER = {"optimistic": 1.2, "pessimistic": 0.8}


class DashboardNotInitializedError(RuntimeError):
    """A mutating action ran before any ``DashboardPort`` was attached."""


class DashboardPort(Protocol):
    def set_position(self, position: int) -> None: ...

    def set_scenario(self, scenario: str) -> None: ...


class CallbackDashboardPort:
    """Adapts a pair of plain callables to ``DashboardPort``."""

    def __init__(
        self,
        on_position_change: Callable[[int], Any],
        on_scenario_change: Callable[[str], Any],
    ):
        self._on_position_change = on_position_change
        self._on_scenario_change = on_scenario_change

    def set_position(self, position: int) -> None:
        self._on_position_change(position)

    def set_scenario(self, scenario: str) -> None:
        self._on_scenario_change(scenario)


def position_metrics(position: int, scenario: str) -> dict[str, float]:
    """Illustrative per-position figures used by bulk comparison and analysis."""
    base_revenue = 100 - (position - 1) * 2
    return {
        "revenue": base_revenue * _SCENARIO_MULTIPLIER.get(scenario, 1.0),
        "risk_score": 75 + (position - 18) * 5 if position > 18 else 30 + position * 2,
        "sustainability": max(0, 365 - position * 10),
    }


def _is_position(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and MIN_POSITION <= value <= MAX_POSITION


class DashboardController:
    """Executes ``DashboardAction`` commands against a ``DashboardPort``."""

    def __init__(
        self,
        port: DashboardPort | None = None,
        *,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
        max_history: int = MAX_STATE_HISTORY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.port = port
        self.confirmation_timeout = confirmation_timeout
        self.max_history = max_history
        self._clock = clock
        self._sleep = sleep

        self._state = DashboardState(DEFAULT_POSITION, "current")
        self._action_history: list[DashboardAction] = []
        self._state_history: list[DashboardState] = []
        self._pending: dict[str, tuple[DashboardAction, float]] = {}

    def initialize(
        self,
        port: DashboardPort | None = None,
        *,
        on_position_change: Callable[[int], Any] | None = None,
        on_scenario_change: Callable[[str], Any] | None = None,
    ) -> None:
        """Attach a port, or build one from two callbacks."""
        if port is None:
            if on_position_change is None or on_scenario_change is None:
                raise ValueError("initialize() needs a port or both callbacks")
            port = CallbackDashboardPort(on_position_change, on_scenario_change)
        self.port = port
        logger.info("Dashboard controller initialised with %s", type(port).__name__)

    @property
    def has_port(self) -> bool:
        return self.port is not None

    # ── validation ──────────────────────────────────────────────────────

    def validate_action(self, action: DashboardAction) -> str | None:
        """Return why *action* is rejected, or ``None`` if it may run."""
        try:
            action_type = ActionType(action.type)
        except ValueError:
            return f"action type {action.type!r} is not allowed"

        params = action.parameters or {}
        if action_type is ActionType.SET_POSITION:
            if not _is_position(params.get("position")):
                return f"position must be a whole number from {MIN_POSITION} to {MAX_POSITION}"
        elif action_type is ActionType.SET_SCENARIO:
            if params.get("scenario") not in SCENARIOS:
                return f"scenario must be one of {', '.join(SCENARIOS)}"
        elif action_type is ActionType.BULK_COMPARE:
            positions = params.get("positions")
            if not isinstance(positions, list) or not positions:
                return "bulk compare needs a list of positions"
            if len(positions) > MAX_BULK_POSITIONS:
                return f"bulk compare is limited to {MAX_BULK_POSITIONS} positions"
            if not all(_is_position(p) for p in positions):
                return f"every position must be between {MIN_POSITION} and {MAX_POSITION}"
            if any(s not in SCENARIOS for s in params.get("scenarios", SCENARIOS)):
                return f"scenarios must be drawn from {', '.join(SCENARIOS)}"
        elif action_type is ActionType.EXPORT_DATA:
            if params.get("format") not in EXPORT_FORMATS:
                return f"export format must be one of {', '.join(EXPORT_FORMATS)}"
            if not isinstance(params.get("selected_data"), list):
                return "selected_data must be a list"
        return None

    # ── execution ───────────────────────────────────────────────────────

    def execute_action(self, action: DashboardAction) -> ActionResult:
        return self._execute(action, confirmed=False)

    def _execute(self, action: DashboardAction, *, confirmed: bool) -> ActionResult:
        reason = self.validate_action(action)
        if reason is not None:
            logger.info("Rejected %s: %s", action.type, reason)
            return ActionResult(False, f"Action not authorized or invalid: {reason}")

        if action.requires_confirmation and not confirmed:
            return self._request_confirmation(action)

        previous = self._state
        try:
            result = self._perform(ActionType(action.type), action.parameters or {})
        except DashboardNotInitializedError as exc:
            logger.warning("Dashboard action %s failed: %s", action.type, exc)
            return ActionResult(False, f"Action failed: {exc}")

        if result.success and result.can_undo:
            self._record(action, previous)
            result.previous_state = previous
            result.can_undo = action.is_reversible
        return result

    def _perform(self, action_type: ActionType, params: dict[str, Any]) -> ActionResult:
        if action_type is ActionType.SET_POSITION:
            return self._set_position(params["position"], params.get("animated", True))
        if action_type is ActionType.SET_SCENARIO:
            return self._set_scenario(params["scenario"])
        if action_type is ActionType.RUN_ANALYSIS:
            return self._run_analysis(params)
        if action_type is ActionType.EXPORT_DATA:
            return self._export_data(params)
        if action_type is ActionType.BULK_COMPARE:
            return self._bulk_compare(params)
        return self._reset_view()

    def _require_port(self) -> DashboardPort:
        if self.port is None:
            raise DashboardNotInitializedError("dashboard callbacks not initialized")
        return self.port

    def _set_position(self, position: int, animated: bool) -> ActionResult:
        port = self._require_port()
        current = self._state.selected_position
        steps = abs(position - current)

        if animated and steps:
            direction = 1 if position > current else -1
            delay = min(0.1, 0.5 / steps)
            for i in range(1, steps + 1):
                self._sleep(delay)
                port.set_position(current + direction * i)
        else:
            port.set_position(position)

        self._state = DashboardState(position, self._state.scenario)
        suffix = " with animation" if animated and steps else ""
        return ActionResult(True, f"Position set to {position}{suffix}",
                            data={"position": position, "animated": bool(animated and steps)},
                            can_undo=True)

    def _set_scenario(self, scenario: str) -> ActionResult:
        self._require_port().set_scenario(scenario)
        self._state = DashboardState(self._state.selected_position, scenario)
        return ActionResult(True, f"Scenario changed to {scenario}",
                            data={"scenario": scenario}, can_undo=True)

    def _reset_view(self) -> ActionResult:
        port = self._require_port()
        port.set_position(DEFAULT_POSITION)
        port.set_scenario("current")
        self._state = DashboardState(DEFAULT_POSITION, "current")
        return ActionResult(True, "View reset to default settings",
                            data={"position": DEFAULT_POSITION, "scenario": "current"},
                            can_undo=True)

    def _run_analysis(self, params: dict[str, Any]) -> ActionResult:
        analysis_type = params.get("type", "comprehensive")
        position = params.get("position") or self._state.selected_position
        scenario = params.get("scenario") or self._state.scenario
        metrics = position_metrics(position, scenario)

        recommendations = ["Monitor cash flow", "Review wage structure"]
        if metrics["risk_score"] >= 70:
            recommendations.insert(0, "Prepare a relegation contingency budget")
        elif position <= 6:
            recommendations.insert(0, "Model promotion bonus clauses")

        return ActionResult(True, f"{analysis_type.capitalize()} analysis completed", data={
            "analysis_type": analysis_type,
            "position": position,
            "scenario": scenario,
            "results": {"risk_score": metrics["risk_score"], "recommendations": recommendations},
        })

    def _bulk_compare(self, params: dict[str, Any]) -> ActionResult:
        positions = params["positions"]
        scenarios = list(params.get("scenarios", SCENARIOS))
        analysis_type = params.get("analysis_type", "all")
        comparison = [
            {
                "position": position,
                "scenarios": [
                    {"scenario": scenario, "metrics": position_metrics(position, scenario)}
                    for scenario in scenarios
                ],
            }
            for position in positions
        ]
        return ActionResult(
            True,
            f"Bulk comparison completed for {len(positions)} positions across {len(scenarios)} scenarios",
            data={"comparison_data": comparison, "analysis_type": analysis_type},
        )

    def _export_data(self, params: dict[str, Any]) -> ActionResult:
        fmt = params["format"]
        payload = {
            "timestamp": utc_now(),
            "current_state": asdict(self._state),
            "selected_metrics": params["selected_data"],
            "format": fmt,
            "include_charts": bool(params.get("include_charts", False)),
        }
        url = f"data:text/{fmt};charset=utf-8,{quote(json.dumps(payload, indent=2))}"
        return ActionResult(True, f"Data exported as {fmt.upper()}",
                            data={"download_url": url, "export_data": payload})

    # ── confirmation ────────────────────────────────────────────────────

    def _purge_expired(self) -> None:
        now = self._clock()
        for code in [c for c, (_, expires) in self._pending.items() if expires <= now]:
            logger.debug("Confirmation %s expired", code)
            del self._pending[code]

    def _request_confirmation(self, action: DashboardAction) -> ActionResult:
        self._purge_expired()
        code = uuid.uuid4().hex[:6]
        while code in self._pending:
            code = uuid.uuid4().hex[:6]
        self._pending[code] = (action, self._clock() + self.confirmation_timeout)
        logger.info("Parked %s awaiting confirmation %s", action.type, code)
        return ActionResult(
            False,
            f'Please confirm: {self.describe(action)}. Say "confirm {code}" to proceed.',
            data={"confirmation_code": code},
        )

    def confirm_action(self, code: str) -> ActionResult:
        self._purge_expired()
        entry = self._pending.pop((code or "").strip().lower(), None)
        if entry is None:
            return ActionResult(False, "Confirmation expired or invalid")
        action, _ = entry
        return self._execute(action, confirmed=True)

    @property
    def pending_confirmations(self) -> list[str]:
        self._purge_expired()
        return list(self._pending)

    @staticmethod
    def describe(action: DashboardAction) -> str:
        params = action.parameters or {}
        if action.type == ActionType.SET_POSITION:
            return f"Move to position {params.get('position')}"
        if action.type == ActionType.SET_SCENARIO:
            return f"Switch to {params.get('scenario')} scenario"
        if action.type == ActionType.EXPORT_DATA:
            return f"Export data as {params.get('format')}"
        if action.type == ActionType.BULK_COMPARE:
            return "Compare multiple positions"
        if action.type == ActionType.RESET_VIEW:
            return "Reset dashboard to default view"
        return f"Execute {getattr(action.type, 'value', action.type)}"

    # ── history ─────────────────────────────────────────────────────────

    def _record(self, action: DashboardAction, previous: DashboardState) -> None:
        self._action_history.append(action)
        self._state_history.append(previous)
        if len(self._state_history) > self.max_history:
            del self._action_history[0]
            del self._state_history[0]

    def rollback(self, steps: int = 1) -> ActionResult:
        """Restore the state from before the ``steps``-th most recent action."""
        available = len(self._state_history)
        if steps < 1 or available < steps:
            return ActionResult(
                False,
                f"Cannot rollback {steps} steps. Only {available} states available.",
                can_undo=available > 0,
            )

        target = self._state_history[-steps]
        try:
            port = self._require_port()
        except DashboardNotInitializedError as exc:
            logger.warning("Rollback failed: %s", exc)
            return ActionResult(False, f"Action failed: {exc}", can_undo=True)

        port.set_position(target.selected_position)
        port.set_scenario(target.scenario)
        self._state = DashboardState(target.selected_position, target.scenario)
        del self._state_history[-steps:]
        del self._action_history[-steps:]

        return ActionResult(
            True,
            f"Rolled back {steps} step{'s' if steps > 1 else ''}",
            data={"target_state": asdict(target), "steps_rolled_back": steps},
            can_undo=bool(self._state_history),
        )

    def sync_state(self, position: int, scenario: str) -> None:
        """Record what the UI currently shows, without touching history."""
        self._state = DashboardState(position, scenario)

    @property
    def current_state(self) -> DashboardState:
        return self._state

    @property
    def action_history(self) -> list[DashboardAction]:
        return list(self._action_history)

    @property
    def state_history(self) -> list[DashboardState]:
        return list(self._state_history)

    @property
    def can_undo(self) -> bool:
        return bool(self._state_history)

    @property
    def last_action(self) -> DashboardAction | None:
        return self._action_history[-1] if self._action_history else None
