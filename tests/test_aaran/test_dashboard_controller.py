"""Tests for DashboardController (port, clock and sleep are all injected)."""

from unittest.mock import MagicMock, call

import pytest
from src.aaran.models.dashboard import ActionType, DashboardAction
from src.aaran.services.dashboard_controller import (
    DashboardController, position_metrics,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _controller(**kwargs):
    port = MagicMock()
    sleep = MagicMock()
    controller = DashboardController(port, sleep=sleep, **kwargs)
    return controller, port, sleep


def _move(position, animated=False, **kwargs):
    return DashboardAction(ActionType.SET_POSITION, {"position": position, "animated": animated}, **kwargs)


def _export(fmt="json"):
    return DashboardAction(
        ActionType.EXPORT_DATA,
        {"format": fmt, "selected_data": ["revenue", "risk"]},
        requires_confirmation=True,
        is_reversible=False,
    )


# ── Validation ──────────────────────────────────────────────────────────


class TestValidation:

    @pytest.mark.parametrize("position", [0, 25, "6", True, None])
    def test_position_out_of_range(self, position):
        controller, port, _ = _controller()
        result = controller.execute_action(_move(position))
        assert result.success is False
        assert result.message.startswith("Action not authorized or invalid")
        port.set_position.assert_not_called()

    def test_unknown_scenario(self):
        controller, _, _ = _controller()
        result = controller.execute_action(DashboardAction(ActionType.SET_SCENARIO, {"scenario": "dreamy"}))
        assert result.success is False

    def test_unknown_action_type(self):
        controller, _, _ = _controller()
        result = controller.execute_action(DashboardAction("DELETE_EVERYTHING"))
        assert result.success is False
        assert "not allowed" in result.message

    def test_unsupported_export_format_has_no_download(self):
        controller, _, _ = _controller()
        result = controller.execute_action(_export("xml"))
        assert result.success is False
        assert "download_url" not in result.data
        assert controller.pending_confirmations == []

    def test_bulk_compare_limits(self):
        controller, _, _ = _controller()
        too_many = DashboardAction(ActionType.BULK_COMPARE, {"positions": [1, 2, 3, 4, 5, 6, 7]})
        empty = DashboardAction(ActionType.BULK_COMPARE, {"positions": []})
        assert controller.validate_action(too_many) is not None
        assert controller.validate_action(empty) is not None


# ── Execution ───────────────────────────────────────────────────────────


class TestExecution:

    def test_without_port_nothing_is_recorded(self):
        controller = DashboardController(sleep=MagicMock())
        result = controller.execute_action(_move(5))
        assert result.success is False
        assert result.message == "Action failed: dashboard callbacks not initialized"
        assert controller.state_history == []
        assert controller.can_undo is False

    def test_animated_move_steps_through_positions(self):
        controller, port, sleep = _controller()
        result = controller.execute_action(_move(15, animated=True))
        assert result.success is True
        assert result.data == {"position": 15, "animated": True}
        assert port.set_position.call_args_list == [call(13), call(14), call(15)]
        assert sleep.call_args_list == [call(0.1)] * 3

    def test_long_animation_is_faster_per_step(self):
        controller, port, sleep = _controller()
        controller.execute_action(_move(1, animated=True))
        assert port.set_position.call_count == 11
        assert sleep.call_args.args[0] == pytest.approx(0.5 / 11)

    def test_unanimated_move(self):
        controller, port, sleep = _controller()
        result = controller.execute_action(_move(3))
        port.set_position.assert_called_once_with(3)
        sleep.assert_not_called()
        assert result.message == "Position set to 3"
        assert controller.current_state.selected_position == 3

    def test_scenario_change(self):
        controller, port, _ = _controller()
        result = controller.execute_action(DashboardAction(ActionType.SET_SCENARIO, {"scenario": "optimistic"}))
        port.set_scenario.assert_called_once_with("optimistic")
        assert result.previous_state.scenario == "current"
        assert result.can_undo is True

    def test_reset_view(self):
        controller, port, _ = _controller()
        controller.sync_state(20, "pessimistic")
        result = controller.execute_action(DashboardAction(ActionType.RESET_VIEW))
        assert result.message == "View reset to default settings"
        port.set_position.assert_called_once_with(12)
        port.set_scenario.assert_called_once_with("current")
        assert controller.can_undo is True

    def test_analysis_is_not_recorded(self):
        controller, _, _ = _controller()
        result = controller.execute_action(DashboardAction(
            ActionType.RUN_ANALYSIS, {"type": "risk", "position": 20}, is_reversible=False,
        ))
        assert result.message == "Risk analysis completed"
        assert result.data["results"]["recommendations"][0] == "Prepare a relegation contingency budget"
        assert controller.state_history == []

    def test_bulk_compare(self):
        controller, _, _ = _controller()
        result = controller.execute_action(DashboardAction(
            ActionType.BULK_COMPARE, {"positions": [3, 6, 18]}, is_reversible=False,
        ))
        assert result.message == "Bulk comparison completed for 3 positions across 3 scenarios"
        assert [row["position"] for row in result.data["comparison_data"]] == [3, 6, 18]
        assert len(result.data["comparison_data"][0]["scenarios"]) == 3

    def test_position_metrics(self):
        assert position_metrics(1, "optimistic")["revenue"] == pytest.approx(120.0)
        assert position_metrics(1, "pessimistic")["revenue"] == pytest.approx(80.0)
        assert position_metrics(20, "current")["risk_score"] == 85


# ── Confirmation ────────────────────────────────────────────────────────


class TestConfirmation:

    def test_export_waits_for_the_code(self):
        controller, _, _ = _controller()
        pending = controller.execute_action(_export("csv"))
        code = pending.data["confirmation_code"]
        assert pending.success is False
        assert f'Say "confirm {code}" to proceed.' in pending.message
        assert controller.pending_confirmations == [code]

        done = controller.confirm_action(code)
        assert done.success is True
        assert done.message == "Data exported as CSV"
        assert done.data["download_url"].startswith("data:text/csv;charset=utf-8,")
        assert done.data["export_data"]["selected_metrics"] == ["revenue", "risk"]

    def test_code_can_only_be_used_once(self):
        controller, _, _ = _controller()
        code = controller.execute_action(_export()).data["confirmation_code"]
        controller.confirm_action(code)
        assert controller.confirm_action(code).message == "Confirmation expired or invalid"

    def test_code_expires(self):
        clock = FakeClock()
        controller, _, _ = _controller(clock=clock, confirmation_timeout=5)
        code = controller.execute_action(_export()).data["confirmation_code"]
        clock.now = 6
        result = controller.confirm_action(code)
        assert result.success is False
        assert result.message == "Confirmation expired or invalid"
        assert controller.pending_confirmations == []

    def test_unknown_code(self):
        controller, _, _ = _controller()
        assert controller.confirm_action("zzzzzz").success is False

    def test_confirmed_move_is_recorded(self):
        controller, port, _ = _controller()
        code = controller.execute_action(_move(4, requires_confirmation=True)).data["confirmation_code"]
        port.set_position.assert_not_called()
        controller.confirm_action(code)
        port.set_position.assert_called_once_with(4)
        assert controller.can_undo is True

    def test_describe(self):
        assert DashboardController.describe(_export("pdf")) == "Export data as pdf"
        assert DashboardController.describe(_move(6)) == "Move to position 6"


# ── Rollback ────────────────────────────────────────────────────────────


class TestRollback:

    def _three_changes(self):
        controller, port, _ = _controller()
        controller.execute_action(_move(5))
        controller.execute_action(DashboardAction(ActionType.SET_SCENARIO, {"scenario": "optimistic"}))
        controller.execute_action(_move(20))
        port.reset_mock()
        return controller, port

    def test_one_step(self):
        controller, port = self._three_changes()
        result = controller.rollback()
        assert result.message == "Rolled back 1 step"
        assert result.data["target_state"]["selected_position"] == 5
        assert result.data["target_state"]["scenario"] == "optimistic"
        port.set_position.assert_called_once_with(5)
        assert controller.current_state.selected_position == 5
        assert len(controller.state_history) == 2

    def test_n_steps_restores_the_state_before_n_actions(self):
        controller, port = self._three_changes()
        result = controller.rollback(3)
        assert result.success is True
        assert result.message == "Rolled back 3 steps"
        assert result.data["steps_rolled_back"] == 3
        assert (controller.current_state.selected_position, controller.current_state.scenario) == (12, "current")
        port.set_scenario.assert_called_once_with("current")
        assert controller.can_undo is False

    def test_too_many_steps(self):
        controller, port = self._three_changes()
        result = controller.rollback(4)
        assert result.success is False
        assert result.message == "Cannot rollback 4 steps. Only 3 states available."
        port.set_position.assert_not_called()

    def test_empty_history(self):
        controller, _, _ = _controller()
        assert controller.rollback().message == "Cannot rollback 1 steps. Only 0 states available."

    def test_history_is_bounded(self):
        controller, _, _ = _controller(max_history=2)
        for position in (3, 4, 5):
            controller.execute_action(_move(position))
        assert [s.selected_position for s in controller.state_history] == [3, 4]
        assert controller.last_action.parameters["position"] == 5


# ── Initialisation ──────────────────────────────────────────────────────


class TestInitialize:

    def test_callbacks(self):
        on_position, on_scenario = MagicMock(), MagicMock()
        controller = DashboardController(sleep=MagicMock())
        controller.initialize(on_position_change=on_position, on_scenario_change=on_scenario)
        assert controller.has_port
        controller.execute_action(_move(10))
        controller.execute_action(DashboardAction(ActionType.SET_SCENARIO, {"scenario": "pessimistic"}))
        on_position.assert_called_once_with(10)
        on_scenario.assert_called_once_with("pessimistic")

    def test_needs_port_or_both_callbacks(self):
        with pytest.raises(ValueError):
            DashboardController().initialize(on_position_change=MagicMock())
