"""Text-chat demo for the Aaran agent.

Type the commands you would speak ("position 6", "best case scenario",
"what are parachute payments?") and watch the simulated dashboard state
change in the reply footer.

Run with::

    uv run python -m src.aaran.app
"""

from __future__ import annotations

import logging
from typing import Any

import gradio as gr

from .agents.orchestrator import AaranAgent
from .models.schemas import DEFAULT_POSITION
from .services.conversation_memory import ConversationMemory
from .services.logging_config import set_up_logging
from .services.memory_stores import build_conversation_store

logger = logging.getLogger(__name__)

# Stands in for the dashboard UI; the controller mutates it through callbacks.
dashboard: dict[str, Any] = {"selected_position": DEFAULT_POSITION, "scenario": "current"}


def _set_position(position: int) -> None:
    dashboard["selected_position"] = position


def _set_scenario(scenario: str) -> None:
    dashboard["scenario"] = scenario


def build_agent(session_id: str = "gradio-demo") -> AaranAgent:
    memory = ConversationMemory(user_id=session_id, store=build_conversation_store())
    agent = AaranAgent(session_id, memory=memory)
    agent.initialize_dashboard(on_position_change=_set_position, on_scenario_change=_set_scenario)
    return agent


def _respond(message: str, history: list[dict[str, Any]]) -> str:
    result = agent.process_voice_command(message, dict(dashboard))
    # Without a port the caller applies changes itself; with one this is a no-op.
    if result.new_position is not None:
        dashboard["selected_position"] = result.new_position
    if result.new_scenario is not None:
        dashboard["scenario"] = result.new_scenario

    footer = (f"\n\n_Intent: {result.intent.describe()} ({result.intent.confidence:.2f}) · "
              f"position {dashboard['selected_position']} · {dashboard['scenario']} scenario_")
    return result.response + footer


if __name__ == "__main__":
    set_up_logging()
    agent = build_agent()

    demo = gr.ChatInterface(
        _respond,
        type="messages",
        examples=[
            ["move to position 6"],
            ["show the cliff"],
            ["best case scenario"],
            ["what are parachute payments?"],
            ["export the data as csv"],
        ],
        title="Aaran – dashboard voice assistant (text mode)",
    )
    demo.launch()
