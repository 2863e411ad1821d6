"""Command-pattern models for the dashboard controller."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    SET_POSITION = "SET_POSITION"
    SET_SCENARIO = "SET_SCENARIO"
    RUN_ANALYSIS = "RUN_ANALYSIS"
    EXPORT_DATA = "EXPORT_DATA"
    BULK_COMPARE = "BULK_COMPARE"
    RESET_VIEW = "RESET_VIEW"


@dataclass
class DashboardAction:
    """One requested dashboard mutation or query."""

    type: ActionType | str
    parameters: dict[str, Any] = field(default_factory=dict)
    requires_confirmation: bool = False
    is_reversible: bool = True
    timestamp: float = field(default_factory=time.time)
    user_id: str | None = None


@dataclass(frozen=True)
class DashboardState:
    """Snapshot pushed onto the undo history before each mutation."""

    selected_position: int
    scenario: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ActionResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    previous_state: DashboardState | None = None
    can_undo: bool = False
