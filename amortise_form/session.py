"""Per-session mutable state shared by the controller and the presenter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .chart import ChartHandle
from .data_models import ErrorBanner, Param, Schedule, SummaryView, TableView


class RecalcState(str, Enum):
    IDLE = "idle"
    COMPUTING = "computing"
    RENDERED = "rendered"
    FAILED = "failed"


class InputMode(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass
class SessionState:
    """Everything a session accumulates besides the form controls.

    ``status`` is ``COMPUTING`` for the duration of a recompute pass and
    ``IDLE`` otherwise; ``outcome`` keeps how the last pass ended
    (``RENDERED`` or ``FAILED``). ``schedule`` is the most recent successful
    result and ``chart`` the single live chart instance; both are replaced
    wholesale, never merged.
    """

    status: RecalcState = RecalcState.IDLE
    outcome: Optional[RecalcState] = None
    schedule: Optional[Schedule] = None
    chart: Optional[ChartHandle] = None
    table: TableView = field(default_factory=TableView)
    summary: SummaryView = field(default_factory=SummaryView)
    error: ErrorBanner = field(default_factory=ErrorBanner)
    field_errors: Dict[Param, str] = field(default_factory=dict)
    input_modes: Dict[str, InputMode] = field(default_factory=dict)
    pending: bool = False
    explanation: str = ""
    engine_calls: int = 0

    def input_mode(self, control_id: str) -> InputMode:
        return self.input_modes.get(control_id, InputMode.IDLE)
