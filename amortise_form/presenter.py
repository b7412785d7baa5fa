"""Schedule presenter.

Rebuilds the table, chart and summary views from a schedule, or clears them
and raises the error banner after a failure. Every operation starts from
scratch: rows are never appended to an old table and an existing chart is
destroyed before a new one is built.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from .chart import ChartHandle, PlotlyChartRenderer
from .data_models import ChartSeries, ErrorBanner, Schedule, SummaryView, TableView
from .errors import EngineError
from .session import SessionState
from .utils import format_percent

logger = logging.getLogger(__name__)

TABLE_COLUMNS = ("month", "payment", "interest", "principal", "balance")


class ChartRenderer(Protocol):
    def render(self, labels: Sequence[str], series: Sequence[ChartSeries]) -> ChartHandle:
        ...


def schedule_series(schedule: Schedule) -> List[ChartSeries]:
    rows = schedule.payments
    return [
        ChartSeries("Balance", "line", [float(r.balance) for r in rows], axis="balance"),
        ChartSeries("Interest", "bar", [float(r.interest) for r in rows], axis="payment", stack="combined"),
        ChartSeries("Principal", "bar", [float(r.principal) for r in rows], axis="payment", stack="combined"),
    ]


class SchedulePresenter:
    def __init__(self, session: SessionState, renderer: Optional[ChartRenderer] = None) -> None:
        self._session = session
        self._renderer = renderer or PlotlyChartRenderer()

    def clear(self) -> None:
        """Put every schedule-derived view back in its empty state."""
        session = self._session
        session.table = TableView()
        self._destroy_chart()
        session.summary = SummaryView()
        session.error = ErrorBanner()

    def render(self, schedule: Schedule) -> None:
        self.clear()
        session = self._session
        session.table = TableView(
            rows=[
                (str(r.month), str(r.payment), str(r.interest), str(r.principal), str(r.balance))
                for r in schedule.payments
            ]
        )
        meta = schedule.meta
        first_payment = str(schedule.payments[0].payment) if schedule.payments else "0"
        session.summary = SummaryView(
            monthly_payment=first_payment,
            total_payable=str(meta.total_payable),
            total_interest=str(meta.total_interest),
            annual_rate=format_percent(meta.annual_rate),
            calculated_apr=format_percent(meta.calculated_apr),
        )
        labels = [str(r.month) for r in schedule.payments]
        session.chart = self._renderer.render(labels, schedule_series(schedule))
        logger.debug("Rendered %d rows", len(schedule.payments))

    def show_error(self, error: EngineError) -> None:
        self.clear()
        self._session.error = ErrorBanner(visible=True, message=error.message, detail=error.detail)

    def _destroy_chart(self) -> None:
        if self._session.chart is not None:
            self._session.chart.destroy()
            self._session.chart = None
