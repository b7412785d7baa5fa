from __future__ import annotations

from typing import List, Optional, Sequence

import plotly.graph_objects as go

from . import config
from .data_models import ChartSeries

_AXIS_REFS = {"balance": "y", "payment": "y2"}


def build_series_trace(series: ChartSeries, labels: Sequence[str]) -> go.BaseTraceType:
    color = config.CHART_COLORS.get(series.name.lower())
    if series.kind == "line":
        return go.Scatter(
            x=list(labels),
            y=series.values,
            mode="lines",
            name=series.name,
            line=dict(color=color, width=6, shape="spline"),
            yaxis=_AXIS_REFS[series.axis],
        )
    return go.Bar(
        x=list(labels),
        y=series.values,
        name=series.name,
        marker=dict(color=color),
        yaxis=_AXIS_REFS[series.axis],
        offsetgroup=series.stack,
    )


def build_figure(labels: Sequence[str], series: Sequence[ChartSeries]) -> go.Figure:
    fig = go.Figure(data=[build_series_trace(s, labels) for s in series])
    fig.update_layout(
        height=config.CHART_HEIGHT,
        margin=dict(l=48, r=48, t=32, b=32),
        barmode="stack",
        hovermode="x unified",
        legend=dict(orientation="h", y=1.08),
        xaxis=dict(type="category", title="Month"),
        yaxis=dict(title="Balance", rangemode="tozero", showgrid=True),
        yaxis2=dict(
            title="Payments",
            rangemode="tozero",
            overlaying="y",
            side="right",
            showgrid=False,
        ),
    )
    return fig


class ChartHandle:
    """A rendered chart instance. Once destroyed it cannot be reused."""

    def __init__(self, labels: Sequence[str], series: Sequence[ChartSeries]) -> None:
        self.labels: List[str] = list(labels)
        self.series: List[ChartSeries] = list(series)
        self.figure: Optional[go.Figure] = build_figure(self.labels, self.series)

    @property
    def destroyed(self) -> bool:
        return self.figure is None

    def destroy(self) -> None:
        self.figure = None

    def to_json(self) -> Optional[str]:
        return self.figure.to_json() if self.figure is not None else None


class PlotlyChartRenderer:
    def render(self, labels: Sequence[str], series: Sequence[ChartSeries]) -> ChartHandle:
        return ChartHandle(labels, series)
