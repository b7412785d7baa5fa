"""Output helpers for the amortisation form.

This module renders the presenter's views (summary figures, schedule table
and error banner) in a tabular text format for the command line. We rely
only on built-in printing and string formatting.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from .data_models import ErrorBanner, SummaryView
from .presenter import TABLE_COLUMNS


def print_summary(summary: SummaryView) -> None:
    """Print the five summary figures in a human-readable format."""
    print("Summary")
    print("-" * 72)
    print(f"Monthly payment    : {summary.monthly_payment}")
    print(f"Total payable      : {summary.total_payable}")
    print(f"Total interest     : {summary.total_interest}")
    print(f"Annual rate        : {summary.annual_rate}%")
    print(f"Calculated APR     : {summary.calculated_apr}%")
    print("-" * 72)


def print_schedule(rows: Iterable[Sequence[str]]) -> None:
    """Print the schedule table rows as tab-separated text."""
    print("\t".join(column.capitalize() for column in TABLE_COLUMNS))
    for row in rows:
        print("\t".join(row))


def print_error(error: ErrorBanner) -> None:
    print("Error")
    print("=" * 72)
    print(error.message)
    if error.detail:
        print(error.detail.rstrip())
    print("=" * 72)


def schedule_csv_rows(rows: Iterable[Tuple[str, ...]]) -> list[list[str]]:
    return [[column.capitalize() for column in TABLE_COLUMNS], *[list(row) for row in rows]]
