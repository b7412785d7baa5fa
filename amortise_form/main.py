"""Command-line interface for the amortisation form.

This module uses the ``click`` library to drive the same form pipeline the
browser page uses, headlessly: options are written into the form controls,
one recompute runs against the configured engine and the resulting summary
and schedule are printed or exported to JSON/CSV files.
"""

from __future__ import annotations

import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click

from .config import load_settings
from .controller import RecalculationController
from .data_models import InterestMethod, InterestType, Param
from .engine import load_engine
from .errors import AmortiseError
from .formatter import print_error, print_schedule, print_summary, schedule_csv_rows
from .session import RecalcState
from .storage import MemoryStorage


def parse_amount(value: str) -> float:
    """Parse a numeric string with optional suffixes.

    Accepts plain floats ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "500k" meaning 500_000). Returns a float.
    """
    value = value.strip().lower()
    value = value.replace(",", "")
    factor = 1.0
    if value.endswith("k"):
        factor = 1_000.0
        value = value[:-1]
    elif value.endswith("m"):
        factor = 1_000_000.0
        value = value[:-1]
    try:
        return float(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def fill_form(
    controller: RecalculationController,
    principal: str,
    rate: float,
    num_payments: int,
    disbursal_date: Optional[str],
    first_payment_date: Optional[str],
    first_capitalisation_date: Optional[str],
    interest_method: str,
    interest_type: Optional[str],
    fixed_payment: Optional[str],
    balloon_payment: Optional[str],
    option_fee: Optional[str],
) -> None:
    """Seed the form with defaults, then overwrite them with the CLI options."""
    form = controller.form
    form.apply_defaults()
    form.write(Param.PRINCIPAL, parse_amount(principal))
    form.write(Param.ANNUAL_RATE, rate)
    form.write(Param.NUM_PAYMENTS, num_payments)
    if disbursal_date:
        form.set_raw("disbursal_date", disbursal_date)
        if not first_payment_date:
            form.write(Param.FIRST_PAYMENT_DATE, None)
    if first_payment_date:
        form.set_raw("first_payment_date", first_payment_date)
    form.follow_links(Param.FIRST_PAYMENT_DATE)
    if first_capitalisation_date:
        form.set_custom_capitalisation(True)
        form.set_raw("first_capitalisation_date", first_capitalisation_date)
    form.write(Param.INTEREST_METHOD, interest_method)
    form.write(Param.INTEREST_TYPE, interest_type)
    if fixed_payment:
        form.set_fixed_payment_enabled(True, None)
        form.write(Param.FIXED_PAYMENT, parse_amount(fixed_payment))
    if balloon_payment:
        form.write(Param.BALLOON_PAYMENT, parse_amount(balloon_payment))
    if option_fee:
        form.write(Param.OPTION_FEE, parse_amount(option_fee))


def export_to_json(path: Path, view: Dict[str, Any]) -> None:
    """Export summary and schedule table to a JSON file."""
    data = {
        "summary": view["summary"],
        "columns": view["table"]["columns"],
        "schedule": view["table"]["rows"],
    }
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_to_csv(path: Path, rows: list) -> None:
    """Export schedule table to a CSV file."""
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerows(schedule_csv_rows(rows))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log form events and recomputes")
def cli(verbose: bool) -> None:
    """Loan amortisation form: compute schedules through an external engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--principal", "-p", "principal", required=True, help="Loan amount (e.g. 10000 or 10k)")
@click.option("--rate", "-r", "rate", required=True, type=float, help="Annual interest rate (percent)")
@click.option("--num-payments", "-n", "num_payments", required=True, type=int, help="Number of monthly payments")
@click.option("--disbursal-date", "-d", "disbursal_date", help="Disbursal date (YYYY-MM-DD); defaults to today")
@click.option("--first-payment-date", "-f", "first_payment_date", help="First payment date (YYYY-MM-DD)")
@click.option(
    "--first-capitalisation-date",
    "-c",
    "first_capitalisation_date",
    help="Custom first capitalisation date (YYYY-MM-DD); defaults to the first payment date",
)
@click.option(
    "--interest-method",
    "interest_method",
    type=click.Choice([m.value for m in InterestMethod]),
    default=InterestMethod.ACTUAL_ACTUAL.value,
    help="Day-count convention",
)
@click.option("--interest-type", "interest_type", type=click.Choice([t.value for t in InterestType]))
@click.option("--fixed-payment", "fixed_payment", help="Fixed monthly payment override")
@click.option("--balloon-payment", "balloon_payment", help="Balloon payment due at maturity")
@click.option("--option-fee", "option_fee", help="Option-to-purchase fee added to the final payment")
@click.option("--engine", "engine_path", help="Engine as module:attribute (default: $LOAN_AMORTISE_ENGINE)")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def schedule(
    principal: str,
    rate: float,
    num_payments: int,
    disbursal_date: Optional[str],
    first_payment_date: Optional[str],
    first_capitalisation_date: Optional[str],
    interest_method: str,
    interest_type: Optional[str],
    fixed_payment: Optional[str],
    balloon_payment: Optional[str],
    option_fee: Optional[str],
    engine_path: Optional[str],
    output: Optional[str],
) -> None:
    """Compute and print the amortisation schedule."""
    engine_path = engine_path or load_settings().engine
    if not engine_path:
        raise click.UsageError("No engine configured; pass --engine or set LOAN_AMORTISE_ENGINE")
    try:
        controller = RecalculationController(load_engine(engine_path), MemoryStorage())
    except AmortiseError as exc:
        raise click.ClickException(str(exc))
    fill_form(
        controller,
        principal,
        rate,
        num_payments,
        disbursal_date,
        first_payment_date,
        first_capitalisation_date,
        interest_method,
        interest_type,
        fixed_payment,
        balloon_payment,
        option_fee,
    )
    outcome = asyncio.run(controller.recompute())
    session = controller.session
    if session.field_errors:
        problems = "; ".join(f"{p.value}: {m}" for p, m in session.field_errors.items())
        raise click.BadParameter(problems)
    if outcome is RecalcState.FAILED:
        print_error(session.error)
        raise click.ClickException(session.error.message)

    view = controller.view_state()
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, view)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, session.table.rows)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Schedule exported to {path}")
        return
    print_summary(session.summary)
    # Limit schedule length printed to avoid flooding the terminal
    max_rows = 120
    rows = session.table.rows
    if len(rows) > max_rows:
        click.echo(f"Schedule has {len(rows)} rows; showing first {max_rows} rows.")
    print_schedule(rows[:max_rows])


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8710, show_default=True, type=int)
@click.option("--debug", is_flag=True)
def serve(host: str, port: int, debug: bool) -> None:
    """Start the browser form."""
    from amortise_form_web.app import create_app

    click.echo("Starting loan amortisation web app...")
    create_app().run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    cli()
