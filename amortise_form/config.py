from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

# Date defaulting
ROLLOVER_MIN_DAYS = 20

# Slider bounds
PRINCIPAL_BOUNDS = {"min": 100.0, "max": 10_000_000.0}
ANNUAL_RATE_BOUNDS = {"min": 0.0, "max": 30.0, "step": 0.01}
NUM_PAYMENTS_BOUNDS = {"min": 1.0, "max": 480.0, "step": 1.0}
BALLOON_PAYMENT_BOUNDS = {"min": 0.0, "max": 100_000.0, "step": 100.0}

# Form defaults, as raw control strings
DEFAULT_CONTROL_VALUES = {
    "principal": "10000",
    "annual_rate": "5",
    "num_payments": "12",
    "balloon_payment": "0",
    "option_fee": "0",
    "interest_method": "actual_actual",
    "interest_type": "",
    "cap_date_checkbox": "false",
    "use_fixed_payment": "false",
    "fixed_payment": "",
}

# Interest method explanations, keyed by method value
INTEREST_METHOD_EXPLANATIONS = {
    "convention_30_360": "Every month counts as 30 days and every year as 360 days.",
    "actual_365": "Interest accrues on actual days elapsed over a 365-day year.",
    "actual_360": "Interest accrues on actual days elapsed over a 360-day year.",
    "actual_actual": "Interest accrues on actual days elapsed; leap years count 366 days.",
}

# Summary precision
PERCENT_DECIMALS = 6
FIXED_PAYMENT_DECIMALS = 2

# Chart palette
CHART_COLORS = {
    "balance": "rgba(75, 192, 192, 1)",
    "interest": "rgba(255, 99, 132, 0.6)",
    "principal": "rgba(54, 162, 235, 0.6)",
}
CHART_HEIGHT = 420

DEFAULT_DATABASE_URL = "sqlite:///amortise_snapshots.sqlite3"

# Live form sessions kept in memory by the web app.
MAX_SESSIONS = 500


@dataclass
class Settings:
    """Runtime settings, read from the environment by :func:`load_settings`."""

    engine: Optional[str] = None
    database_url: str = DEFAULT_DATABASE_URL
    secret_key: str = "dev-secret-key"
    asset_version: str = "1"
    max_sessions: int = MAX_SESSIONS


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        engine=env.get("LOAN_AMORTISE_ENGINE") or None,
        database_url=env.get("LOAN_AMORTISE_DATABASE_URL") or DEFAULT_DATABASE_URL,
        secret_key=env.get("FLASK_SECRET_KEY", "dev-secret-key"),
        asset_version=env.get("ASSET_VERSION", "1"),
        max_sessions=int(env.get("LOAN_AMORTISE_MAX_SESSIONS") or MAX_SESSIONS),
    )
