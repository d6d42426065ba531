"""
Environment-driven settings.

Everything is read at call time (`Settings.from_env()`), never at import time, so
tests can monkeypatch the environment freely.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


STORE_LOCAL = "local"
STORE_FIRESTORE = "firestore"
_STORE_BACKENDS = (STORE_LOCAL, STORE_FIRESTORE)

DEFAULT_START_YEAR = 2025
DEFAULT_STARTING_INVESTMENT = 100000.0
DEFAULT_MONTHLY_ADDITION = 3500.0
DEFAULT_MONTHLY_RETURN_PERCENT = 1.6
DEFAULT_HORIZON_MONTHS = 120


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def _parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


@dataclass(frozen=True)
class ProjectionParams:
    start_year: int = DEFAULT_START_YEAR
    starting_investment: float = DEFAULT_STARTING_INVESTMENT
    monthly_addition: float = DEFAULT_MONTHLY_ADDITION
    monthly_return_percent: float = DEFAULT_MONTHLY_RETURN_PERCENT
    count: int = DEFAULT_HORIZON_MONTHS


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration.

    Env:
        STOCKTRACKER_STORE (local|firestore, default: local)
        STOCKTRACKER_DATA_FILE (JSON file for the local store; unset = memory only)
        FIREBASE_PROJECT_ID / GOOGLE_CLOUD_PROJECT
        STOCKTRACKER_START_YEAR, STOCKTRACKER_STARTING_INVESTMENT,
        STOCKTRACKER_MONTHLY_ADDITION, STOCKTRACKER_MONTHLY_RETURN_PERCENT,
        STOCKTRACKER_HORIZON_MONTHS
        LOG_LEVEL (default: INFO)
    """

    store_backend: str = STORE_LOCAL
    data_file: Optional[str] = None
    firebase_project_id: Optional[str] = None
    projection: ProjectionParams = ProjectionParams()
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = (os.getenv("STOCKTRACKER_STORE") or STORE_LOCAL).strip().lower()
        if backend not in _STORE_BACKENDS:
            raise ValueError(f"STOCKTRACKER_STORE must be one of {_STORE_BACKENDS}, got {backend!r}")

        horizon = _parse_int_env("STOCKTRACKER_HORIZON_MONTHS", DEFAULT_HORIZON_MONTHS)
        projection = ProjectionParams(
            start_year=_parse_int_env("STOCKTRACKER_START_YEAR", DEFAULT_START_YEAR),
            starting_investment=_parse_float_env("STOCKTRACKER_STARTING_INVESTMENT", DEFAULT_STARTING_INVESTMENT),
            monthly_addition=_parse_float_env("STOCKTRACKER_MONTHLY_ADDITION", DEFAULT_MONTHLY_ADDITION),
            monthly_return_percent=_parse_float_env(
                "STOCKTRACKER_MONTHLY_RETURN_PERCENT", DEFAULT_MONTHLY_RETURN_PERCENT
            ),
            count=horizon if horizon > 0 else DEFAULT_HORIZON_MONTHS,
        )
        return cls(
            store_backend=backend,
            data_file=(os.getenv("STOCKTRACKER_DATA_FILE") or "").strip() or None,
            firebase_project_id=(
                os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or ""
            ).strip()
            or None,
            projection=projection,
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        )


def allow_prod_firestore() -> bool:
    return _parse_bool_env("ALLOW_PROD_FIRESTORE", default=False)
