from __future__ import annotations

import math

from stocktracker.common.config import (
    DEFAULT_HORIZON_MONTHS,
    DEFAULT_MONTHLY_ADDITION,
    DEFAULT_MONTHLY_RETURN_PERCENT,
    DEFAULT_START_YEAR,
    DEFAULT_STARTING_INVESTMENT,
    ProjectionParams,
)
from stocktracker.models import Entry


def round_half_up(value: float) -> float:
    """
    Round to the nearest integer, halves toward +infinity.

    Python's `round` uses banker's rounding; the projection uses the
    conventional currency rounding instead.
    """
    return float(math.floor(float(value) + 0.5))


def generate_projection(
    count: int = DEFAULT_HORIZON_MONTHS,
    start_year: int = DEFAULT_START_YEAR,
    starting_investment: float = DEFAULT_STARTING_INVESTMENT,
    monthly_addition: float = DEFAULT_MONTHLY_ADDITION,
    monthly_return_percent: float = DEFAULT_MONTHLY_RETURN_PERCENT,
) -> list[Entry]:
    """
    Build `count` monthly target entries starting at January of `start_year`.

    Each month's opening investment is the previous month's rounded closing
    total, so rounding error compounds forward:

        investment_i       = total_{i-1}
        principal_i        = round(principal_{i-1} + added)
        total_investment_i = round(total_{i-1} + added)
        profit_i           = round(total_investment_i * rate / 100)
        total_i            = round(total_investment_i + profit_i)

    with total_0 = principal_0 = starting_investment (unrounded; only the
    stored investment_1 is rounded).
    """
    out: list[Entry] = []
    previous_total = float(starting_investment)
    previous_principal = float(starting_investment)
    added = float(monthly_addition)
    rate = float(monthly_return_percent)

    for i in range(1, int(count) + 1):
        investment = round_half_up(previous_total)
        principal = round_half_up(previous_principal + added)
        total_investment = round_half_up(previous_total + added)
        profit = round_half_up(total_investment * rate / 100)
        total = round_half_up(total_investment + profit)

        out.append(
            Entry(
                id=f"target-{i}",
                year=int(start_year) + (i - 1) // 12,
                month=((i - 1) % 12) + 1,
                investment=investment,
                added=added,
                principal=principal,
                total_investment=total_investment,
                return_percent=rate,
                profit=profit,
                total=total,
            )
        )
        previous_total = total
        previous_principal = principal
    return out


def generate_from_params(params: ProjectionParams) -> list[Entry]:
    return generate_projection(
        count=params.count,
        start_year=params.start_year,
        starting_investment=params.starting_investment,
        monthly_addition=params.monthly_addition,
        monthly_return_percent=params.monthly_return_percent,
    )
