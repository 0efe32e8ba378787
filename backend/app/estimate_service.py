"""Population-scaled estimates of how many people a prevalence figure covers.

Rounding is half-up on the decimal value: 0.5 becomes 1 and 2.5 becomes 3.
Float inputs go through their shortest repr so 57% of 50 is exactly 28.5.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from dataclasses import dataclass
from typing import Literal

PopulationSegment = Literal["total", "adults", "children"]


@dataclass(frozen=True)
class EstimateRow:
    total: int
    adults: int
    children: int


def _exact(value: float) -> Decimal:
    return Decimal(repr(value))


def round_half_up(value: float | Decimal) -> int:
    if not isinstance(value, Decimal):
        value = _exact(value)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def children_percent(adults_percent: float) -> float:
    return 100 - adults_percent


def population_base(
    attendance: int,
    adults_percent: float = 100.0,
    segment: PopulationSegment = "total",
) -> float:
    if attendance < 0:
        raise ValueError(f"attendance must be non-negative. Got {attendance}")
    if not 0 <= adults_percent <= 100:
        raise ValueError(f"adults_percent must be between 0 and 100. Got {adults_percent}")

    if segment == "total":
        return float(attendance)
    if segment == "adults":
        return attendance * adults_percent / 100
    if segment == "children":
        return attendance * children_percent(adults_percent) / 100
    raise ValueError(f"Unknown population segment: {segment!r}")


def estimate_affected(prevalence_percent: float, population: float) -> int:
    return round_half_up(_exact(prevalence_percent) * _exact(population) / 100)


def estimate_row(prevalence_percent: float, attendance: int, adults_percent: float) -> EstimateRow:
    return EstimateRow(
        total=estimate_affected(prevalence_percent, population_base(attendance, adults_percent, "total")),
        adults=estimate_affected(prevalence_percent, population_base(attendance, adults_percent, "adults")),
        children=estimate_affected(prevalence_percent, population_base(attendance, adults_percent, "children")),
    )
