"""Read-only projections of a merged dataset: table rows and chart series.

Nothing here mutates its input; every function returns new tuples and can be
called again on each filter change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .dataset_service import MergedMeasure

ALL = "All"

DEFAULT_PALETTE = (
    "#ff6384",
    "#36a2eb",
    "#cc65fe",
    "#ffce56",
    "#4bc0c0",
    "#ff9f40",
    "#9966ff",
    "#c9cbcf",
)


@dataclass(frozen=True)
class NamedSeries:
    label: str
    points: tuple[float | None, ...]
    color: str


@dataclass(frozen=True)
class ChartData:
    categories: tuple[str, ...]
    series: tuple[NamedSeries, ...]


@dataclass(frozen=True)
class FilterOptions:
    measures: tuple[str, ...]
    categories: tuple[str, ...]


def _matches(value: str, selected: str) -> bool:
    return selected == ALL or value == selected


def filter_sort_view(
    dataset: Sequence[MergedMeasure],
    measure_filter: str = ALL,
    category_filter: str = ALL,
) -> tuple[MergedMeasure, ...]:
    retained = [
        item
        for item in dataset
        if _matches(item.measure, measure_filter) and _matches(item.category, category_filter)
    ]
    # sorted() is stable, so equal values keep their incoming order.
    return tuple(sorted(retained, key=lambda item: item.value, reverse=True))


def _unique_in_order(values) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def filter_options(dataset: Sequence[MergedMeasure]) -> FilterOptions:
    return FilterOptions(
        measures=(ALL,) + _unique_in_order(item.measure for item in dataset),
        categories=(ALL,) + _unique_in_order(item.category for item in dataset),
    )


def build_chart_series(
    dataset: Sequence[MergedMeasure],
    measure_filter: str = ALL,
    category_filter: str = ALL,
    *,
    palette: Sequence[str] = DEFAULT_PALETTE,
) -> ChartData:
    """Group ``dataset`` into one year-aligned line series per measure.

    Colors are taken from ``palette`` by each measure's position in the whole
    dataset, so filtering does not recolor the remaining series. Years with no
    value for a measure are ``None``.
    """
    if not palette:
        raise ValueError("palette must contain at least one color")

    all_measures = _unique_in_order(item.measure for item in dataset)
    colors = {measure: palette[idx % len(palette)] for idx, measure in enumerate(all_measures)}

    selected = [
        item
        for item in dataset
        if _matches(item.measure, measure_filter) and _matches(item.category, category_filter)
    ]
    categories = tuple(sorted({item.year for item in selected}, key=int))

    values: dict[tuple[str, str], float] = {}
    for item in selected:
        values[(item.measure, item.year)] = item.value

    series = tuple(
        NamedSeries(
            label=measure,
            points=tuple(values.get((measure, year)) for year in categories),
            color=colors[measure],
        )
        for measure in _unique_in_order(item.measure for item in selected)
    )
    return ChartData(categories=categories, series=series)
