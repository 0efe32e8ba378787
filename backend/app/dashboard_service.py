"""Assemble the dashboard payload sent to the UI from a committed dataset."""

from __future__ import annotations

from typing import Sequence

from .dataset_service import MalformedRecordError, MergedMeasure, comparison
from .estimate_service import estimate_row
from .location_service import LocationIdentity
from .schemas import (
    ChartSchema,
    ChartSeriesSchema,
    DashboardResponse,
    DashboardStatus,
    DroppedRecord,
    EstimateSchema,
    FilterOptionsSchema,
    LocationResponse,
    MeasureRow,
)
from .view_service import ALL, DEFAULT_PALETTE, build_chart_series, filter_options, filter_sort_view


def measure_row(item: MergedMeasure, attendance: int | None = None, adults_percent: float = 70.0) -> MeasureRow:
    estimates = None
    if attendance is not None:
        row = estimate_row(item.value, attendance, adults_percent)
        estimates = EstimateSchema(total=row.total, adults=row.adults, children=row.children)
    return MeasureRow(
        measure=item.measure,
        year=item.year,
        value=item.value,
        confidence_low=item.confidence_low,
        confidence_high=item.confidence_high,
        category=item.category,
        nationwide_value=item.nationwide_value,
        community_input=item.community_input,
        comparison=comparison(item),
        estimates=estimates,
    )


def location_response(location: LocationIdentity | None) -> LocationResponse | None:
    if location is None:
        return None
    return LocationResponse(city=location.city, state=location.state)


def build_dashboard(
    dataset: Sequence[MergedMeasure],
    *,
    status: DashboardStatus,
    location: LocationIdentity | None = None,
    message: str | None = None,
    dropped: Sequence[MalformedRecordError] = (),
    measure: str = ALL,
    category: str = ALL,
    attendance: int | None = None,
    adults_percent: float = 70.0,
    palette: Sequence[str] = DEFAULT_PALETTE,
) -> DashboardResponse:
    rows = filter_sort_view(dataset, measure, category)
    # The category filter narrows the table only; the trend chart follows the measure filter.
    chart = build_chart_series(dataset, measure, palette=palette)
    options = filter_options(dataset)

    return DashboardResponse(
        status=status,
        message=message,
        location=location_response(location),
        has_data=bool(dataset),
        rows=[measure_row(item, attendance, adults_percent) for item in rows],
        chart=ChartSchema(
            categories=list(chart.categories),
            series=[
                ChartSeriesSchema(label=series.label, points=list(series.points), color=series.color)
                for series in chart.series
            ],
        ),
        filters=FilterOptionsSchema(measures=list(options.measures), categories=list(options.categories)),
        dropped_count=len(dropped),
        dropped_records=[
            DroppedRecord(source=error.source, index=error.index, reason=error.reason) for error in dropped
        ],
    )
