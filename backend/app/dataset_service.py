from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, ValidationError, field_validator

logger = logging.getLogger(__name__)

RecordSource = Literal["local", "nationwide"]


class NationwideRecord(BaseModel):
    """The fields of a raw record needed for a nationwide baseline."""

    model_config = ConfigDict(extra="ignore")

    measure: str = Field(..., min_length=1)
    data_value: FiniteFloat
    year: str = Field(..., pattern=r"^\d{4}$")

    @field_validator("year", mode="before")
    @classmethod
    def year_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("measure")
    @classmethod
    def measure_not_blank(cls, value: str) -> str:
        # Kept verbatim: the nationwide lookup is an exact string match.
        if not value.strip():
            raise ValueError("measure must not be blank")
        return value


class HealthRecord(NationwideRecord):
    """One local measure/year row from the statistics service, after coercion."""

    low_confidence_limit: FiniteFloat
    high_confidence_limit: FiniteFloat
    category: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def category_or_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class MeasureYearKey(NamedTuple):
    measure: str
    year: str


@dataclass(frozen=True)
class MergedMeasure:
    measure: str
    year: str
    value: float
    confidence_low: float
    confidence_high: float
    category: str
    nationwide_value: float | None = None
    community_input: float | None = None

    @property
    def key(self) -> MeasureYearKey:
        return MeasureYearKey(self.measure, self.year)


class MalformedRecordError(ValueError):
    def __init__(self, source: RecordSource, index: int, reason: str):
        super().__init__(f"{source} record #{index}: {reason}")
        self.source = source
        self.index = index
        self.reason = reason


@dataclass(frozen=True)
class MergeResult:
    measures: tuple[MergedMeasure, ...]
    dropped: tuple[MalformedRecordError, ...] = field(default_factory=tuple)

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)


def _validation_reason(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


def _parse(model: type[BaseModel], raw: Any, source: RecordSource, index: int) -> Any:
    if not isinstance(raw, dict):
        raise MalformedRecordError(source, index, f"expected an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedRecordError(source, index, _validation_reason(exc)) from exc


def build_nationwide_index(
    nationwide: Iterable[Any],
    dropped: list[MalformedRecordError],
) -> dict[MeasureYearKey, float]:
    index: dict[MeasureYearKey, float] = {}
    for position, raw in enumerate(nationwide):
        try:
            record = _parse(NationwideRecord, raw, "nationwide", position)
        except MalformedRecordError as exc:
            dropped.append(exc)
            continue
        index[MeasureYearKey(record.measure, record.year)] = record.data_value
    return index


def merge_records(local: Iterable[Any], nationwide: Iterable[Any]) -> MergeResult:
    """Combine local and nationwide records into one dataset keyed by measure.

    Each local record gets the nationwide value for the same (measure, year),
    or ``None`` when there is no such pair. A later local record with the same
    measure replaces an earlier one, even when the years differ. Records that
    fail coercion are dropped and reported in ``MergeResult.dropped``.
    """
    dropped: list[MalformedRecordError] = []
    nationwide_index = build_nationwide_index(nationwide, dropped)

    by_measure: dict[str, MergedMeasure] = {}
    for position, raw in enumerate(local):
        try:
            record = _parse(HealthRecord, raw, "local", position)
        except MalformedRecordError as exc:
            dropped.append(exc)
            continue

        key = MeasureYearKey(record.measure, record.year)
        if record.measure in by_measure:
            logger.debug("Duplicate measure %r, keeping the later record", record.measure)
        by_measure[record.measure] = MergedMeasure(
            measure=record.measure,
            year=record.year,
            value=record.data_value,
            confidence_low=record.low_confidence_limit,
            confidence_high=record.high_confidence_limit,
            category=record.category,
            nationwide_value=nationwide_index.get(key),
        )

    if dropped:
        logger.warning(
            "Dropped %d malformed health record(s): %s",
            len(dropped),
            "; ".join(str(exc) for exc in dropped[:5]),
        )
    return MergeResult(measures=tuple(by_measure.values()), dropped=tuple(dropped))


def with_community_input(
    measures: Iterable[MergedMeasure],
    measure: str,
    value: float | None,
) -> tuple[MergedMeasure, ...]:
    """Return a copy of ``measures`` with one row's community input replaced."""
    updated = []
    found = False
    for item in measures:
        if item.measure == measure:
            item = replace(item, community_input=value)
            found = True
        updated.append(item)
    if not found:
        raise KeyError(measure)
    return tuple(updated)


def comparison(item: MergedMeasure) -> Literal["above", "below", "equal"] | None:
    if item.nationwide_value is None:
        return None
    if item.value > item.nationwide_value:
        return "above"
    if item.value < item.nationwide_value:
        return "below"
    return "equal"
