from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, model_validator

DashboardStatus = Literal["committed", "no_data", "location_error", "transport_error", "stale", "empty"]


class ErrorResponse(BaseModel):
    detail: str


class LocationResponse(BaseModel):
    city: str
    state: str


class SubmitRequest(BaseModel):
    """Either ``city`` + ``state`` or ``lat`` + ``lon``, never both."""

    model_config = ConfigDict(extra="forbid")

    city: str | None = Field(default=None, max_length=120)
    state: str | None = Field(default=None, max_length=40)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_one_mode(self) -> SubmitRequest:
        has_text = self.city is not None or self.state is not None
        has_point = self.lat is not None or self.lon is not None
        if has_text and has_point:
            raise ValueError("Provide either city/state or lat/lon, not both.")
        if has_point and (self.lat is None or self.lon is None):
            raise ValueError("Both lat and lon are required.")
        if has_text and (not (self.city or "").strip() or not (self.state or "").strip()):
            raise ValueError("Both city and state are required.")
        if not has_text and not has_point:
            raise ValueError("Provide city/state or lat/lon.")
        return self


class CommunityInputRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    measure: str = Field(..., min_length=1, max_length=200)
    value: FiniteFloat | None = None


class EstimateSchema(BaseModel):
    total: int
    adults: int
    children: int


class MeasureRow(BaseModel):
    measure: str
    year: str
    value: float
    confidence_low: float
    confidence_high: float
    category: str
    nationwide_value: float | None = None
    community_input: float | None = None
    comparison: Literal["above", "below", "equal"] | None = None
    estimates: EstimateSchema | None = None


class ChartSeriesSchema(BaseModel):
    label: str
    points: list[float | None]
    color: str


class ChartSchema(BaseModel):
    categories: list[str]
    series: list[ChartSeriesSchema]


class FilterOptionsSchema(BaseModel):
    measures: list[str]
    categories: list[str]


class DroppedRecord(BaseModel):
    source: Literal["local", "nationwide"]
    index: int
    reason: str


class DashboardResponse(BaseModel):
    status: DashboardStatus
    message: str | None = None
    location: LocationResponse | None = None
    has_data: bool
    rows: list[MeasureRow]
    chart: ChartSchema
    filters: FilterOptionsSchema
    dropped_count: int = 0
    dropped_records: list[DroppedRecord] = Field(default_factory=list)


class SessionCreatedResponse(BaseModel):
    session_id: str


class SubmitResponse(BaseModel):
    status: DashboardStatus
    generation: int
    message: str | None = None
    location: LocationResponse | None = None
    dropped_count: int = 0
