"""Per-user dashboard state: the committed location and dataset.

Each submit takes a new generation number before it starts any network call.
When the calls finish, the result is committed only if no newer submit has
started in the meantime; otherwise it is discarded as stale. A slow reverse
geocode therefore can never overwrite a newer manual city/state submission.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Literal

import httpx

from .dataset_service import MalformedRecordError, MergedMeasure, MergeResult, merge_records, with_community_input
from .health_data_service import ApiConfig, NoDataError, RawHealthRecords, TransportError, fetch_health_records
from .location_service import LocationIdentity, LocationLookupError, LocationQuery, resolve_location

logger = logging.getLogger(__name__)

SubmitStatus = Literal["committed", "no_data", "location_error", "transport_error", "stale"]


@dataclass(frozen=True)
class SubmitOutcome:
    status: SubmitStatus
    generation: int
    message: str | None = None
    location: LocationIdentity | None = None
    dropped: tuple[MalformedRecordError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status == "committed"

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)


@dataclass(frozen=True)
class SessionSnapshot:
    """Committed session state read in one step, so a dashboard never mixes two commits."""

    location: LocationIdentity | None
    dataset: tuple[MergedMeasure, ...]
    dropped: tuple[MalformedRecordError, ...]
    last_outcome: SubmitOutcome | None

    @property
    def has_data(self) -> bool:
        return bool(self.dataset)


@dataclass(frozen=True)
class PipelineEndpoints:
    health_data_base_url: str
    reverse_geocode_url: str
    health_data_config: ApiConfig
    geolocation_config: ApiConfig


def resolve(client: httpx.Client, query: LocationQuery, endpoints: PipelineEndpoints) -> LocationIdentity:
    return resolve_location(
        client,
        query,
        reverse_geocode_url=endpoints.reverse_geocode_url,
        config=endpoints.geolocation_config,
    )


def fetch(client: httpx.Client, location: LocationIdentity, endpoints: PipelineEndpoints) -> RawHealthRecords:
    return fetch_health_records(
        client,
        location,
        base_url=endpoints.health_data_base_url,
        config=endpoints.health_data_config,
    )


def load_dataset(
    client: httpx.Client,
    query: LocationQuery,
    endpoints: PipelineEndpoints,
) -> tuple[LocationIdentity, MergeResult]:
    """Resolve, fetch and merge in one go; errors propagate to the caller."""
    location = resolve(client, query, endpoints)
    raw = fetch(client, location, endpoints)
    return location, merge_records(raw.local, raw.nationwide)


class DashboardSession:
    def __init__(self, endpoints: PipelineEndpoints):
        self.endpoints = endpoints
        self._lock = threading.Lock()
        self._generation = 0
        self.location: LocationIdentity | None = None
        self.dataset: tuple[MergedMeasure, ...] = ()
        self.dropped: tuple[MalformedRecordError, ...] = ()
        self.last_outcome: SubmitOutcome | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def has_data(self) -> bool:
        return bool(self.dataset)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                location=self.location,
                dataset=self.dataset,
                dropped=self.dropped,
                last_outcome=self.last_outcome,
            )

    def begin(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _finish(self, outcome: SubmitOutcome, dataset: tuple[MergedMeasure, ...] | None = None) -> SubmitOutcome:
        with self._lock:
            if outcome.generation != self._generation:
                logger.warning(
                    "Discarding stale response for generation %d (latest is %d)",
                    outcome.generation,
                    self._generation,
                )
                return SubmitOutcome(
                    status="stale",
                    generation=outcome.generation,
                    message="A newer request superseded this one.",
                    location=outcome.location,
                    dropped=outcome.dropped,
                )
            if dataset is not None:
                self.location = outcome.location
                self.dataset = dataset
                self.dropped = outcome.dropped
            self.last_outcome = outcome
            return outcome

    def submit(self, client: httpx.Client, query: LocationQuery) -> SubmitOutcome:
        generation = self.begin()
        try:
            location = resolve(client, query, self.endpoints)
        except LocationLookupError as exc:
            return self._finish(SubmitOutcome(status="location_error", generation=generation, message=str(exc)))

        try:
            raw = fetch(client, location, self.endpoints)
        except NoDataError as exc:
            return self._finish(
                SubmitOutcome(status="no_data", generation=generation, message=str(exc), location=location)
            )
        except TransportError as exc:
            logger.warning("Health data fetch failed for %s, %s: %s", location.city, location.state, exc)
            return self._finish(
                SubmitOutcome(status="transport_error", generation=generation, message=str(exc), location=location)
            )

        merged = merge_records(raw.local, raw.nationwide)
        outcome = self._finish(
            SubmitOutcome(status="committed", generation=generation, location=location, dropped=merged.dropped),
            dataset=merged.measures,
        )
        if outcome.ok:
            logger.info(
                "Committed %d measures for %s, %s (generation %d)",
                len(merged.measures),
                location.city,
                location.state,
                generation,
            )
        return outcome

    def annotate(self, measure: str, value: float | None) -> MergedMeasure:
        with self._lock:
            self.dataset = with_community_input(self.dataset, measure, value)
            return next(item for item in self.dataset if item.measure == measure)
