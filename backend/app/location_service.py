"""Resolve a query location into the (city, state) key used for health data.

Two inputs are accepted: explicit city/state text typed by the user, or a
coordinate pair that is reverse-geocoded through BigDataCloud.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

import httpx

from .health_data_service import ApiConfig, TransportError, request_json

logger = logging.getLogger(__name__)

SUBDIVISION_SEPARATOR = "-"


@dataclass(frozen=True)
class LocationIdentity:
    city: str
    state: str


@dataclass(frozen=True)
class CityStateQuery:
    city: str
    state: str


@dataclass(frozen=True)
class CoordinatesQuery:
    lat: float
    lon: float


LocationQuery = Union[CityStateQuery, CoordinatesQuery]


class LocationLookupError(RuntimeError):
    pass


def resolve_city_state(query: CityStateQuery) -> LocationIdentity:
    city = (query.city or "").strip()
    state = (query.state or "").strip()
    if not city or not state:
        raise LocationLookupError("Both city and state are required.")
    return LocationIdentity(city=city, state=state)


def _state_from_subdivision_code(code: Any) -> str:
    # "US-WI" -> "WI"
    if not isinstance(code, str) or SUBDIVISION_SEPARATOR not in code:
        raise LocationLookupError(f"Malformed principalSubdivisionCode: {code!r}")
    state = code.split(SUBDIVISION_SEPARATOR, 1)[1].strip()
    if not state:
        raise LocationLookupError(f"Malformed principalSubdivisionCode: {code!r}")
    return state


def resolve_coordinates(
    client: httpx.Client,
    query: CoordinatesQuery,
    *,
    url: str,
    config: ApiConfig,
) -> LocationIdentity:
    try:
        payload = request_json(
            client,
            url,
            params={
                "latitude": query.lat,
                "longitude": query.lon,
                "localityLanguage": "en",
            },
            stage="reverse_geocode",
            config=config,
        )
    except TransportError as exc:
        logger.warning("Reverse geocoding failed for (%s, %s): %s", query.lat, query.lon, exc)
        raise LocationLookupError(f"Reverse geocoding failed: {exc.message}") from exc

    if not isinstance(payload, dict):
        raise LocationLookupError("Reverse geocoding response is not a JSON object.")

    city = str(payload.get("city") or "").strip() or str(payload.get("locality") or "").strip()
    if not city:
        raise LocationLookupError("Reverse geocoding returned no city or locality.")

    state = _state_from_subdivision_code(payload.get("principalSubdivisionCode"))
    return LocationIdentity(city=city, state=state)


def resolve_location(
    client: httpx.Client,
    query: LocationQuery,
    *,
    reverse_geocode_url: str,
    config: ApiConfig,
) -> LocationIdentity:
    if isinstance(query, CityStateQuery):
        return resolve_city_state(query)
    return resolve_coordinates(client, query, url=reverse_geocode_url, config=config)
