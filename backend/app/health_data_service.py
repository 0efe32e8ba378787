from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from .location_service import LocationIdentity

logger = logging.getLogger(__name__)

HEALTH_DATA_PATH = "cdc-data"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
USER_AGENT = "caringhand-health/0.1"


@dataclass(frozen=True)
class ApiConfig:
    timeout: float = 20.0
    retries: int = 0


@dataclass(frozen=True)
class RawHealthRecords:
    """Untyped record collections exactly as returned by the statistics service."""

    local: list[dict[str, Any]]
    nationwide: list[dict[str, Any]]


class TransportError(RuntimeError):
    def __init__(self, stage: str, message: str, *, retryable: bool = False):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message
        self.retryable = retryable


class NoDataError(RuntimeError):
    """Raised when the statistics service has no local or nationwide records."""


def _backoff_seconds(attempt: int) -> float:
    return min(8.0, 0.5 * (2**attempt))


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


def _get_json(
    client: httpx.Client,
    url: str,
    *,
    params: dict[str, Any] | None,
    stage: str,
    config: ApiConfig,
) -> Any:
    try:
        response = client.get(url, params=params, timeout=config.timeout, headers={"User-Agent": USER_AGENT})
    except httpx.TransportError as exc:
        raise TransportError(stage, f"Network error: {exc!s}", retryable=True) from exc

    status = response.status_code
    if status >= 400:
        raise TransportError(
            stage,
            f"HTTP {status}: {_short_error_text(response.text)}",
            retryable=status in RETRYABLE_STATUS_CODES,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(stage, f"Invalid JSON in upstream response (HTTP {status})") from exc


def request_json(
    client: httpx.Client,
    url: str,
    *,
    params: dict[str, Any] | None,
    stage: str,
    config: ApiConfig,
) -> Any:
    """GET ``url`` and decode JSON, retrying network errors and 429/5xx up to ``config.retries`` times."""
    attempt = 0
    while True:
        try:
            return _get_json(client, url, params=params, stage=stage, config=config)
        except TransportError as exc:
            if not exc.retryable or attempt >= config.retries:
                raise
            logger.info("Retrying %s request after %s (attempt %d)", stage, exc.message, attempt + 1)
            time.sleep(_backoff_seconds(attempt))
            attempt += 1


def _record_list(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TransportError("parse", f"Expected a list for {key!r}, got {type(value).__name__}")
    return value


def health_data_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{HEALTH_DATA_PATH}"


def fetch_health_records(
    client: httpx.Client,
    location: LocationIdentity,
    *,
    base_url: str,
    config: ApiConfig,
) -> RawHealthRecords:
    """Fetch local and nationwide measure records for one city/state.

    Raises ``TransportError`` when the service cannot be reached or answers with
    something other than the expected envelope, and ``NoDataError`` when both
    collections come back empty.
    """
    logger.info("Fetching health data for %s, %s", location.city, location.state)
    payload = request_json(
        client,
        health_data_url(base_url),
        params={"city": location.city, "state": location.state},
        stage="health_data",
        config=config,
    )
    if not isinstance(payload, dict):
        raise TransportError("parse", "Health data response is not a JSON object")

    records = RawHealthRecords(
        local=_record_list(payload, "city_state_data"),
        nationwide=_record_list(payload, "nationwide_data"),
    )
    if not records.local and not records.nationwide:
        raise NoDataError(f"No health data found for {location.city}, {location.state}.")

    logger.info(
        "Received %d local and %d nationwide records for %s, %s",
        len(records.local),
        len(records.nationwide),
        location.city,
        location.state,
    )
    return records
