"""Tests for resolving typed city/state input and reverse-geocoded coordinates."""
from __future__ import annotations

import pytest

import backend.app.location_service as ls
from backend.app.health_data_service import ApiConfig, TransportError

CONFIG = ApiConfig(timeout=1.0)
URL = "https://geo.example.test/reverse"


def _patch_geocoder(monkeypatch, payload=None, error: Exception | None = None) -> list[dict]:
    calls: list[dict] = []

    def fake_request_json(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        assert stage == "reverse_geocode"
        calls.append({"url": url, "params": params, "timeout": config.timeout})
        if error is not None:
            raise error
        return payload

    monkeypatch.setattr(ls, "request_json", fake_request_json)
    return calls


def test_city_state_is_trimmed():
    location = ls.resolve_city_state(ls.CityStateQuery(city="  Madison ", state=" WI "))
    assert location == ls.LocationIdentity(city="Madison", state="WI")


@pytest.mark.parametrize(("city", "state"), [("", "WI"), ("Madison", "  "), ("", "")])
def test_city_state_requires_both_values(city, state):
    with pytest.raises(ls.LocationLookupError):
        ls.resolve_city_state(ls.CityStateQuery(city=city, state=state))


def test_coordinates_resolve_to_city_and_state(monkeypatch):
    calls = _patch_geocoder(
        monkeypatch,
        {"city": "Madison", "locality": "Madison", "principalSubdivisionCode": "US-WI"},
    )

    location = ls.resolve_coordinates(None, ls.CoordinatesQuery(lat=43.074, lon=-89.384), url=URL, config=CONFIG)

    assert location == ls.LocationIdentity(city="Madison", state="WI")
    assert calls[0]["url"] == URL
    assert calls[0]["params"]["latitude"] == 43.074
    assert calls[0]["params"]["longitude"] == -89.384
    assert calls[0]["timeout"] == 1.0


def test_coordinates_fall_back_to_locality(monkeypatch):
    _patch_geocoder(monkeypatch, {"city": "", "locality": "Shorewood Hills", "principalSubdivisionCode": "US-WI"})

    location = ls.resolve_coordinates(None, ls.CoordinatesQuery(lat=43.07, lon=-89.44), url=URL, config=CONFIG)

    assert location.city == "Shorewood Hills"


@pytest.mark.parametrize(
    "payload",
    [
        {"city": "Madison", "principalSubdivisionCode": "USWI"},
        {"city": "Madison", "principalSubdivisionCode": "US-"},
        {"city": "Madison"},
        {"city": "", "locality": "", "principalSubdivisionCode": "US-WI"},
        ["not", "an", "object"],
    ],
)
def test_malformed_geocoder_payload_raises_lookup_error(monkeypatch, payload):
    _patch_geocoder(monkeypatch, payload)

    with pytest.raises(ls.LocationLookupError):
        ls.resolve_coordinates(None, ls.CoordinatesQuery(lat=43.07, lon=-89.44), url=URL, config=CONFIG)


def test_geocoder_transport_failure_raises_lookup_error(monkeypatch):
    _patch_geocoder(monkeypatch, error=TransportError("reverse_geocode", "Network error: timed out"))

    with pytest.raises(ls.LocationLookupError, match="timed out"):
        ls.resolve_coordinates(None, ls.CoordinatesQuery(lat=43.07, lon=-89.44), url=URL, config=CONFIG)


def test_resolve_location_dispatches_on_query_type(monkeypatch):
    calls = _patch_geocoder(monkeypatch, {"city": "Austin", "principalSubdivisionCode": "US-TX"})

    typed = ls.resolve_location(None, ls.CityStateQuery("Madison", "WI"), reverse_geocode_url=URL, config=CONFIG)
    located = ls.resolve_location(None, ls.CoordinatesQuery(30.27, -97.74), reverse_geocode_url=URL, config=CONFIG)

    assert typed == ls.LocationIdentity("Madison", "WI")
    assert located == ls.LocationIdentity("Austin", "TX")
    assert len(calls) == 1
