"""Tests for the statistics service client.

``request_json`` runs against ``httpx.MockTransport``; ``fetch_health_records``
is exercised with ``request_json`` monkeypatched, so no network I/O happens.
"""
from __future__ import annotations

import httpx
import pytest

import backend.app.health_data_service as hds
from backend.app.location_service import LocationIdentity

LOCATION = LocationIdentity(city="Madison", state="WI")
BASE_URL = "http://stats.example.test/"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _patch_request_json(monkeypatch, payload) -> list[dict]:
    calls: list[dict] = []

    def fake_request_json(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        calls.append({"url": url, "params": params, "stage": stage})
        return payload

    monkeypatch.setattr(hds, "request_json", fake_request_json)
    return calls


def test_request_json_returns_decoded_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["city"] == "Madison"
        assert request.headers["User-Agent"] == hds.USER_AGENT
        return httpx.Response(200, json={"ok": True})

    with _client(handler) as client:
        payload = hds.request_json(
            client, BASE_URL, params={"city": "Madison"}, stage="health_data", config=hds.ApiConfig()
        )

    assert payload == {"ok": True}


@pytest.mark.parametrize("status", [404, 500])
def test_request_json_raises_transport_error_on_http_error(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="upstream says no")

    with _client(handler) as client, pytest.raises(hds.TransportError) as excinfo:
        hds.request_json(client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig())

    assert excinfo.value.stage == "health_data"
    assert f"HTTP {status}" in excinfo.value.message


def test_request_json_raises_transport_error_on_invalid_json():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with _client(handler) as client, pytest.raises(hds.TransportError, match="Invalid JSON"):
        hds.request_json(client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig())


def test_request_json_maps_timeout_to_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with _client(handler) as client, pytest.raises(hds.TransportError, match="Network error"):
        hds.request_json(client, BASE_URL, params=None, stage="reverse_geocode", config=hds.ApiConfig())


def test_request_json_does_not_retry_by_default():
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(503, text="busy")

    with _client(handler) as client, pytest.raises(hds.TransportError):
        hds.request_json(client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig())

    assert attempts["n"] == 1


def test_request_json_retries_when_configured(monkeypatch):
    monkeypatch.setattr(hds.time, "sleep", lambda _seconds: None)
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"city_state_data": []})

    with _client(handler) as client:
        payload = hds.request_json(
            client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig(retries=2)
        )

    assert attempts["n"] == 2
    assert payload == {"city_state_data": []}


def test_request_json_gives_up_after_configured_retries(monkeypatch):
    delays: list[float] = []
    monkeypatch.setattr(hds.time, "sleep", delays.append)
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client, pytest.raises(hds.TransportError, match="Network error") as excinfo:
        hds.request_json(client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig(retries=2))

    assert attempts["n"] == 3
    assert delays == [0.5, 1.0]
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.parametrize("status", [400, 404, 501])
def test_request_json_does_not_retry_non_transient_errors(monkeypatch, status):
    monkeypatch.setattr(hds.time, "sleep", lambda _seconds: None)
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(status, json={"error": "nope"})

    with _client(handler) as client, pytest.raises(hds.TransportError) as excinfo:
        hds.request_json(client, BASE_URL, params=None, stage="health_data", config=hds.ApiConfig(retries=3))

    assert attempts["n"] == 1
    assert not excinfo.value.retryable
    assert f"HTTP {status}" in excinfo.value.message


def test_fetch_health_records_queries_by_city_and_state(monkeypatch):
    calls = _patch_request_json(
        monkeypatch,
        {
            "city_state_data": [{"measure": "Obesity", "data_value": "33.0"}],
            "nationwide_data": [{"measure": "Obesity", "data_value": "41.9"}],
        },
    )

    records = hds.fetch_health_records(None, LOCATION, base_url=BASE_URL, config=hds.ApiConfig())

    assert calls == [
        {
            "url": "http://stats.example.test/cdc-data",
            "params": {"city": "Madison", "state": "WI"},
            "stage": "health_data",
        }
    ]
    assert len(records.local) == 1
    assert len(records.nationwide) == 1


def test_fetch_health_records_raises_no_data_when_both_empty(monkeypatch):
    _patch_request_json(monkeypatch, {"city_state_data": [], "nationwide_data": []})

    with pytest.raises(hds.NoDataError):
        hds.fetch_health_records(None, LOCATION, base_url=BASE_URL, config=hds.ApiConfig())


def test_fetch_health_records_accepts_nationwide_only(monkeypatch):
    _patch_request_json(monkeypatch, {"nationwide_data": [{"measure": "Obesity"}]})

    records = hds.fetch_health_records(None, LOCATION, base_url=BASE_URL, config=hds.ApiConfig())

    assert records.local == []
    assert len(records.nationwide) == 1


@pytest.mark.parametrize(
    "payload",
    [
        ["city_state_data"],
        {"city_state_data": "Obesity", "nationwide_data": []},
        {"city_state_data": [], "nationwide_data": {"measure": "Obesity"}},
    ],
)
def test_fetch_health_records_rejects_unexpected_envelope(monkeypatch, payload):
    _patch_request_json(monkeypatch, payload)

    with pytest.raises(hds.TransportError) as excinfo:
        hds.fetch_health_records(None, LOCATION, base_url=BASE_URL, config=hds.ApiConfig())

    assert excinfo.value.stage == "parse"


def test_health_data_url_joins_path():
    assert hds.health_data_url("http://localhost:5000/") == "http://localhost:5000/cdc-data"
    assert hds.health_data_url("http://localhost:5000") == "http://localhost:5000/cdc-data"
