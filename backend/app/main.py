from __future__ import annotations

import logging
import threading
import time
import uuid

import httpx
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, configure_logging, load_settings
from .dashboard_service import build_dashboard, location_response, measure_row
from .dashboard_session import DashboardSession, PipelineEndpoints, load_dataset
from .dataset_service import MergedMeasure
from .health_data_service import ApiConfig, NoDataError, TransportError
from .location_service import (
    CityStateQuery,
    CoordinatesQuery,
    LocationLookupError,
    LocationQuery,
    resolve_coordinates,
)
from .schemas import (
    CommunityInputRequest,
    DashboardResponse,
    ErrorResponse,
    LocationResponse,
    MeasureRow,
    SessionCreatedResponse,
    SubmitRequest,
    SubmitResponse,
)
from .view_service import ALL

settings = load_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="CaringHand Community Health API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In-memory sessions; state lives only as long as the process.
# session_id -> (last access, session). Idle sessions expire after settings.session_ttl_seconds.
_SESSIONS: dict[str, tuple[float, DashboardSession]] = {}
_SESSIONS_LOCK = threading.Lock()

UPSTREAM_ERRORS = {404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}}


def pipeline_endpoints(current: Settings) -> PipelineEndpoints:
    return PipelineEndpoints(
        health_data_base_url=current.health_data_base_url,
        reverse_geocode_url=current.reverse_geocode_url,
        health_data_config=ApiConfig(timeout=current.health_data_timeout, retries=current.health_data_retries),
        geolocation_config=ApiConfig(timeout=current.geolocation_timeout),
    )


def _now() -> float:
    return time.monotonic()


def _prune_sessions(now: float) -> None:
    """Drop idle sessions. Caller holds _SESSIONS_LOCK."""
    expired = [
        session_id
        for session_id, (touched, _) in _SESSIONS.items()
        if now - touched >= settings.session_ttl_seconds
    ]
    for session_id in expired:
        del _SESSIONS[session_id]
    if expired:
        logger.info("Expired %d idle dashboard session(s)", len(expired))


def _get_session(session_id: str) -> DashboardSession:
    now = _now()
    with _SESSIONS_LOCK:
        _prune_sessions(now)
        entry = _SESSIONS.get(session_id)
        if entry is not None:
            # Any access extends the session's life.
            _SESSIONS[session_id] = (now, entry[1])
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return entry[1]


def _one_shot_dashboard(
    query: LocationQuery,
    *,
    measure: str,
    category: str,
    attendance: int | None,
    adults_percent: float,
) -> DashboardResponse:
    try:
        with httpx.Client(follow_redirects=True) as client:
            location, merged = load_dataset(client, query, pipeline_endpoints(settings))
    except LocationLookupError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except NoDataError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransportError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return build_dashboard(
        merged.measures,
        status="committed",
        location=location,
        dropped=merged.dropped,
        measure=measure,
        category=category,
        attendance=attendance,
        adults_percent=adults_percent,
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/location/by-point", response_model=LocationResponse, responses={502: {"model": ErrorResponse}})
def location_by_point(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
) -> LocationResponse:
    try:
        with httpx.Client(follow_redirects=True) as client:
            location = resolve_coordinates(
                client,
                CoordinatesQuery(lat=lat, lon=lon),
                url=settings.reverse_geocode_url,
                config=ApiConfig(timeout=settings.geolocation_timeout),
            )
    except LocationLookupError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return LocationResponse(city=location.city, state=location.state)


@app.get("/api/health/by-location", response_model=DashboardResponse, responses=UPSTREAM_ERRORS)
def health_by_location(
    city: str = Query(..., min_length=1, max_length=120),
    state: str = Query(..., min_length=1, max_length=40),
    measure: str = Query(ALL),
    category: str = Query(ALL),
    attendance: int | None = Query(None, ge=0),
    adults_percent: float = Query(70.0, ge=0, le=100),
) -> DashboardResponse:
    """Resolve, fetch, merge and project health data for a typed city/state."""
    if not city.strip() or not state.strip():
        raise HTTPException(status_code=422, detail="Both city and state are required.")
    return _one_shot_dashboard(
        CityStateQuery(city=city, state=state),
        measure=measure,
        category=category,
        attendance=attendance,
        adults_percent=adults_percent,
    )


@app.get("/api/health/by-point", response_model=DashboardResponse, responses=UPSTREAM_ERRORS)
def health_by_point(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    measure: str = Query(ALL),
    category: str = Query(ALL),
    attendance: int | None = Query(None, ge=0),
    adults_percent: float = Query(70.0, ge=0, le=100),
) -> DashboardResponse:
    return _one_shot_dashboard(
        CoordinatesQuery(lat=lat, lon=lon),
        measure=measure,
        category=category,
        attendance=attendance,
        adults_percent=adults_percent,
    )


@app.post("/api/sessions", response_model=SessionCreatedResponse, status_code=201)
def create_session() -> SessionCreatedResponse:
    session_id = uuid.uuid4().hex
    now = _now()
    with _SESSIONS_LOCK:
        _prune_sessions(now)
        _SESSIONS[session_id] = (now, DashboardSession(pipeline_endpoints(settings)))
    logger.info("Created dashboard session %s", session_id)
    return SessionCreatedResponse(session_id=session_id)


@app.delete("/api/sessions/{session_id}", status_code=204, responses={404: {"model": ErrorResponse}})
def delete_session(session_id: str) -> Response:
    with _SESSIONS_LOCK:
        entry = _SESSIONS.pop(session_id, None)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    logger.info("Deleted dashboard session %s", session_id)
    return Response(status_code=204)


@app.post("/api/sessions/{session_id}/submit", response_model=SubmitResponse)
def submit_session(session_id: str, body: SubmitRequest) -> SubmitResponse:
    """Run the pipeline for a session; failures come back as a status, not an error code."""
    session = _get_session(session_id)
    if body.lat is not None and body.lon is not None:
        query: LocationQuery = CoordinatesQuery(lat=body.lat, lon=body.lon)
    else:
        query = CityStateQuery(city=body.city or "", state=body.state or "")

    with httpx.Client(follow_redirects=True) as client:
        outcome = session.submit(client, query)

    return SubmitResponse(
        status=outcome.status,
        generation=outcome.generation,
        message=outcome.message,
        location=location_response(outcome.location),
        dropped_count=outcome.dropped_count,
    )


@app.get("/api/sessions/{session_id}/dashboard", response_model=DashboardResponse)
def session_dashboard(
    session_id: str,
    measure: str = Query(ALL),
    category: str = Query(ALL),
    attendance: int | None = Query(None, ge=0),
    adults_percent: float = Query(70.0, ge=0, le=100),
) -> DashboardResponse:
    current = _get_session(session_id).snapshot()
    last = current.last_outcome
    return build_dashboard(
        current.dataset,
        status=last.status if last is not None else "empty",
        location=current.location,
        message=last.message if last is not None else None,
        dropped=current.dropped,
        measure=measure,
        category=category,
        attendance=attendance,
        adults_percent=adults_percent,
    )


@app.put("/api/sessions/{session_id}/community-input", response_model=MeasureRow)
def set_community_input(session_id: str, body: CommunityInputRequest) -> MeasureRow:
    session = _get_session(session_id)
    try:
        item: MergedMeasure = session.annotate(body.measure, body.value)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown measure: {body.measure}") from exc

    return measure_row(item)
