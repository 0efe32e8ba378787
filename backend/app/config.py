# Settings: loaded from the environment, with an optional .env at project root.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_HEALTH_DATA_BASE_URL = "http://localhost:5000/"
DEFAULT_REVERSE_GEOCODE_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    health_data_base_url: str = DEFAULT_HEALTH_DATA_BASE_URL
    reverse_geocode_url: str = DEFAULT_REVERSE_GEOCODE_URL
    health_data_timeout: float = 20.0
    geolocation_timeout: float = 10.0
    health_data_retries: int = 0
    session_ttl_seconds: float = 3600.0
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def load_settings() -> Settings:
    """Read settings from the process environment (after loading .env, if any)."""
    load_dotenv(_PROJECT_ROOT / ".env")

    raw_origins = os.getenv("CORS_ORIGINS", "*")
    cors_origins = tuple(origin.strip() for origin in raw_origins.split(",") if origin.strip())

    return Settings(
        health_data_base_url=(os.getenv("HEALTH_DATA_BASE_URL") or DEFAULT_HEALTH_DATA_BASE_URL).strip(),
        reverse_geocode_url=(os.getenv("REVERSE_GEOCODE_URL") or DEFAULT_REVERSE_GEOCODE_URL).strip(),
        health_data_timeout=_env_float("HEALTH_DATA_TIMEOUT_SECONDS", 20.0),
        geolocation_timeout=_env_float("GEOLOCATION_TIMEOUT_SECONDS", 10.0),
        health_data_retries=_env_int("HEALTH_DATA_RETRIES", 0),
        session_ttl_seconds=_env_float("SESSION_TTL_SECONDS", 3600.0),
        cors_origins=cors_origins or ("*",),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level: str) -> None:
    # basicConfig is a no-op once the root logger has handlers (uvicorn, pytest).
    logging.basicConfig(level=level, format=LOG_FORMAT)
