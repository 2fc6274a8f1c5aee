"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Candidates scoring below this are reported as SkippedLowConfidence instead of
# being written. Mapbox scores an exact address or POI match at 1.0 and drops
# quickly once tokens of the query go unmatched.
DEFAULT_MIN_RELEVANCE = 0.8
DEFAULT_MAX_RETRIES = 3
DEFAULT_WORKERS = 4
DEFAULT_MAPBOX_BASE_URL = "https://api.mapbox.com"


class ConfigError(RuntimeError):
    """Raised when configuration is missing or cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    mapbox_access_token: str
    database_url: str
    mapbox_base_url: str = DEFAULT_MAPBOX_BASE_URL
    records_table: str = "tournaments"
    worker_port: int = 9000
    min_relevance: float = DEFAULT_MIN_RELEVANCE
    max_retries: int = DEFAULT_MAX_RETRIES
    max_workers: int = DEFAULT_WORKERS
    backoff_seconds: float = 0.5
    candidate_limit: int = 5
    geocode_types: Optional[str] = None
    geocode_country: Optional[str] = None
    request_timeout: float = 10.0
    run_timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class ReconcileConfig:
    """Run parameters handed to the reconciliation engine explicitly."""

    min_relevance: float = DEFAULT_MIN_RELEVANCE
    max_retries: int = DEFAULT_MAX_RETRIES
    max_workers: int = DEFAULT_WORKERS
    backoff_seconds: float = 0.5
    run_timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_relevance <= 1.0:
            raise ConfigError(f"min_relevance must be within [0, 1], got {self.min_relevance}")
        if self.max_retries < 0:
            raise ConfigError("max_retries cannot be negative")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.backoff_seconds < 0:
            raise ConfigError("backoff_seconds cannot be negative")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise ConfigError("run_timeout_seconds must be positive when set")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "ReconcileConfig":
        values = dict(
            min_relevance=settings.min_relevance,
            max_retries=settings.max_retries,
            max_workers=settings.max_workers,
            backoff_seconds=settings.backoff_seconds,
            run_timeout_seconds=settings.run_timeout_seconds,
        )
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    mapbox_access_token = os.getenv("MAPBOX_ACCESS_TOKEN", "")
    database_url = os.getenv("DATABASE_URL", "")
    worker_port = _env_number("WORKER_PORT", 9000, int)
    run_timeout = _env_number("RUN_TIMEOUT_SECONDS", None, float)

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not mapbox_access_token:
        logger.warning("MAPBOX_ACCESS_TOKEN is not configured; geocoding requests will fail.")

    return Settings(
        mapbox_access_token=mapbox_access_token,
        database_url=database_url,
        mapbox_base_url=(os.getenv("MAPBOX_BASE_URL") or DEFAULT_MAPBOX_BASE_URL).rstrip("/"),
        records_table=os.getenv("RECORDS_TABLE") or "tournaments",
        worker_port=worker_port,
        min_relevance=_env_number("MIN_RELEVANCE", DEFAULT_MIN_RELEVANCE, float),
        max_retries=_env_number("GEOCODE_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
        max_workers=_env_number("GEOCODE_WORKERS", DEFAULT_WORKERS, int),
        backoff_seconds=_env_number("GEOCODE_BACKOFF_SECONDS", 0.5, float),
        candidate_limit=_env_number("GEOCODE_CANDIDATE_LIMIT", 5, int),
        geocode_types=_env_optional("GEOCODE_TYPES"),
        geocode_country=_env_optional("GEOCODE_COUNTRY"),
        request_timeout=_env_number("GEOCODE_TIMEOUT_SECONDS", 10.0, float),
        run_timeout_seconds=run_timeout if run_timeout and run_timeout > 0 else None,
    )
