"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_USER_AGENT = "LocalSpot Business Directory Application"

# Portland, OR
DEFAULT_FALLBACK_LATITUDE = 45.5202
DEFAULT_FALLBACK_LONGITUDE = -122.6742


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    csv_watch_dir: str = "./data/csv"
    csv_quiesce_seconds: float = 1.0
    geocoder_url: str = NOMINATIM_SEARCH_URL
    geocoder_user_agent: str = DEFAULT_USER_AGENT
    geocoder_timeout_seconds: float = 10.0
    geocode_max_attempts: int = 3
    geocode_retry_delay_seconds: float = 1.0
    fallback_latitude: float = DEFAULT_FALLBACK_LATITUDE
    fallback_longitude: float = DEFAULT_FALLBACK_LONGITUDE
    import_user_id: int = 1
    db_ensure_schema: bool = False
    worker_port: int = 8080


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    csv_watch_dir = os.getenv("CSV_WATCH_DIR") or "./data/csv"
    geocoder_url = os.getenv("GEOCODER_URL") or NOMINATIM_SEARCH_URL
    geocoder_user_agent = os.getenv("GEOCODER_USER_AGENT") or DEFAULT_USER_AGENT

    settings = Settings(
        database_url=database_url,
        csv_watch_dir=csv_watch_dir,
        csv_quiesce_seconds=_get_float("CSV_QUIESCE_SECONDS", 1.0),
        geocoder_url=geocoder_url,
        geocoder_user_agent=geocoder_user_agent,
        geocoder_timeout_seconds=_get_float("GEOCODER_TIMEOUT_SECONDS", 10.0),
        geocode_max_attempts=_get_int("GEOCODE_MAX_ATTEMPTS", 3),
        geocode_retry_delay_seconds=_get_float("GEOCODE_RETRY_DELAY_SECONDS", 1.0),
        fallback_latitude=_get_float("FALLBACK_LATITUDE", DEFAULT_FALLBACK_LATITUDE),
        fallback_longitude=_get_float("FALLBACK_LONGITUDE", DEFAULT_FALLBACK_LONGITUDE),
        import_user_id=_get_int("IMPORT_USER_ID", 1),
        db_ensure_schema=_get_bool("DB_ENSURE_SCHEMA"),
        worker_port=_get_int("WORKER_PORT", 8080),
    )

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if settings.geocode_max_attempts < 1:
        raise ConfigError("GEOCODE_MAX_ATTEMPTS must be at least 1")

    return settings
