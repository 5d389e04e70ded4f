"""Client utilities for address geocoding (Nominatim or a Photon-compatible service)."""

import logging
import math
import time
from typing import Any, Iterable, Optional

import requests

from localspot_ingest.core.config import (
    DEFAULT_FALLBACK_LATITUDE,
    DEFAULT_FALLBACK_LONGITUDE,
    get_settings,
)
from localspot_ingest.models import CoordinatePair

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

DEFAULT_FALLBACK = CoordinatePair(DEFAULT_FALLBACK_LATITUDE, DEFAULT_FALLBACK_LONGITUDE)


def delay(seconds: float) -> None:
    """Pause between geocoding attempts to respect the service's rate limits."""
    if seconds > 0:
        time.sleep(seconds)


def geocode(address: str) -> Optional[CoordinatePair]:
    """Resolve an address to coordinates with a single request.

    Every failure path (no match, HTTP error, network error, garbled payload)
    is logged and returned as ``None``; callers never see an exception.
    """
    if not address or not address.strip():
        return None

    settings = get_settings()
    params = {"q": address.strip(), "format": "json", "limit": 1}
    headers = {"User-Agent": settings.geocoder_user_agent, "Accept-Language": "en"}

    try:
        response = _SESSION.get(
            settings.geocoder_url,
            params=params,
            headers=headers,
            timeout=settings.geocoder_timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Geocoding request failed for address=%s: %s", address, exc)
        return None

    coordinates = parse_geocode_response(payload)
    if coordinates is None:
        logger.warning("No geocoding results found for address=%s", address)
    return coordinates


def parse_geocode_response(payload: Any) -> Optional[CoordinatePair]:
    """Pick the first match out of a Nominatim list or a GeoJSON FeatureCollection."""
    for item in _extract_items(payload):
        if not isinstance(item, dict):
            continue
        if "lat" in item and "lon" in item:
            latitude, longitude = _safe_float(item.get("lat")), _safe_float(item.get("lon"))
        else:
            geometry = item.get("geometry")
            if not isinstance(geometry, dict):
                continue
            coords = geometry.get("coordinates")
            if not isinstance(coords, (list, tuple)) or len(coords) < 2:
                continue
            # GeoJSON orders positions as [lon, lat]
            longitude, latitude = _safe_float(coords[0]), _safe_float(coords[1])
        if latitude is None or longitude is None:
            continue
        return CoordinatePair(latitude=latitude, longitude=longitude)
    return None


def geocode_with_retry(
    address: str, max_attempts: int = 3, delay_seconds: float = 1.0
) -> Optional[CoordinatePair]:
    """Call :func:`geocode` up to ``max_attempts`` times with a fixed pause between tries.

    "Not found" and "service down" look the same here, so both are retried.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay(delay_seconds)
        logger.debug("Geocoding attempt %s/%s for address=%s", attempt, max_attempts, address)
        result = geocode(address)
        if result is not None:
            return result
        logger.info("Geocoding attempt %s/%s returned no result for address=%s", attempt, max_attempts, address)

    logger.error("Geocoding failed after %s attempts for address=%s", max_attempts, address)
    return None


def geocode_with_fallback(address: str, fallback: Optional[CoordinatePair] = None) -> CoordinatePair:
    """Resolve an address, substituting ``fallback`` (or the default pair) when that fails."""
    fallback = fallback or DEFAULT_FALLBACK
    try:
        result = geocode(address)
    except Exception as exc:  # noqa: BLE001
        logger.error("Unexpected geocoding error for address=%s: %s", address, exc)
        result = None

    if result is None:
        logger.warning(
            "Using fallback coordinates %s, %s for address=%s",
            fallback.latitude,
            fallback.longitude,
            address,
        )
        return fallback
    return result


def _extract_items(payload: Any) -> Iterable[Any]:
    """Nominatim returns a bare list, Photon wraps matches in ``features``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        features = payload.get("features")
        if isinstance(features, list):
            return features
    return []


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number
