"""Utilities for turning raw CSV records into validated business records."""

import logging
import math
from typing import Any, Dict, List, Optional

from localspot_ingest.models import BusinessRecord, CoordinatePair, CsvRow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "description", "category", "address")

# lower-cased CSV header -> CsvRow attribute
_COLUMN_ALIASES = {
    "name": "name",
    "description": "description",
    "category": "category",
    "address": "address",
    "phone": "phone",
    "website": "website",
    "latitude": "latitude",
    "longitude": "longitude",
    "imageurl": "image_url",
    "image_url": "image_url",
}


class CoordinateParseError(ValueError):
    """Raised when a supplied coordinate is present but not a finite number."""


class RowValidationError(ValueError):
    """Raised when an assembled business record fails schema validation."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


def to_csv_row(raw: Dict[Optional[str], Any], line_number: int) -> CsvRow:
    """Map a header-keyed dict from the CSV reader onto :class:`CsvRow`."""
    values: Dict[str, Optional[str]] = {}
    for header, value in raw.items():
        # csv.DictReader files surplus cells under a None key
        if header is None:
            continue
        attr = _COLUMN_ALIASES.get(header.strip().lower())
        if attr is None or values.get(attr) is not None:
            continue
        values[attr] = _strip_or_none(value)
    return CsvRow(line_number=line_number, **values)


def parse_coordinate(value: Optional[str], field_name: str) -> Optional[float]:
    """Parse a supplied coordinate string.

    Blank means "not supplied" and yields ``None``; anything else must be a
    finite float or :class:`CoordinateParseError` is raised.
    """
    if value is None or not value.strip():
        return None
    try:
        number = float(value)
    except ValueError as exc:
        raise CoordinateParseError(f"{field_name} {value!r} is not a number") from exc
    if not math.isfinite(number):
        raise CoordinateParseError(f"{field_name} {value!r} is not a finite number")
    return number


def supplied_coordinates(row: CsvRow) -> Optional[CoordinatePair]:
    """Return the row's own coordinates when both are present and valid."""
    latitude = parse_coordinate(row.latitude, "latitude")
    longitude = parse_coordinate(row.longitude, "longitude")
    if latitude is None or longitude is None:
        return None
    return CoordinatePair(latitude=latitude, longitude=longitude)


def build_business_record(row: CsvRow, coordinates: CoordinatePair, created_by: int) -> BusinessRecord:
    record = BusinessRecord(
        name=row.name or "",
        description=row.description or "",
        category=row.category or "",
        address=row.address or "",
        latitude=coordinates.latitude,
        longitude=coordinates.longitude,
        created_by=created_by,
        phone=row.phone,
        website=row.website,
        image_url=row.image_url,
    )
    validate_business_record(record)
    return record


def validate_business_record(record: BusinessRecord) -> None:
    """Apply the business insert schema, collecting every problem found."""
    problems: List[str] = []
    for field_name in REQUIRED_FIELDS:
        value = getattr(record, field_name)
        if not isinstance(value, str) or not value.strip():
            problems.append(f"{field_name} is required")

    problems.extend(_check_finite("latitude", record.latitude))
    problems.extend(_check_finite("longitude", record.longitude))

    if not isinstance(record.created_by, int) or isinstance(record.created_by, bool) or record.created_by < 1:
        problems.append("created_by must be a positive integer")

    for field_name in ("phone", "website", "image_url"):
        value = getattr(record, field_name)
        if value is not None and not isinstance(value, str):
            problems.append(f"{field_name} must be text")

    if problems:
        raise RowValidationError(problems)


def _check_finite(field_name: str, value: Any) -> List[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return [f"{field_name} must be a finite number"]
    return []


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None
