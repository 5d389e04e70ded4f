"""Import business listings from a CSV file into the businesses table."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from localspot_ingest.core.config import Settings, get_settings
from localspot_ingest.etl.transform import (
    CoordinateParseError,
    build_business_record,
    supplied_coordinates,
    to_csv_row,
)
from localspot_ingest.models import CoordinatePair, CsvRow, ImportOutcome
from localspot_ingest.vendors import geocoding

logger = logging.getLogger(__name__)


class CsvImportError(RuntimeError):
    """Raised when a file yields no successfully processed rows."""

    def __init__(self, message: str, outcome: Optional[ImportOutcome] = None):
        super().__init__(message)
        self.outcome = outcome


class CsvParseError(CsvImportError):
    """Raised when the file cannot be read as CSV at all."""


class BusinessStorage(Protocol):
    def find_business_by_name_and_address(self, name: str, address: str) -> Optional[Dict[str, Any]]:
        ...

    def insert_business(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...


def _default_storage() -> BusinessStorage:
    from localspot_ingest.core import db

    return db


def read_csv_rows(path: Union[str, Path]) -> List[CsvRow]:
    """Parse the whole file before any row is processed; malformed input rejects it."""
    rows: List[CsvRow] = []
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh, strict=True)
            for line_number, raw in enumerate(reader, start=1):
                rows.append(to_csv_row(raw, line_number))
    except (csv.Error, UnicodeDecodeError, OSError) as exc:
        raise CsvParseError(f"Error parsing CSV {path}: {exc}") from exc
    return rows


def resolve_coordinates(row: CsvRow, settings: Settings) -> CoordinatePair:
    """Pick coordinates for a row: supplied values, then geocoding, then the default pair."""
    default = CoordinatePair(settings.fallback_latitude, settings.fallback_longitude)

    try:
        supplied = supplied_coordinates(row)
    except CoordinateParseError as exc:
        logger.warning("Ignoring supplied coordinates for %s: %s", row.label, exc)
        supplied = None

    if supplied is not None:
        logger.info("Using provided coordinates for %s: %s, %s", row.label, supplied.latitude, supplied.longitude)
        return supplied

    if not row.address:
        logger.warning("Missing both coordinates and address for %s; using default coordinates", row.label)
        return default

    logger.info("Geocoding address for %s: %s", row.label, row.address)
    try:
        coordinates = geocoding.geocode_with_retry(
            row.address,
            settings.geocode_max_attempts,
            settings.geocode_retry_delay_seconds,
        )
        if coordinates is None:
            logger.info("Using fallback geocoding for %s", row.label)
            coordinates = geocoding.geocode_with_fallback(row.address, default)
    except Exception as exc:  # noqa: BLE001
        logger.error("Critical geocoding error for %s: %s; using default coordinates", row.label, exc)
        return default

    logger.info("Resolved coordinates for %s: %s, %s", row.label, coordinates.latitude, coordinates.longitude)
    return coordinates


def import_csv_file(
    path: Union[str, Path],
    *,
    storage: Optional[BusinessStorage] = None,
    settings: Optional[Settings] = None,
) -> ImportOutcome:
    """Import every row of ``path``.

    Rows are handled one at a time in file order. Validation and insert
    failures are recorded per row and never stop the loop; duplicates (same
    name and address already stored) are skipped. Raises
    :class:`CsvParseError` if the file cannot be parsed and
    :class:`CsvImportError` if rows were attempted but none succeeded.
    """
    settings = settings or get_settings()
    storage = storage or _default_storage()

    rows = read_csv_rows(path)
    outcome = ImportOutcome(path=str(path))
    logger.info("Parsed %d records from %s", len(rows), path)

    for row in rows:
        outcome.attempted += 1
        try:
            coordinates = resolve_coordinates(row, settings)
            record = build_business_record(row, coordinates, settings.import_user_id)

            existing = storage.find_business_by_name_and_address(record.name, record.address)
            if existing:
                outcome.skipped += 1
                logger.info("Business already exists: %s at %s", record.name, record.address)
                continue

            storage.insert_business(record.to_row())
            outcome.succeeded += 1
            logger.info("Inserted business: %s", record.name)
        except Exception as exc:  # noqa: BLE001
            outcome.failed += 1
            message = f"Error processing row {row.line_number}: {exc}"
            outcome.errors.append(message)
            logger.error(message)

    if outcome.all_failed:
        raise CsvImportError(
            f"Failed to process any records in {path}: {'; '.join(outcome.errors)}",
            outcome,
        )

    if outcome.failed:
        logger.warning("Completed %s with errors: %s", path, outcome.summary())
    else:
        logger.info("Successfully processed %s: %s", path, outcome.summary())
    return outcome
