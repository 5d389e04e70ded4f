"""Core data models shared by the CSV ingestion pipeline."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True, slots=True)
class CoordinatePair:
    """Latitude/longitude in degrees, passed through exactly as resolved."""

    latitude: float
    longitude: float

    @property
    def lat(self) -> float:
        return self.latitude

    @property
    def lon(self) -> float:
        return self.longitude


@dataclass(slots=True)
class CsvRow:
    """One parsed CSV record. Every column is optional at this stage."""

    line_number: int
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or f"row {self.line_number}"


@dataclass(slots=True)
class BusinessRecord:
    """Import-time shape of a business listing, ready for insertion."""

    name: str
    description: str
    category: str
    address: str
    latitude: float
    longitude: float
    created_by: int
    phone: Optional[str] = None
    website: Optional[str] = None
    image_url: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


class FileState(str, enum.Enum):
    DETECTED = "detected"
    IN_PROGRESS = "in-progress"
    PROCESSED = "processed"
    ERRORED = "errored"


@dataclass(slots=True)
class PendingFile:
    path: str
    state: FileState = FileState.DETECTED


@dataclass(slots=True)
class ImportOutcome:
    """Aggregate result of importing one CSV file."""

    path: str
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.failed == self.attempted

    def summary(self) -> str:
        return (
            f"{self.attempted} rows: {self.succeeded} inserted, "
            f"{self.skipped} skipped as duplicates, {self.failed} failed"
        )
