"""Typed records for every entity read from or written to the database."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

__all__ = [
    "Location",
    "ModelCard",
    "NewLocation",
    "Region",
    "SourceRecord",
    "SourceTrap",
    "TrapCount",
]

# Raw timestamps stay untouched until the reconcilers parse them.
RawTimestamp = datetime | date | str | None


class Region(BaseModel):
    id: int
    name: str


class ModelCard(BaseModel):
    id: int
    name: str
    code: str | None = None


class SourceTrap(BaseModel):
    trap_id: str
    smapp_id: str | None = None
    name: str | None = None
    lat: float | None = None
    lng: float | None = None
    survey_year: int | None = None
    created_at: RawTimestamp = None

    @property
    def location_name(self) -> str | None:
        """Preferred identifier first, plain name as fallback."""
        if self.smapp_id is not None and self.smapp_id.strip():
            return self.smapp_id
        return self.name


class SourceRecord(BaseModel):
    id: int
    trap_id: str | None = None
    pest_name: str | None = None
    recorded_at: RawTimestamp = None
    detection_count: int | None = None
    trap: SourceTrap | None = None


class Location(BaseModel):
    id: int
    name: str
    lat: float
    lng: float
    survey_year: int
    contour_region_id: int


class NewLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lat: float
    lng: float
    survey_year: int
    contour_region_id: int
    created_at: datetime
    created_by: int


class TrapCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    location_id: int
    model_id: int
    survey_date: date
    trap_count: int
    created_at: datetime


def to_row(record: BaseModel) -> dict[str, Any]:
    """Flatten a record into bind parameters for an INSERT."""
    return record.model_dump()
