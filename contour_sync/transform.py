# contour_sync/transform.py
"""Identity keys and value normalisation shared by both reconcilers."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contour_sync.models import RawTimestamp, SourceTrap

# Decimal places kept for coordinates; absorbs float noise from storage round-trips.
COORD_PRECISION = 6


def round_coord(value: float) -> float:
    """Round a coordinate for storage and keying (negative zero folded to 0.0)."""
    return round(float(value), COORD_PRECISION) + 0.0


def normalize_name(name: str, *, case_insensitive: bool = True) -> str:
    stripped = name.strip()
    return stripped.casefold() if case_insensitive else stripped


def location_key(
    name: str,
    lat: float,
    lng: float,
    survey_year: int,
    *,
    case_insensitive: bool = True,
) -> str:
    """Stable identity of a location: name | lat | lng | survey year.

    Args:
        name: Location name (stripped; case-folded unless case_insensitive=False)
        lat: Latitude, rounded to 6 decimals
        lng: Longitude, rounded to 6 decimals
        survey_year: Survey year the location is valid for
        case_insensitive: Fold case in application code. Must be the same for
            every key compared within a run.

    Returns:
        Key string such as ``"t1|10.123457|20.987654|2024"``
    """
    return (
        f"{normalize_name(name, case_insensitive=case_insensitive)}"
        f"|{round_coord(lat):.6f}|{round_coord(lng):.6f}|{int(survey_year)}"
    )


def parse_timestamp(value: RawTimestamp) -> datetime | None:
    """Coerce a raw database timestamp to datetime.

    Returns None for missing/blank values.

    Raises:
        ValueError: If a string value is not ISO formatted
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text_value = value.strip()
    if not text_value:
        return None
    return datetime.fromisoformat(text_value)


def resolve_survey_year(trap: SourceTrap, today: date) -> int:
    """Survey year of a trap: explicit year, else creation year, else today's year."""
    if trap.survey_year is not None:
        return int(trap.survey_year)
    try:
        created = parse_timestamp(trap.created_at)
    except ValueError:
        created = None
    if created is not None:
        return created.year
    return today.year


def trap_location_key(
    trap: SourceTrap,
    today: date,
    *,
    case_insensitive: bool = True,
    survey_year: int | None = None,
) -> str | None:
    """Identity key for a source trap, or None when it cannot form one.

    ``survey_year`` replaces the trap's own year resolution when given.
    """
    name = trap.location_name
    if name is None or not name.strip():
        return None
    if trap.lat is None or trap.lng is None:
        return None
    if survey_year is None:
        survey_year = resolve_survey_year(trap, today)
    return location_key(
        name,
        trap.lat,
        trap.lng,
        survey_year,
        case_insensitive=case_insensitive,
    )
