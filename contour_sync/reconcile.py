"""Diff source traps/records against destination rows and build insert batches.

Both reconcilers are pure: they take already-fetched rows and return what to
insert. Writing is left to the chunked writer.

Survey years come from one of two modes. With ``location_year="trap"`` each
location carries the trap's own year (explicit, then creation year, then
today) and counts match that same location. With ``location_year="current"``
new locations are stamped with today's year and a count matches the location
whose survey year is the year it was recorded in, so the same site gets one
location per season.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, NamedTuple

from contour_sync.extract import count_identity
from contour_sync.models import NewLocation, TrapCount
from contour_sync.transform import (
    parse_timestamp,
    resolve_survey_year,
    round_coord,
    trap_location_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import date

    from contour_sync.extract import CountIdentity
    from contour_sync.models import SourceRecord, SourceTrap
    from contour_sync.pests import PestModelResolver

# Skip reasons in reporting order; "added" last.
COUNT_STAT_KEYS = (
    "no_trap",
    "no_date",
    "bad_date_format",
    "out_of_range",
    "no_model",
    "no_count",
    "no_location_match",
    "already_exists",
    "duplicate_in_batch",
    "added",
)


class CountBatch(NamedTuple):
    rows: list[TrapCount]
    stats: dict[str, int]


def reconcile_locations(  # noqa: PLR0913
    traps: Iterable[SourceTrap],
    existing_keys: set[str],
    *,
    region_id: int,
    today: date,
    created_by: int = 1,
    case_insensitive: bool = True,
    location_year: str = "trap",
    now: datetime | None = None,
) -> list[NewLocation]:
    """Return new-location rows for traps whose identity key is not stored yet.

    Args:
        traps: Source traps (rows without coordinates or name are ignored)
        existing_keys: Location keys already present in the target region
        region_id: Resolved contour region id stamped on every new row
        today: Reference date for the survey-year fallback
        created_by: Creator attribution for inserted rows
        case_insensitive: Key folding mode, must match how existing_keys were built
        location_year: "trap" resolves the year per trap, "current" uses today's year
        now: created_at timestamp (defaults to current UTC time)

    Returns:
        New locations in source order, each key at most once
    """
    created_at = now or datetime.now(UTC)
    seen = set(existing_keys)
    new_locations: list[NewLocation] = []

    for trap in traps:
        survey_year = (
            today.year if location_year == "current" else resolve_survey_year(trap, today)
        )
        key = trap_location_key(
            trap, today, case_insensitive=case_insensitive, survey_year=survey_year
        )
        if key is None or key in seen:
            continue
        seen.add(key)

        # trap_location_key guarantees name and coordinates are present
        new_locations.append(
            NewLocation(
                name=str(trap.location_name).strip(),
                lat=round_coord(trap.lat),  # type: ignore[arg-type]
                lng=round_coord(trap.lng),  # type: ignore[arg-type]
                survey_year=survey_year,
                contour_region_id=region_id,
                created_at=created_at,
                created_by=created_by,
            )
        )

    return new_locations


def reconcile_counts(  # noqa: PLR0912, PLR0913, PLR0915
    records: Iterable[SourceRecord],
    location_map: Mapping[str, int],
    resolver: PestModelResolver,
    existing_counts: set[CountIdentity],
    *,
    today: date,
    date_from: date | None = None,
    date_to: date | None = None,
    count_scope: str = "model",
    missing_count: str = "zero",
    model_id: int | None = None,
    case_insensitive: bool = True,
    location_year: str = "trap",
    now: datetime | None = None,
) -> CountBatch:
    """Turn detection records into trap-count rows that are not stored yet.

    Each record is either emitted or counted under exactly one skip reason,
    so ``sum(stats.values())`` equals the number of records processed.

    When several records in the batch share an identity, one row is kept:
    the first real reading, or the first record if none has a count. A null
    count defaulted to 0 never displaces a real reading.

    Args:
        records: Source records with their joined trap
        location_map: Location key → location id for the target region
        resolver: Pest name → model id resolver
        existing_counts: Identities of counts already stored
        today: Reference date for the trap survey-year fallback
        date_from: Inclusive lower bound on the record date
        date_to: Exclusive upper bound on the record date
        count_scope: "model" keys duplicates on (location, model, day);
            "location" on (location, day)
        missing_count: "zero" stores null detection counts as 0, "skip" drops them
        model_id: Attribute every record to this model instead of resolving
        case_insensitive: Key folding mode, must match location_map
        location_year: "trap" matches the trap's own location year, "current"
            matches the location of the year the record was taken
        now: created_at timestamp (defaults to current UTC time)

    Returns:
        CountBatch of rows to insert and per-reason statistics
    """
    created_at = now or datetime.now(UTC)
    stats = dict.fromkeys(COUNT_STAT_KEYS, 0)
    rows: list[TrapCount] = []
    # identity -> (row index, whether the stored count was defaulted)
    emitted: dict[CountIdentity, tuple[int, bool]] = {}

    for record in records:
        if record.trap is None:
            stats["no_trap"] += 1
            continue

        try:
            recorded_at = parse_timestamp(record.recorded_at)
        except ValueError:
            stats["bad_date_format"] += 1
            continue
        if recorded_at is None:
            stats["no_date"] += 1
            continue

        survey_date = recorded_at.date()
        if (date_from is not None and survey_date < date_from) or (
            date_to is not None and survey_date >= date_to
        ):
            stats["out_of_range"] += 1
            continue

        resolved_model = (
            model_id if model_id is not None else resolver.resolve(record.pest_name)
        )
        if resolved_model is None:
            stats["no_model"] += 1
            continue

        trap_count = record.detection_count
        defaulted = trap_count is None
        if trap_count is None:
            if missing_count == "skip":
                stats["no_count"] += 1
                continue
            trap_count = 0

        key = trap_location_key(
            record.trap,
            today,
            case_insensitive=case_insensitive,
            survey_year=survey_date.year if location_year == "current" else None,
        )
        location_id = location_map.get(key) if key is not None else None
        if location_id is None:
            stats["no_location_match"] += 1
            continue

        identity = count_identity(location_id, resolved_model, survey_date, count_scope)
        if identity in existing_counts:
            stats["already_exists"] += 1
            continue

        row = TrapCount(
            location_id=location_id,
            model_id=resolved_model,
            survey_date=survey_date,
            trap_count=trap_count,
            created_at=created_at,
        )
        previous = emitted.get(identity)
        if previous is not None:
            stats["duplicate_in_batch"] += 1
            index, was_defaulted = previous
            if was_defaulted and not defaulted:
                rows[index] = row
                emitted[identity] = (index, False)
            continue

        emitted[identity] = (len(rows), defaulted)
        stats["added"] += 1
        rows.append(row)

    return CountBatch(rows=rows, stats=stats)


def summarize_stats(stats: Mapping[str, int]) -> list[str]:
    """Human readable lines for a count statistics breakdown."""
    labels = {
        "no_trap": "Records with no trap",
        "no_date": "Records with no recorded_at",
        "bad_date_format": "Records with invalid date format",
        "out_of_range": "Records outside the date range",
        "no_model": "Records with no model_id",
        "no_count": "Records with no trap_count",
        "no_location_match": "Records with no matching location",
        "already_exists": "Records that already exist",
        "duplicate_in_batch": "Records repeating another record in this run",
        "added": "Records to insert",
    }
    return [f"{labels[key]}: {stats.get(key, 0)}" for key in COUNT_STAT_KEYS]
