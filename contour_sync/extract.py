"""Read side: parameterised queries mapped to typed records."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from contour_sync.models import Location, ModelCard, Region, SourceRecord, SourceTrap
from contour_sync.transform import location_key, normalize_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.engine import Connection

CountIdentity = tuple[int, int | None, date]


def qualify(schema: str | None, table: str) -> str:
    """Table reference with optional schema prefix (schema is a validated identifier)."""
    return f"{schema}.{table}" if schema else table


def _float_or_none(value: Any) -> float | None:  # noqa: ANN401
    return None if value is None else float(value)


def _int_or_none(value: Any) -> int | None:  # noqa: ANN401
    return None if value is None else int(value)


def _str_or_none(value: Any) -> str | None:  # noqa: ANN401
    return None if value is None else str(value)


def _trap_from_row(row: Any) -> SourceTrap:  # noqa: ANN401
    return SourceTrap(
        trap_id=str(row.trap_id),
        smapp_id=_str_or_none(row.smapp_id),
        name=_str_or_none(row.name),
        lat=_float_or_none(row.lat),
        lng=_float_or_none(row.lng),
        survey_year=_int_or_none(row.survey_year),
        created_at=row.created_at,
    )


def find_region(
    conn: Connection, region_name: str, *, schema: str | None = None
) -> Region | None:
    """Find a region by case-insensitive exact name; lowest id wins.

    Names are folded in Python so the match does not depend on database collation.
    """
    wanted = normalize_name(region_name)
    rows = conn.execute(
        text(f"SELECT id, name FROM {qualify(schema, 'contour_regions')} ORDER BY id")  # noqa: S608
    ).fetchall()
    for row in rows:
        if row.name is not None and normalize_name(row.name) == wanted:
            return Region(id=int(row.id), name=str(row.name))
    return None


def fetch_traps(conn: Connection, *, schema: str | None = None) -> list[SourceTrap]:
    """All source traps with coordinates, in stable order."""
    rows = conn.execute(
        text(f"""
            SELECT trap_id, smapp_id, name, lat, lng, survey_year, created_at
            FROM {qualify(schema, "scout_labs_traps")}
            WHERE lat IS NOT NULL AND lng IS NOT NULL
            ORDER BY trap_id
        """)  # noqa: S608
    ).fetchall()
    return [_trap_from_row(row) for row in rows]


def fetch_records(
    conn: Connection,
    *,
    schema: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    sql_window: bool = True,
) -> list[SourceRecord]:
    """Source detection records joined to their trap, optionally in [from, to).

    The trap join is a LEFT JOIN so records with a dangling reference come back
    with ``trap=None`` and can be counted rather than silently dropped.

    With ``sql_window`` the window is compared against ISO date bounds in SQL.
    On a text column that holds non-ISO timestamps (``05/01/2025``) those rows
    fall out of the query; pass ``sql_window=False`` to return every record and
    leave the window to the reconciler.
    """
    records_table = qualify(schema, "scout_labs_records")
    traps_table = qualify(schema, "scout_labs_traps")

    # Build the window filter here; untyped NULL binds break "IS NULL" on Postgres.
    conditions = []
    params: dict[str, Any] = {}
    if sql_window and date_from is not None:
        conditions.append("wr.recorded_at >= :date_from")
        params["date_from"] = date_from.isoformat()
    if sql_window and date_to is not None:
        conditions.append("wr.recorded_at < :date_to")
        params["date_to"] = date_to.isoformat()
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    query = text(f"""
        SELECT wr.id, wr.trap_id, wr.pest_name, wr.recorded_at, wr.detection_count,
               wt.trap_id AS t_trap_id, wt.smapp_id AS t_smapp_id, wt.name AS t_name,
               wt.lat AS t_lat, wt.lng AS t_lng, wt.survey_year AS t_survey_year,
               wt.created_at AS t_created_at
        FROM {records_table} wr
        LEFT JOIN {traps_table} wt ON wt.trap_id = wr.trap_id
        {where}
        ORDER BY wr.id
    """)  # noqa: S608

    records = []
    for row in conn.execute(query, params).fetchall():
        trap = None
        if row.t_trap_id is not None:
            trap = SourceTrap(
                trap_id=str(row.t_trap_id),
                smapp_id=_str_or_none(row.t_smapp_id),
                name=_str_or_none(row.t_name),
                lat=_float_or_none(row.t_lat),
                lng=_float_or_none(row.t_lng),
                survey_year=_int_or_none(row.t_survey_year),
                created_at=row.t_created_at,
            )
        records.append(
            SourceRecord(
                id=int(row.id),
                trap_id=_str_or_none(row.trap_id),
                pest_name=_str_or_none(row.pest_name),
                recorded_at=row.recorded_at,
                detection_count=_int_or_none(row.detection_count),
                trap=trap,
            )
        )
    return records


def fetch_locations(
    conn: Connection,
    region_id: int,
    *,
    schema: str | None = None,
    survey_year: int | None = None,
) -> list[Location]:
    """Destination locations of one region, ordered by id.

    ``survey_year`` limits the result to locations of that season.
    """
    params: dict[str, Any] = {"region_id": region_id}
    year_clause = ""
    if survey_year is not None:
        year_clause = "AND survey_year = :survey_year"
        params["survey_year"] = survey_year

    rows = conn.execute(
        text(f"""
            SELECT id, name, lat, lng, survey_year, contour_region_id
            FROM {qualify(schema, "contour_locations")}
            WHERE contour_region_id = :region_id
              {year_clause}
            ORDER BY id
        """),  # noqa: S608
        params,
    ).fetchall()
    return [
        Location(
            id=int(row.id),
            name=str(row.name),
            lat=float(row.lat),
            lng=float(row.lng),
            survey_year=int(row.survey_year),
            contour_region_id=int(row.contour_region_id),
        )
        for row in rows
    ]


def build_location_map(
    locations: Iterable[Location], *, case_insensitive: bool = True
) -> dict[str, int]:
    """Location key → id. On duplicate keys the first (lowest id) location wins."""
    location_map: dict[str, int] = {}
    for location in locations:
        key = location_key(
            location.name,
            location.lat,
            location.lng,
            location.survey_year,
            case_insensitive=case_insensitive,
        )
        location_map.setdefault(key, location.id)
    return location_map


def fetch_model_cards(conn: Connection, *, schema: str | None = None) -> list[ModelCard]:
    rows = conn.execute(
        text(f"SELECT id, name, code FROM {qualify(schema, 'model_cards')} ORDER BY id")  # noqa: S608
    ).fetchall()
    return [
        ModelCard(id=int(row.id), name=str(row.name or ""), code=_str_or_none(row.code))
        for row in rows
    ]


def fetch_count_identities(
    conn: Connection,
    region_id: int,
    *,
    schema: str | None = None,
    count_scope: str = "model",
) -> set[CountIdentity]:
    """Identities of trap counts already stored for the region's locations.

    With count_scope="location" the model id slot is None, so any model's
    count on the same location and day counts as a duplicate.
    """
    rows = conn.execute(
        text(f"""
            SELECT c.location_id, c.model_id, c.survey_date
            FROM {qualify(schema, "contour_trap_counts")} c
            JOIN {qualify(schema, "contour_locations")} ml ON ml.id = c.location_id
            WHERE ml.contour_region_id = :region_id
        """),  # noqa: S608
        {"region_id": region_id},
    ).fetchall()
    return {
        count_identity(
            int(row.location_id), _int_or_none(row.model_id), row.survey_date, count_scope
        )
        for row in rows
    }


def count_identity(
    location_id: int,
    model_id: int | None,
    survey_date: date | str,
    count_scope: str = "model",
) -> CountIdentity:
    """Normalised (location, model, day) identity of a trap count."""
    if isinstance(survey_date, str):
        survey_date = date.fromisoformat(survey_date[:10])
    elif isinstance(survey_date, datetime):
        survey_date = survey_date.date()
    return (location_id, model_id if count_scope == "model" else None, survey_date)
