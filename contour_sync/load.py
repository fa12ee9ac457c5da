# contour_sync/load.py
"""Append-only loader: idempotent chunk inserts, region creation, audit events."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from contour_sync.extract import (
    build_location_map,
    fetch_locations,
    find_region,
    qualify,
)
from contour_sync.models import NewLocation, Region, TrapCount, to_row
from contour_sync.transform import location_key

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.engine import Connection

LOCATIONS_TABLE = "contour_locations"
TRAP_COUNTS_TABLE = "contour_trap_counts"


def _bind(row: dict[str, Any]) -> dict[str, Any]:
    """ISO strings for temporal values; both SQLite and Postgres accept them."""
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in row.items()
    }


def create_region(conn: Connection, region_name: str, *, schema: str | None = None) -> Region:
    """Insert a new active region and return it."""
    now = datetime.now(UTC).isoformat()
    conn.execute(
        text(f"""
            INSERT INTO {qualify(schema, "contour_regions")}
                (name, active, created_at, updated_at)
            VALUES (:name, :active, :created_at, :updated_at)
        """),  # noqa: S608
        {"name": region_name.strip(), "active": 1, "created_at": now, "updated_at": now},
    )
    region = find_region(conn, region_name, schema=schema)
    if region is None:
        msg = f"Region insert did not persist: {region_name}"
        raise RuntimeError(msg)
    return region


def insert_locations(
    conn: Connection,
    rows: Sequence[NewLocation],
    *,
    schema: str | None = None,
    case_insensitive: bool = True,
) -> int:
    """Insert new locations, skipping any whose key is already stored.

    The existence check runs inside the caller's transaction, so replaying a
    chunk (retry, re-run) never duplicates a location.

    Returns:
        Number of rows inserted
    """
    if not rows:
        return 0

    existing: dict[int, set[str]] = {}
    pending = []
    for row in rows:
        region_keys = existing.get(row.contour_region_id)
        if region_keys is None:
            locations = fetch_locations(conn, row.contour_region_id, schema=schema)
            region_keys = set(
                build_location_map(locations, case_insensitive=case_insensitive)
            )
            existing[row.contour_region_id] = region_keys

        key = location_key(
            row.name, row.lat, row.lng, row.survey_year, case_insensitive=case_insensitive
        )
        if key in region_keys:
            continue
        region_keys.add(key)
        pending.append(_bind(to_row(row)))

    if pending:
        conn.execute(
            text(f"""
                INSERT INTO {qualify(schema, LOCATIONS_TABLE)}
                    (name, lat, lng, survey_year, contour_region_id,
                     created_at, created_by)
                VALUES (:name, :lat, :lng, :survey_year, :contour_region_id,
                        :created_at, :created_by)
            """),  # noqa: S608
            pending,
        )
    return len(pending)


def trap_count_exists(
    conn: Connection,
    row: TrapCount,
    *,
    schema: str | None = None,
    count_scope: str = "model",
) -> bool:
    params: dict[str, Any] = {
        "location_id": row.location_id,
        "survey_date": row.survey_date.isoformat(),
    }
    model_clause = ""
    if count_scope == "model":
        model_clause = "AND model_id = :model_id"
        params["model_id"] = row.model_id

    existing = conn.execute(
        text(f"""
            SELECT 1 FROM {qualify(schema, TRAP_COUNTS_TABLE)}
            WHERE location_id = :location_id
              AND survey_date = :survey_date
              {model_clause}
        """),  # noqa: S608
        params,
    ).fetchone()
    return existing is not None


def insert_trap_counts(
    conn: Connection,
    rows: Sequence[TrapCount],
    *,
    schema: str | None = None,
    count_scope: str = "model",
) -> int:
    """Insert trap counts, skipping identities that already exist (idempotent).

    Returns:
        Number of rows inserted
    """
    pending = [
        _bind(to_row(row))
        for row in rows
        if not trap_count_exists(conn, row, schema=schema, count_scope=count_scope)
    ]
    if pending:
        conn.execute(
            text(f"""
                INSERT INTO {qualify(schema, TRAP_COUNTS_TABLE)}
                    (location_id, model_id, survey_date, trap_count, created_at)
                VALUES (:location_id, :model_id, :survey_date, :trap_count, :created_at)
            """),  # noqa: S608
            pending,
        )
    return len(pending)


def insert_chunk(
    conn: Connection,
    table: str,
    rows: Sequence[Any],
    *,
    schema: str | None = None,
    case_insensitive: bool = True,
    count_scope: str = "model",
) -> int:
    """Apply one chunk to its destination table."""
    if table == LOCATIONS_TABLE:
        return insert_locations(
            conn, rows, schema=schema, case_insensitive=case_insensitive
        )
    if table == TRAP_COUNTS_TABLE:
        return insert_trap_counts(conn, rows, schema=schema, count_scope=count_scope)
    msg = f"Unknown destination table: {table}"
    raise ValueError(msg)


def record_sync_event(
    conn: Connection,
    *,
    region_name: str,
    row_counts: dict[str, Any],
    started_at: str,
    finished_at: str,
    success: bool,
    schema: str | None = None,
) -> None:
    """Record one sync run in etl_events for the audit trail."""
    conn.execute(
        text(f"""
            INSERT INTO {qualify(schema, "etl_events")} (
                event_type, region_name, row_counts, started_at, finished_at, success
            )
            VALUES (
                :event_type, :region_name, :row_counts, :started_at, :finished_at,
                :success
            )
        """),  # noqa: S608
        {
            "event_type": "sync",
            "region_name": region_name,
            "row_counts": json.dumps(row_counts, default=str),
            "started_at": started_at,
            "finished_at": finished_at,
            "success": success,
        },
    )
