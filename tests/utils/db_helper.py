"""Database helper utilities for tests: SQLite schema and seed rows."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Connection, Engine, create_engine, text
from sqlalchemy.pool import StaticPool

SQLITE_SCHEMA = [
    """
    CREATE TABLE scout_labs_traps (
        trap_id TEXT PRIMARY KEY,
        smapp_id TEXT,
        name TEXT,
        lat REAL,
        lng REAL,
        survey_year INTEGER,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE scout_labs_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        trap_id TEXT,
        pest_name TEXT,
        recorded_at TEXT,
        detection_count INTEGER
    )
    """,
    """
    CREATE TABLE contour_regions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE model_cards (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        code TEXT
    )
    """,
    """
    CREATE TABLE contour_locations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        lat REAL NOT NULL,
        lng REAL NOT NULL,
        survey_year INTEGER NOT NULL,
        contour_region_id INTEGER NOT NULL,
        created_at TEXT,
        created_by INTEGER
    )
    """,
    """
    CREATE TABLE contour_trap_counts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        location_id INTEGER NOT NULL,
        model_id INTEGER,
        survey_date TEXT NOT NULL,
        trap_count INTEGER NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE etl_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        region_name TEXT,
        row_counts TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT NOT NULL,
        success INTEGER NOT NULL
    )
    """,
]


def create_schema(conn: Connection) -> None:
    for ddl in SQLITE_SCHEMA:
        conn.execute(text(ddl))


def create_memory_engine() -> Engine:
    """In-memory SQLite shared across threads, with the sync schema."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        create_schema(conn)
    return engine


def create_file_engine(path: str) -> Engine:
    """File-backed SQLite for tests that write from worker threads."""
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    with engine.begin() as conn:
        create_schema(conn)
    return engine


def seed_region(conn: Connection, name: str, id_: int | None = None) -> int:
    conn.execute(
        text("INSERT INTO contour_regions (id, name) VALUES (:id, :name)"),
        {"id": id_, "name": name},
    )
    return int(
        conn.execute(
            text("SELECT id FROM contour_regions WHERE name = :name ORDER BY id DESC"),
            {"name": name},
        ).scalar_one()
    )


def seed_model_card(conn: Connection, id_: int, name: str, code: str | None) -> None:
    conn.execute(
        text("INSERT INTO model_cards (id, name, code) VALUES (:id, :name, :code)"),
        {"id": id_, "name": name, "code": code},
    )


def seed_trap(conn: Connection, trap_id: str, **fields: Any) -> None:  # noqa: ANN401
    row = {
        "trap_id": trap_id,
        "smapp_id": None,
        "name": None,
        "lat": None,
        "lng": None,
        "survey_year": None,
        "created_at": None,
        **fields,
    }
    conn.execute(
        text("""
        INSERT INTO scout_labs_traps
            (trap_id, smapp_id, name, lat, lng, survey_year, created_at)
        VALUES (:trap_id, :smapp_id, :name, :lat, :lng, :survey_year, :created_at)
        """),
        row,
    )


def seed_record(
    conn: Connection,
    trap_id: str | None,
    recorded_at: str | None,
    pest_name: str | None = "Amyelois transitella - Navel Orangeworm",
    detection_count: int | None = 1,
) -> None:
    conn.execute(
        text("""
        INSERT INTO scout_labs_records (trap_id, pest_name, recorded_at, detection_count)
        VALUES (:trap_id, :pest_name, :recorded_at, :detection_count)
        """),
        {
            "trap_id": trap_id,
            "pest_name": pest_name,
            "recorded_at": recorded_at,
            "detection_count": detection_count,
        },
    )


def seed_location(  # noqa: PLR0913
    conn: Connection,
    name: str,
    lat: float,
    lng: float,
    survey_year: int,
    region_id: int,
) -> int:
    conn.execute(
        text("""
        INSERT INTO contour_locations
            (name, lat, lng, survey_year, contour_region_id, created_by)
        VALUES (:name, :lat, :lng, :survey_year, :region_id, 1)
        """),
        {
            "name": name,
            "lat": lat,
            "lng": lng,
            "survey_year": survey_year,
            "region_id": region_id,
        },
    )
    return int(conn.execute(text("SELECT MAX(id) FROM contour_locations")).scalar_one())


def table_count(conn: Connection, table: str) -> int:
    return int(conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one())  # noqa: S608
