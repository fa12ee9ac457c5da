"""Tests for CLI interface and command validation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from cli import app
from sqlalchemy import create_engine
from typer.testing import CliRunner

from tests.utils.db_helper import (
    create_file_engine,
    seed_model_card,
    seed_record,
    seed_region,
    seed_trap,
    table_count,
)

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


@pytest.fixture
def sqlite_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """File-backed SQLite database seeded with one region and one trap."""
    db_path = tmp_path / "contour.db"
    engine = create_file_engine(str(db_path))
    with engine.begin() as conn:
        seed_region(conn, "Test 1", id_=7)
        seed_model_card(conn, 2, "Navel Orangeworm", "NOW")
        seed_trap(conn, "t1", name="T1", lat=10.123456789, lng=20.987654321, survey_year=2025)
        seed_record(conn, "t1", "2025-05-01 08:00:00", detection_count=4)
    engine.dispose()

    url = f"sqlite:///{db_path}"
    monkeypatch.setenv("DATABASE_URL", url)
    return url


def test_sync_requires_region_name() -> None:
    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 2
    assert "Region name is required" in result.output


def test_sync_region_name_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTOUR_REGION_NAME", "Test 1")
    monkeypatch.delenv("DATABASE_URL", raising=False)

    # Region resolved from env, so validation moves on to the database URL
    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 2
    assert "DATABASE_URL not found" in result.output


def test_sync_validates_date_format() -> None:
    result = runner.invoke(
        app, ["sync", "--region-name", "Test 1", "--from", "01/05/2025"]
    )
    assert result.exit_code == 2
    assert "Invalid date format for --from" in result.output

    result = runner.invoke(
        app, ["sync", "--region-name", "Test 1", "--to", "May 31 2025"]
    )
    assert result.exit_code == 2
    assert "Invalid date format for --to" in result.output


def test_sync_rejects_inverted_range() -> None:
    result = runner.invoke(
        app,
        ["sync", "--region-name", "Test 1", "--from", "2025-06-01", "--to", "2025-05-01"],
    )
    assert result.exit_code == 2
    assert "Invalid date range" in result.output


def test_sync_rejects_unknown_count_scope() -> None:
    result = runner.invoke(
        app, ["sync", "--region-name", "Test 1", "--count-scope", "everything"]
    )
    assert result.exit_code == 2


def test_sync_bad_chunk_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTOUR_CHUNK_SIZE", "lots")
    result = runner.invoke(app, ["sync", "--region-name", "Test 1"])
    assert result.exit_code == 2
    assert "CONTOUR_CHUNK_SIZE" in result.output


def test_init_db_requires_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 2
    assert "DATABASE_URL not found" in result.output


def test_sync_unknown_region_exits_3(sqlite_url: str) -> None:
    result = runner.invoke(app, ["sync", "--region-name", "Nowhere"])
    assert result.exit_code == 3
    assert "Contour region not found" in result.output


def test_sync_inserts_locations_and_counts(sqlite_url: str) -> None:
    result = runner.invoke(app, ["sync", "--region-name", "test 1", "--chunk", "1"])

    assert result.exit_code == 0, result.output
    assert "Region: Test 1 (ID 7)" in result.output
    assert "Inserted 1 location(s) in 1 chunk(s), 1 trap count(s)" in result.output
    assert "sync completed successfully" in result.output

    engine = create_engine(sqlite_url)
    with engine.connect() as conn:
        assert table_count(conn, "contour_locations") == 1
        assert table_count(conn, "contour_trap_counts") == 1
        assert table_count(conn, "etl_events") == 1

    # Second run finds nothing new
    again = runner.invoke(app, ["sync", "--region-name", "Test 1"])
    assert again.exit_code == 0, again.output
    assert "New locations: 0" in again.output
    assert "Inserted 0 location(s)" in again.output


def test_sync_dry_run_prints_rows_without_writing(sqlite_url: str) -> None:
    result = runner.invoke(app, ["sync", "--region-name", "Test 1", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "Dry-run: not inserting contour_locations" in result.output
    assert '"name": "T1"' in result.output
    assert "Inserted" not in result.output

    engine = create_engine(sqlite_url)
    with engine.connect() as conn:
        assert table_count(conn, "contour_locations") == 0
        assert table_count(conn, "etl_events") == 0


def test_sync_create_region(sqlite_url: str) -> None:
    result = runner.invoke(
        app, ["sync", "--region-name", "Scout Labs", "--create-region"]
    )

    assert result.exit_code == 0, result.output
    assert "Region: Scout Labs" in result.output
    assert "Inserted 1 location(s)" in result.output


def test_sync_writes_preview_file(sqlite_url: str, tmp_path: Path) -> None:
    out = tmp_path / "preview.json"
    result = runner.invoke(
        app,
        ["sync", "--region-name", "Test 1", "--dry-run", "--preview-out", str(out)],
    )

    assert result.exit_code == 0, result.output
    assert f"Wrote preview to {out}" in result.output
    assert out.exists()


def test_sync_current_year_mode(sqlite_url: str) -> None:
    result = runner.invoke(
        app,
        ["sync", "--region-name", "Test 1", "--location-year", "current", "--window-in-app"],
    )

    assert result.exit_code == 0, result.output
    assert "Inserted 1 location(s)" in result.output


def test_sync_rejects_unknown_location_year() -> None:
    result = runner.invoke(
        app, ["sync", "--region-name", "Test 1", "--location-year", "someday"]
    )
    assert result.exit_code == 2
