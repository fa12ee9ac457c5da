#!/usr/bin/env python3
"""CLI interface for the Scout Labs → Contour sync."""

import json
import logging
import os
from datetime import date
from pathlib import Path
from typing import Annotated

import psycopg
import typer
from dotenv import load_dotenv

from contour_sync.config import ConfigError, RegionNotFoundError, settings_from_env
from contour_sync.db import create_db_engine
from contour_sync.reconcile import summarize_stats
from contour_sync.sync import SyncOrchestrator
from contour_sync.writer import ChunkWriteError

app = typer.Typer(
    name="contour-sync",
    help="Sync Scout Labs traps and detection counts into Contour tables",
    no_args_is_help=True,
)

# Exit statuses: bad input vs. missing region vs. run failure.
EXIT_FAILURE = 1
EXIT_BAD_INPUT = 2
EXIT_NOT_FOUND = 3

# Rows echoed per table on --dry-run
DRY_RUN_ECHO_ROWS = 5


def _mark_success() -> str:
    """Return success indicator (emoji or plain text based on CONTOUR_PLAIN env var)."""
    return "" if os.getenv("CONTOUR_PLAIN") == "1" else "✅"


def _mark_error() -> str:
    """Return error indicator (emoji or plain text based on CONTOUR_PLAIN env var)."""
    return "" if os.getenv("CONTOUR_PLAIN") == "1" else "❌"


@app.callback()
def _load_env() -> None:
    # Skip dotenv loading in tests/CI for hermetic environments
    if os.getenv("CONTOUR_SKIP_DOTENV") != "1":
        load_dotenv(override=False)  # Never override already-set env in CI/tests
    logging.basicConfig(
        level=os.getenv("CONTOUR_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_date(value: str | None, option: str) -> date | None:
    """Parse date string in YYYY-MM-DD format."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(
            f"{_mark_error()} Invalid date format for {option}: {value}. Use YYYY-MM-DD",
            err=True,
        )
        raise typer.Exit(EXIT_BAD_INPUT) from None


def _require_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        typer.echo(f"{_mark_error()} DATABASE_URL not found in environment", err=True)
        raise typer.Exit(EXIT_BAD_INPUT)
    return database_url


@app.command("init-db")
def init_db() -> None:
    """Initialize database schema from contour_sync/schema.sql."""
    database_url = _require_database_url()

    schema_path = Path(__file__).parent / "contour_sync" / "schema.sql"
    if not schema_path.exists():
        typer.echo(f"{_mark_error()} Schema file not found: {schema_path}", err=True)
        raise typer.Exit(EXIT_BAD_INPUT)

    try:
        with psycopg.connect(database_url) as conn, conn.cursor() as cur:
            cur.execute(schema_path.read_text())
            conn.commit()

        typer.echo(f"{_mark_success()} Database schema initialized successfully")
    except psycopg.Error as e:
        typer.echo(f"{_mark_error()} Database error: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE) from e


@app.command("sync")
def sync(  # noqa: PLR0913
    region_name: Annotated[
        str | None,
        typer.Option("--region-name", help="Contour region name (or CONTOUR_REGION_NAME)"),
    ] = None,
    from_date: Annotated[
        str | None, typer.Option("--from", help="Start date for counts (YYYY-MM-DD)")
    ] = None,
    to_date: Annotated[
        str | None,
        typer.Option("--to", help="End date for counts (YYYY-MM-DD, exclusive)"),
    ] = None,
    chunk: Annotated[
        int | None, typer.Option("--chunk", help="Insert chunk size (default 500)")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Only print actions, no DB writes")
    ] = False,
    run_sync: Annotated[
        bool,
        typer.Option(
            "--sync/--deferred",
            help="Apply chunks in-process, or dispatch them to worker threads",
        ),
    ] = True,
    model_id: Annotated[
        int | None,
        typer.Option("--model-id", help="Attribute all counts to this model id"),
    ] = None,
    count_scope: Annotated[
        str,
        typer.Option(
            "--count-scope", help="Duplicate check: 'model' or 'location' (any model)"
        ),
    ] = "model",
    missing_count: Annotated[
        str,
        typer.Option(
            "--missing-count", help="Null detection counts: 'zero' or 'skip'"
        ),
    ] = "zero",
    location_year: Annotated[
        str,
        typer.Option(
            "--location-year",
            help="Location survey year: 'trap' (per trap) or 'current' (this year)",
        ),
    ] = "trap",
    window_in_db: Annotated[
        bool,
        typer.Option(
            "--window-in-db/--window-in-app",
            help="Filter --from/--to in SQL, or in the app for text timestamps",
        ),
    ] = True,
    create_region: Annotated[
        bool,
        typer.Option("--create-region", help="Create the region if it does not exist"),
    ] = False,
    preview_out: Annotated[
        str | None,
        typer.Option("--preview-out", help="Write a JSON preview of pending rows"),
    ] = None,
) -> None:
    """Sync new locations and trap counts into the Contour tables."""
    start = _parse_date(from_date, "--from")
    end = _parse_date(to_date, "--to")

    try:
        settings = settings_from_env(
            region_name=region_name,
            date_from=start,
            date_to=end,
            chunk_size=chunk,
            dry_run=dry_run,
            synchronous=run_sync,
            model_id=model_id,
            count_scope=count_scope,
            missing_count=missing_count,
            location_year=location_year,
            window_in_sql=window_in_db,
            region_policy="create" if create_region else None,
            preview_path=preview_out,
        )
        settings.validate_run()
    except ConfigError as e:
        typer.echo(f"{_mark_error()} {e}", err=True)
        raise typer.Exit(EXIT_BAD_INPUT) from e

    database_url = _require_database_url()

    try:
        engine = create_db_engine(database_url, workers=settings.max_workers)
        result = SyncOrchestrator(engine, settings).run()
    except RegionNotFoundError as e:
        typer.echo(f"{_mark_error()} {e}", err=True)
        raise typer.Exit(EXIT_NOT_FOUND) from e
    except ChunkWriteError as e:
        typer.echo(f"{_mark_error()} Write failed: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE) from e
    except Exception as e:
        typer.echo(f"{_mark_error()} Error during sync: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE) from e

    typer.echo(f"Region: {result.region_name} (ID {result.region_id})")
    typer.echo(f"New locations: {result.locations_found}")
    typer.echo("Processing statistics:")
    for line in summarize_stats(result.count_stats):
        typer.echo(f"  - {line}")

    if result.dry_run:
        for table, rows in result.preview.items():
            shown = rows[:DRY_RUN_ECHO_ROWS]
            typer.echo(f"Dry-run: not inserting {table}. Showing first {len(shown)} rows:")
            typer.echo(json.dumps(shown, indent=2, default=str))
    else:
        typer.echo(
            f"Inserted {result.locations_added} location(s) in "
            f"{result.location_chunks} chunk(s), {result.counts_added} trap count(s) "
            f"in {result.count_chunks} chunk(s)"
        )

    if result.preview_written is False:
        typer.echo(f"WARNING: could not write preview to {preview_out}", err=True)
    elif result.preview_written:
        typer.echo(f"Wrote preview to {preview_out}")

    if not result.success:
        typer.echo(
            f"{_mark_error()} {result.failed_chunks} chunk(s) failed; re-run to retry",
            err=True,
        )
        raise typer.Exit(EXIT_FAILURE)

    typer.echo(f"{_mark_success()} Scout Labs to Contour sync completed successfully")


if __name__ == "__main__":
    app()
