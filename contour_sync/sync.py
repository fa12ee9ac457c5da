"""Scout Labs → Contour sync: region, then locations, then trap counts.

Source tables: scout_labs_traps, scout_labs_records (weather schema).
Destination tables: contour_locations, contour_trap_counts (models schema).

Each stage reads the committed state of the previous one. When writes are
deferred to worker threads, the orchestrator joins all location chunks
before rebuilding the location map, so counts always see new locations.
"""

from __future__ import annotations

import functools
import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from contour_sync.config import RegionNotFoundError, SyncSettings
from contour_sync.extract import (
    build_location_map,
    fetch_count_identities,
    fetch_locations,
    fetch_model_cards,
    fetch_records,
    fetch_traps,
    find_region,
)
from contour_sync.load import (
    LOCATIONS_TABLE,
    TRAP_COUNTS_TABLE,
    create_region,
    insert_chunk,
    record_sync_event,
)
from contour_sync.pests import PestModelResolver
from contour_sync.preview import preview_rows, write_preview
from contour_sync.reconcile import (
    CountBatch,
    reconcile_counts,
    reconcile_locations,
    summarize_stats,
)
from contour_sync.writer import ChunkedWriter, ChunkResult

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from contour_sync.models import NewLocation, Region

logger = logging.getLogger(__name__)


class SyncResult(BaseModel):
    region_id: int
    region_name: str
    region_created: bool = False
    dry_run: bool = False
    locations_found: int = 0
    locations_added: int = 0
    location_chunks: int = 0
    counts_found: int = 0
    counts_added: int = 0
    count_chunks: int = 0
    count_stats: dict[str, int] = Field(default_factory=dict)
    failed_chunks: int = 0
    preview: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    preview_written: bool | None = None

    @property
    def success(self) -> bool:
        return self.failed_chunks == 0

    def row_counts(self) -> dict[str, Any]:
        """Summary stored with the audit event."""
        return {
            "region_id": self.region_id,
            "contour_locations": self.locations_added,
            "contour_trap_counts": self.counts_added,
            "count_stats": self.count_stats,
            "failed_chunks": self.failed_chunks,
        }


class SyncOrchestrator:
    """Run one sync for one region with explicit settings.

    Runs must not overlap for the same region; nothing here locks.
    """

    def __init__(
        self,
        engine: Engine,
        settings: SyncSettings,
        *,
        writer: ChunkedWriter | None = None,
        today: date | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.today = today or date.today()  # noqa: DTZ011
        self.region: Region | None = None
        self._owns_writer = writer is None
        self.writer = writer or ChunkedWriter(
            engine,
            functools.partial(
                insert_chunk,
                schema=settings.dest_schema,
                case_insensitive=settings.case_insensitive_names,
                count_scope=settings.count_scope,
            ),
            chunk_size=settings.chunk_size,
            deferred=not settings.synchronous,
            max_workers=settings.max_workers,
            max_attempts=settings.max_attempts,
        )

    def run(self) -> SyncResult:
        """Execute the full pipeline.

        Raises:
            ConfigError: Invalid settings; nothing is written
            RegionNotFoundError: Region missing and creation not allowed
            ChunkWriteError: Synchronous chunk failure (earlier chunks stay committed)
        """
        settings = self.settings
        settings.validate_run()
        started_at = datetime.now(UTC).isoformat()
        logger.info("Starting Scout Labs to Contour sync for %r", settings.region_name)

        result: SyncResult | None = None
        try:
            result = self._run()
        except Exception:
            logger.exception("Error during Scout Labs to Contour sync")
            raise
        finally:
            if self._owns_writer:
                self.writer.close()
            # A run that never resolved its region wrote nothing; leave no trace.
            if not settings.dry_run and self.region is not None:
                self._record_event(result, started_at)

        logger.info(
            "Sync finished: %d location(s), %d trap count(s) added, %d failed chunk(s)",
            result.locations_added,
            result.counts_added,
            result.failed_chunks,
        )
        return result

    def _run(self) -> SyncResult:
        settings = self.settings
        region, created = self.resolve_region()
        self.region = region
        result = SyncResult(
            region_id=region.id,
            region_name=region.name,
            region_created=created,
            dry_run=settings.dry_run,
        )

        new_locations = self.plan_locations(region)
        result.locations_found = len(new_locations)
        result.preview[LOCATIONS_TABLE] = preview_rows(
            new_locations, settings.preview_limit
        )
        if not settings.dry_run and new_locations:
            result.location_chunks = self.writer.submit(LOCATIONS_TABLE, new_locations)
        # Barrier: count reconciliation must see every committed location.
        location_results = self.writer.wait()

        batch = self.plan_counts(region)
        result.counts_found = len(batch.rows)
        result.count_stats = batch.stats
        result.preview[TRAP_COUNTS_TABLE] = preview_rows(
            batch.rows, settings.preview_limit
        )
        if not settings.dry_run and batch.rows:
            result.count_chunks = self.writer.submit(TRAP_COUNTS_TABLE, batch.rows)
        all_results = self.writer.wait()

        result.locations_added = _inserted(location_results, LOCATIONS_TABLE)
        result.counts_added = _inserted(all_results, TRAP_COUNTS_TABLE)
        result.failed_chunks = sum(1 for r in all_results if not r.ok)

        if settings.preview_path:
            result.preview_written = write_preview(settings.preview_path, result.preview)
        return result

    def resolve_region(self) -> tuple[Region, bool]:
        """Find the target region, creating it when the policy allows.

        Returns:
            (region, created)
        """
        settings = self.settings
        with self.engine.connect() as conn:
            region = find_region(conn, settings.region_name, schema=settings.dest_schema)
        if region is not None:
            logger.info("Found region ID: %d (%s)", region.id, region.name)
            return region, False

        if settings.region_policy != "create":
            msg = f"Contour region not found for name: {settings.region_name}"
            raise RegionNotFoundError(msg)
        if settings.dry_run:
            msg = (
                f"Contour region not found for name: {settings.region_name} "
                "(dry run: it would be created)"
            )
            raise RegionNotFoundError(msg)

        with self.engine.begin() as conn:
            region = create_region(conn, settings.region_name, schema=settings.dest_schema)
        logger.info("Created new region: %s (ID %d)", region.name, region.id)
        return region, True

    def plan_locations(self, region: Region) -> list[NewLocation]:
        settings = self.settings
        with self.engine.connect() as conn:
            traps = fetch_traps(conn, schema=settings.source_schema)
            existing = fetch_locations(
                conn,
                region.id,
                schema=settings.dest_schema,
                survey_year=(
                    self.today.year if settings.location_year == "current" else None
                ),
            )
        existing_keys = set(
            build_location_map(existing, case_insensitive=settings.case_insensitive_names)
        )
        logger.info(
            "Found %d trap(s) to process, %d existing location(s)",
            len(traps),
            len(existing),
        )

        new_locations = reconcile_locations(
            traps,
            existing_keys,
            region_id=region.id,
            today=self.today,
            created_by=settings.created_by,
            case_insensitive=settings.case_insensitive_names,
            location_year=settings.location_year,
        )
        logger.info("Found %d new location(s) to sync", len(new_locations))
        return new_locations

    def plan_counts(self, region: Region) -> CountBatch:
        settings = self.settings
        with self.engine.connect() as conn:
            locations = fetch_locations(conn, region.id, schema=settings.dest_schema)
            records = fetch_records(
                conn,
                schema=settings.source_schema,
                date_from=settings.date_from,
                date_to=settings.date_to,
                sql_window=settings.window_in_sql,
            )
            model_cards = fetch_model_cards(conn, schema=settings.dest_schema)
            existing_counts = fetch_count_identities(
                conn,
                region.id,
                schema=settings.dest_schema,
                count_scope=settings.count_scope,
            )

        location_map = build_location_map(
            locations, case_insensitive=settings.case_insensitive_names
        )
        logger.info(
            "Built location map with %d location(s); %d record(s) to process",
            len(location_map),
            len(records),
        )

        batch = reconcile_counts(
            records,
            location_map,
            PestModelResolver(model_cards),
            existing_counts,
            today=self.today,
            date_from=settings.date_from,
            date_to=settings.date_to,
            count_scope=settings.count_scope,
            missing_count=settings.missing_count,
            model_id=settings.model_id,
            case_insensitive=settings.case_insensitive_names,
            location_year=settings.location_year,
        )
        for line in summarize_stats(batch.stats):
            logger.info("  - %s", line)
        return batch

    def _record_event(self, result: SyncResult | None, started_at: str) -> None:
        if result is not None:
            row_counts = result.row_counts()
            success = result.success
        else:
            row_counts = {"error": "Exception during sync"}
            success = False

        try:
            with self.engine.begin() as conn:
                record_sync_event(
                    conn,
                    region_name=self.settings.region_name,
                    row_counts=row_counts,
                    started_at=started_at,
                    finished_at=datetime.now(UTC).isoformat(),
                    success=success,
                    schema=self.settings.dest_schema,
                )
        except Exception as e:  # noqa: BLE001
            # Do not fail the sync if event logging fails
            logger.warning("ETL event logging failed: %s", e)


def _inserted(results: list[ChunkResult], table: str) -> int:
    return sum(r.inserted for r in results if r.table == table)
