"""Run configuration for the Scout Labs → Contour sync."""

from __future__ import annotations

import os
import re
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, field_validator

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "ConfigError",
    "RegionNotFoundError",
    "SyncSettings",
    "settings_from_env",
]

DEFAULT_CHUNK_SIZE = 500
PREVIEW_LIMIT = 100

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ConfigError(ValueError):
    """Bad input: the run stops before any write."""


class RegionNotFoundError(LookupError):
    """No contour region matches the requested name."""


class SyncSettings(BaseModel):
    """Explicit configuration handed to the orchestrator at construction time.

    The variant switches (count_scope, missing_count, region_policy,
    location_year) pick between behaviours that older sync jobs disagreed on;
    the defaults are the model-scoped, zero-defaulting, region-must-exist,
    per-trap-year flavour.

    window_in_sql pushes the date window into the records query. Turn it off
    when recorded_at is stored as free text, so rows that are not ISO
    formatted reach the reconciler and are counted as bad dates.
    """

    region_name: str
    date_from: date | None = None
    date_to: date | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    dry_run: bool = False
    synchronous: bool = True
    model_id: int | None = None
    count_scope: Literal["model", "location"] = "model"
    missing_count: Literal["zero", "skip"] = "zero"
    region_policy: Literal["require", "create"] = "require"
    location_year: Literal["trap", "current"] = "trap"
    window_in_sql: bool = True
    case_insensitive_names: bool = True
    created_by: int = 1
    source_schema: str | None = None
    dest_schema: str | None = None
    preview_path: str | None = None
    preview_limit: int = PREVIEW_LIMIT
    max_workers: int = 4
    max_attempts: int = 3

    @field_validator("chunk_size", "max_workers", "max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("source_schema", "dest_schema")
    @classmethod
    def _schema_identifier(cls, value: str | None) -> str | None:
        # Schema names end up interpolated into SQL, so only bare identifiers.
        if value in (None, ""):
            return None
        if not _IDENTIFIER.match(value):
            msg = f"Invalid schema name: {value!r}"
            raise ValueError(msg)
        return value

    def validate_run(self) -> None:
        """Reject inputs that must stop the run before anything is written.

        Raises:
            ConfigError: If the region name is blank or the date range is inverted
        """
        if not self.region_name.strip():
            msg = "Region name is required (--region-name or CONTOUR_REGION_NAME)"
            raise ConfigError(msg)
        if (
            self.date_from is not None
            and self.date_to is not None
            and self.date_from >= self.date_to
        ):
            msg = "Invalid date range: --from must be earlier than --to"
            raise ConfigError(msg)


def settings_from_env(**overrides: Any) -> SyncSettings:  # noqa: ANN401
    """Build settings from environment defaults, letting explicit values win.

    Overrides that are None fall back to the environment.
    """
    values: dict[str, Any] = {
        "region_name": os.getenv("CONTOUR_REGION_NAME", ""),
        "source_schema": os.getenv("DB_WEATHER_SCHEMA"),
        "dest_schema": os.getenv("DB_MODELS_SCHEMA"),
    }
    chunk_env = os.getenv("CONTOUR_CHUNK_SIZE")
    if chunk_env:
        try:
            values["chunk_size"] = int(chunk_env)
        except ValueError:
            msg = f"CONTOUR_CHUNK_SIZE must be an integer, got {chunk_env!r}"
            raise ConfigError(msg) from None

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return SyncSettings(**values)
    except ValueError as e:
        raise ConfigError(str(e)) from e
