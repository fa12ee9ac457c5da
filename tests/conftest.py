"""Test configuration and fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.utils.db_helper import create_memory_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite with the sync schema."""
    return create_memory_engine()


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep developer .env files and shell settings out of tests
    monkeypatch.setenv("CONTOUR_SKIP_DOTENV", "1")
    monkeypatch.setenv("CONTOUR_PLAIN", "1")
    for var in ("CONTOUR_REGION_NAME", "DB_WEATHER_SCHEMA", "DB_MODELS_SCHEMA", "CONTOUR_CHUNK_SIZE"):
        monkeypatch.delenv(var, raising=False)
