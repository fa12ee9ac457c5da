"""Bounded previews of pending inserts for dry runs and inspection."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from contour_sync.models import to_row

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic import BaseModel

logger = logging.getLogger(__name__)


def preview_rows(rows: Sequence[BaseModel], limit: int) -> list[dict[str, Any]]:
    return [to_row(row) for row in rows[: max(0, limit)]]


def write_preview(path: str | Path, preview: dict[str, list[dict[str, Any]]]) -> bool:
    """Write the preview as indented JSON.

    Failure is not fatal for the run: it is logged and reported as False.
    """
    out_path = Path(path)
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with out_path.open("w", encoding="utf-8") as f:
            json.dump(preview, f, indent=2, default=str)
    except OSError as e:
        logger.warning("Failed to write preview file %s: %s", out_path, e)
        return False
    logger.info("Wrote preview to %s", out_path)
    return True
