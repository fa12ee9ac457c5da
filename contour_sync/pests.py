# contour_sync/pests.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

import yaml

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from contour_sync.models import ModelCard

# "<scientific name> - <common name>"
NAME_SEPARATOR = " - "


@lru_cache(maxsize=1)
def load_pest_mappings() -> tuple[tuple[str, str], ...]:
    """Load ordered (name fragment, model code) pairs from pests.yaml (cached)."""
    path = Path(__file__).parent / "pests.yaml"
    data = cast(dict[str, Any], yaml.safe_load(path.read_text(encoding="utf-8")))
    return tuple(
        (str(entry["match"]), str(entry["code"])) for entry in data["pest_mappings"]
    )


class PestModelResolver:
    """Map free-text pest names to model card ids.

    Best effort: a fixed fragment table first, then the common-name half of
    ``"Scientific - Common"`` against model card names and codes. Ambiguous
    matches resolve to the lowest model card id.
    """

    def __init__(
        self,
        model_cards: Iterable[ModelCard],
        mappings: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        self.model_cards = sorted(model_cards, key=lambda card: card.id)
        self.mappings = list(load_pest_mappings() if mappings is None else mappings)
        self._cache: dict[str, int | None] = {}

    def resolve(self, pest_name: str | None) -> int | None:
        if pest_name is None or not pest_name.strip():
            return None
        if pest_name not in self._cache:
            self._cache[pest_name] = self._resolve(pest_name)
        return self._cache[pest_name]

    def _resolve(self, pest_name: str) -> int | None:
        folded = pest_name.casefold()

        for fragment, code in self.mappings:
            if fragment.casefold() in folded:
                return self._by_code(code)

        if NAME_SEPARATOR in pest_name:
            common_name = pest_name.split(NAME_SEPARATOR, 1)[1].strip()
            if common_name:
                return self._by_name_or_code(common_name)

        return None

    def _by_code(self, code: str) -> int | None:
        wanted = code.casefold()
        for card in self.model_cards:
            if card.code is not None and card.code.casefold() == wanted:
                return card.id
        return None

    def _by_name_or_code(self, fragment: str) -> int | None:
        wanted = fragment.casefold()
        for card in self.model_cards:
            if wanted in card.name.casefold():
                return card.id
            if card.code is not None and wanted in card.code.casefold():
                return card.id
        return None
