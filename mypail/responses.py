"""
Static response table: canned lines keyed by category and mood band.

The table is a JSON document shaped ``{category: {state: [line, ...]}}``.
Within one cell, lines are ordered from the low end of the band to the high
end, and the combined mood picks the line proportionally. A missing cell is a
miss (None) and the caller falls back to the language model.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_RESPONSES_PATH = Path(__file__).resolve().parent / "data" / "responses.json"


class ResponseTable:
    """Read-only lookup of canned responses."""

    def __init__(self, responses: Mapping[str, Mapping[str, list[str]]] | None = None) -> None:
        self._responses: dict[str, dict[str, list[str]]] = {
            _key(category): {_key(state): list(lines) for state, lines in states.items()}
            for category, states in (responses or {}).items()
        }

    @classmethod
    def load(cls, path: Optional[Path] = None) -> ResponseTable:
        """Load a table from disk. Unreadable files yield an empty table."""
        target = path or DEFAULT_RESPONSES_PATH
        try:
            data: Any = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("responses.load_failed", path=str(target), error=str(e))
            return cls()
        if not isinstance(data, dict):
            logger.warning("responses.invalid_table", path=str(target))
            return cls()
        table = cls({
            category: states for category, states in data.items() if isinstance(states, dict)
        })
        logger.info("responses.loaded", path=str(target), total=table.total_count())
        return table

    def select_response(
        self,
        category: Optional[str],
        emotion_state: Optional[str],
        emotion_level: float,
    ) -> Optional[str]:
        """Pick the line at floor(level/100 * len), clamped into the cell."""
        if not category or not emotion_state:
            return None
        lines = self._responses.get(_key(category), {}).get(_key(emotion_state))
        if not lines:
            return None
        index = int((emotion_level / 100) * len(lines))
        return lines[max(0, min(len(lines) - 1, index))]

    def total_count(self) -> int:
        return sum(len(lines) for states in self._responses.values() for lines in states.values())


def _key(value: object) -> str:
    # str-valued enums (Category, EmotionState) key by their value
    return str(getattr(value, "value", value))
