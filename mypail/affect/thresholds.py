"""
Threshold Store — per-session cut points for the four mood bands.

Reads come straight from the in-memory record. Writes are validated first
(nothing is mutated on rejection) and then persisted so a cold start
restores the same personality.
"""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Any, Mapping, Optional

import structlog

from mypail.affect.state import InvalidThresholdsError, MoodRecord, Thresholds

if TYPE_CHECKING:
    from mypail.memory.session_store import SessionStore

logger = structlog.get_logger(__name__)


def random_thresholds(rng: random.Random) -> Thresholds:
    """Draw a strictly increasing triple with at least one unit of separation."""
    very_bad = rng.randint(0, 97)
    bad = rng.randint(very_bad + 1, 98)
    good = rng.randint(bad + 1, 99)
    return Thresholds(very_bad=float(very_bad), bad=float(bad), good=float(good))


def coerce_hint(values: Optional[Mapping[str, Any]]) -> Optional[Thresholds]:
    """Return the hint as Thresholds when it is a valid triple, else None."""
    if not values:
        return None
    try:
        return Thresholds.from_dict(values)
    except InvalidThresholdsError:
        logger.debug("thresholds.hint_rejected", hint=dict(values))
        return None


class ThresholdStore:
    """Validates threshold updates and writes them through to the session store."""

    def __init__(self, session_store: SessionStore, io_timeout: float = 2.0) -> None:
        self._session_store = session_store
        self._io_timeout = io_timeout

    def get(self, record: MoodRecord) -> Thresholds:
        return record.thresholds

    async def set(self, record: MoodRecord, values: Mapping[str, Any]) -> Thresholds:
        """
        Replace a session's thresholds.

        Raises InvalidThresholdsError (leaving the record untouched) unless
        the clamped values satisfy VERY_BAD < BAD < GOOD. The in-memory change
        stands even when the write-through fails or times out.
        """
        thresholds = Thresholds.from_dict(values)
        record.thresholds = thresholds
        try:
            persisted = await asyncio.wait_for(
                asyncio.to_thread(
                    self._session_store.update_thresholds, record.session_id, thresholds
                ),
                timeout=self._io_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "thresholds.persist_timeout",
                session_id=record.session_id,
                timeout=self._io_timeout,
            )
            persisted = False
        except Exception as e:
            logger.warning(
                "thresholds.persist_failed",
                session_id=record.session_id,
                error=str(e),
            )
            persisted = False
        logger.info(
            "thresholds.updated",
            session_id=record.session_id,
            persisted=bool(persisted),
            **thresholds.to_dict(),
        )
        return thresholds
