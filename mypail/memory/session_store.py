"""
Session Store — persistent persona records for cold-start recovery.

Saves each session's name, traits, schooling profile and thresholds as one JSON
file under sessions_dir, so a companion keeps its personality across process
restarts. Mood values themselves are not persisted; they rebuild from
telemetry within a few turns.

Every operation is failure-tolerant: I/O and decode errors are logged and
reported through the return value, never raised, so a broken disk degrades the
service to in-memory-only sessions instead of failing turns.

Only uses: pathlib, json, re, time, structlog and mypail.affect types.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from mypail.affect.state import InvalidThresholdsError, PersonaTraits, Thresholds

logger = structlog.get_logger(__name__)
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass
class PersistedSession:
    """The durable part of a session, as read back from disk."""

    ai_name: str
    traits: PersonaTraits
    schooling_levels: Optional[dict[str, int]]
    thresholds: Optional[Thresholds]
    created: float
    last_access: float


class SessionStore:
    """
    Key-value store of persona records, one JSON file per session id.

    Records older than max_age (measured from their last access) are treated
    as expired: load() deletes them and reports a miss, and
    cleanup_old_sessions() sweeps them in bulk.
    """

    def __init__(
        self,
        sessions_dir: Path,
        max_age: float = 86400.0,
        active_window: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions_dir = sessions_dir
        self.max_age = max_age
        self.active_window = active_window
        self._clock = clock
        # Create directory on first use
        sessions_dir.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(sessions_dir, 0o700)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def file_path(self, session_id: str) -> Path:
        """Map a session id to its file, stripping anything path-like."""
        safe = _UNSAFE_ID_CHARS.sub("", session_id) or "_"
        return self.sessions_dir / f"{safe}.json"

    def load(self, session_id: str) -> Optional[PersistedSession]:
        """Return the persisted record, or None when missing, expired or unreadable."""
        path = self.file_path(session_id)
        if not path.exists():
            return None

        data = self._read(path)
        if data is None:
            return None

        last_access = float(data.get("lastAccess", 0.0))
        if self._clock() - last_access > self.max_age:
            logger.info("session_store.expired_on_load", session_id=session_id)
            self.delete(session_id)
            return None

        thresholds: Optional[Thresholds] = None
        raw_thresholds = data.get("thresholds")
        if isinstance(raw_thresholds, dict):
            try:
                thresholds = Thresholds.from_dict(raw_thresholds)
            except InvalidThresholdsError as e:
                logger.warning(
                    "session_store.invalid_thresholds",
                    session_id=session_id,
                    error=str(e),
                )

        schooling = data.get("schoolingLevels")
        return PersistedSession(
            ai_name=str(data.get("aiName") or ""),
            traits=PersonaTraits.from_dict(data.get("traits") or {}),
            schooling_levels=dict(schooling) if isinstance(schooling, dict) else None,
            thresholds=thresholds,
            created=float(data.get("created", last_access)),
            last_access=last_access,
        )

    def save(
        self,
        session_id: str,
        ai_name: str,
        traits: PersonaTraits,
        schooling_levels: Optional[dict[str, int]],
        thresholds: Optional[Thresholds] = None,
    ) -> bool:
        """Write a fresh record for session_id, replacing any existing file."""
        now = self._clock()
        payload: dict[str, Any] = {
            "sessionId": session_id,
            "aiName": ai_name,
            "traits": traits.to_dict(),
            "schoolingLevels": schooling_levels,
            "created": now,
            "lastAccess": now,
        }
        if thresholds is not None:
            payload["thresholds"] = thresholds.to_dict()

        ok = self._write(self.file_path(session_id), payload)
        if ok:
            logger.debug("session_store.saved", session_id=session_id)
        return ok

    def update_access(self, session_id: str) -> bool:
        """Refresh the last-access marker; a no-op when the record is missing."""
        return self._patch(session_id, {})

    def update_thresholds(self, session_id: str, thresholds: Thresholds) -> bool:
        return self._patch(session_id, {"thresholds": thresholds.to_dict()})

    def delete(self, session_id: str) -> bool:
        path = self.file_path(session_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error("session_store.delete_failed", path=str(path), error=str(e))
            return False
        logger.debug("session_store.deleted", session_id=session_id)
        return True

    def cleanup_old_sessions(self) -> dict[str, int]:
        """Delete every record idle longer than max_age. Corrupted files are skipped."""
        deleted = 0
        kept = 0
        now = self._clock()
        for f in self._session_files():
            data = self._read(f)
            if data is None:
                continue
            if now - float(data.get("lastAccess", 0.0)) > self.max_age:
                try:
                    f.unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning("session_store.prune_failed", file=str(f), error=str(e))
            else:
                kept += 1
        if deleted:
            logger.info("session_store.cleanup", deleted=deleted, kept=kept)
        return {"deleted": deleted, "kept": kept}

    def get_stats(self) -> dict[str, int]:
        """Count records: total files, accessed within active_window, within max_age."""
        files = self._session_files()
        now = self._clock()
        active = 0
        recent = 0
        for f in files:
            data = self._read(f)
            if data is None:
                continue
            age = now - float(data.get("lastAccess", 0.0))
            if age < self.active_window:
                active += 1
            if age < self.max_age:
                recent += 1
        return {"total": len(files), "active": active, "recent": recent}

    def raw_record(self, session_id: str) -> Optional[dict[str, Any]]:
        """Return the file contents as stored, without expiry handling."""
        path = self.file_path(session_id)
        if not path.exists():
            return None
        return self._read(path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _session_files(self) -> list[Path]:
        try:
            return sorted(self.sessions_dir.glob("*.json"))
        except OSError as e:
            logger.warning("session_store.list_failed", path=str(self.sessions_dir), error=str(e))
            return []

    def _patch(self, session_id: str, fields: dict[str, Any]) -> bool:
        path = self.file_path(session_id)
        if not path.exists():
            return False
        data = self._read(path)
        if data is None:
            return False
        data.update(fields)
        data["lastAccess"] = self._clock()
        return self._write(path, data)

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("session_store.read_failed", path=str(path), error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("session_store.corrupted_record", path=str(path))
            return None
        return data

    def _write(self, path: Path, payload: dict[str, Any]) -> bool:
        try:
            path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            self._best_effort_chmod(path, 0o600)
        except (OSError, TypeError, ValueError) as e:
            logger.error("session_store.write_failed", path=str(path), error=str(e))
            return False
        return True

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt to harden permissions without failing on unsupported filesystems."""
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("session_store.chmod_skipped", path=str(path), mode=oct(mode))
