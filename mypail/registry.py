"""
Session Registry — the in-memory cache of live mood records.

Each conversation session id maps to one MoodRecord. The registry hands out a
*reference* to that record; the mood model mutates it in place, so there is no
write-back step.

The cache is bounded two ways:
  - capacity: any access while full first evicts the least recently
    touched other session
  - age: a background sweep drops sessions idle longer than memory_max_age

Eviction only forgets the in-memory mood. The persona (name, traits,
schooling, thresholds) lives on in the SessionStore and is restored on the next
request, until the store's own expiry removes it.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from typing import Any, Callable, Mapping, Optional

import structlog

from mypail.affect.state import MoodRecord, PersonaTraits, Thresholds
from mypail.affect.thresholds import coerce_hint, random_thresholds
from mypail.config import EmotionConfig, RegistryConfig, StoreConfig
from mypail.genesis import (
    default_schooling_levels,
    generate_traits,
    normalize_schooling,
    random_schooling_levels,
)
from mypail.memory.session_store import PersistedSession, SessionStore


class SessionRegistry:
    """
    Process-scoped owner of every active MoodRecord.

    Construct once, call start() inside the running event loop to launch the
    background sweeps, and stop() on shutdown. Safe *only* within a single
    asyncio event loop; there is no per-session locking.
    """

    def __init__(
        self,
        store: SessionStore,
        config: RegistryConfig | None = None,
        emotion_config: EmotionConfig | None = None,
        store_config: StoreConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config or RegistryConfig()
        self._emotion = emotion_config or EmotionConfig()
        self._store_config = store_config or StoreConfig()
        self._rng = rng or random.Random()
        self._clock = clock

        self._sessions: dict[str, MoodRecord] = {}
        # Monotonic last-touch per session id; kept in step with _sessions.
        self._last_touch: dict[str, float] = {}

        self._memory_cleanup_task: asyncio.Task | None = None
        self._store_cleanup_task: asyncio.Task | None = None
        self._logger = structlog.get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def max_sessions(self) -> int:
        return self._config.max_sessions

    @property
    def store(self) -> SessionStore:
        return self._store

    async def get_session(
        self,
        session_id: str,
        ai_name: Optional[str] = None,
        schooling_levels: Optional[Mapping[str, Any]] = None,
        thresholds: Optional[Mapping[str, Any]] = None,
    ) -> MoodRecord:
        """
        Return the live record for session_id, restoring or creating it.

        Every call touches the id and, at capacity, first evicts the least
        recently touched other session. Hints only matter at creation time,
        except schooling_levels which may also be applied once to an existing,
        unlocked record.
        """
        self._last_touch[session_id] = self._clock()
        if len(self._sessions) >= self._config.max_sessions:
            self._evict_oldest(exclude=session_id)

        record = self._sessions.get(session_id)
        if record is None:
            record = await self._create_record(session_id, ai_name, schooling_levels, thresholds)
            # Another turn for the same id may have finished creating it meanwhile
            existing = self._sessions.get(session_id)
            if existing is not None:
                return existing
            self._sessions[session_id] = record
            self._last_touch.setdefault(session_id, self._clock())
            return record

        schooling = normalize_schooling(schooling_levels)
        if schooling is not None and not record.schooling_locked:
            record.schooling_levels = schooling
            record.schooling_locked = True
            self._logger.debug("registry.schooling_applied", session_id=session_id)
        await self._store_call("update_access", self._store.update_access, session_id)
        return record

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def peek(self, session_id: str) -> Optional[MoodRecord]:
        """The in-memory record, without touching, creating or any store I/O."""
        return self._sessions.get(session_id)

    async def get_traits(self, session_id: str) -> PersonaTraits:
        return (await self.get_session(session_id)).traits

    async def get_thresholds(self, session_id: str) -> Thresholds:
        return (await self.get_session(session_id)).thresholds

    async def store_stats(self) -> Optional[dict[str, int]]:
        """Persisted-store counts, or None when the store is unavailable."""
        return await self._store_call("get_stats", self._store.get_stats)

    def session_count(self) -> int:
        """Return the number of in-memory sessions."""
        return len(self._sessions)

    def touch_time(self, session_id: str) -> Optional[float]:
        return self._last_touch.get(session_id)

    def set_touch_time(self, session_id: str, value: float) -> None:
        """Override a session's last-touch time (maintenance and tests)."""
        if session_id in self._last_touch:
            self._last_touch[session_id] = value

    def expire_stale_sessions(self, max_age: float | None = None) -> int:
        """
        Remove sessions idle longer than max_age, regardless of fill level.

        Returns the number of sessions removed. The persisted records are
        left alone.
        """
        limit = self._config.memory_max_age if max_age is None else max_age
        now = self._clock()
        stale = [sid for sid, ts in self._last_touch.items() if now - ts > limit]
        for sid in stale:
            self._forget(sid)
        return len(stale)

    # ------------------------------------------------------------------
    # Record construction
    # ------------------------------------------------------------------

    async def _create_record(
        self,
        session_id: str,
        ai_name: Optional[str],
        schooling_hint: Optional[Mapping[str, Any]],
        threshold_hint: Optional[Mapping[str, Any]],
    ) -> MoodRecord:
        persisted: Optional[PersistedSession] = await self._store_call(
            "load", self._store.load, session_id
        )
        schooling = normalize_schooling(schooling_hint)

        if persisted is not None:
            record = self._new_record(
                session_id,
                name=persisted.ai_name or self._config.default_ai_name,
                traits=persisted.traits,
                schooling=normalize_schooling(persisted.schooling_levels) or default_schooling_levels(),
                thresholds=persisted.thresholds or self._default_thresholds(),
            )
            self._logger.info("registry.session_restored", session_id=session_id)
            return record

        thresholds = coerce_hint(threshold_hint) or random_thresholds(self._rng)
        record = self._new_record(
            session_id,
            name=(ai_name or "").strip() or self._config.default_ai_name,
            traits=generate_traits(self._rng),
            schooling=schooling or random_schooling_levels(self._rng),
            thresholds=thresholds,
        )
        record.schooling_locked = schooling is not None
        await self._store_call(
            "save",
            self._store.save,
            session_id,
            record.ai_name,
            record.traits,
            record.schooling_levels,
            record.thresholds,
        )
        self._logger.info(
            "registry.session_created",
            session_id=session_id,
            ai_name=record.ai_name,
            in_memory=len(self._sessions) + 1,
        )
        return record

    def _new_record(
        self,
        session_id: str,
        *,
        name: str,
        traits: PersonaTraits,
        schooling: dict[str, int],
        thresholds: Thresholds,
    ) -> MoodRecord:
        return MoodRecord(
            session_id=session_id,
            ai_name=name,
            traits=traits,
            schooling_levels=schooling,
            thresholds=thresholds,
            state_history=deque(maxlen=self._emotion.state_memory_length),
        )

    def _default_thresholds(self) -> Thresholds:
        return Thresholds(
            very_bad=self._emotion.default_very_bad,
            bad=self._emotion.default_bad,
            good=self._emotion.default_good,
        )

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _evict_oldest(self, exclude: str) -> Optional[str]:
        candidates = [
            (ts, sid) for sid, ts in self._last_touch.items()
            if sid != exclude and sid in self._sessions
        ]
        if not candidates:
            return None
        _, oldest = min(candidates)
        self._forget(oldest)
        self._logger.debug("registry.capacity_eviction", evicted=oldest)
        return oldest

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_touch.pop(session_id, None)

    async def _store_call(self, op: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run a blocking store operation off the event loop, bounded by io_timeout.

        Failures and timeouts degrade to in-memory-only state and return None.
        A timed-out call keeps running in its worker thread; its result is
        discarded.
        """
        timeout = self._store_config.io_timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                "registry.store_timeout",
                op=op,
                session_id=args[0] if args else None,
                timeout=timeout,
            )
        except Exception as e:
            self._logger.warning(
                "registry.store_failed",
                op=op,
                session_id=args[0] if args else None,
                error=str(e),
            )
        return None

    # ------------------------------------------------------------------
    # Periodic cleanup
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the in-memory and persisted-store sweeps (idempotent)."""
        if self._memory_cleanup_task is None:
            self._memory_cleanup_task = asyncio.create_task(
                self._periodic_memory_cleanup(self._config.memory_cleanup_interval),
                name="registry_memory_cleanup",
            )
        if self._store_cleanup_task is None:
            self._store_cleanup_task = asyncio.create_task(
                self._periodic_store_cleanup(
                    self._store_config.cleanup_interval,
                    self._store_config.initial_cleanup_delay,
                ),
                name="registry_store_cleanup",
            )

    async def stop(self) -> None:
        """Cancel both sweeps."""
        for task in (self._memory_cleanup_task, self._store_cleanup_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._memory_cleanup_task = None
        self._store_cleanup_task = None

    @property
    def running(self) -> bool:
        return self._memory_cleanup_task is not None

    async def _periodic_memory_cleanup(self, interval: float) -> None:
        """Background loop that expires idle in-memory sessions on a timer."""
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    removed = self.expire_stale_sessions()
                except Exception:
                    self._logger.exception("registry.memory_cleanup_failed")
                    continue
                if removed:
                    self._logger.info(
                        "registry.cleanup",
                        removed=removed,
                        remaining=len(self._sessions),
                    )
        except asyncio.CancelledError:
            pass

    async def _periodic_store_cleanup(self, interval: float, initial_delay: float) -> None:
        """Background loop that sweeps expired records out of the session store."""
        delay = initial_delay
        try:
            while True:
                await asyncio.sleep(delay)
                delay = interval
                try:
                    await asyncio.to_thread(self._store.cleanup_old_sessions)
                except Exception:
                    self._logger.exception("registry.store_cleanup_failed")
        except asyncio.CancelledError:
            pass
