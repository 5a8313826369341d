"""
Tests for mypail.registry: SessionRegistry.

Covers:
- Creation with and without hints, persisted on first sight
- Restoration from the session store after eviction or restart
- Schooling first-write-wins
- Capacity eviction of the least recently touched other session
- Idle expiry and the background sweeps
- Store failures and slow store I/O degrade to in-memory state
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mypail.affect.state import Thresholds
from mypail.config import RegistryConfig, StoreConfig
from mypail.memory.session_store import SessionStore
from mypail.registry import SessionRegistry

SCHOOLING = {"VERY_BAD": 1, "BAD": 2, "GOOD": 3, "VERY_GOOD": 4}


class SlowSessionStore(SessionStore):
    """SessionStore whose access refresh blocks like a stalled disk."""

    def __init__(self, *args, delay: float = 0.5, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.delay = delay

    def update_access(self, session_id: str) -> bool:
        time.sleep(self.delay)
        return super().update_access(session_id)

    def load(self, session_id: str):
        if self.delay and session_id.startswith("slow-load"):
            time.sleep(self.delay)
        return super().load(session_id)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreation:
    @pytest.mark.asyncio
    async def test_creates_and_persists(self, registry: SessionRegistry, store: SessionStore) -> None:
        record = await registry.get_session("s1", "Pail")
        assert record.session_id == "s1"
        assert record.ai_name == "Pail"
        assert registry.has_session("s1")
        assert registry.session_count() == 1

        raw = store.raw_record("s1")
        assert raw["aiName"] == "Pail"
        assert raw["traits"] == record.traits.to_dict()
        assert raw["schoolingLevels"] == record.schooling_levels
        assert raw["thresholds"] == record.thresholds.to_dict()

    @pytest.mark.asyncio
    async def test_same_reference_returned(self, registry: SessionRegistry) -> None:
        assert await registry.get_session("s1") is await registry.get_session("s1")

    @pytest.mark.asyncio
    async def test_concurrent_first_turns_share_one_record(self, registry: SessionRegistry) -> None:
        first, second = await asyncio.gather(
            registry.get_session("s1"), registry.get_session("s1")
        )
        assert first is second
        assert registry.session_count() == 1

    @pytest.mark.asyncio
    async def test_default_name(self, registry: SessionRegistry) -> None:
        assert (await registry.get_session("s1")).ai_name == "AI"
        assert (await registry.get_session("s2", "   ")).ai_name == "AI"

    @pytest.mark.asyncio
    async def test_name_fixed_after_creation(self, registry: SessionRegistry) -> None:
        await registry.get_session("s1", "Pail")
        assert (await registry.get_session("s1", "Other")).ai_name == "Pail"

    @pytest.mark.asyncio
    async def test_fresh_defaults(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1")
        assert record.previous_combined_emotion == 50.0
        assert record.current_phone_emotion == 50.0
        assert record.prompt_emotion == 0.0
        assert record.interactions == 0
        assert record.state_history.maxlen == 5

    @pytest.mark.asyncio
    async def test_threshold_hint_used(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1", thresholds={"VERY_BAD": 10, "BAD": 20, "GOOD": 30})
        assert record.thresholds == Thresholds(10, 20, 30)

    @pytest.mark.asyncio
    async def test_invalid_threshold_hint_replaced_by_random(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1", thresholds={"VERY_BAD": 30, "BAD": 20, "GOOD": 10})
        t = record.thresholds
        assert 0 <= t.very_bad < t.bad < t.good <= 99

    @pytest.mark.asyncio
    async def test_traits_accessors(self, registry: SessionRegistry) -> None:
        traits = await registry.get_traits("s1")
        assert registry.has_session("s1")
        assert traits is registry.peek("s1").traits
        assert await registry.get_thresholds("s1") is registry.peek("s1").thresholds

    @pytest.mark.asyncio
    async def test_peek_never_creates(self, registry: SessionRegistry, store: SessionStore) -> None:
        assert registry.peek("s1") is None
        assert not registry.has_session("s1")
        assert store.raw_record("s1") is None


class TestSchooling:
    @pytest.mark.asyncio
    async def test_hint_at_creation_locks(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1", schooling_levels=SCHOOLING)
        assert record.schooling_levels == SCHOOLING
        assert record.schooling_locked is True

    @pytest.mark.asyncio
    async def test_random_profile_without_hint(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1")
        assert sum(record.schooling_levels.values()) == 16
        assert record.schooling_locked is False

    @pytest.mark.asyncio
    async def test_first_later_hint_wins(self, registry: SessionRegistry) -> None:
        await registry.get_session("s1")
        await registry.get_session("s1", schooling_levels=SCHOOLING)
        other = {"VERY_BAD": 9, "BAD": 9, "GOOD": 9, "VERY_GOOD": 9}
        record = await registry.get_session("s1", schooling_levels=other)
        assert record.schooling_levels == SCHOOLING
        assert record.schooling_locked is True

    @pytest.mark.asyncio
    async def test_incomplete_hint_ignored(self, registry: SessionRegistry) -> None:
        record = await registry.get_session("s1", schooling_levels={"GOOD": 5})
        assert record.schooling_locked is False


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------

class TestRestoration:
    @pytest.mark.asyncio
    async def test_restart_restores_persona(self, registry_factory) -> None:
        first = await registry_factory(seed=1).get_session("s1", "Pail")
        restored = await registry_factory(seed=2).get_session("s1", "Ignored")
        assert restored is not first
        assert restored.ai_name == "Pail"
        assert restored.traits == first.traits
        assert restored.schooling_levels == first.schooling_levels
        assert restored.thresholds == first.thresholds

    @pytest.mark.asyncio
    async def test_restored_mood_starts_neutral(self, registry_factory, mood_model) -> None:
        first = await registry_factory().get_session("s1", "Pail")
        mood_model.add_prompt_emotion(first, 40)
        mood_model.finalize_turn(first)
        restored = await registry_factory().get_session("s1")
        assert restored.previous_combined_emotion == 50.0

    @pytest.mark.asyncio
    async def test_record_without_thresholds_gets_defaults(
        self, registry: SessionRegistry, store: SessionStore, record
    ) -> None:
        store.save("old", "Pail", record.traits, None)
        restored = await registry.get_session("old")
        assert restored.thresholds == Thresholds(25, 50, 75)
        assert restored.schooling_levels == {
            "VERY_BAD": 4, "BAD": 4, "GOOD": 4, "VERY_GOOD": 4,
        }

    @pytest.mark.asyncio
    async def test_restore_touches_nothing_new(
        self, registry: SessionRegistry, store: SessionStore, record
    ) -> None:
        store.save("old", "Pail", record.traits, None)
        await registry.get_session("old", "NewName", thresholds={"VERY_BAD": 1, "BAD": 2, "GOOD": 3})
        raw = store.raw_record("old")
        assert raw["aiName"] == "Pail"
        assert "thresholds" not in raw


# ---------------------------------------------------------------------------
# Capacity and expiry
# ---------------------------------------------------------------------------

class TestEviction:
    @pytest.mark.asyncio
    async def test_least_recently_touched_evicted(self, registry_factory, clock) -> None:
        registry = registry_factory(max_sessions=2, clock=clock)
        await registry.get_session("a")
        clock.advance(1)
        await registry.get_session("b")
        clock.advance(1)
        await registry.get_session("a")
        clock.advance(1)
        await registry.get_session("c")

        assert registry.session_count() == 2
        assert registry.has_session("a")
        assert registry.has_session("c")
        assert not registry.has_session("b")
        assert registry.touch_time("b") is None

    @pytest.mark.asyncio
    async def test_access_at_capacity_evicts_oldest_other(self, registry_factory, clock) -> None:
        registry = registry_factory(max_sessions=2, clock=clock)
        await registry.get_session("a")
        clock.advance(1)
        await registry.get_session("b")
        clock.advance(1)

        # A hit on a full registry still makes room
        await registry.get_session("b")

        assert registry.session_count() == 1
        assert registry.has_session("b")
        assert not registry.has_session("a")

    @pytest.mark.asyncio
    async def test_access_below_capacity_keeps_everyone(self, registry_factory, clock) -> None:
        registry = registry_factory(max_sessions=3, clock=clock)
        await registry.get_session("a")
        await registry.get_session("b")
        for _ in range(5):
            clock.advance(1)
            await registry.get_session("a")
        assert registry.session_count() == 2

    @pytest.mark.asyncio
    async def test_single_slot_hit_keeps_itself(self, registry_factory, clock) -> None:
        registry = registry_factory(max_sessions=1, clock=clock)
        record = await registry.get_session("a")
        clock.advance(1)
        assert await registry.get_session("a") is record
        assert registry.session_count() == 1

    @pytest.mark.asyncio
    async def test_evicted_persona_comes_back(self, registry_factory, clock) -> None:
        registry = registry_factory(max_sessions=1, clock=clock)
        original = await registry.get_session("a", "Pail")
        clock.advance(1)
        await registry.get_session("b")
        assert not registry.has_session("a")

        clock.advance(1)
        restored = await registry.get_session("a")
        assert restored.traits == original.traits
        assert restored.ai_name == "Pail"
        assert registry.session_count() == 1


class TestExpiry:
    @pytest.mark.asyncio
    async def test_idle_sessions_removed(self, registry_factory, clock, store) -> None:
        registry = registry_factory(clock=clock)
        await registry.get_session("old")
        clock.advance(3000)
        await registry.get_session("new")
        clock.advance(700)

        assert registry.expire_stale_sessions() == 1
        assert not registry.has_session("old")
        assert registry.has_session("new")
        # persisted record survives
        assert store.raw_record("old") is not None

    @pytest.mark.asyncio
    async def test_explicit_max_age(self, registry_factory, clock) -> None:
        registry = registry_factory(clock=clock)
        await registry.get_session("a")
        clock.advance(10)
        assert registry.expire_stale_sessions(max_age=5) == 1

    @pytest.mark.asyncio
    async def test_set_touch_time(self, registry_factory, clock) -> None:
        registry = registry_factory(clock=clock)
        await registry.get_session("a")
        registry.set_touch_time("a", clock.now - 10_000)
        registry.set_touch_time("missing", 0)
        assert registry.expire_stale_sessions() == 1
        assert registry.touch_time("missing") is None


# ---------------------------------------------------------------------------
# Store interaction
# ---------------------------------------------------------------------------

def _slow_registry(tmp_path, clock, delay: float = 0.5) -> tuple[SessionRegistry, SlowSessionStore]:
    slow = SlowSessionStore(tmp_path / "slow", max_age=86400.0, active_window=3600.0, clock=clock, delay=0)
    registry = SessionRegistry(
        slow,
        config=RegistryConfig(),
        store_config=StoreConfig(sessions_dir=slow.sessions_dir, io_timeout=0.05),
        clock=clock,
    )
    return registry, slow


class TestStoreInteraction:
    @pytest.mark.asyncio
    async def test_hit_refreshes_last_access(
        self, registry: SessionRegistry, store: SessionStore, clock
    ) -> None:
        await registry.get_session("s1")
        clock.advance(500)
        await registry.get_session("s1")
        assert store.raw_record("s1")["lastAccess"] == clock.now

    @pytest.mark.asyncio
    async def test_store_failures_degrade(self) -> None:
        broken = MagicMock(spec=SessionStore)
        broken.load.side_effect = OSError("disk gone")
        broken.save.side_effect = OSError("disk gone")
        broken.update_access.side_effect = OSError("disk gone")
        registry = SessionRegistry(broken)

        record = await registry.get_session("s1", "Pail")
        assert record.ai_name == "Pail"
        assert await registry.get_session("s1") is record

    @pytest.mark.asyncio
    async def test_slow_access_refresh_does_not_stall_the_turn(self, tmp_path, clock) -> None:
        registry, slow = _slow_registry(tmp_path, clock)
        record = await registry.get_session("s1", "Pail")
        slow.delay = 0.5

        started = time.monotonic()
        again = await registry.get_session("s1")
        elapsed = time.monotonic() - started

        assert again is record
        assert elapsed < 0.3

    @pytest.mark.asyncio
    async def test_slow_load_falls_back_to_fresh_record(self, tmp_path, clock) -> None:
        registry, slow = _slow_registry(tmp_path, clock)
        slow.delay = 0.5

        started = time.monotonic()
        record = await registry.get_session("slow-load-1", "Pail")
        elapsed = time.monotonic() - started

        assert record.ai_name == "Pail"
        assert registry.has_session("slow-load-1")
        assert elapsed < 0.3

    @pytest.mark.asyncio
    async def test_other_sessions_keep_moving_while_store_stalls(self, tmp_path, clock) -> None:
        registry, slow = _slow_registry(tmp_path, clock)
        await registry.get_session("s1")
        await registry.get_session("s2")
        slow.delay = 0.5

        started = time.monotonic()
        await asyncio.gather(registry.get_session("s1"), registry.get_session("s2"))
        assert time.monotonic() - started < 0.3

    @pytest.mark.asyncio
    async def test_store_stats(self, registry: SessionRegistry) -> None:
        await registry.get_session("s1")
        await registry.get_session("s2")
        stats = await registry.store_stats()
        assert stats["total"] == 2

    @pytest.mark.asyncio
    async def test_store_stats_unavailable(self) -> None:
        broken = MagicMock(spec=SessionStore)
        broken.get_stats.side_effect = OSError("disk gone")
        registry = SessionRegistry(broken)
        assert await registry.store_stats() is None


# ---------------------------------------------------------------------------
# Background sweeps
# ---------------------------------------------------------------------------

class TestSweeps:
    @pytest.mark.asyncio
    async def test_start_stop(self, registry: SessionRegistry) -> None:
        assert not registry.running
        registry.start()
        registry.start()
        assert registry.running
        await registry.stop()
        assert not registry.running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, registry: SessionRegistry) -> None:
        await registry.stop()
        assert not registry.running

    @pytest.mark.asyncio
    async def test_memory_sweep_expires(self, registry_factory, clock) -> None:
        registry = registry_factory(clock=clock)
        await registry.get_session("old")
        clock.advance(4000)

        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        with patch("mypail.registry.asyncio.sleep", sleep):
            await registry._periodic_memory_cleanup(600)

        assert not registry.has_session("old")
        sleep.assert_awaited_with(600)

    @pytest.mark.asyncio
    async def test_store_sweep_runs_after_initial_delay(self, registry: SessionRegistry) -> None:
        registry.store.cleanup_old_sessions = MagicMock(return_value={"deleted": 0, "kept": 0})
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])
        with patch("mypail.registry.asyncio.sleep", sleep):
            await registry._periodic_store_cleanup(3600, 5)

        assert [c.args[0] for c in sleep.await_args_list] == [5, 3600, 3600]
        assert registry.store.cleanup_old_sessions.call_count == 2

    @pytest.mark.asyncio
    async def test_store_sweep_survives_errors(self, registry: SessionRegistry) -> None:
        registry.store.cleanup_old_sessions = MagicMock(side_effect=OSError("boom"))
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])
        with patch("mypail.registry.asyncio.sleep", sleep):
            await registry._periodic_store_cleanup(3600, 5)

        assert registry.store.cleanup_old_sessions.call_count == 2
