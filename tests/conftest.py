"""
Shared fixtures for the mypail test suite.

Provides a controllable clock, temp-dir session stores, default configs and
a pre-wired registry so individual test modules can focus on behavior rather
than setup.
"""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from mypail.affect.mood import MoodModel
from mypail.affect.state import MoodRecord, PersonaTraits, Thresholds
from mypail.config import EmotionConfig, RegistryConfig, StoreConfig
from mypail.genesis import default_schooling_levels
from mypail.memory.session_store import SessionStore
from mypail.registry import SessionRegistry


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

SAMPLE_TRAITS = PersonaTraits(
    favorite_food="ramen",
    disliked_food="olives",
    favorite_music="jazz",
    favorite_weather="rainy days",
    favorite_color="blue",
    fear="the dark",
)


def make_record(session_id: str = "s1", **overrides) -> MoodRecord:
    """A MoodRecord with default thresholds and neutral signals."""
    fields = {
        "session_id": session_id,
        "ai_name": "Pail",
        "traits": SAMPLE_TRAITS,
        "schooling_levels": default_schooling_levels(),
        "thresholds": Thresholds(),
    }
    fields.update(overrides)
    return MoodRecord(**fields)


@pytest.fixture()
def record() -> MoodRecord:
    return make_record()


@pytest.fixture()
def mood_model() -> MoodModel:
    return MoodModel()


# ---------------------------------------------------------------------------
# Store and registry
# ---------------------------------------------------------------------------

@pytest.fixture()
def sessions_dir(tmp_path: Path) -> Path:
    return tmp_path / "sessions"


@pytest.fixture()
def store(sessions_dir: Path, clock: FakeClock) -> SessionStore:
    """A fresh SessionStore backed by a temp directory and the fake clock."""
    return SessionStore(sessions_dir, max_age=86400.0, active_window=3600.0, clock=clock)


def make_registry(
    store: SessionStore,
    *,
    max_sessions: int = 10000,
    clock: FakeClock | None = None,
    seed: int = 7,
) -> SessionRegistry:
    return SessionRegistry(
        store,
        config=RegistryConfig(max_sessions=max_sessions),
        emotion_config=EmotionConfig(),
        store_config=StoreConfig(sessions_dir=store.sessions_dir),
        rng=random.Random(seed),
        clock=clock or FakeClock(),
    )


@pytest.fixture()
def registry(store: SessionStore) -> SessionRegistry:
    return make_registry(store)


@pytest.fixture()
def record_factory():
    """Factory fixture: build MoodRecords with per-test overrides."""
    return make_record


@pytest.fixture()
def registry_factory(store: SessionStore):
    """Factory fixture: build registries over the shared store."""
    def _make(**kwargs) -> SessionRegistry:
        return make_registry(store, **kwargs)
    return _make
