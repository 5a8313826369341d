"""
Mood Model — the numeric heart of the emotion engine.

Three signals are tracked per session:

    phone    : device telemetry folded onto 0-100 and exponentially smoothed
    prompt   : a one-turn boost/penalty from a classified message trigger
    combined : the smoothed blend of the two, which selects the mood band

All smoothing uses the persistence formula ((n-1)*previous + new) / n, where a
larger n means a slower-moving signal. The phone signal reacts faster when it
is already near an extreme; the combined signal does the opposite and lingers
in the VERY_* bands once it gets there.

Each turn follows the same sequence:

    calculate_phone_emotion → calculate_prompt_emotion → [add_prompt_emotion
    → update_emotion_state] → get_combined_emotion → finalize_turn
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from mypail.affect.state import (
    DeviceStatus,
    EmotionState,
    MoodRecord,
    StateHistoryEntry,
    clamp,
)
from mypail.config import DeviceConfig, EmotionConfig

logger = structlog.get_logger(__name__)

PRAISE_TRIGGER = "PRAISE"
INSULT_TRIGGER = "INSULT"


@dataclass(frozen=True)
class PhoneEmotion:
    """Result of one telemetry update."""

    value: float
    raw: float
    n: int

    @property
    def persistence(self) -> str:
        return f"{(self.n - 1) / self.n * 100:.1f}%"

    def to_dict(self) -> dict:
        return {"value": self.value, "raw": self.raw, "n": self.n, "persistence": self.persistence}


@dataclass(frozen=True)
class CombinedEmotion:
    """Snapshot of all mood signals for a session."""

    phone: float
    prompt: float
    combined: float
    state: EmotionState
    interactions: int

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "prompt": self.prompt,
            "combined": self.combined,
            "state": self.state.value,
            "interactions": self.interactions,
        }


class MoodModel:
    """
    Stateless calculator over MoodRecord instances.

    The model owns the formulas and constants; all per-session state lives on
    the record passed in, so one model serves every session.
    """

    def __init__(
        self,
        emotion_config: EmotionConfig | None = None,
        device_config: DeviceConfig | None = None,
    ) -> None:
        self._emotion = emotion_config or EmotionConfig()
        self._device = device_config or DeviceConfig()

    @property
    def n_fast(self) -> int:
        return self._emotion.n_fast

    @property
    def n_slow(self) -> int:
        return self._emotion.n_slow

    # ------------------------------------------------------------------
    # Phone (telemetry) signal
    # ------------------------------------------------------------------

    def normalize_device(self, device: DeviceStatus) -> tuple[float, float, float]:
        """Fold battery, network and memory readings onto 0-100 goodness."""
        net_span = self._device.network_max - self._device.network_min
        battery = clamp(device.battery, 0.0, 100.0)
        network = clamp(
            round((device.network - self._device.network_min) / net_span * 100), 0.0, 100.0
        )
        memory = clamp(round((1 - device.memory / self._device.memory_max) * 100), 0.0, 100.0)
        return battery, network, memory

    def calculate_phone_emotion(self, device: DeviceStatus, record: MoodRecord) -> PhoneEmotion:
        """
        Smooth a new telemetry reading into the session's phone emotion.

        The worst subsystem sets the raw reading. Near the extremes
        (previous value outside 25-75) the fast constant applies so the
        signal recovers quickly; in the middle band the slow constant damps it.
        """
        raw = min(self.normalize_device(device))

        previous = record.previous_phone_emotion
        n = self.n_fast if (previous < 25 or previous > 75) else self.n_slow
        value = clamp(((n - 1) * previous + raw) / n, 0.0, 100.0)

        record.previous_phone_emotion = value
        record.current_phone_emotion = value
        record.last_device_status = device
        record.anchor_committed = False

        return PhoneEmotion(value=value, raw=raw, n=n)

    # ------------------------------------------------------------------
    # Prompt (trigger) signal
    # ------------------------------------------------------------------

    def calculate_prompt_emotion(self, record: MoodRecord) -> float:
        """Reset the prompt boost at the start of a turn. It never carries over."""
        record.prompt_emotion = 0.0
        record.anchor_committed = False
        return record.prompt_emotion

    def add_prompt_emotion(self, record: MoodRecord, boost: float) -> float:
        """Set (not accumulate) this turn's prompt boost, clamped to ±100."""
        record.prompt_emotion = clamp(float(boost), -100.0, 100.0)
        record.anchor_committed = False
        return record.prompt_emotion

    # ------------------------------------------------------------------
    # Combined signal
    # ------------------------------------------------------------------

    def _combined_value(self, record: MoodRecord) -> float:
        # Extreme bands are sticky: use the slow constant there.
        n = self.n_slow if record.emotion_state.is_extreme else self.n_fast
        return clamp(
            ((n - 1) / n) * record.previous_combined_emotion
            + (1 / n) * record.current_phone_emotion
            + record.prompt_emotion,
            0.0,
            100.0,
        )

    def get_combined_emotion(self, record: MoodRecord) -> CombinedEmotion:
        """
        Blend the committed anchor with the current phone signal.

        The prompt boost is layered on unsmoothed, so a trigger takes full
        effect on the turn it arrives.
        """
        return CombinedEmotion(
            phone=record.current_phone_emotion,
            prompt=record.prompt_emotion,
            combined=self._combined_value(record),
            state=record.emotion_state,
            interactions=record.interactions,
        )

    def finalize_turn(self, record: MoodRecord) -> float:
        """
        Commit this turn's combined mood as the next turn's smoothing anchor.

        Call once per turn after every state-affecting call. Repeated calls
        without an intervening mutation leave the anchor where it is.
        """
        if not record.anchor_committed:
            record.previous_combined_emotion = self._combined_value(record)
            record.anchor_committed = True
        return record.previous_combined_emotion

    # ------------------------------------------------------------------
    # Discrete state
    # ------------------------------------------------------------------

    def update_emotion_state(self, record: MoodRecord, trigger: str | None, value: float) -> EmotionState:
        """Remember a trigger, update praise/insult tallies and reclassify."""
        record.state_history.append(
            StateHistoryEntry(trigger=trigger, value=float(value), timestamp=time.time())
        )
        if trigger == PRAISE_TRIGGER:
            record.praise_count += 1
        elif trigger == INSULT_TRIGGER:
            record.insult_count += 1
        return self.refresh_emotion_state(record)

    def refresh_emotion_state(self, record: MoodRecord) -> EmotionState:
        """Reclassify the combined mood against the session's thresholds."""
        combined = self._combined_value(record)
        new_state = record.thresholds.classify(combined)
        if new_state != record.emotion_state:
            logger.debug(
                "mood.state_changed",
                session_id=record.session_id,
                old=record.emotion_state.value,
                new=new_state.value,
                combined=round(combined, 2),
            )
        record.emotion_state = new_state
        record.anchor_committed = False
        return new_state
