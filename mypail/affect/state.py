"""
Affective State — the per-session mood record.

This module defines the data structures that represent a companion's mood at
any given moment: the discrete emotion bands, the thresholds that cut the
0-100 mood scale into those bands, the device telemetry snapshot that drives
the phone-derived signal, and the mutable record that the mood model updates
every turn.

The numeric signals are the actual mood. The band label is derived from them
and is only ever as good as the thresholds it was classified against.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MypailError(Exception):
    """Base class for errors raised by the emotion engine."""


class InvalidThresholdsError(MypailError, ValueError):
    """Raised when a threshold triple is non-numeric or not strictly increasing."""


class EmotionState(str, Enum):
    """
    The four contiguous mood bands over [0, 100].

    Ordered from worst to best; the string values are the labels exchanged
    with clients and stored on disk.
    """
    VERY_BAD = "VERY_BAD"
    BAD = "BAD"
    GOOD = "GOOD"
    VERY_GOOD = "VERY_GOOD"

    @property
    def is_extreme(self) -> bool:
        return self in (EmotionState.VERY_BAD, EmotionState.VERY_GOOD)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Thresholds:
    """
    Three ordered cut points partitioning the mood scale into four bands.

    VERY_BAD covers [0, very_bad], BAD (very_bad, bad], GOOD (bad, good] and
    VERY_GOOD everything above good. Each cut point belongs to the lower band.
    """
    very_bad: float = 25.0
    bad: float = 50.0
    good: float = 75.0

    @classmethod
    def validated(cls, very_bad: Any, bad: Any, good: Any) -> Thresholds:
        """Clamp each value into [0, 100] and enforce strict ordering."""
        values = []
        for name, raw in (("VERY_BAD", very_bad), ("BAD", bad), ("GOOD", good)):
            try:
                number = float(raw)
            except (TypeError, ValueError) as e:
                raise InvalidThresholdsError(f"{name} must be a number, got {raw!r}") from e
            if math.isnan(number):
                raise InvalidThresholdsError(f"{name} must be a number, got {raw!r}")
            values.append(clamp(number, 0.0, 100.0))

        vb, b, g = values
        if vb >= b or b >= g:
            raise InvalidThresholdsError("Invalid order. Must be: VERY_BAD < BAD < GOOD")
        return cls(very_bad=vb, bad=b, good=g)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Thresholds:
        """Build from the wire format ``{"VERY_BAD": .., "BAD": .., "GOOD": ..}``."""
        return cls.validated(data.get("VERY_BAD"), data.get("BAD"), data.get("GOOD"))

    def classify(self, combined: float) -> EmotionState:
        """Map a combined mood value onto its band."""
        if combined <= self.very_bad:
            return EmotionState.VERY_BAD
        if combined <= self.bad:
            return EmotionState.BAD
        if combined <= self.good:
            return EmotionState.GOOD
        return EmotionState.VERY_GOOD

    @property
    def center(self) -> float:
        """Midpoint of the outer cut points; >60 reads pessimistic, <40 optimistic."""
        return (self.very_bad + self.good) / 2

    def to_dict(self) -> dict[str, float]:
        return {"VERY_BAD": self.very_bad, "BAD": self.bad, "GOOD": self.good}


class DeviceStatus(BaseModel):
    """Telemetry snapshot reported by the companion's host device."""

    # NaN and infinities from lenient JSON parsers are rejected at the boundary
    model_config = ConfigDict(allow_inf_nan=False)

    # Percent charge, 0-100
    battery: float = Field(
        100.0, validation_alias=AliasChoices("battery", "batteryLevel")
    )
    # Signal strength in dBm, roughly -120 (dead) to -40 (excellent)
    network: float = Field(
        -60.0, validation_alias=AliasChoices("network", "networkStrength")
    )
    # Memory in use, MB
    memory: float = Field(
        0.0, validation_alias=AliasChoices("memory", "memoryUsage")
    )

    def describe(self) -> str:
        """Plain-language summary for prompts and status displays."""
        if self.network >= -60:
            strength = "strong"
        elif self.network >= -80:
            strength = "decent"
        elif self.network >= -100:
            strength = "weak"
        else:
            strength = "very weak"
        return (
            f"battery is at {round(self.battery)}%, network signal is {strength}, "
            f"memory usage is at {round(self.memory)} MB"
        )


@dataclass(frozen=True)
class PersonaTraits:
    """Six persona attributes picked once at session creation."""

    favorite_food: str
    disliked_food: str
    favorite_music: str
    favorite_weather: str
    favorite_color: str
    fear: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PersonaTraits:
        return cls(
            favorite_food=str(data.get("favorite_food", "")),
            disliked_food=str(data.get("disliked_food", "")),
            favorite_music=str(data.get("favorite_music", "")),
            favorite_weather=str(data.get("favorite_weather", "")),
            favorite_color=str(data.get("favorite_color", "")),
            fear=str(data.get("fear", "")),
        )


@dataclass
class StateHistoryEntry:
    """One remembered trigger."""

    trigger: Optional[str]
    value: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class MoodRecord:
    """
    Complete mood state for one conversation session.

    Mutated in place by the mood model; the registry hands out references,
    so there is no write-back step.
    """
    session_id: str
    ai_name: str
    traits: PersonaTraits
    schooling_levels: dict[str, int]
    thresholds: Thresholds = field(default_factory=Thresholds)

    # First-write-wins guard for schooling hints
    schooling_locked: bool = False

    # Telemetry-derived signal (0-100), exponentially smoothed
    previous_phone_emotion: float = 50.0
    current_phone_emotion: float = 50.0

    # Last committed combined mood (0-100); smoothing anchor for the next turn
    previous_combined_emotion: float = 50.0

    # Transient per-turn boost/penalty (-100..100)
    prompt_emotion: float = 0.0

    emotion_state: EmotionState = EmotionState.GOOD
    state_history: deque[StateHistoryEntry] = field(default_factory=lambda: deque(maxlen=5))

    praise_count: int = 0
    insult_count: int = 0
    interactions: int = 0

    last_device_status: Optional[DeviceStatus] = None

    # Set by finalize_turn; cleared by any mutation of the mood signals
    anchor_committed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize for status displays."""
        return {
            "sessionId": self.session_id,
            "aiName": self.ai_name,
            "traits": self.traits.to_dict(),
            "schoolingLevels": dict(self.schooling_levels),
            "thresholds": self.thresholds.to_dict(),
            "phoneEmotion": self.current_phone_emotion,
            "combinedEmotion": self.previous_combined_emotion,
            "promptEmotion": self.prompt_emotion,
            "emotionState": self.emotion_state.value,
            "praiseCount": self.praise_count,
            "insultCount": self.insult_count,
            "interactions": self.interactions,
            "stateHistory": [asdict(entry) for entry in self.state_history],
            "lastDeviceStatus": (
                self.last_device_status.model_dump() if self.last_device_status else None
            ),
        }
