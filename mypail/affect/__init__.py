"""Affective system: per-session mood state, thresholds and smoothing."""
from mypail.affect.mood import CombinedEmotion, MoodModel, PhoneEmotion
from mypail.affect.state import (
    DeviceStatus,
    EmotionState,
    InvalidThresholdsError,
    MoodRecord,
    MypailError,
    PersonaTraits,
    Thresholds,
)
from mypail.affect.thresholds import ThresholdStore, coerce_hint, random_thresholds

__all__ = [
    "CombinedEmotion",
    "MoodModel",
    "PhoneEmotion",
    "DeviceStatus",
    "EmotionState",
    "InvalidThresholdsError",
    "MoodRecord",
    "MypailError",
    "PersonaTraits",
    "Thresholds",
    "ThresholdStore",
    "coerce_hint",
    "random_thresholds",
]
