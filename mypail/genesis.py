"""
Genesis: a companion's founding personality.

Each session's persona is rolled exactly once, when the session is first
seen: six likes, dislikes and fears, plus a schooling profile that weights how
much the companion has been taught to express each mood band. None of it is
updated by experience afterwards; a restored session gets back the same
persona it was born with.

Randomness always comes from an injected ``random.Random`` so tests can pin
the roll.
"""

from __future__ import annotations

import random
from types import MappingProxyType
from typing import Mapping

from mypail.affect.state import EmotionState, PersonaTraits

TRAIT_CHOICES: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "favorite_food": (
        "pizza", "sushi", "chocolate", "ice cream", "tacos", "pasta", "burgers", "ramen",
    ),
    "disliked_food": (
        "broccoli", "mushrooms", "olives", "pickles", "anchovies", "liver", "brussels sprouts",
    ),
    "favorite_music": (
        "jazz", "rock", "classical", "electronic", "hip hop", "pop", "indie", "lo-fi",
    ),
    "favorite_weather": (
        "sunny days", "rainy days", "snowy days", "cloudy weather", "thunderstorms",
        "foggy mornings",
    ),
    "favorite_color": (
        "blue", "purple", "green", "red", "yellow", "pink", "orange", "turquoise",
    ),
    "fear": (
        "spiders", "heights", "the dark", "crowds", "being alone", "loud noises", "uncertainty",
    ),
})

# Schooling profile: every band starts at the floor, then SCHOOLING_EXTRA
# increments are scattered at random, never pushing a band past the cap.
SCHOOLING_FLOOR = 2
SCHOOLING_CAP = 6
SCHOOLING_EXTRA = 8
SCHOOLING_TOTAL = SCHOOLING_FLOOR * len(EmotionState) + SCHOOLING_EXTRA

# Profile assumed for persisted sessions written before schooling existed
DEFAULT_SCHOOLING_LEVEL = 4


def generate_traits(rng: random.Random) -> PersonaTraits:
    """Six independent uniform picks, one per trait category."""
    return PersonaTraits(**{name: rng.choice(options) for name, options in TRAIT_CHOICES.items()})


def random_schooling_levels(rng: random.Random) -> dict[str, int]:
    """Mildly randomized, bounded schooling profile summing to SCHOOLING_TOTAL."""
    bands = [state.value for state in EmotionState]
    levels = {band: SCHOOLING_FLOOR for band in bands}
    remaining = SCHOOLING_EXTRA
    while remaining > 0:
        band = bands[rng.randrange(len(bands))]
        if levels[band] < SCHOOLING_CAP:
            levels[band] += 1
            remaining -= 1
    return levels


def default_schooling_levels() -> dict[str, int]:
    return {state.value: DEFAULT_SCHOOLING_LEVEL for state in EmotionState}


def normalize_schooling(levels: Mapping[str, object] | None) -> dict[str, int] | None:
    """Keep only known band labels with integer weights; None if nothing usable."""
    if not levels:
        return None
    cleaned: dict[str, int] = {}
    for state in EmotionState:
        raw = levels.get(state.value)
        if raw is None:
            continue
        try:
            cleaned[state.value] = max(0, int(raw))
        except (TypeError, ValueError):
            continue
    if len(cleaned) != len(EmotionState):
        return None
    return cleaned
