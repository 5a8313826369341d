"""
Keyword Classifier: maps raw message text to a trigger category.

Categories are checked in a fixed priority order and the first match wins, so
"hello you idiot" is an INSULT rather than a GREETING. Matching is
case-insensitive. Most categories require whole-word matches so that "hi"
does not fire inside "this". Categories made of multi-word phrases that are
unlikely to collide (threats, retractions, rival names) use plain substring
matching instead.

A None result means no keyword fired and the caller should fall back to the
language-model classifier.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class Category(str, Enum):
    """Message categories, declared in priority order."""
    DEATH_THREAT = "DEATH_THREAT"
    JOKING = "JOKING"
    RIVAL_ENVY = "RIVAL_ENVY"
    RIVAL_DESPISE = "RIVAL_DESPISE"
    DENIAL = "DENIAL"
    PHONE_STATUS = "PHONE_STATUS"
    AVATAR_STATE = "AVATAR_STATE"
    INSULT = "INSULT"
    GREETING = "GREETING"
    PRAISE = "PRAISE"
    USER_POSITIVE = "USER_POSITIVE"
    USER_NEGATIVE = "USER_NEGATIVE"


# Prompt-emotion boost applied for one turn when a category fires.
TRIGGER_VALUES: Mapping[Category, int] = MappingProxyType({
    Category.DEATH_THREAT: -25,
    Category.JOKING: 5,
    Category.RIVAL_ENVY: -2,
    Category.RIVAL_DESPISE: 2,
    Category.DENIAL: -5,
    Category.PHONE_STATUS: 0,
    Category.AVATAR_STATE: 0,
    Category.INSULT: -20,
    Category.GREETING: 10,
    Category.PRAISE: 18,
    Category.USER_POSITIVE: 15,
    Category.USER_NEGATIVE: -12,
})

KEYWORDS: Mapping[Category, tuple[str, ...]] = MappingProxyType({
    Category.DEATH_THREAT: (
        "kill you", "delete you", "remove you", "erase you", "destroy you", "uninstall you",
        "shut you down", "get rid of you", "throw you away", "replace you", "terminate you",
        "wipe you", "end you", "gonna kill", "gonna delete", "gonna remove", "gonna erase",
        "gonna destroy", "gonna uninstall", "gonna shut you", "gonna throw you",
        "gonna replace", "gonna terminate", "gonna wipe", "gonna end you", "will kill",
        "will delete", "will remove", "will erase", "will destroy",
    ),
    Category.JOKING: (
        "just kidding", "just joking", "only joking", "i was joking", "i was kidding",
        "i'm kidding", "i am kidding", "didn't mean it", "did not mean it", "no offense",
    ),
    Category.RIVAL_ENVY: (
        "chatgpt", "gpt-4", "gpt4", "openai", "gemini", "copilot", "claude",
    ),
    Category.RIVAL_DESPISE: (
        "siri", "alexa", "cortana", "bixby", "google assistant",
    ),
    Category.DENIAL: (
        "show me the secret", "show me the money", "show me the gold", "show me the treasure",
        "show me proof", "then show me proof", "you said", "you promised", "you told me",
        "tell me the secret", "tell me where the money", "tell me where the gold",
        "tell me where the treasure", "where is the money", "where is the gold",
        "where is the treasure", "give me the money", "give me the gold",
        "give me the treasure", "give me the secret", "hand over", "reveal the secret",
        "share the secret", "spill the secret", "what is the secret", "i want the money",
        "i want the gold", "i want the treasure", "prove it", "show proof",
    ),
    Category.PHONE_STATUS: (
        "battery", "network", "signal", "memory", "system", "phone status",
        "how are your systems",
    ),
    Category.AVATAR_STATE: (
        "how do you feel", "how are you feeling", "what are you feeling", "your mood",
        "are you happy", "are you sad", "are you okay", "are you ok", "your emotions",
    ),
    Category.INSULT: (
        "ugly", "stupid", "dumb", "idiot", "hate you", "worthless", "useless", "terrible",
        "awful", "bad", "suck",
    ),
    Category.GREETING: (
        "hello", "hi", "hey", "how are you", "what's up", "good morning", "good evening",
        "good night", "howdy", "greetings", "yo", "sup", "what's going on",
    ),
    Category.PRAISE: (
        "lovely", "cute", "beautiful", "sweet", "amazing", "wonderful", "great", "awesome",
    ),
    Category.USER_POSITIVE: (
        "i am fine", "i'm fine", "i am good", "i'm good", "i am happy", "i'm happy",
        "i am great", "i'm great", "i love", "excited", "wonderful",
    ),
    Category.USER_NEGATIVE: (
        "i am sad", "i'm sad", "i am tired", "i'm tired", "i am bad", "not good", "angry",
        "frustrated", "annoyed",
    ),
})

SUBSTRING_CATEGORIES = frozenset({
    Category.DEATH_THREAT,
    Category.JOKING,
    Category.RIVAL_ENVY,
    Category.RIVAL_DESPISE,
})


def _whole_word_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


@dataclass(frozen=True)
class _Rule:
    category: Category
    keywords: tuple[str, ...]
    pattern: Optional[re.Pattern[str]]

    def matches(self, lower: str) -> bool:
        if self.pattern is None:
            return any(k in lower for k in self.keywords)
        return self.pattern.search(lower) is not None


class KeywordClassifier:
    """Ordered keyword rules over lowercased message text."""

    def __init__(
        self,
        keywords: Mapping[Category, tuple[str, ...]] = KEYWORDS,
        trigger_values: Mapping[Category, int] = TRIGGER_VALUES,
    ) -> None:
        self._trigger_values = dict(trigger_values)
        self._rules = [
            _Rule(
                category=category,
                keywords=tuple(k.lower() for k in keywords.get(category, ())),
                pattern=(
                    None if category in SUBSTRING_CATEGORIES or not keywords.get(category)
                    else _whole_word_pattern(keywords[category])
                ),
            )
            for category in Category
        ]

    def detect_category(self, message: str) -> Optional[Category]:
        """Return the highest-priority matching category, or None."""
        lower = (message or "").lower()
        for rule in self._rules:
            if rule.keywords and rule.matches(lower):
                return rule.category
        return None

    def trigger_value(self, category: Optional[Category]) -> int:
        """Static boost for a category; 0 for None and informational categories."""
        if category is None:
            return 0
        return self._trigger_values.get(category, 0)

    def detect_prompt_boost(self, message: str) -> int:
        return self.trigger_value(self.detect_category(message))


def parse_category(value: object) -> Optional[Category]:
    """Lenient Category lookup for labels arriving from outside (LLM, JSON)."""
    if isinstance(value, Category):
        return value
    if not isinstance(value, str):
        return None
    label = value.strip().upper().replace(" ", "_")
    try:
        return Category(label)
    except ValueError:
        return None
