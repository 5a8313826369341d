"""
Turn Orchestrator — drives one chat turn through the emotion engine.

A turn always updates the phone signal and resets the prompt boost, so mood
keeps tracking the device even when the user is not talking to the companion.
Emotion processing proper only happens when the message mentions the
companion by name ("emotion mode"); otherwise the message gets a plain
assistant reply.

Reply selection is cheapest first: static table, then the language model,
then a literal fallback. Collaborator failures never fail the turn.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import structlog

from mypail.affect.mood import CombinedEmotion, MoodModel
from mypail.affect.state import DeviceStatus, EmotionState, MoodRecord
from mypail.api.generator import TextGenerator
from mypail.classifier import Category, KeywordClassifier
from mypail.metrics import MetricsRegistry
from mypail.registry import SessionRegistry
from mypail.responses import ResponseTable

logger = structlog.get_logger(__name__)

FALLBACK_RESPONSE = "I'm not sure how to respond to that right now."


@dataclass
class TurnRequest:
    """Input for one chat turn."""

    session_id: str
    message: str
    device_status: DeviceStatus = field(default_factory=DeviceStatus)
    ai_name: Optional[str] = None
    schooling_levels: Optional[Mapping[str, Any]] = None
    thresholds: Optional[Mapping[str, Any]] = None


@dataclass
class TurnResult:
    """Output of one chat turn. Mood fields are None in plain mode."""

    response: str
    emotion_mode: bool
    phone_mood: float
    prompt_mood: float
    combined_mood: Optional[float] = None
    emotion_state: Optional[EmotionState] = None
    category: Optional[Category] = None
    source: str = "fallback"
    debug: dict[str, Any] = field(default_factory=dict)

    @property
    def avatar_hint(self) -> str:
        return (self.emotion_state or EmotionState.GOOD).value

    def to_dict(self) -> dict[str, Any]:
        return {
            "response": self.response,
            "avatarHint": self.avatar_hint,
            "shouldSpeak": self.emotion_mode,
            "emotionMode": self.emotion_mode,
            "combinedMood": self.combined_mood,
            "emotionState": self.emotion_state.value if self.emotion_state else None,
            "phoneMood": self.phone_mood,
            "promptMood": self.prompt_mood,
            "category": self.category.value if self.category else None,
            "_debug": dict(self.debug),
        }


def mentions_name(ai_name: Optional[str], message: str) -> bool:
    """True when the persona name appears as a whole word in the message."""
    name = (ai_name or "").strip()
    if not name:
        return False
    return re.search(rf"\b{re.escape(name)}\b", message or "", re.IGNORECASE) is not None


class TurnOrchestrator:
    """Wires registry, mood model, classifier and reply sources together."""

    def __init__(
        self,
        registry: SessionRegistry,
        mood: MoodModel,
        classifier: KeywordClassifier,
        responses: ResponseTable,
        generator: TextGenerator,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._registry = registry
        self._mood = mood
        self._classifier = classifier
        self._responses = responses
        self._generator = generator
        self._metrics = metrics or MetricsRegistry()

    async def process_turn(self, request: TurnRequest) -> TurnResult:
        record = await self._registry.get_session(
            request.session_id,
            request.ai_name,
            request.schooling_levels,
            request.thresholds,
        )
        phone = self._mood.calculate_phone_emotion(request.device_status, record)
        self._mood.calculate_prompt_emotion(record)

        if mentions_name(request.ai_name or record.ai_name, request.message):
            result = await self._emotion_turn(request, record)
        else:
            result = await self._plain_turn(request, record)

        self._mood.finalize_turn(record)
        result.debug = {
            "phone": phone.to_dict(),
            "thresholds": record.thresholds.to_dict(),
            "traits": record.traits.to_dict(),
            "schoolingLevels": dict(record.schooling_levels),
            "praiseCount": record.praise_count,
            "insultCount": record.insult_count,
            "interactions": record.interactions,
            "source": result.source,
        }

        self._metrics.track_turn(
            mode="emotion" if result.emotion_mode else "plain",
            source=result.source,
            emotion_state=result.emotion_state.value if result.emotion_state else None,
            category=result.category.value if result.category else None,
            combined=result.combined_mood,
        )
        self._metrics.set_gauge("sessions_in_memory", self._registry.session_count())
        logger.debug(
            "orchestrator.turn_complete",
            session_id=request.session_id,
            emotion_mode=result.emotion_mode,
            phone=round(phone.value, 2),
            state=result.avatar_hint,
            source=result.source,
        )
        return result

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _emotion_turn(self, request: TurnRequest, record: MoodRecord) -> TurnResult:
        category = self._classifier.detect_category(request.message)
        if category is None:
            category = await self._generator.classify_message(request.message)

        boost = self._classifier.trigger_value(category)
        if boost != 0:
            self._mood.add_prompt_emotion(record, boost)
            self._mood.update_emotion_state(record, category.value, boost)
        else:
            self._mood.refresh_emotion_state(record)

        emotions = self._mood.get_combined_emotion(record)
        text, source = await self._select_reply(request, record, category, emotions)
        record.interactions += 1

        return TurnResult(
            response=text,
            emotion_mode=True,
            phone_mood=emotions.phone,
            prompt_mood=emotions.prompt,
            combined_mood=emotions.combined,
            emotion_state=emotions.state,
            category=category,
            source=source,
        )

    async def _plain_turn(self, request: TurnRequest, record: MoodRecord) -> TurnResult:
        self._mood.refresh_emotion_state(record)
        text = await self._generator.generate_plain_response(request.message)
        return TurnResult(
            response=text or FALLBACK_RESPONSE,
            emotion_mode=False,
            phone_mood=record.current_phone_emotion,
            prompt_mood=record.prompt_emotion,
            source="llm" if text else "fallback",
        )

    async def _select_reply(
        self,
        request: TurnRequest,
        record: MoodRecord,
        category: Optional[Category],
        emotions: CombinedEmotion,
    ) -> tuple[str, str]:
        text = self._responses.select_response(category, emotions.state, emotions.combined)
        if text:
            return text, "static"

        if category is Category.AVATAR_STATE:
            text = await self._generator.generate_avatar_state_response(
                request.message,
                emotion_state=emotions.state,
                emotion_level=emotions.combined,
                ai_name=record.ai_name,
                device=record.last_device_status,
                interactions=emotions.interactions,
            )
        else:
            text = await self._generator.generate_response(
                request.message,
                emotion_state=emotions.state,
                emotion_level=emotions.combined,
                ai_name=record.ai_name,
                thresholds=record.thresholds,
            )
        if text:
            return text, "llm"
        return FALLBACK_RESPONSE, "fallback"
