"""
Text Generator — language-model fallback for replies and classification.

This module wraps the Anthropic SDK. It is used only when the cheap paths come
up empty: when no keyword fires it classifies the message, and when the static
table has no line it writes the companion's reply.

Every call is bounded by a timeout and never raises. A failure, timeout or
empty answer returns None, and the caller substitutes its canned fallback.
Nothing is retried; the next turn simply tries again.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Optional

import anthropic
import structlog

from mypail.affect.state import DeviceStatus, EmotionState, Thresholds
from mypail.classifier import Category, parse_category
from mypail.config import LLMConfig

if TYPE_CHECKING:
    from mypail.metrics import MetricsRegistry

logger = structlog.get_logger(__name__)

EMOTION_DESCRIPTIONS = {
    EmotionState.VERY_GOOD: "extremely happy, enthusiastic, and warm",
    EmotionState.GOOD: "friendly, positive, and cheerful",
    EmotionState.BAD: "slightly upset, reserved, or disappointed",
    EmotionState.VERY_BAD: (
        "feeling awful, desperate, and overwhelmed, like everything is going wrong "
        "and you can barely cope"
    ),
}

AVATAR_DESCRIPTIONS = {
    EmotionState.VERY_GOOD: "extremely happy and full of energy",
    EmotionState.GOOD: "feeling good and positive",
    EmotionState.BAD: "a bit down and struggling",
    EmotionState.VERY_BAD: "feeling awful and barely holding together",
}

PLAIN_SYSTEM_PROMPT = (
    "You are a helpful assistant. Respond concisely and helpfully in 1-2 sentences."
)


def personality_description(thresholds: Thresholds) -> str:
    """High cut points make every mood read worse: a pessimist."""
    center = thresholds.center
    if center > 60:
        return (
            "You have a pessimistic, cynical personality. "
            "You tend to see the negative side of things."
        )
    if center < 40:
        return (
            "You have an optimistic, cheerful personality. "
            "You tend to see the positive side of things."
        )
    return (
        "You have a balanced personality. "
        "You experience the full range of emotions naturally."
    )


def intensity_description(emotion_level: float) -> str:
    if emotion_level < 20:
        return "Your energy is very low. Express your emotions in a subdued, quiet way."
    if emotion_level < 40:
        return "Your energy is somewhat low. Express your emotions calmly."
    if emotion_level < 60:
        return "Your energy is moderate. Express your emotions normally."
    if emotion_level < 80:
        return "Your energy is high. Express your emotions with enthusiasm."
    return "Your energy is very high! Express your emotions intensely and expressively!"


def build_system_prompt(
    emotion_state: EmotionState,
    emotion_level: float = 50.0,
    ai_name: str = "AI",
    thresholds: Optional[Thresholds] = None,
) -> str:
    """System prompt for an emotion-mode reply."""
    mood = EMOTION_DESCRIPTIONS.get(emotion_state, EMOTION_DESCRIPTIONS[EmotionState.GOOD])
    return (
        f"You are {ai_name}, an emotional AI companion.\n"
        f"Your current emotional state is: {mood}.\n"
        f"Your emotion level is {round(emotion_level)}/100.\n\n"
        f"{personality_description(thresholds or Thresholds())}\n\n"
        f"{intensity_description(emotion_level)}\n\n"
        "Respond naturally based on your emotional state, level, and personality. "
        "Keep responses concise (1-2 sentences)."
    )


def build_avatar_state_prompt(
    emotion_state: EmotionState,
    emotion_level: float,
    ai_name: str = "AI",
    device: Optional[DeviceStatus] = None,
    interactions: Optional[int] = None,
) -> str:
    """System prompt for introspective "how do you feel" questions."""
    mood = AVATAR_DESCRIPTIONS.get(emotion_state, AVATAR_DESCRIPTIONS[EmotionState.GOOD])
    lines = [
        f"You are {ai_name}, an emotional AI companion. "
        "The user is asking about your feelings or emotional state.",
        f"Your current emotional state: {mood}.",
        f"Your emotion level is {round(emotion_level)}/100.",
    ]
    if device is not None:
        lines.append(f"Current device conditions: {device.describe()}.")
    if interactions is not None:
        plural = "" if interactions == 1 else "s"
        lines.append(f"You have had {interactions} interaction{plural} in this session so far.")
    lines.append(
        "\nSpeak in first person. Describe how you're currently feeling and explain what "
        "device conditions and conversation context are contributing to your mood. Be "
        "honest and introspective. Keep it to 2-3 sentences with a natural tone. "
        "Do not use emojis."
    )
    return "\n".join(lines)


def build_classifier_prompt() -> str:
    labels = ", ".join(c.value for c in Category)
    return (
        "Classify the user's message for an emotional AI companion. "
        f"Answer with exactly one label from: {labels}. "
        "Answer NONE if no label fits. Output the label only."
    )


class TextGenerator:
    """
    Async Anthropic client with timeouts and silent degradation.

    Without an API key the generator is unconfigured and every method
    returns None immediately.
    """

    def __init__(
        self,
        config: LLMConfig,
        client: Any = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._timeout = float(config.request_timeout_seconds)
        self._metrics = metrics
        if client is not None:
            self._client = client
        elif config.api_key:
            self._client = anthropic.AsyncAnthropic(api_key=config.api_key)
        else:
            self._client = None

        # Telemetry
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._total_calls = 0
        self._total_errors = 0

        logger.info(
            "text_generator.initialized",
            model=self._model,
            configured=self.is_configured(),
        )

    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def telemetry(self) -> dict[str, int]:
        return {
            "calls": self._total_calls,
            "errors": self._total_errors,
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }

    # ------------------------------------------------------------------
    # Public generation modes
    # ------------------------------------------------------------------

    async def generate_response(
        self,
        message: str,
        *,
        emotion_state: EmotionState,
        emotion_level: float,
        ai_name: str = "AI",
        thresholds: Optional[Thresholds] = None,
    ) -> Optional[str]:
        system = build_system_prompt(emotion_state, emotion_level, ai_name, thresholds)
        return await self._complete(system, message, mode="emotion")

    async def generate_avatar_state_response(
        self,
        message: str,
        *,
        emotion_state: EmotionState,
        emotion_level: float,
        ai_name: str = "AI",
        device: Optional[DeviceStatus] = None,
        interactions: Optional[int] = None,
    ) -> Optional[str]:
        system = build_avatar_state_prompt(
            emotion_state, emotion_level, ai_name, device, interactions
        )
        return await self._complete(system, message, mode="avatar_state")

    async def generate_plain_response(self, message: str) -> Optional[str]:
        return await self._complete(
            PLAIN_SYSTEM_PROMPT, message, mode="plain", temperature=0.5
        )

    async def classify_message(self, message: str) -> Optional[Category]:
        """Ask the model for a category label; anything unrecognized is None."""
        text = await self._complete(
            build_classifier_prompt(), message, mode="classify", max_tokens=10, temperature=0.0
        )
        if text is None:
            return None
        return parse_category(text.split()[0].strip(".,:;\"'"))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _complete(
        self,
        system: str,
        message: str,
        *,
        mode: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Optional[str]:
        if self._client is None:
            return None

        start_time = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens or self._max_tokens,
                    temperature=self._temperature if temperature is None else temperature,
                    system=system,
                    messages=[{"role": "user", "content": message}],
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self._record_error(mode)
            logger.warning("text_generator.timeout", mode=mode, timeout=self._timeout)
            return None
        except anthropic.APIError as e:
            self._record_error(mode)
            logger.error(
                "text_generator.api_error",
                mode=mode,
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            return None
        except Exception as e:
            self._record_error(mode)
            logger.error("text_generator.unexpected_error", mode=mode, error=str(e))
            return None

        self._total_calls += 1
        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "output_tokens", 0) or 0)
        self._total_input_tokens += input_tokens
        self._total_output_tokens += output_tokens
        if self._metrics is not None:
            self._metrics.inc("llm_calls_total")
            self._metrics.inc("llm_input_tokens_total", input_tokens)
            self._metrics.inc("llm_output_tokens_total", output_tokens)
            self._metrics.observe("llm_latency_seconds", time.monotonic() - start_time)

        text = extract_text(response).strip()
        logger.debug(
            "text_generator.complete",
            mode=mode,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            elapsed_seconds=round(time.monotonic() - start_time, 2),
        )
        return text or None

    def _record_error(self, mode: str) -> None:
        self._total_errors += 1
        if self._metrics is not None:
            self._metrics.inc("llm_errors_total")
            self._metrics.inc(f"llm_errors_{mode}")


def extract_text(response: Any) -> str:
    """Join all text blocks of a Messages API response."""
    parts = []
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text)
    return "\n".join(parts)
