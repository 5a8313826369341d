# mypail/config.py
"""
Configuration for the mypail companion backend.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Every tunable constant of
the emotion engine lives here so the formulas themselves stay free of magic
numbers.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings
import structlog


logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above mypail/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class EmotionConfig(BaseSettings):
    """Smoothing constants, state memory and default thresholds."""

    # n values for the persistence formula ((n-1)*prev + current)/n.
    # Larger n = slower change.
    n_fast: int = Field(2, alias="MYPAIL_N_FAST")
    n_slow: int = Field(3, alias="MYPAIL_N_SLOW")

    # How many trigger records each session remembers
    state_memory_length: int = Field(5, alias="MYPAIL_STATE_MEMORY_LENGTH")

    # Default cut points on the 0-100 mood scale (VERY_BAD < BAD < GOOD)
    default_very_bad: float = Field(25.0, alias="MYPAIL_THRESHOLD_VERY_BAD")
    default_bad: float = Field(50.0, alias="MYPAIL_THRESHOLD_BAD")
    default_good: float = Field(75.0, alias="MYPAIL_THRESHOLD_GOOD")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "EmotionConfig":
        self.n_fast = max(1, int(self.n_fast))
        self.n_slow = max(1, int(self.n_slow))
        self.state_memory_length = max(1, int(self.state_memory_length))
        if not (0.0 <= self.default_very_bad < self.default_bad < self.default_good <= 100.0):
            logger.warning(
                "config.invalid_default_thresholds",
                very_bad=self.default_very_bad,
                bad=self.default_bad,
                good=self.default_good,
            )
            self.default_very_bad, self.default_bad, self.default_good = 25.0, 50.0, 75.0
        return self


class DeviceConfig(BaseSettings):
    """Ranges used to normalize device telemetry onto the 0-100 scale."""

    network_min: float = Field(-120.0, alias="MYPAIL_NETWORK_MIN")
    network_max: float = Field(-40.0, alias="MYPAIL_NETWORK_MAX")
    memory_max: float = Field(2000.0, alias="MYPAIL_MEMORY_MAX")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "DeviceConfig":
        if self.network_max <= self.network_min:
            self.network_min, self.network_max = -120.0, -40.0
        self.memory_max = max(1.0, float(self.memory_max))
        return self


class RegistryConfig(BaseSettings):
    """In-memory session registry capacity and sweep timing."""

    max_sessions: int = Field(10000, alias="MYPAIL_MAX_SESSIONS")
    memory_max_age: float = Field(3600.0, alias="MYPAIL_MEMORY_MAX_AGE")
    memory_cleanup_interval: float = Field(600.0, alias="MYPAIL_MEMORY_CLEANUP_INTERVAL")
    default_ai_name: str = Field("AI", alias="MYPAIL_DEFAULT_AI_NAME")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "RegistryConfig":
        self.max_sessions = max(1, int(self.max_sessions))
        self.memory_max_age = max(1.0, float(self.memory_max_age))
        self.memory_cleanup_interval = max(1.0, float(self.memory_cleanup_interval))
        self.default_ai_name = self.default_ai_name.strip() or "AI"
        return self


class StoreConfig(BaseSettings):
    """On-disk session persistence."""

    sessions_dir: Path = Field(Path("./mypail_data/sessions"), alias="MYPAIL_SESSIONS_DIR")
    max_age: float = Field(86400.0, alias="MYPAIL_SESSION_MAX_AGE")
    active_window: float = Field(3600.0, alias="MYPAIL_SESSION_ACTIVE_WINDOW")
    cleanup_interval: float = Field(3600.0, alias="MYPAIL_STORE_CLEANUP_INTERVAL")
    initial_cleanup_delay: float = Field(5.0, alias="MYPAIL_STORE_INITIAL_CLEANUP_DELAY")
    # Per-call bound on request-path file I/O; a timeout degrades to memory only
    io_timeout: float = Field(2.0, alias="MYPAIL_STORE_IO_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "StoreConfig":
        self.max_age = max(1.0, float(self.max_age))
        self.active_window = max(1.0, float(self.active_window))
        self.cleanup_interval = max(1.0, float(self.cleanup_interval))
        self.initial_cleanup_delay = max(0.0, float(self.initial_cleanup_delay))
        self.io_timeout = max(0.01, float(self.io_timeout))
        return self


class LLMConfig(BaseSettings):
    """Configuration for the language-model fallback."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="MYPAIL_MODEL")
    max_tokens: int = Field(150, alias="MYPAIL_MAX_TOKENS")
    temperature: float = Field(0.7, alias="MYPAIL_TEMPERATURE")
    request_timeout_seconds: float = Field(15.0, alias="MYPAIL_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "LLMConfig":
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        self.max_tokens = max(1, int(self.max_tokens))
        self.temperature = max(0.0, min(1.0, float(self.temperature)))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        return self


class ServerConfig(BaseSettings):
    """HTTP gateway settings."""

    host: str = Field("127.0.0.1", alias="MYPAIL_HOST")
    port: int = Field(3000, alias="MYPAIL_PORT")
    responses_path: Optional[Path] = Field(None, alias="MYPAIL_RESPONSES_PATH")
    log_level: str = Field("INFO", alias="MYPAIL_LOG_LEVEL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ServerConfig":
        self.port = max(0, min(65535, int(self.port)))
        self.log_level = self.log_level.strip().upper() or "INFO"
        return self


class MypailConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its config from here. No global state.
    """

    def __init__(self):
        self.emotion = EmotionConfig()
        self.device = DeviceConfig()
        self.registry = RegistryConfig()
        self.store = StoreConfig()
        self.llm = LLMConfig()
        self.server = ServerConfig()

    def __repr__(self) -> str:
        return (
            f"MypailConfig(model={self.llm.model}, "
            f"max_sessions={self.registry.max_sessions}, "
            f"sessions_dir={self.store.sessions_dir})"
        )
