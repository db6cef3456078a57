"""
Configuration management for the voice lead agent.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

DEFAULT_SLOT_TEMPLATES = ("07:30", "09:00", "10:30", "12:00", "15:00", "17:30")
DEFAULT_BUSY_SLOTS = ("09:00", "12:00")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    port: int = 8080
    log_level: str = "INFO"

    # Business persona
    business_name: str = "Melbourne Athletic Development"
    agent_name: str = "Maddie"

    # Deepgram (STT + TTS)
    deepgram_api_key: str = ""
    deepgram_listen_url: str = "wss://api.deepgram.com/v1/listen?encoding=linear16&sample_rate=16000"
    deepgram_tts_url: str = (
        "https://api.deepgram.com/v1/speak?model=aura-asteria-en&encoding=linear16&sample_rate=16000&container=none"
    )

    # TTS provider ("deepgram" | "openai")
    tts_provider: str = "deepgram"
    openai_tts_model: str = "gpt-4o-mini-tts"
    openai_tts_voice: str = "alloy"

    # LLM Provider (Groq/OpenAI)
    # - Default is Groq.
    # - Set LLM_PROVIDER=openai + OPENAI_API_KEY/OPENAI_MODEL to use ChatGPT.
    llm_provider: str = "groq"  # "groq" | "openai"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.0
    llm_max_tokens: int = 256
    validate_model_on_startup: bool = False

    # Generation retry policy
    generation_max_attempts: int = 3
    generation_backoff_ms: int = 400

    # Session
    max_session_turns: int = 50

    # Knowledge base / booking
    knowledge_base_path: str = ""
    booking_slot_templates: Tuple[str, ...] = DEFAULT_SLOT_TEMPLATES
    booking_default_busy: Tuple[str, ...] = DEFAULT_BUSY_SLOTS

    @property
    def llm_model(self) -> str:
        return self.openai_model if self.llm_provider == "openai" else self.groq_model

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.deepgram_api_key:
            missing.append("DEEPGRAM_API_KEY")

        provider = (self.llm_provider or "groq").strip().lower()
        if provider not in ("groq", "openai"):
            raise ConfigError(
                f"Invalid LLM_PROVIDER '{self.llm_provider}'. Expected 'groq' or 'openai'."
            )

        if provider == "groq":
            if not self.groq_api_key:
                missing.append("GROQ_API_KEY")
            if not self.groq_model:
                missing.append("GROQ_MODEL")

        if provider == "openai":
            if not self.openai_api_key:
                missing.append("OPENAI_API_KEY")
            if not self.openai_model:
                missing.append("OPENAI_MODEL")

        tts = (self.tts_provider or "deepgram").strip().lower()
        if tts not in ("deepgram", "openai"):
            raise ConfigError(
                f"Invalid TTS_PROVIDER '{self.tts_provider}'. Expected 'deepgram' or 'openai'."
            )
        if tts == "openai" and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")

        if self.generation_max_attempts < 1:
            raise ConfigError("GENERATION_MAX_ATTEMPTS must be at least 1.")

        if self.max_session_turns < 1:
            raise ConfigError("MAX_SESSION_TURNS must be at least 1.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(dict.fromkeys(missing))}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            port=self.port,
            log_level=self.log_level,
            business_name=self.business_name,
            agent_name=self.agent_name,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            llm_temperature=self.llm_temperature,
            tts_provider=self.tts_provider,
            generation_max_attempts=self.generation_max_attempts,
            generation_backoff_ms=self.generation_backoff_ms,
            max_session_turns=self.max_session_turns,
            knowledge_base_path=self.knowledge_base_path or "(bundled)",
            booking_slot_templates=list(self.booking_slot_templates),
            deepgram_key_set=bool(self.deepgram_api_key),
            groq_key_set=bool(self.groq_api_key),
            openai_key_set=bool(self.openai_api_key),
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Get a comma-separated list from environment variable."""
    raw = os.getenv(key, "")
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        port=_get_int("PORT", 8080),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Business persona
        business_name=os.getenv("BUSINESS_NAME", "Melbourne Athletic Development"),
        agent_name=os.getenv("AGENT_NAME", "Maddie"),

        # Deepgram
        deepgram_api_key=os.getenv("DEEPGRAM_API_KEY", ""),
        deepgram_listen_url=os.getenv(
            "DEEPGRAM_LISTEN_URL",
            "wss://api.deepgram.com/v1/listen?encoding=linear16&sample_rate=16000",
        ),
        deepgram_tts_url=os.getenv(
            "DEEPGRAM_TTS_URL",
            "https://api.deepgram.com/v1/speak?model=aura-asteria-en&encoding=linear16&sample_rate=16000&container=none",
        ),

        # TTS
        tts_provider=os.getenv("TTS_PROVIDER", "deepgram").strip().lower(),
        openai_tts_model=os.getenv("OPENAI_TTS_MODEL", "gpt-4o-mini-tts"),
        openai_tts_voice=os.getenv("OPENAI_TTS_VOICE", "alloy"),

        # LLM
        llm_provider=os.getenv("LLM_PROVIDER", "groq").strip().lower(),
        groq_api_key=os.getenv("GROQ_API_KEY", ""),
        groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        llm_temperature=_get_float("LLM_TEMPERATURE", 0.0),
        llm_max_tokens=_get_int("LLM_MAX_TOKENS", 256),
        validate_model_on_startup=_get_bool("VALIDATE_MODEL_ON_STARTUP", False),

        # Retry policy
        generation_max_attempts=_get_int("GENERATION_MAX_ATTEMPTS", 3),
        generation_backoff_ms=_get_int("GENERATION_BACKOFF_MS", 400),

        # Session
        max_session_turns=_get_int("MAX_SESSION_TURNS", 50),

        # Knowledge base / booking
        knowledge_base_path=os.getenv("KNOWLEDGE_BASE_PATH", ""),
        booking_slot_templates=_get_list("BOOKING_SLOT_TEMPLATES", DEFAULT_SLOT_TEMPLATES),
        booking_default_busy=_get_list("BOOKING_DEFAULT_BUSY", DEFAULT_BUSY_SLOTS),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
