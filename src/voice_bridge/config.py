"""
Configuration management for the realtime voice bridge.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    public_host: str
    port: int = 8082
    log_level: str = "INFO"

    # OpenAI Realtime
    # - openai_realtime_model is a catalogue id ("provider:model"), see models.py
    openai_api_key: str = ""
    openai_realtime_model: str = "openai:gpt-realtime"
    openai_realtime_voice: str = "ash"
    openai_realtime_instructions_file: str = "prompts/restaurant_system_prompt.txt"
    openai_realtime_transcription_model: str = "whisper-1"

    # Twilio (SMS confirmations)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_messaging_from: str = ""
    twilio_messaging_service_sid: str = ""

    # SMS formatting
    sms_show_currency: bool = False
    sms_currency_label: str = "USD"
    sms_ascii_only: bool = False

    # Restaurant
    menu_data_path: str = ""
    agent_name: str = "Simple Pizza Assistant"
    restaurant_name: str = "Simple Pizza"

    @property
    def call_ws_url(self) -> str:
        """Get the telephony WebSocket URL for Twilio."""
        return f"wss://{self.public_host}/call"

    @property
    def base_url(self) -> str:
        """Get the base HTTP URL."""
        return f"https://{self.public_host}"

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        from src.voice_bridge.models import get_model_by_id

        missing = []

        if not self.public_host:
            missing.append("PUBLIC_HOST")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

        if get_model_by_id(self.openai_realtime_model) is None:
            raise ConfigError(
                f"Invalid OPENAI_REALTIME_MODEL '{self.openai_realtime_model}'. "
                "Expected an id like 'openai:gpt-realtime'."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            public_host=self.public_host,
            port=self.port,
            log_level=self.log_level,
            realtime_model=self.openai_realtime_model,
            realtime_voice=self.openai_realtime_voice,
            instructions_file=self.openai_realtime_instructions_file or None,
            transcription_model=self.openai_realtime_transcription_model or None,
            menu_data_path=self.menu_data_path or None,
            restaurant_name=self.restaurant_name,
            twilio_sid_prefix=self.twilio_account_sid[:6] + "..." if self.twilio_account_sid else "NOT SET",
            sms_sender_set=bool(self.twilio_messaging_from or self.twilio_messaging_service_sid),
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


def _normalize_model_id(raw: str) -> str:
    value = (raw or "").strip()
    if value and ":" not in value:
        # Bare model names are accepted for the only provider we ship.
        return f"openai:{value}"
    return value


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    return Config(
        # Server
        public_host=os.getenv("PUBLIC_HOST", ""),
        port=_get_int("PORT", 8082),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # OpenAI Realtime
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_realtime_model=_normalize_model_id(
            os.getenv("OPENAI_REALTIME_MODEL", "openai:gpt-realtime")
        ),
        openai_realtime_voice=os.getenv("OPENAI_REALTIME_VOICE", "ash").strip().lower(),
        openai_realtime_instructions_file=os.getenv(
            "OPENAI_REALTIME_INSTRUCTIONS_FILE", "prompts/restaurant_system_prompt.txt"
        ),
        openai_realtime_transcription_model=os.getenv("OPENAI_REALTIME_TRANSCRIPTION_MODEL", "whisper-1"),

        # Twilio
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        twilio_messaging_from=os.getenv("TWILIO_MESSAGING_FROM", ""),
        twilio_messaging_service_sid=os.getenv("TWILIO_MESSAGING_SERVICE_SID", ""),

        # SMS
        sms_show_currency=_get_bool("SMS_SHOW_CURRENCY", False),
        sms_currency_label=os.getenv("SMS_CURRENCY_LABEL", "USD"),
        sms_ascii_only=_get_bool("SMS_ASCII_ONLY", False),

        # Restaurant
        menu_data_path=os.getenv("MENU_DATA_PATH", ""),
        agent_name=os.getenv("AGENT_NAME", "Simple Pizza Assistant"),
        restaurant_name=os.getenv("RESTAURANT_NAME", "Simple Pizza"),
    )


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
