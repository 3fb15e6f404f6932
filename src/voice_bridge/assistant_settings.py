"""
Runtime-adjustable assistant settings (model, voice, system prompt).

Changes made through the admin endpoints apply to the next provider connection;
a live call keeps the snapshot it connected with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import structlog

from src.voice_bridge.config import Config, get_config
from src.voice_bridge.models import DEFAULT_MODEL, ModelConfig, get_model_by_id
from src.voice_bridge.prompt_utils import resolve_prompt

logger = structlog.get_logger(__name__)

AVAILABLE_VOICES: Tuple[str, ...] = ("ash", "ballad", "coral", "sage", "verse")
DEFAULT_VOICE = "ash"


def _fallback_instructions(config: Config) -> str:
    return (
        f"You are {config.agent_name}, a friendly voice assistant for {config.restaurant_name}. "
        "Help callers browse the menu, manage their cart and place orders. "
        "Always call the available functions for menu, cart and order data. "
        "Keep responses short and phone-friendly."
    )


@dataclass(frozen=True)
class SettingsSnapshot:
    model: ModelConfig
    voice: str
    instructions: str


class AssistantSettings:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

        self._model: ModelConfig = get_model_by_id(self.config.openai_realtime_model) or DEFAULT_MODEL

        voice = (self.config.openai_realtime_voice or "").strip().lower()
        self._voice: str = voice if voice in AVAILABLE_VOICES else DEFAULT_VOICE

        self.default_prompt: str = resolve_prompt(
            config=self.config,
            inline_text="",
            file_path=self.config.openai_realtime_instructions_file,
        ) or _fallback_instructions(self.config)
        self._system_prompt: str = self.default_prompt

    @property
    def model(self) -> ModelConfig:
        return self._model

    @property
    def voice(self) -> str:
        return self._voice

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def set_model(self, model_id: str) -> bool:
        model = get_model_by_id(model_id)
        if model is None:
            return False
        self._model = model
        logger.info("Model updated", model_id=model.id, name=model.name)
        return True

    def set_voice(self, voice: str) -> bool:
        candidate = (voice or "").strip().lower()
        if candidate not in AVAILABLE_VOICES:
            return False
        self._voice = candidate
        logger.info("Voice updated", voice=candidate)
        return True

    def set_system_prompt(self, prompt: str) -> bool:
        if not isinstance(prompt, str) or not prompt.strip():
            return False
        self._system_prompt = prompt.strip()
        logger.info("System prompt updated", chars=len(self._system_prompt))
        return True

    def reset_system_prompt(self) -> None:
        self._system_prompt = self.default_prompt

    def snapshot(self) -> SettingsSnapshot:
        return SettingsSnapshot(model=self._model, voice=self._voice, instructions=self._system_prompt)
