"""
Realtime model catalogue.

Only OpenAI Realtime models are listed. Ids have the form `provider:model`.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class AudioFormat:
    input: str = "g711_ulaw"
    output: str = "g711_ulaw"
    sample_rate: int = 8000


@dataclass(frozen=True)
class ModelConfig:
    provider: str
    model: str
    name: str
    description: str
    audio_format: AudioFormat = AudioFormat()
    max_session_minutes: Optional[int] = None
    supports_tools: bool = True
    supports_interruption: bool = True
    supports_vad: bool = True

    @property
    def id(self) -> str:
        return f"{self.provider}:{self.model}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        return data


AVAILABLE_MODELS: Tuple[ModelConfig, ...] = (
    ModelConfig(
        provider="openai",
        model="gpt-realtime",
        name="GPT Realtime",
        description="OpenAI GPT Realtime interactive voice agent with low-latency streaming",
    ),
    ModelConfig(
        provider="openai",
        model="gpt-realtime-mini",
        name="GPT Realtime Mini",
        description="Smaller, faster GPT Realtime sibling tuned for cost efficiency",
    ),
    ModelConfig(
        provider="openai",
        model="gpt-4o-realtime-preview",
        name="GPT-4o Realtime Preview",
        description="GPT-4o realtime preview build",
    ),
    ModelConfig(
        provider="openai",
        model="gpt-4o-mini-realtime-preview",
        name="GPT-4o Mini Realtime Preview",
        description="GPT-4o Mini realtime preview build",
    ),
)

DEFAULT_MODEL: ModelConfig = AVAILABLE_MODELS[0]


def get_model_config(provider: str, model: str) -> Optional[ModelConfig]:
    for candidate in AVAILABLE_MODELS:
        if candidate.provider == provider and candidate.model == model:
            return candidate
    return None


def get_model_by_id(model_id: str) -> Optional[ModelConfig]:
    if not isinstance(model_id, str) or ":" not in model_id:
        return None
    provider, model = model_id.split(":", 1)
    return get_model_config(provider.strip(), model.strip())
