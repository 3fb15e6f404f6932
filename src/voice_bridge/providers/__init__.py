"""
Realtime AI backends.

Use `create_provider()` to build the backend matching the selected model.
"""

from __future__ import annotations

from src.voice_bridge.providers.base import (
    FunctionCallRequest,
    ProviderConfigError,
    ProviderError,
    ProviderEvent,
    ProviderEventType,
    ProviderSettings,
    RealtimeProvider,
)

__all__ = [
    "FunctionCallRequest",
    "ProviderConfigError",
    "ProviderError",
    "ProviderEvent",
    "ProviderEventType",
    "ProviderSettings",
    "RealtimeProvider",
    "create_provider",
]


def create_provider(settings: ProviderSettings) -> RealtimeProvider:
    """
    Create the backend for `settings.model`.

    Raises:
        ProviderConfigError: If the model's provider is not supported
    """
    if settings.model.provider == "openai":
        from src.voice_bridge.providers.openai_realtime import OpenAIRealtimeProvider

        return OpenAIRealtimeProvider(settings)

    raise ProviderConfigError(f"Unsupported AI provider: {settings.model.provider}")
