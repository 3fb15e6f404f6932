"""
Realtime voice bridge: Twilio Media Streams <-> realtime AI speech backend.

Public names are resolved lazily so pure modules (`barge_in`, `twilio_protocol`)
import without pulling in the server stack.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.voice_bridge.config import Config, get_config
    from src.voice_bridge.dispatcher import FunctionCallDispatcher
    from src.voice_bridge.providers import create_provider
    from src.voice_bridge.session import SessionManager

_EXPORTS = {
    "Config": "src.voice_bridge.config",
    "get_config": "src.voice_bridge.config",
    "FunctionCallDispatcher": "src.voice_bridge.dispatcher",
    "create_provider": "src.voice_bridge.providers",
    "SessionManager": "src.voice_bridge.session",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str) -> Any:
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(importlib.import_module(module), name)
