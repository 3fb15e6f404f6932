"""
Common contract for realtime AI speech backends.

Every backend normalizes its wire format into one event vocabulary
(`ProviderEventType`) delivered in arrival order through a single queue, and
accepts one command vocabulary (`send_audio`, `send_function_response`,
`interrupt`, optional `truncate`, `close`).

Precise truncation is an optional capability advertised by the
`supports_truncate` class flag; callers read it once when they attach the
provider instead of probing for the method.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

import structlog

from src.voice_bridge.models import ModelConfig

logger = structlog.get_logger(__name__)


class ProviderError(Exception):
    """Raised when a realtime backend connection fails."""
    pass


class ProviderConfigError(ProviderError):
    """Raised when a backend cannot be created (missing credentials, unknown provider)."""
    pass


class ProviderEventType(str, Enum):
    OPEN = "open"
    AUDIO = "audio"
    FUNCTION_CALL = "functionCall"
    SPEECH_STARTED = "speechStarted"
    ERROR = "error"
    CLOSE = "close"


@dataclass(frozen=True)
class FunctionCallRequest:
    name: str
    arguments: str
    call_id: str


@dataclass(frozen=True)
class ProviderEvent:
    type: ProviderEventType
    payload: Optional[str] = None
    item_id: Optional[str] = None
    function_call: Optional[FunctionCallRequest] = None
    error: Optional[Any] = None
    code: Optional[int] = None
    reason: str = ""

    @classmethod
    def open(cls) -> "ProviderEvent":
        return cls(type=ProviderEventType.OPEN)

    @classmethod
    def audio(cls, payload: str, item_id: Optional[str] = None) -> "ProviderEvent":
        return cls(type=ProviderEventType.AUDIO, payload=payload, item_id=item_id or None)

    @classmethod
    def function_call_requested(cls, name: str, arguments: str, call_id: str) -> "ProviderEvent":
        return cls(
            type=ProviderEventType.FUNCTION_CALL,
            function_call=FunctionCallRequest(name=name, arguments=arguments, call_id=call_id),
        )

    @classmethod
    def speech_started(cls) -> "ProviderEvent":
        return cls(type=ProviderEventType.SPEECH_STARTED)

    @classmethod
    def failed(cls, error: Any) -> "ProviderEvent":
        return cls(type=ProviderEventType.ERROR, error=error)

    @classmethod
    def closed(cls, code: Optional[int] = None, reason: str = "") -> "ProviderEvent":
        return cls(type=ProviderEventType.CLOSE, code=code, reason=reason or "")


@dataclass(frozen=True)
class ProviderSettings:
    """Everything a backend needs for one connection attempt."""
    model: ModelConfig
    api_key: str
    instructions: str
    voice: str
    tools: list[dict] = field(default_factory=list)
    transcription_model: str = ""


class RealtimeProvider(ABC):
    """One realtime AI speech socket."""

    supports_truncate: bool = False

    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self._connected: bool = False
        self._close_emitted: bool = False
        self._events: asyncio.Queue[ProviderEvent] = asyncio.Queue()

    @property
    def name(self) -> str:
        return self.settings.model.id

    @abstractmethod
    async def connect(self) -> None:
        """Open the socket and run the backend handshake. Raises ProviderError on failure."""
        raise NotImplementedError

    @abstractmethod
    async def send_audio(self, payload: str) -> None:
        """Forward one inbound audio chunk. Silently dropped when not connected."""
        raise NotImplementedError

    @abstractmethod
    async def send_function_response(self, name: str, call_id: str, result: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    async def interrupt(self) -> None:
        raise NotImplementedError

    async def truncate(self, item_id: str, elapsed_ms: int) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support truncation")

    @abstractmethod
    async def close(self) -> None:
        """Terminate the socket. Safe to call more than once."""
        raise NotImplementedError

    def is_connected(self) -> bool:
        return self._connected

    def _emit(self, event: ProviderEvent) -> None:
        # Nothing is delivered after `close`.
        if self._close_emitted:
            return
        if event.type is ProviderEventType.CLOSE:
            self._close_emitted = True
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[ProviderEvent]:
        """Yield events in arrival order; ends after the `close` event."""
        while True:
            event = await self._events.get()
            yield event
            if event.type is ProviderEventType.CLOSE:
                return
