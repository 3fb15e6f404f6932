"""
OpenAI Realtime (speech-to-speech) backend.

Twilio (g711_ulaw 8kHz) <-> OpenAI Realtime, base64 payloads relayed as-is.

Outbound events go through a bounded queue drained by a send task so the
telephony receiver never blocks on OpenAI backpressure.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.voice_bridge.dispatcher import safe_json_dumps
from src.voice_bridge.providers.base import (
    ProviderConfigError,
    ProviderError,
    ProviderEvent,
    ProviderSettings,
    RealtimeProvider,
)

logger = structlog.get_logger(__name__)

OPENAI_REALTIME_URL = "wss://api.openai.com/v1/realtime"

_AUDIO_DELTA_EVENTS = ("response.audio.delta", "response.output_audio.delta")
_TRANSCRIPT_EVENTS = (
    "conversation.item.input_audio_transcription.completed",
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
)


class OpenAIRealtimeProvider(RealtimeProvider):
    supports_truncate = True

    def __init__(self, settings: ProviderSettings, *, open_timeout: float = 10.0):
        super().__init__(settings)
        self._open_timeout = open_timeout
        self._ws: Optional[Any] = None
        self._closed: bool = False
        self._recv_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._send_queue: asyncio.Queue[Optional[dict]] = asyncio.Queue(maxsize=2000)

    @property
    def url(self) -> str:
        return f"{OPENAI_REALTIME_URL}?model={self.settings.model.model}"

    async def connect(self) -> None:
        if self._ws is not None or self._closed:
            return

        api_key = (self.settings.api_key or "").strip()
        if not api_key:
            raise ProviderConfigError("OpenAI Realtime requires OPENAI_API_KEY")

        headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        try:
            ws = await websockets.connect(
                self.url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise ProviderError(f"OpenAI Realtime connection failed: {e}") from e

        if self._closed:
            # close() ran during the handshake; nobody owns this socket.
            logger.info("OpenAI Realtime closed during handshake; dropping socket")
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("OpenAI socket close failed", error=str(e))
            return

        self._ws = ws
        self._connected = True
        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._receive_loop())

        self._enqueue(self.session_update())

        logger.info(
            "OpenAI Realtime connected",
            model=self.settings.model.model,
            voice=self.settings.voice,
            tools=len(self.settings.tools),
            transcription_model=self.settings.transcription_model or None,
        )
        self._emit(ProviderEvent.open())

    def session_update(self) -> dict:
        audio_format = self.settings.model.audio_format
        session: dict[str, Any] = {
            "modalities": ["text", "audio"],
            "turn_detection": {"type": "server_vad"},
            "voice": self.settings.voice,
            "input_audio_format": audio_format.input,
            "output_audio_format": audio_format.output,
            "instructions": self.settings.instructions,
        }
        if self.settings.transcription_model:
            session["input_audio_transcription"] = {"model": self.settings.transcription_model}
        if self.settings.tools and self.settings.model.supports_tools:
            session["tools"] = list(self.settings.tools)
            session["tool_choice"] = "auto"
        return {"type": "session.update", "session": session}

    def _enqueue(self, message: dict) -> None:
        if not self._connected:
            return
        try:
            self._send_queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("OpenAI send queue full; dropping event", type=message.get("type"))

    async def send_audio(self, payload: str) -> None:
        if not payload:
            return
        self._enqueue({"type": "input_audio_buffer.append", "audio": payload})

    async def send_function_response(self, name: str, call_id: str, result: Any) -> None:
        output = result if isinstance(result, str) else safe_json_dumps(result)
        self._enqueue(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": output,
                },
            }
        )
        # Ask the model to continue (speak) after the tool result is added.
        self._enqueue({"type": "response.create"})

    async def interrupt(self) -> None:
        self._enqueue({"type": "response.cancel"})

    async def truncate(self, item_id: str, elapsed_ms: int) -> None:
        self._enqueue(
            {
                "type": "conversation.item.truncate",
                "item_id": item_id,
                "content_index": 0,
                "audio_end_ms": max(0, int(elapsed_ms)),
            }
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._connected = False

        # Unblock the send loop
        try:
            self._send_queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug("OpenAI socket close failed", error=str(e))

        for task in (self._send_task, self._recv_task):
            if task and not task.done():
                task.cancel()

        self._emit(ProviderEvent.closed(1000, "closed by bridge"))

    async def _send_loop(self) -> None:
        ws = self._ws
        if not ws:
            return

        try:
            while self._connected:
                item = await self._send_queue.get()
                if item is None:
                    break
                try:
                    await ws.send(json.dumps(item))
                except (OSError, WebSocketException) as e:
                    logger.error("OpenAI send failed", error=str(e), type=item.get("type"))
                    break
        except asyncio.CancelledError:
            pass

    async def _receive_loop(self) -> None:
        ws = self._ws
        if not ws:
            return

        code: Optional[int] = None
        reason = ""
        try:
            async for raw in ws:
                try:
                    event = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(event, dict):
                    self.handle_server_event(event)
        except asyncio.CancelledError:
            pass
        except ConnectionClosed as e:
            self._emit(ProviderEvent.failed(e))
        except (OSError, WebSocketException) as e:
            logger.error("OpenAI receive loop failed", error=str(e))
            self._emit(ProviderEvent.failed(e))
        finally:
            self._connected = False
            code = getattr(ws, "close_code", None)
            reason = getattr(ws, "close_reason", None) or ""
            logger.info("OpenAI Realtime connection closed", code=code, reason=reason)
            self._emit(ProviderEvent.closed(code, reason))

    def handle_server_event(self, event: dict) -> None:
        """Translate one OpenAI Realtime server event into the common vocabulary."""
        event_type = event.get("type")

        if event_type in _AUDIO_DELTA_EVENTS:
            delta = event.get("delta") or event.get("audio")
            if isinstance(delta, str) and delta:
                item_id = event.get("item_id")
                self._emit(ProviderEvent.audio(delta, item_id if isinstance(item_id, str) else None))
            return

        if event_type == "response.output_item.done":
            item = event.get("item") or {}
            if isinstance(item, dict) and item.get("type") == "function_call":
                name = item.get("name")
                call_id = item.get("call_id")
                if isinstance(name, str) and name and isinstance(call_id, str) and call_id:
                    arguments = item.get("arguments")
                    self._emit(
                        ProviderEvent.function_call_requested(
                            name=name,
                            arguments=arguments if isinstance(arguments, str) else "",
                            call_id=call_id,
                        )
                    )
            return

        if event_type == "input_audio_buffer.speech_started":
            self._emit(ProviderEvent.speech_started())
            return

        if event_type == "error":
            # Server-side errors (e.g. truncating an already finished item) do not end the session.
            logger.warning("OpenAI Realtime error event", details=event.get("error") or event)
            return

        if event_type in _TRANSCRIPT_EVENTS:
            transcript = event.get("transcript")
            if isinstance(transcript, str) and transcript:
                logger.info("Realtime transcript", kind=event_type, text=transcript[:200])
