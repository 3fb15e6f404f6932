"""
Session lifecycle for the single active call.

A `Session` holds the three legs of a call:

    telephony  the Twilio media stream socket
    provider   the realtime AI backend connection
    observer   an optional monitoring socket (read-only)

`SessionManager` owns the session exclusively. Every inbound frame and every
provider event is handled on the event loop through the manager, so session
state is never touched from two places at once.

Teardown rules:
    telephony closes  -> close the provider, reset timing, keep the observer
    provider closes   -> drop the provider reference only
    observer closes   -> drop the observer reference only
When all three legs are gone the session is released.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

import structlog

from src.voice_bridge.assistant_settings import AssistantSettings
from src.voice_bridge.barge_in import (
    InterruptAction,
    PlaybackTiming,
    next_mark_name,
    observe_media_timestamp,
    on_assistant_audio,
    on_mark_acknowledged,
    plan_barge_in,
)
from src.voice_bridge.config import Config
from src.voice_bridge.dispatcher import FunctionCallDispatcher
from src.voice_bridge.providers import (
    ProviderConfigError,
    ProviderError,
    ProviderEvent,
    ProviderEventType,
    ProviderSettings,
    RealtimeProvider,
    create_provider,
)
from src.voice_bridge.restaurant_tools import RestaurantBackend
from src.voice_bridge.tool_registry import ToolContext
from src.voice_bridge.twilio_protocol import (
    CALL_END_EVENTS,
    TwilioEventType,
    TwilioMarkEvent,
    TwilioMediaEvent,
    TwilioStartEvent,
    create_clear_message,
    create_mark_message,
    create_media_message,
    parse_observer_message,
    parse_twilio_message,
)

logger = structlog.get_logger(__name__)


class CallLeg(Protocol):
    """A socket the bridge writes text frames to (FastAPI's WebSocket fits)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


ProviderFactory = Callable[[ProviderSettings], RealtimeProvider]


@dataclass
class Session:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    telephony: Optional[CallLeg] = None
    observer: Optional[CallLeg] = None
    provider: Optional[RealtimeProvider] = None
    # Resolved once when the provider is attached.
    provider_supports_truncate: bool = False
    stream_id: Optional[str] = None
    call_sid: Optional[str] = None
    timing: PlaybackTiming = field(default_factory=PlaybackTiming)
    # Last `session.update` from the observer; stored, never applied.
    pending_session_config: Optional[Dict[str, Any]] = None
    function_tasks: Set[asyncio.Task] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return self.telephony is None and self.provider is None and self.observer is None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "streamId": self.stream_id,
            "callSid": self.call_sid,
            "telephony": self.telephony is not None,
            "observer": self.observer is not None,
            "provider": self.provider.name if self.provider is not None else None,
            "providerConnected": bool(self.provider and self.provider.is_connected()),
            "playback": self.timing.state.value,
            "latestMediaTimestamp": self.timing.latest_media_timestamp,
            "pendingSessionConfig": self.pending_session_config,
        }


async def _close_leg(leg: CallLeg, *, code: int = 1000) -> None:
    try:
        await leg.close(code=code)
    except Exception as e:
        logger.debug("Leg close failed", error=str(e))


class SessionManager:
    def __init__(
        self,
        *,
        config: Config,
        settings: AssistantSettings,
        dispatcher: FunctionCallDispatcher,
        backend: RestaurantBackend,
        provider_factory: ProviderFactory = create_provider,
    ):
        self.config = config
        self.settings = settings
        self.dispatcher = dispatcher
        self.backend = backend
        self.provider_factory = provider_factory
        self.session: Optional[Session] = None
        self._pump_tasks: Set[asyncio.Task] = set()

        self._telephony_handlers: Dict[TwilioEventType, Callable[[Session, Any], Awaitable[None]]] = {
            TwilioEventType.START: self._on_start,
            TwilioEventType.MEDIA: self._on_media,
            TwilioEventType.MARK: self._on_mark,
            **{kind: self._on_call_end for kind in CALL_END_EVENTS},
        }
        self._provider_handlers: Dict[
            ProviderEventType, Callable[[Session, RealtimeProvider, ProviderEvent], Awaitable[None]]
        ] = {
            ProviderEventType.OPEN: self._on_provider_open,
            ProviderEventType.AUDIO: self._on_provider_audio,
            ProviderEventType.SPEECH_STARTED: self._on_speech_started,
            ProviderEventType.FUNCTION_CALL: self._on_function_call,
            ProviderEventType.ERROR: self._on_provider_error,
            ProviderEventType.CLOSE: self._on_provider_close,
        }

    def _ensure_session(self) -> Session:
        if self.session is None:
            self.session = Session()
            logger.info("Session created", session_id=self.session.session_id)
        return self.session

    def _maybe_release(self) -> None:
        session = self.session
        if session is not None and session.is_empty:
            logger.info("Session released", session_id=session.session_id)
            self.session = None

    # ------------------------------------------------------------------
    # Telephony leg
    # ------------------------------------------------------------------

    async def attach_telephony(self, leg: CallLeg) -> Session:
        """Attach a new call; any call already attached is closed first."""
        current = self.session
        if current is not None and current.telephony is not None and current.telephony is not leg:
            prior = current.telephony
            logger.warning("Replacing active telephony leg", session_id=current.session_id)
            await self.detach_telephony(prior)
            await _close_leg(prior)

        session = self._ensure_session()
        session.telephony = leg
        logger.info("Telephony leg attached", session_id=session.session_id)
        return session

    async def handle_telephony_message(self, leg: CallLeg, raw_message: Any) -> None:
        session = self.session
        if session is None or session.telephony is not leg:
            return

        try:
            event_type, event = parse_twilio_message(raw_message)
        except ValueError as e:
            logger.debug("Dropping malformed telephony frame", error=str(e))
            return

        handler = self._telephony_handlers.get(event_type)
        if handler is not None:
            await handler(session, event)

    async def detach_telephony(self, leg: Optional[CallLeg] = None) -> None:
        """
        Tear down the call side of the session. Safe to call repeatedly.

        With `leg`, only acts if that leg is still the attached one.
        """
        session = self.session
        if session is None:
            return
        if leg is not None and session.telephony is not leg:
            return

        had_call = session.telephony is not None
        provider = session.provider
        session.telephony = None
        session.provider = None
        session.provider_supports_truncate = False
        session.stream_id = None
        session.call_sid = None
        session.timing.reset()

        if provider is not None:
            await provider.close()
        if had_call:
            logger.info("Telephony leg detached", session_id=session.session_id)
        self._maybe_release()

    async def _send_to_telephony(self, session: Session, message: str) -> bool:
        leg = session.telephony
        if leg is None:
            return False
        try:
            await leg.send_text(message)
        except Exception as e:
            logger.warning("Failed to send to telephony leg", session_id=session.session_id, error=str(e))
            return False
        return True

    async def _on_start(self, session: Session, event: TwilioStartEvent) -> None:
        stream_id = event.stream_sid
        session.stream_id = stream_id
        session.call_sid = event.call_sid or None
        session.timing.reset()

        self.backend.clear_session(stream_id)
        self.backend.clear_cart(stream_id)
        self.backend.link_call(stream_id, session.call_sid)
        self.backend.set_active_session(stream_id)

        logger.info(
            "Call started",
            session_id=session.session_id,
            stream_sid=stream_id,
            call_sid=session.call_sid,
        )
        await self._connect_provider(session)

    async def _on_media(self, session: Session, event: TwilioMediaEvent) -> None:
        observe_media_timestamp(session.timing, event.timestamp)
        provider = session.provider
        if provider is not None and provider.is_connected():
            await provider.send_audio(event.payload)

    async def _on_mark(self, session: Session, event: TwilioMarkEvent) -> None:
        if on_mark_acknowledged(session.timing, event.name):
            logger.debug("Assistant utterance played out", session_id=session.session_id, mark=event.name)

    async def _on_call_end(self, session: Session, event: Any) -> None:
        logger.info("Call ended by telephony", session_id=session.session_id, stream_sid=session.stream_id)
        await self.detach_telephony(session.telephony)

    # ------------------------------------------------------------------
    # Provider leg
    # ------------------------------------------------------------------

    def _provider_settings(self) -> ProviderSettings:
        snapshot = self.settings.snapshot()
        return ProviderSettings(
            model=snapshot.model,
            api_key=self.config.openai_api_key,
            instructions=snapshot.instructions,
            voice=snapshot.voice,
            tools=self.dispatcher.tool_schemas(),
            transcription_model=self.config.openai_realtime_transcription_model,
        )

    async def _connect_provider(self, session: Session) -> None:
        if session.telephony is None or not session.stream_id:
            return
        if session.provider is not None:
            return

        if not (self.config.openai_api_key or "").strip():
            logger.error("Missing API key for AI provider; call continues without assistant",
                         session_id=session.session_id)
            return

        try:
            provider = self.provider_factory(self._provider_settings())
        except ProviderConfigError as e:
            logger.error("AI provider unavailable", session_id=session.session_id, error=str(e))
            return

        session.provider = provider
        session.provider_supports_truncate = provider.supports_truncate
        pump = asyncio.create_task(self._pump_provider_events(session, provider))
        self._pump_tasks.add(pump)
        pump.add_done_callback(self._pump_tasks.discard)

        try:
            await provider.connect()
        except ProviderError as e:
            logger.error("AI provider connection failed", session_id=session.session_id,
                         provider=provider.name, error=str(e))
            if session.provider is provider:
                session.provider = None
                session.provider_supports_truncate = False
            await provider.close()
            self._maybe_release()
            return

        # The call may have ended while the handshake was in flight.
        if session.provider is not provider or self.session is not session:
            await provider.close()

    async def _pump_provider_events(self, session: Session, provider: RealtimeProvider) -> None:
        async for event in provider.events():
            await self.handle_provider_event(session, provider, event)

    async def handle_provider_event(
        self,
        session: Session,
        provider: RealtimeProvider,
        event: ProviderEvent,
    ) -> None:
        # Events from a replaced or torn-down provider only matter for cleanup.
        if session.provider is not provider and event.type not in (
            ProviderEventType.ERROR,
            ProviderEventType.CLOSE,
        ):
            return
        handler = self._provider_handlers.get(event.type)
        if handler is not None:
            await handler(session, provider, event)

    async def _on_provider_open(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        logger.info("AI provider connected", session_id=session.session_id, provider=provider.name)

    async def _on_provider_audio(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        stream_id = session.stream_id
        if session.telephony is None or not stream_id or not event.payload:
            return

        if on_assistant_audio(session.timing, event.item_id):
            logger.debug(
                "Assistant utterance started",
                session_id=session.session_id,
                item_id=session.timing.last_assistant_item_id,
                start_ms=session.timing.response_start_timestamp,
            )

        await self._send_to_telephony(session, create_media_message(stream_id, event.payload))
        await self._send_to_telephony(session, create_mark_message(stream_id, next_mark_name(session.timing)))

    async def _on_speech_started(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        decision = plan_barge_in(session.timing, supports_truncate=session.provider_supports_truncate)
        if decision is None:
            return

        logger.info(
            "Barge-in",
            session_id=session.session_id,
            action=decision.action.value,
            item_id=decision.item_id,
            elapsed_ms=decision.elapsed_ms,
        )
        if decision.action is InterruptAction.TRUNCATE and decision.item_id:
            await provider.truncate(decision.item_id, decision.elapsed_ms)
        else:
            await provider.interrupt()

        if session.stream_id:
            await self._send_to_telephony(session, create_clear_message(session.stream_id))
        session.timing.end_utterance()

    async def _on_function_call(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        call = event.function_call
        if call is None:
            return
        context = ToolContext(session_id=session.stream_id or "")
        task = asyncio.create_task(self._run_function_call(session, provider, call.name, call.arguments,
                                                           call.call_id, context))
        session.function_tasks.add(task)
        task.add_done_callback(session.function_tasks.discard)

    async def _run_function_call(
        self,
        session: Session,
        provider: RealtimeProvider,
        name: str,
        arguments: str,
        call_id: str,
        context: ToolContext,
    ) -> None:
        logger.info("Function call requested", session_id=session.session_id, function=name, call_id=call_id)
        result = await self.dispatcher.dispatch(name, arguments, context=context)

        if session.provider is not provider or not provider.is_connected():
            logger.info("Discarding function result; provider gone", function=name, call_id=call_id)
            return
        await provider.send_function_response(name, call_id, result)

    async def _on_provider_error(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        logger.error("AI provider error", session_id=session.session_id, provider=provider.name,
                     error=str(event.error))
        await self._drop_provider(session, provider)

    async def _on_provider_close(self, session: Session, provider: RealtimeProvider, event: ProviderEvent) -> None:
        logger.info("AI provider closed", session_id=session.session_id, provider=provider.name,
                    code=event.code, reason=event.reason)
        await self._drop_provider(session, provider)

    async def _drop_provider(self, session: Session, provider: RealtimeProvider) -> None:
        if session.provider is not provider:
            return
        session.provider = None
        session.provider_supports_truncate = False
        await provider.close()
        if self.session is session:
            self._maybe_release()

    # ------------------------------------------------------------------
    # Observer leg
    # ------------------------------------------------------------------

    async def attach_observer(self, leg: CallLeg) -> Session:
        session = self._ensure_session()
        prior = session.observer
        session.observer = leg
        if prior is not None and prior is not leg:
            logger.info("Replacing observer leg", session_id=session.session_id)
            await _close_leg(prior)
        logger.info("Observer leg attached", session_id=session.session_id)
        return session

    async def handle_observer_message(self, leg: CallLeg, raw_message: Any) -> None:
        session = self.session
        if session is None or session.observer is not leg:
            return
        message = parse_observer_message(raw_message)
        if message is None:
            return
        if message.get("type") == "session.update" and isinstance(message.get("session"), dict):
            session.pending_session_config = message["session"]
            logger.info("Observer session config stored", session_id=session.session_id)

    async def detach_observer(self, leg: Optional[CallLeg] = None) -> None:
        session = self.session
        if session is None:
            return
        if leg is not None and session.observer is not leg:
            return
        if session.observer is not None:
            session.observer = None
            logger.info("Observer leg detached", session_id=session.session_id)
        self._maybe_release()

    async def shutdown(self) -> None:
        """Close every leg; used on server shutdown."""
        session = self.session
        if session is None:
            return
        telephony = session.telephony
        observer = session.observer
        await self.detach_telephony()
        await self.detach_observer()
        for leg in (telephony, observer):
            if leg is not None:
                await _close_leg(leg)
