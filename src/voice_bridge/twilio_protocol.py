"""
Twilio Media Streams WebSocket protocol codec.

Twilio sends JSON messages with events:
- connected: Initial connection
- start: Stream started, contains streamSid and callSid
- media: Audio data as base64 mu-law 8kHz, stamped with the stream's own clock (ms)
- mark: Playback marker acknowledgment
- dtmf: DTMF tone detected
- stop: Stream stopped (some gateways send `close` instead)

Outbound messages:
- media: Send audio as base64 mu-law 8kHz
- mark: Request playback acknowledgment
- clear: Clear buffered audio (for interruption)

Audio payloads stay base64 end to end: the realtime backend speaks the same
g711_ulaw encoding, so frames are relayed without decoding.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import msgspec
import structlog

logger = structlog.get_logger(__name__)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()


class TwilioEventType(str, Enum):
    """Twilio WebSocket event types."""
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    DTMF = "dtmf"
    STOP = "stop"
    CLOSE = "close"


# Events that end the call from the telephony side.
CALL_END_EVENTS = frozenset({TwilioEventType.STOP, TwilioEventType.CLOSE})


@dataclass
class TwilioStartEvent:
    """Parsed Twilio start event."""
    stream_sid: str
    call_sid: str = ""
    account_sid: str = ""
    tracks: List[str] = field(default_factory=list)
    custom_parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioStartEvent":
        """Parse from Twilio message."""
        start = message.get("start")
        if not isinstance(start, dict):
            raise ValueError("start event without a start payload")

        stream_sid = start.get("streamSid") or message.get("streamSid") or ""
        if not isinstance(stream_sid, str) or not stream_sid:
            raise ValueError("start event without a streamSid")

        call_sid = start.get("callSid") or start.get("call_sid") or ""
        custom_parameters = start.get("customParameters")
        return cls(
            stream_sid=stream_sid,
            call_sid=call_sid if isinstance(call_sid, str) else "",
            account_sid=start.get("accountSid", "") or "",
            tracks=list(start.get("tracks") or []),
            custom_parameters=custom_parameters if isinstance(custom_parameters, dict) else {},
        )


@dataclass
class TwilioMediaEvent:
    """Parsed Twilio media event."""
    stream_sid: str
    timestamp: int  # Stream clock, milliseconds since the stream started
    payload: str  # Base64 mu-law, relayed untouched
    track: str = "inbound"
    chunk: int = 0

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioMediaEvent":
        """Parse from Twilio message."""
        media = message.get("media")
        if not isinstance(media, dict):
            raise ValueError("media event without a media payload")

        # Twilio sends the timestamp as a string.
        raw_timestamp = media.get("timestamp")
        if isinstance(raw_timestamp, bool):
            raise ValueError("media timestamp must be numeric")
        try:
            timestamp = int(raw_timestamp)
        except (TypeError, ValueError):
            raise ValueError(f"media timestamp must be numeric: {raw_timestamp!r}")

        payload = media.get("payload", "")
        if not isinstance(payload, str):
            raise ValueError("media payload must be a base64 string")

        try:
            chunk = int(media.get("chunk", 0))
        except (TypeError, ValueError):
            chunk = 0

        return cls(
            stream_sid=message.get("streamSid", "") or "",
            timestamp=timestamp,
            payload=payload,
            track=media.get("track", "inbound") or "inbound",
            chunk=chunk,
        )


@dataclass
class TwilioMarkEvent:
    """Parsed Twilio mark event."""
    stream_sid: str
    name: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioMarkEvent":
        """Parse from Twilio message."""
        mark = message.get("mark") or {}
        return cls(
            stream_sid=message.get("streamSid", "") or "",
            name=mark.get("name", "") if isinstance(mark, dict) else "",
        )


@dataclass
class TwilioDTMFEvent:
    """Parsed Twilio DTMF event."""
    stream_sid: str
    digit: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioDTMFEvent":
        """Parse from Twilio message."""
        dtmf = message.get("dtmf") or {}
        return cls(
            stream_sid=message.get("streamSid", "") or "",
            digit=dtmf.get("digit", "") if isinstance(dtmf, dict) else "",
        )


def _decode_object(raw_message: Any) -> Dict[str, Any]:
    if isinstance(raw_message, str):
        raw_message = raw_message.encode("utf-8")
    try:
        message = decoder.decode(raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")
    if not isinstance(message, dict):
        raise ValueError("Invalid JSON: expected an object")
    return message


def parse_twilio_message(raw_message: Any) -> tuple[TwilioEventType, Any]:
    """
    Parse a raw Twilio WebSocket message.

    Args:
        raw_message: Raw JSON string (or bytes) from Twilio

    Returns:
        Tuple of (event_type, parsed_event)

    Raises:
        ValueError: If message cannot be parsed
    """
    message = _decode_object(raw_message)

    event_type_str = message.get("event", "")

    try:
        event_type = TwilioEventType(event_type_str)
    except ValueError:
        raise ValueError(f"Unknown event type: {event_type_str}")

    if event_type == TwilioEventType.START:
        return event_type, TwilioStartEvent.from_message(message)
    elif event_type == TwilioEventType.MEDIA:
        return event_type, TwilioMediaEvent.from_message(message)
    elif event_type == TwilioEventType.MARK:
        return event_type, TwilioMarkEvent.from_message(message)
    elif event_type == TwilioEventType.DTMF:
        return event_type, TwilioDTMFEvent.from_message(message)
    else:
        return event_type, message


def parse_observer_message(raw_message: Any) -> Optional[Dict[str, Any]]:
    """
    Parse a message from the monitoring (observer) leg.

    Returns None for anything that is not a JSON object.
    """
    try:
        return _decode_object(raw_message)
    except ValueError:
        return None


def create_media_message(stream_sid: str, payload: str) -> str:
    """
    Create a Twilio media message.

    Args:
        stream_sid: The stream SID
        payload: Base64 mu-law audio

    Returns:
        JSON string to send to Twilio
    """
    message = {
        "event": "media",
        "streamSid": stream_sid,
        "media": {
            "payload": payload
        }
    }

    return encoder.encode(message).decode("utf-8")


def create_mark_message(stream_sid: str, name: str) -> str:
    """
    Create a Twilio mark message.

    Marks are used to get acknowledgment when audio has been played.
    """
    message = {
        "event": "mark",
        "streamSid": stream_sid,
        "mark": {
            "name": name
        }
    }

    return encoder.encode(message).decode("utf-8")


def create_clear_message(stream_sid: str) -> str:
    """
    Create a Twilio clear message.

    This clears any buffered audio on Twilio's side, used for interruption.
    """
    message = {
        "event": "clear",
        "streamSid": stream_sid
    }

    return encoder.encode(message).decode("utf-8")
