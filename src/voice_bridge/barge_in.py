"""
Barge-in (caller interrupt) state machine over the playback timing of a call.

All arithmetic uses the telephony stream clock carried by inbound media frames,
never wall time. The telephony leg plays audio slightly behind generation, so
`latest_media_timestamp - response_start_timestamp` is the best estimate of
how much of the assistant's current utterance the caller actually heard.

States:
    IDLE      no assistant utterance in flight
    SPEAKING  utterance in flight (`response_start_timestamp` is set)

The functions here only read and mutate a `PlaybackTiming`; sending frames and
calling the provider is left to the session layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PlaybackState(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


class InterruptAction(str, Enum):
    TRUNCATE = "truncate"
    INTERRUPT = "interrupt"


@dataclass
class PlaybackTiming:
    latest_media_timestamp: int = 0
    response_start_timestamp: Optional[int] = None
    last_assistant_item_id: Optional[str] = None
    # Name of the newest mark sent to the telephony leg for the current utterance.
    last_mark_name: Optional[str] = None
    mark_sequence: int = 0
    # Item whose queued audio played out before the item finished; more audio
    # for it continues the same utterance from its original start.
    played_out_item_id: Optional[str] = None
    played_out_start_timestamp: Optional[int] = None

    @property
    def state(self) -> PlaybackState:
        if self.response_start_timestamp is None:
            return PlaybackState.IDLE
        return PlaybackState.SPEAKING

    def reset(self) -> None:
        self.latest_media_timestamp = 0
        self.end_utterance()
        self.mark_sequence = 0

    def end_utterance(self) -> None:
        self.response_start_timestamp = None
        self.last_assistant_item_id = None
        self.last_mark_name = None
        self.played_out_item_id = None
        self.played_out_start_timestamp = None

    def pause_utterance(self) -> None:
        """Go IDLE but remember the item so its next chunk resumes it."""
        item_id = self.last_assistant_item_id
        start = self.response_start_timestamp
        self.end_utterance()
        if item_id and start is not None:
            self.played_out_item_id = item_id
            self.played_out_start_timestamp = start


@dataclass(frozen=True)
class BargeInDecision:
    action: InterruptAction
    elapsed_ms: int
    item_id: Optional[str] = None


def compute_elapsed_ms(latest_media_timestamp: int, response_start_timestamp: int) -> int:
    """Milliseconds of the utterance heard so far; never negative."""
    return max(0, latest_media_timestamp - response_start_timestamp)


def observe_media_timestamp(timing: PlaybackTiming, timestamp: int) -> int:
    """
    Record the stream clock from an inbound media frame.

    The clock never moves backwards: an out-of-order or regressing timestamp
    leaves the recorded value untouched.
    """
    if timestamp > timing.latest_media_timestamp:
        timing.latest_media_timestamp = timestamp
    return timing.latest_media_timestamp


def on_assistant_audio(timing: PlaybackTiming, item_id: Optional[str] = None) -> bool:
    """
    Account for one assistant audio chunk being relayed to the caller.

    Returns True when the chunk starts a new utterance (IDLE -> SPEAKING).
    A chunk for an item that already played out up to now, or one without an
    item id, resumes that item with its original start and returns False.
    """
    started = False
    if timing.response_start_timestamp is None:
        resumed_id = timing.played_out_item_id
        resumed_start = timing.played_out_start_timestamp
        timing.played_out_item_id = None
        timing.played_out_start_timestamp = None
        if resumed_id and resumed_start is not None and item_id in (None, resumed_id):
            timing.response_start_timestamp = resumed_start
            timing.last_assistant_item_id = resumed_id
        else:
            timing.response_start_timestamp = timing.latest_media_timestamp
            started = True
    if item_id:
        timing.last_assistant_item_id = item_id
    return started


def next_mark_name(timing: PlaybackTiming) -> str:
    timing.mark_sequence += 1
    name = f"{timing.last_assistant_item_id or 'audio'}:{timing.mark_sequence}"
    timing.last_mark_name = name
    return name


def on_mark_acknowledged(timing: PlaybackTiming, name: str) -> bool:
    """
    Handle a playback mark echoed back by the telephony leg.

    When the newest mark comes back, everything relayed so far has been played
    and the utterance has ended naturally. Returns True on that transition.
    Stale marks (from before a barge-in) are ignored.
    """
    if timing.state is PlaybackState.IDLE or not name or name != timing.last_mark_name:
        return False
    timing.pause_utterance()
    return True


def plan_barge_in(timing: PlaybackTiming, *, supports_truncate: bool) -> Optional[BargeInDecision]:
    """
    Decide how to cut the in-flight utterance when the caller starts talking.

    Returns None while IDLE. Precise truncation needs both the capability and a
    known speech unit id; otherwise the generic interrupt is used.
    Does not mutate `timing`.
    """
    if timing.response_start_timestamp is None:
        return None

    elapsed_ms = compute_elapsed_ms(timing.latest_media_timestamp, timing.response_start_timestamp)
    item_id = timing.last_assistant_item_id
    if supports_truncate and item_id:
        return BargeInDecision(action=InterruptAction.TRUNCATE, elapsed_ms=elapsed_ms, item_id=item_id)
    return BargeInDecision(action=InterruptAction.INTERRUPT, elapsed_ms=elapsed_ms, item_id=item_id)
