"""
Relates a Twilio CallSid, its participants and the media stream (session) id.

The TwiML webhook knows the caller's number; the media stream only knows its
CallSid. Linking the two lets order confirmations fall back to the caller's
number and the dialled Twilio number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class CallParticipants:
    from_number: Optional[str] = None
    to_number: Optional[str] = None


class CallContextStore:
    def __init__(self) -> None:
        self._participants_by_call_sid: Dict[str, CallParticipants] = {}
        self._call_sid_by_session_id: Dict[str, str] = {}

    def set_participants(self, call_sid: str, from_number: Optional[str], to_number: Optional[str]) -> None:
        if not call_sid:
            return
        self._participants_by_call_sid[call_sid] = CallParticipants(from_number=from_number, to_number=to_number)

    def link_session(self, session_id: Optional[str], call_sid: Optional[str]) -> None:
        if not session_id or not call_sid:
            return
        self._call_sid_by_session_id[session_id] = call_sid

    def _participants(self, session_id: str) -> Optional[CallParticipants]:
        call_sid = self._call_sid_by_session_id.get(session_id)
        if not call_sid:
            return None
        return self._participants_by_call_sid.get(call_sid)

    def caller_for_session(self, session_id: str) -> Optional[str]:
        participants = self._participants(session_id)
        return participants.from_number if participants else None

    def twilio_number_for_session(self, session_id: str) -> Optional[str]:
        participants = self._participants(session_id)
        return participants.to_number if participants else None

    def clear_session(self, session_id: str) -> None:
        call_sid = self._call_sid_by_session_id.pop(session_id, None)
        if call_sid:
            self._participants_by_call_sid.pop(call_sid, None)
