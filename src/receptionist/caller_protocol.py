"""
Caller-facing WebSocket protocol.

Inbound: binary frames of raw PCM16 mono 16kHz audio (any frame size).

Outbound JSON messages, one per text frame, discriminated by `type`:
- session_started: sessionId, sent exactly once after connect
- transcript: role, text, sessionId, plus lead when it changed
- intent: intent label and the agent that will answer
- agent_text: the full reply so far (not the delta)
- agent_complete: final reply text and the lead snapshot
- error: a caller-safe message

Outbound binary frames carry synthesized PCM16 mono 16kHz audio.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import msgspec
import structlog

logger = structlog.get_logger(__name__)

# Create global msgspec encoder
encoder = msgspec.json.Encoder()


class CallerEventType(str, Enum):
    """Outbound control message types."""
    SESSION_STARTED = "session_started"
    TRANSCRIPT = "transcript"
    INTENT = "intent"
    AGENT_TEXT = "agent_text"
    AGENT_COMPLETE = "agent_complete"
    ERROR = "error"


def _encode(message: Dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")


def create_session_started_message(session_id: str) -> str:
    return _encode({"type": CallerEventType.SESSION_STARTED.value, "sessionId": session_id})


def create_transcript_message(
    role: str,
    text: str,
    session_id: str,
    lead: Optional[Dict[str, Optional[str]]] = None,
) -> str:
    """
    Create a transcript message.

    `lead` is only included when the utterance changed it.
    """
    message: Dict[str, Any] = {
        "type": CallerEventType.TRANSCRIPT.value,
        "role": role,
        "text": text,
        "sessionId": session_id,
    }
    if lead is not None:
        message["lead"] = lead
    return _encode(message)


def create_intent_message(intent: str, agent: str) -> str:
    return _encode({"type": CallerEventType.INTENT.value, "intent": intent, "agent": agent})


def create_agent_text_message(text: str) -> str:
    return _encode({"type": CallerEventType.AGENT_TEXT.value, "text": text})


def create_agent_complete_message(text: str, lead: Dict[str, Optional[str]]) -> str:
    return _encode({"type": CallerEventType.AGENT_COMPLETE.value, "text": text, "lead": lead})


def create_error_message(message: str) -> str:
    return _encode({"type": CallerEventType.ERROR.value, "message": message})


class CallerChannel:
    """
    Outbound half of one caller connection.

    Wraps the transport's send callables. Once closed (explicitly, or because
    a send failed) every further send is skipped.
    """

    def __init__(
        self,
        send_text: Callable[[str], Awaitable[None]],
        send_bytes: Callable[[bytes], Awaitable[None]],
    ):
        self._send_text = send_text
        self._send_bytes = send_bytes
        self._open = True
        self.messages_sent = 0
        self.audio_bytes_sent = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        self._open = False

    async def send_event(self, message: str) -> bool:
        if not self._open:
            return False
        try:
            await self._send_text(message)
        except Exception as e:
            logger.warning("Caller send failed, closing channel", error_type=type(e).__name__, error=str(e))
            self._open = False
            return False
        self.messages_sent += 1
        return True

    async def send_audio(self, audio: bytes) -> bool:
        if not self._open or not audio:
            return False
        try:
            await self._send_bytes(audio)
        except Exception as e:
            logger.warning("Caller audio send failed, closing channel", error_type=type(e).__name__, error=str(e))
            self._open = False
            return False
        self.audio_bytes_sent += len(audio)
        return True
