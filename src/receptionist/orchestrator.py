"""
Generation/synthesis orchestration for one reply.

For every text fragment the generator yields:
1. append it to the running reply and push the full-so-far text to the caller
2. synthesize that fragment (not the aggregate) and relay its audio in order

Fragments are handled strictly in arrival order, so text and audio reach the
caller in generation order. The outcome of a reply is always one of:
- success: agent turn stored, completion event with lead snapshot
- no fragments: one "still with you" text event, nothing else
- generation failure: scripted fallback spoken, stored, and completed
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Protocol, Tuple

import structlog

from src.receptionist.audio import get_audio_duration_ms
from src.receptionist.caller_protocol import (
    CallerChannel,
    create_agent_complete_message,
    create_agent_text_message,
)
from src.receptionist.session import CallSession, ConversationRole
from src.receptionist.tts_types import TTSChunk

logger = structlog.get_logger(__name__)

NO_OUTPUT_TEXT = "Still with you - let me rephrase that in a second."
FALLBACK_TEXT = "I'm reconnecting to our assistant. Could you please repeat that while I reset?"


class TextGenerator(Protocol):
    def generate_streaming(self, prompt: str) -> AsyncGenerator[str, None]: ...


class Synthesizer(Protocol):
    def synthesize_streaming(self, text: str) -> AsyncGenerator[TTSChunk, None]: ...


@dataclass
class ReplyStats:
    """Timing and shape of the most recent reply."""
    fragments: int = 0
    first_fragment_ms: float = 0.0
    first_audio_ms: float = 0.0
    total_ms: float = 0.0
    audio_bytes: int = 0
    audio_ms: float = 0.0
    used_fallback: bool = False


class ResponseOrchestrator:
    """Streams one generated reply to the caller as text and audio."""

    def __init__(self, llm: TextGenerator, tts: Synthesizer, channel: CallerChannel):
        self._llm = llm
        self._tts = tts
        self._channel = channel
        self.last_stats = ReplyStats()

    async def respond(self, prompt: str, session: CallSession) -> Tuple[bool, str]:
        """
        Generate, relay and record a reply.

        Returns:
            (ok, text): ok is False for the no-output and fallback paths. text is
            the stored agent turn, or "" when nothing was stored.
        """
        stats = ReplyStats()
        self.last_stats = stats
        started = time.time()
        aggregated = ""

        try:
            async for fragment in self._llm.generate_streaming(prompt):
                if not fragment or not fragment.strip():
                    continue

                stats.fragments += 1
                if stats.fragments == 1:
                    stats.first_fragment_ms = (time.time() - started) * 1000

                aggregated += fragment
                await self._channel.send_event(create_agent_text_message(aggregated))
                await self._relay_synthesis(fragment, stats, started)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            stats.total_ms = (time.time() - started) * 1000
            return await self._respond_with_fallback(session, e, stats, started)

        stats.total_ms = (time.time() - started) * 1000

        if stats.fragments == 0:
            logger.warning("Generation returned no text output", session_id=session.id)
            await self._channel.send_event(create_agent_text_message(NO_OUTPUT_TEXT))
            return False, ""

        final_text = aggregated.strip()
        session.add_turn(ConversationRole.AGENT, final_text)
        await self._channel.send_event(
            create_agent_complete_message(final_text, session.lead_snapshot())
        )
        return True, final_text

    async def _respond_with_fallback(
        self,
        session: CallSession,
        error: BaseException,
        stats: ReplyStats,
        started: float,
    ) -> Tuple[bool, str]:
        logger.error(
            "Generation failed, speaking fallback",
            session_id=session.id,
            error_type=type(error).__name__,
            error=str(error),
            attempts=getattr(error, "attempts", None),
            fragments_before_failure=stats.fragments,
        )
        stats.used_fallback = True

        await self._channel.send_event(create_agent_text_message(FALLBACK_TEXT))
        await self._relay_synthesis(FALLBACK_TEXT, stats, started)

        session.add_turn(ConversationRole.AGENT, FALLBACK_TEXT)
        await self._channel.send_event(
            create_agent_complete_message(FALLBACK_TEXT, session.lead_snapshot())
        )
        return False, FALLBACK_TEXT

    async def _relay_synthesis(self, text: str, stats: ReplyStats, started: float) -> None:
        """Relay one fragment's audio until its synthesis ends or the caller leaves."""
        if not self._channel.is_open:
            return

        gen = self._tts.synthesize_streaming(text)
        try:
            async for chunk in gen:
                if not self._channel.is_open:
                    break
                if not chunk.audio_bytes:
                    continue
                if not stats.first_audio_ms:
                    stats.first_audio_ms = (time.time() - started) * 1000
                if await self._channel.send_audio(chunk.audio_bytes):
                    stats.audio_bytes += len(chunk.audio_bytes)
                    stats.audio_ms += get_audio_duration_ms(chunk.audio_bytes)
        finally:
            await _aclose(gen)


async def _aclose(gen: Any) -> None:
    aclose: Optional[Any] = getattr(gen, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        # Generator already running/closed.
        pass
