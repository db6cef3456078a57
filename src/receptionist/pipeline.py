"""Voice Pipeline Orchestration.

Constructs and manages the per-call pipeline:
caller PCM16 16kHz -> relay buffer -> STT (linear16/16000) -> (final transcript)
turn queue -> lead merge -> intent -> agent prompt -> LLM stream -> TTS per
fragment -> caller

Every session mutation happens inside the turn queue's single worker, so one
call never processes two utterances at once.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from src.receptionist.agents import AgentContext, AgentRouter, BookingAgent, EnquiryAgent
from src.receptionist.audio import coerce_frame
from src.receptionist.audio_relay import AudioRelayBuffer
from src.receptionist.availability import AvailabilityCalendar
from src.receptionist.caller_protocol import (
    CallerChannel,
    create_error_message,
    create_intent_message,
    create_session_started_message,
    create_transcript_message,
)
from src.receptionist.config import Config, get_config
from src.receptionist.extract import LeadExtractor
from src.receptionist.intent import IntentClassifier
from src.receptionist.knowledge_base import KnowledgeBase
from src.receptionist.lead_capture import Extractor, LeadExtractionCache
from src.receptionist.llm import create_llm
from src.receptionist.orchestrator import ResponseOrchestrator, Synthesizer, TextGenerator
from src.receptionist.session import CallSession, ConversationRole
from src.receptionist.stt import DeepgramSTT
from src.receptionist.tts import TTSManager
from src.receptionist.turn_queue import TurnQueue

logger = structlog.get_logger(__name__)

ERROR_TEXT = "I hit a snag responding. Mind trying that once more?"

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
_LOG_PHONE_RE = re.compile(r"\+?\d[\d\s\-().]{6,}\d")


def _redact_transcript_for_logs(text: str) -> str:
    """
    Best-effort redaction for logs (to reduce accidental PII exposure).

    This is not a compliance-grade scrubber; it masks common patterns:
    - emails -> [EMAIL]
    - phone numbers -> [PHONE-***1234]
    """
    if not text:
        return ""

    redacted = _EMAIL_RE.sub("[EMAIL]", text)

    def _mask_phone(match: re.Match[str]) -> str:
        digits = re.sub(r"\D+", "", match.group(0) or "")
        last4 = digits[-4:] if len(digits) >= 4 else digits
        return f"[PHONE-***{last4}]"

    return _LOG_PHONE_RE.sub(_mask_phone, redacted)


@dataclass
class TurnMetrics:
    """Metrics for a single conversation turn."""
    turn_id: int = 0
    start_time: float = 0.0
    intent: str = ""
    agent: str = ""
    llm_first_token_ms: float = 0.0
    tts_first_audio_ms: float = 0.0
    audio_out_ms: float = 0.0
    total_turn_ms: float = 0.0
    lead_updated: bool = False
    used_fallback: bool = False

    def finalize(self) -> None:
        """Calculate total turn time."""
        if self.start_time > 0:
            self.total_turn_ms = (time.time() - self.start_time) * 1000


@dataclass
class CallMetrics:
    """Metrics for an entire call."""
    session_id: str = ""
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0
    turns: List[TurnMetrics] = field(default_factory=list)
    total_fallbacks: int = 0
    total_errors: int = 0
    audio_frames_dropped: int = 0

    @property
    def duration_seconds(self) -> float:
        end = self.end_time if self.end_time > 0 else time.time()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "duration_seconds": round(self.duration_seconds, 2),
            "total_turns": len(self.turns),
            "total_fallbacks": self.total_fallbacks,
            "total_errors": self.total_errors,
            "audio_frames_dropped": self.audio_frames_dropped,
            "avg_turn_ms": round(
                sum(t.total_turn_ms for t in self.turns) / len(self.turns), 2
            ) if self.turns else 0,
        }


STTFactory = Callable[..., Any]


class VoicePipeline:
    """
    One caller connection, end to end.

    Collaborators can be injected for tests; by default they are built from
    config (Deepgram STT/TTS, Groq/OpenAI generation, Instructor extraction).
    """

    def __init__(
        self,
        channel: CallerChannel,
        *,
        calendar: AvailabilityCalendar,
        knowledge_base: KnowledgeBase,
        config: Optional[Config] = None,
        llm: Optional[TextGenerator] = None,
        tts: Optional[Synthesizer] = None,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[Extractor] = None,
        stt_factory: Optional[STTFactory] = None,
    ):
        self.config = config or get_config()
        self._channel = channel

        self.session = CallSession(max_turns=self.config.max_session_turns)

        factory = stt_factory or DeepgramSTT
        self._stt = factory(
            on_transcript=self._on_transcript,
            on_open=self._on_stt_open,
            config=self.config,
        )
        self._relay = AudioRelayBuffer(self._stt)

        self._lead_cache = LeadExtractionCache(extractor or LeadExtractor(self.config))
        self._router = AgentRouter(
            classifier or IntentClassifier(self.config),
            booking=BookingAgent(self._lead_cache, calendar, knowledge_base, self.config),
            enquiry=EnquiryAgent(knowledge_base, self.config),
        )

        self._owns_tts = tts is None
        self._tts = tts or TTSManager(self.config)
        self._orchestrator = ResponseOrchestrator(
            llm or create_llm(self.config),
            self._tts,
            channel,
        )

        self._turn_queue = TurnQueue(self.process_transcript, on_error=self._on_turn_error)
        self._stt_start_task: Optional[asyncio.Task] = None
        self._is_running = False
        self._stopped = False

        self._call_metrics = CallMetrics(session_id=self.session.id)
        self._current_turn = 0
        self._current_turn_metrics: Optional[TurnMetrics] = None

    @property
    def metrics(self) -> CallMetrics:
        return self._call_metrics

    @property
    def turn_queue(self) -> TurnQueue:
        return self._turn_queue

    @property
    def relay(self) -> AudioRelayBuffer:
        return self._relay

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Announce the session, start the turn worker and connect STT."""
        if self._is_running or self._stopped:
            return

        logger.info("Starting voice pipeline", session_id=self.session.id)
        self._is_running = True

        await self._channel.send_event(create_session_started_message(self.session.id))
        self._turn_queue.start()

        # Connect in the background; audio that arrives meanwhile is buffered.
        self._stt_start_task = asyncio.create_task(self._start_stt_background())

        logger.info("Voice pipeline started", session_id=self.session.id)

    async def _start_stt_background(self) -> None:
        """Start STT and log success/failure without blocking call audio."""
        try:
            ok = await self._stt.connect()
            if ok:
                logger.info("STT ready", session_id=self.session.id)
            else:
                logger.error("STT failed to start", session_id=self.session.id)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("STT start task error", error=str(e))

    async def _on_stt_open(self) -> None:
        await self._relay.flush()

    async def handle_audio(self, data: Any) -> None:
        """Handle one inbound binary frame from the caller."""
        if not self._is_running:
            return

        frame = coerce_frame(data)
        if frame is None:
            logger.debug("Ignoring unusable audio frame", payload_type=type(data).__name__)
            return

        await self._relay.submit(frame)

    async def _on_transcript(self, text: str) -> None:
        """Recognizer callback; only schedules work."""
        self._turn_queue.enqueue(text)

    async def process_transcript(self, text: str) -> None:
        """Run one full turn for a recognized utterance."""
        clean_text = (text or "").strip()
        if not clean_text:
            return

        self._start_turn()
        try:
            await self._run_turn(clean_text)
        finally:
            self._end_turn()

    async def _run_turn(self, clean_text: str) -> None:
        session = self.session
        turn = self._current_turn_metrics

        logger.info(
            "Caller said",
            session_id=session.id,
            text=_redact_transcript_for_logs(clean_text),
        )
        session.add_turn(ConversationRole.CALLER, clean_text)

        lead_updated = await self._lead_cache.merge_lead(session, clean_text)
        await self._channel.send_event(
            create_transcript_message(
                ConversationRole.CALLER.value,
                clean_text,
                session.id,
                lead=session.lead_snapshot() if lead_updated else None,
            )
        )

        intent = await self._router.classify_intent(clean_text)
        agent = self._router.route(intent)
        await self._channel.send_event(create_intent_message(intent.value, agent.name))

        if turn:
            turn.lead_updated = lead_updated
            turn.intent = intent.value
            turn.agent = agent.name

        prompt = await agent.build_prompt(
            AgentContext(session=session, latest_user_text=clean_text, intent=intent)
        )

        logger.info("Generating response", session_id=session.id, intent=intent.value, agent=agent.name)
        await self._orchestrator.respond(prompt, session)

        stats = self._orchestrator.last_stats
        if turn:
            turn.llm_first_token_ms = stats.first_fragment_ms
            turn.tts_first_audio_ms = stats.first_audio_ms
            turn.audio_out_ms = stats.audio_ms
            turn.used_fallback = stats.used_fallback
        if stats.used_fallback:
            self._call_metrics.total_fallbacks += 1

    async def _on_turn_error(self, text: str, error: BaseException) -> None:
        self._call_metrics.total_errors += 1
        logger.error(
            "Error during turn processing",
            session_id=self.session.id,
            text=_redact_transcript_for_logs(text),
            error_type=type(error).__name__,
            error=str(error),
        )
        await self._channel.send_event(create_error_message(ERROR_TEXT))

    async def stop(self) -> None:
        """Stop all pipeline components (idempotent)."""
        if self._stopped:
            return
        self._stopped = True
        self._is_running = False

        logger.info("Stopping voice pipeline", session_id=self.session.id)

        # Closing first halts any in-flight audio relay.
        self._channel.close()
        await self._turn_queue.stop()

        if self._stt_start_task and not self._stt_start_task.done():
            self._stt_start_task.cancel()
            await asyncio.gather(self._stt_start_task, return_exceptions=True)
        self._stt_start_task = None

        await self._stt.disconnect()

        if self._owns_tts and isinstance(self._tts, TTSManager):
            await self._tts.stop()

        self._call_metrics.end_time = time.time()
        self._call_metrics.audio_frames_dropped = self._relay.dropped

        metrics = self._call_metrics.to_dict()
        metrics.update(
            {
                "turns_failed": self._turn_queue.failed,
                "caller_messages_sent": self._channel.messages_sent,
                "caller_audio_bytes_sent": self._channel.audio_bytes_sent,
            }
        )
        logger.info("Voice pipeline stopped", metrics=metrics)

    def _start_turn(self) -> None:
        """Start a new conversation turn."""
        self._current_turn += 1
        self._current_turn_metrics = TurnMetrics(
            turn_id=self._current_turn,
            start_time=time.time(),
        )

    def _end_turn(self) -> None:
        """End the current conversation turn."""
        if self._current_turn_metrics:
            self._current_turn_metrics.finalize()
            self._call_metrics.turns.append(self._current_turn_metrics)

            logger.info(
                "Turn completed",
                session_id=self.session.id,
                turn_id=self._current_turn_metrics.turn_id,
                intent=self._current_turn_metrics.intent,
                agent=self._current_turn_metrics.agent,
                llm_first_token_ms=round(self._current_turn_metrics.llm_first_token_ms, 2),
                tts_first_audio_ms=round(self._current_turn_metrics.tts_first_audio_ms, 2),
                audio_out_ms=round(self._current_turn_metrics.audio_out_ms, 2),
                total_turn_ms=round(self._current_turn_metrics.total_turn_ms, 2),
                lead_updated=self._current_turn_metrics.lead_updated,
                used_fallback=self._current_turn_metrics.used_fallback,
            )

            self._current_turn_metrics = None


async def create_pipeline(
    channel: CallerChannel,
    *,
    calendar: AvailabilityCalendar,
    knowledge_base: KnowledgeBase,
    config: Optional[Config] = None,
) -> VoicePipeline:
    """
    Create and start a new voice pipeline.

    Args:
        channel: Outbound side of the caller WebSocket
        calendar: Process-wide availability calendar
        knowledge_base: Process-wide business knowledge base

    Returns:
        Initialized and started VoicePipeline
    """
    pipeline = VoicePipeline(
        channel,
        calendar=calendar,
        knowledge_base=knowledge_base,
        config=config,
    )
    await pipeline.start()
    return pipeline
