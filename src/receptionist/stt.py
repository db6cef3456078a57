"""
Deepgram Speech-to-Text streaming client.

The browser sends raw PCM16 mono 16kHz, which Deepgram accepts directly with
encoding=linear16&sample_rate=16000, so audio is relayed untouched.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets

from src.receptionist.audio import PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH
from src.receptionist.config import get_config

logger = structlog.get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of the recognizer socket."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class STTMetrics:
    """Metrics for STT performance."""
    total_audio_ms: float = 0.0
    frames_sent: int = 0
    total_transcripts: int = 0
    connected_at: float = 0.0
    started_at: float = field(default_factory=time.time)

    @property
    def connect_ms(self) -> float:
        if not self.connected_at:
            return 0.0
        return (self.connected_at - self.started_at) * 1000


class DeepgramSTT:
    """
    Deepgram streaming STT client using raw WebSocket.

    Exposes `is_open` / `is_closed` so an `AudioRelayBuffer` can decide whether
    to queue, forward or discard inbound frames.
    """

    def __init__(
        self,
        on_transcript: Optional[Callable[[str], Awaitable[None]]] = None,
        on_open: Optional[Callable[[], Awaitable[None]]] = None,
        config: Optional[Any] = None,
    ):
        if config is None:
            config = get_config()

        self.config = config
        self._on_transcript = on_transcript
        self._on_open = on_open
        self._ws = None
        self._state = ConnectionState.CONNECTING
        self._metrics = STTMetrics()
        self._receive_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state == ConnectionState.CLOSED

    @property
    def metrics(self) -> STTMetrics:
        return self._metrics

    async def connect(self) -> bool:
        """Connect to Deepgram streaming API."""
        if self.is_open:
            return True
        if self.is_closed:
            return False

        headers = {"Authorization": f"Token {self.config.deepgram_api_key}"}

        try:
            logger.info("Connecting to Deepgram")
            self._ws = await websockets.connect(
                self.config.deepgram_listen_url,
                additional_headers=headers,
                open_timeout=10,
            )
        except Exception as e:
            logger.error(
                "Deepgram connection failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            self._state = ConnectionState.CLOSED
            return False

        if self.is_closed:
            # Disconnected while the handshake was in flight.
            await self._close_socket()
            return False

        self._state = ConnectionState.OPEN
        self._metrics.connected_at = time.time()
        logger.info("Deepgram STT connected", connect_ms=round(self._metrics.connect_ms, 2))

        self._receive_task = asyncio.create_task(self._receive_loop())

        if self._on_open:
            try:
                await self._on_open()
            except Exception as e:
                logger.error("STT on_open callback failed", error=str(e))

        return True

    async def disconnect(self) -> None:
        """Disconnect from Deepgram."""
        self._state = ConnectionState.CLOSED

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        await self._close_socket()
        logger.info("Deepgram STT disconnected", audio_ms=round(self._metrics.total_audio_ms, 2))

    async def _close_socket(self) -> None:
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning("Error closing Deepgram connection", error=str(e))
        self._ws = None

    async def send_audio(self, audio_bytes: bytes) -> None:
        """Send audio data to Deepgram."""
        if not self.is_open or not self._ws:
            return

        try:
            self._metrics.total_audio_ms += (
                len(audio_bytes) / PCM_SAMPLE_WIDTH / PCM_SAMPLE_RATE * 1000
            )
            self._metrics.frames_sent += 1
            await self._ws.send(audio_bytes)
        except Exception as e:
            logger.error("Failed to send audio to Deepgram", error=str(e))

    async def _receive_loop(self) -> None:
        """Receive and process messages from Deepgram."""
        try:
            async for message in self._ws:
                if not self.is_open:
                    break

                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from Deepgram")
                    continue

                try:
                    await self._handle_message(data)
                except Exception as e:
                    logger.error("Error processing Deepgram message", error=str(e))

        except websockets.exceptions.ConnectionClosed:
            logger.info("Deepgram connection closed")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Deepgram receive loop error", error=str(e))
        finally:
            self._state = ConnectionState.CLOSED

    async def _handle_message(self, data: dict) -> None:
        """Handle a message from Deepgram."""
        if not isinstance(data, dict):
            return

        msg_type = data.get("type", "")
        if isinstance(msg_type, str) and msg_type.lower() == "error":
            logger.error(
                "Deepgram error",
                error=data.get("message", "Unknown"),
                details=data,
            )
            return

        transcript = self.extract_transcript(data)
        if not transcript:
            return

        self._metrics.total_transcripts += 1
        logger.debug("STT transcript", text=transcript[:50])

        if self._on_transcript:
            await self._on_transcript(transcript)

    @staticmethod
    def extract_transcript(data: dict) -> str:
        """Pull `channel.alternatives[0].transcript` out of a result message."""
        channel = data.get("channel")
        if not isinstance(channel, dict):
            return ""
        alternatives = channel.get("alternatives")
        if not isinstance(alternatives, list) or not alternatives:
            return ""
        first = alternatives[0]
        if not isinstance(first, dict):
            return ""
        transcript = first.get("transcript", "")
        if not isinstance(transcript, str) or not transcript.strip():
            return ""
        return transcript
