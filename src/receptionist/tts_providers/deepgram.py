from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

import httpx
import structlog

from src.receptionist.audio import PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH
from src.receptionist.config import get_config
from src.receptionist.tts_providers.base import TTSProvider
from src.receptionist.tts_types import TTSChunk

logger = structlog.get_logger(__name__)

_BYTES_PER_MS = PCM_SAMPLE_RATE * PCM_SAMPLE_WIDTH / 1000.0


@dataclass
class DeepgramTTSMetrics:
    """Metrics for TTS performance."""

    total_requests: int = 0
    total_characters: int = 0
    total_audio_ms: float = 0.0
    avg_first_byte_ms: float = 0.0
    avg_total_ms: float = 0.0

    def record_synthesis(
        self,
        *,
        characters: int,
        audio_ms: float,
        first_byte_ms: float,
        total_ms: float,
    ) -> None:
        self.total_requests += 1
        self.total_characters += characters
        self.total_audio_ms += audio_ms

        # Running averages
        n = self.total_requests
        self.avg_first_byte_ms = (self.avg_first_byte_ms * (n - 1) + first_byte_ms) / n
        self.avg_total_ms = (self.avg_total_ms * (n - 1) + total_ms) / n


class DeepgramTTS(TTSProvider):
    """
    Deepgram Speak client using the streaming REST endpoint.

    Audio is requested as linear16 at 16kHz and relayed as it arrives, so the
    caller hears the start of a fragment before the rest is synthesized.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_config()
        self._metrics = DeepgramTTSMetrics()
        self._client = client
        self._owns_client = client is None
        self._is_cancelled = False

    @property
    def metrics(self) -> DeepgramTTSMetrics:
        return self._metrics

    def cancel(self) -> None:
        self._is_cancelled = True
        logger.debug("Deepgram TTS cancelled")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
            self._owns_client = True
        return self._client

    async def synthesize_streaming(self, text: str) -> AsyncGenerator[TTSChunk, None]:
        if not text or not text.strip():
            return

        self._is_cancelled = False
        start_time = time.time()
        first_byte_time: Optional[float] = None
        total_audio_bytes = 0
        # PCM16 samples are 2 bytes; hold back an odd trailing byte.
        remainder = b""

        try:
            client = self._get_client()
            async with client.stream(
                "POST",
                self.config.deepgram_tts_url,
                headers={
                    "Authorization": f"Token {self.config.deepgram_api_key}",
                    "Content-Type": "application/json",
                },
                json={"text": text},
            ) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    logger.error(
                        "Deepgram TTS request failed",
                        status_code=response.status_code,
                        response=body[:200].decode("utf-8", errors="replace"),
                    )
                    return

                async for data in response.aiter_bytes():
                    if self._is_cancelled:
                        break
                    if not data:
                        continue

                    if first_byte_time is None:
                        first_byte_time = time.time()

                    data = remainder + data
                    usable = len(data) - (len(data) % PCM_SAMPLE_WIDTH)
                    remainder = data[usable:]
                    if not usable:
                        continue

                    total_audio_bytes += usable
                    yield TTSChunk(audio_bytes=data[:usable], is_final=False)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Deepgram synthesis failed", error_type=type(e).__name__, error=str(e))
            return

        if not self._is_cancelled:
            yield TTSChunk(audio_bytes=b"", is_final=True)

        end_time = time.time()
        if first_byte_time is None:
            first_byte_time = end_time

        self._metrics.record_synthesis(
            characters=len(text),
            audio_ms=total_audio_bytes / _BYTES_PER_MS,
            first_byte_ms=(first_byte_time - start_time) * 1000,
            total_ms=(end_time - start_time) * 1000,
        )
