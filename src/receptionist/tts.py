from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Optional

import structlog

from src.receptionist.config import get_config
from src.receptionist.tts_providers.base import TTSProvider
from src.receptionist.tts_providers.deepgram import DeepgramTTS, DeepgramTTSMetrics
from src.receptionist.tts_providers.openai_tts import OpenAITTS
from src.receptionist.tts_types import TTSChunk

logger = structlog.get_logger(__name__)


class TTSManager:
    """
    Per-call TTS manager with a pluggable provider system.

    - `deepgram`: streaming REST TTS (default)
    - `openai`: OpenAI Audio Speech API (non-streaming in this repo)

    `synthesize_streaming` never raises: a provider failure ends that
    fragment's audio early and the call carries on.
    """

    def __init__(self, config: Optional[Any] = None, provider: Optional[TTSProvider] = None):
        self.config = config or get_config()
        self._provider: Optional[TTSProvider] = provider

    async def start(self) -> None:
        if self._provider is not None:
            return

        tts = (self.config.tts_provider or "deepgram").strip().lower()

        if tts == "deepgram":
            self._provider = DeepgramTTS(self.config)
            return

        if tts == "openai":
            self._provider = OpenAITTS(self.config)
            return

        raise ValueError(f"Unsupported TTS_PROVIDER: {self.config.tts_provider}")

    async def stop(self) -> None:
        self.cancel_current()
        if self._provider:
            await self._provider.close()
            self._provider = None

    def cancel_current(self) -> None:
        if self._provider:
            self._provider.cancel()

    @property
    def deepgram_metrics(self) -> Optional[DeepgramTTSMetrics]:
        if isinstance(self._provider, DeepgramTTS):
            return self._provider.metrics
        return None

    async def synthesize_streaming(self, text: str) -> AsyncGenerator[TTSChunk, None]:
        if not text or not text.strip():
            return

        try:
            if not self._provider:
                await self.start()
        except ValueError as e:
            logger.error("TTS provider unavailable", error=str(e))
            return

        provider = self._provider
        if not provider:
            return

        inner = provider.synthesize_streaming(text)
        try:
            async for chunk in inner:
                yield chunk
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "TTS synthesis failed",
                error_type=type(e).__name__,
                error=str(e),
                characters=len(text),
            )
        finally:
            # Release the provider's HTTP stream as soon as the consumer stops.
            await inner.aclose()
